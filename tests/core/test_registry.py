import pytest

from commando.core.errors import AmbiguousOrNotFound, DuplicateIdentity, UnknownGroup
from commando.core.registry import ArgumentType, Command, Group, Registry, disambiguation
from commando.pytest.core import *


def test_find_commands_substring_without_exact_hit(registry):
    registry.register_group("mod")
    registry.register_commands([Command("kick", "mod"), Command("ban", "mod")])
    registry.register_command(Command("kickall", "mod", member_name="kick-all"))

    found = registry.find_commands("ki")
    assert {command.name for command in found} == {"kick", "kickall"}


def test_find_commands_prefers_perfect_match(populated_registry):
    assert [c.name for c in populated_registry.find_commands("kick")] == ["kick"]
    assert [c.name for c in populated_registry.find_commands("KICK")] == ["kick"]


def test_find_commands_by_alias_and_qualified_name(populated_registry):
    assert [c.name for c in populated_registry.find_commands("say")] == ["echo"]
    assert [c.name for c in populated_registry.find_commands("mod:kick-all")] == ["kickall"]
    assert [c.name for c in populated_registry.find_commands("hammer", exact=True)] == ["ban"]


def test_find_without_query_lists_everything(populated_registry):
    assert len(populated_registry.find_commands()) == len(populated_registry.commands)
    assert len(populated_registry.find_groups("")) == len(populated_registry.groups)


def test_find_groups_by_name(populated_registry):
    assert [g.id for g in populated_registry.find_groups("moder")] == ["mod"]
    assert [g.id for g in populated_registry.find_groups("utility", exact=True)] == ["util"]
    assert populated_registry.find_groups("nothing") == []


def test_resolve_command_is_exact(populated_registry):
    assert populated_registry.resolve_command("ban").name == "ban"
    with pytest.raises(AmbiguousOrNotFound) as exc_info:
        populated_registry.resolve_command("ki")
    assert exc_info.value.matches == []
    assert exc_info.value.query == "ki"


def test_resolve_command_passes_objects_through(populated_registry):
    ping = populated_registry.commands["ping"]
    assert populated_registry.resolve_command(ping) is ping
    group = populated_registry.groups["util"]
    assert populated_registry.resolve_group(group) is group
    with pytest.raises(AmbiguousOrNotFound):
        populated_registry.resolve_group(42)


def test_resolve_command_or_group_prefers_groups(registry):
    registry.register_group("music")
    registry.register_group("misc")
    registry.register_command(Command("music", "misc", member_name="play"))
    assert isinstance(registry.resolve_command_or_group("music"), Group)
    assert isinstance(registry.resolve_command_or_group("misc:play"), Command)


def test_resolve_command_or_group_lists_candidates(populated_registry):
    with pytest.raises(AmbiguousOrNotFound) as exc_info:
        populated_registry.resolve_command_or_group("ki")
    message = str(exc_info.value)
    assert message.startswith("Multiple commands found, please be more specific:")
    assert '"kick"' in message and '"kickall"' in message
    assert {e.name for e in exc_info.value.matches} == {"kick", "kickall"}


def test_resolve_command_or_group_not_found(populated_registry):
    with pytest.raises(AmbiguousOrNotFound, match="No command or group matches"):
        populated_registry.resolve_command_or_group("zzz")


def test_disambiguation_includes_descriptions():
    items = [Command("ping", "util", description="Pong!"), Command("pong", "util")]
    assert disambiguation(items, "commands") == (
        'Multiple commands found, please be more specific: "ping" (Pong!),   "pong"'
    )


def test_register_command_sets_group(populated_registry):
    ping = populated_registry.commands["ping"]
    assert ping.group is populated_registry.groups["util"]
    assert populated_registry.groups["util"].commands["ping"] is ping
    assert ping.key == "cmd-ping"
    assert ping.group.key == "grp-util"


def test_register_command_duplicate_name_or_alias(populated_registry):
    with pytest.raises(DuplicateIdentity):
        populated_registry.register_command(Command("ping", "mod"))
    with pytest.raises(DuplicateIdentity):
        populated_registry.register_command(Command("say", "mod"))
    with pytest.raises(DuplicateIdentity):
        populated_registry.register_command(Command("smash", "mod", aliases=["hammer"]))


def test_register_command_duplicate_member_name(populated_registry):
    with pytest.raises(DuplicateIdentity):
        populated_registry.register_command(Command("kick2", "mod", member_name="kick"))
    assert "kick2" not in populated_registry.commands


def test_register_command_unknown_group(registry):
    with pytest.raises(UnknownGroup) as exc_info:
        registry.register_command(Command("ping", "nowhere"))
    assert exc_info.value.group_id == "nowhere"
    assert registry.commands == {}


def test_register_commands_ignore_invalid(registry):
    registry.register_group("util")
    registry.register_commands([Command("ping", "util"), "not a command"], ignore_invalid=True)
    assert list(registry.commands) == ["ping"]
    with pytest.raises(TypeError):
        registry.register_commands(["not a command"])


def test_register_group_again_renames(registry):
    registry.register_group("util", "Utility")
    original = registry.groups["util"]
    registry.register_group(Group("util", "Utilities", guarded=True))
    assert registry.groups["util"] is original
    assert original.name == "Utilities"
    assert original.guarded is False


def test_names_must_be_lowercase():
    with pytest.raises(ValueError):
        Command("Ping", "util")
    with pytest.raises(ValueError):
        Command("ping", "util", aliases=["Pong"])
    with pytest.raises(ValueError):
        Group("Util")


def test_guarded_is_read_only():
    command = Command("ping", "util", guarded=True)
    with pytest.raises(AttributeError):
        command.guarded = False


def test_register_types(registry):
    class Flavour(ArgumentType):
        async def parse(self, value, ctx):
            return value

    registry.register_types([Flavour("flavour"), object()], ignore_invalid=True)
    assert list(registry.types) == ["flavour"]
    with pytest.raises(DuplicateIdentity):
        registry.register_type(Flavour("flavour"))


def test_registration_dispatches_events(events):
    registry = Registry(events)
    seen = []
    events.add_listener(lambda group, reg: seen.append(("group", group.id)), "group_register")
    events.add_listener(
        lambda command, reg: seen.append(("command", command.name)), "command_register"
    )
    events.add_listener(lambda command: seen.append(("gone", command.name)), "command_unregister")

    registry.register_group("util")
    registry.register_group("util", "Utility")
    registry.register_command(Command("ping", "util"))
    registry.unregister_command(registry.commands["ping"])

    assert seen == [("group", "util"), ("command", "ping"), ("gone", "ping")]
    assert "ping" not in registry.groups["util"].commands
