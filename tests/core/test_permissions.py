import random
from collections import namedtuple

import pytest

from commando.core.errors import GuardedEntity
from commando.core.events import GLOBAL, ChangeEvent, EntityKind, OverrideScope
from commando.core.permissions import ALL, SERVER, PermissionManager, PermissionScope
from commando.core.registry import Command
from commando.pytest.core import *

Member = namedtuple("Member", "id roles")


@pytest.fixture()
def changes(events):
    seen = []
    events.add_listener(seen.append, "change")
    return seen


def test_untouched_command_follows_global_flag(permissions, empty_guild, empty_member):
    ping = permissions.registry.commands["ping"]
    for channel_id in (1, 2, None):
        assert permissions.is_usable(ping, empty_guild, channel_id, empty_member) is True

    ping.global_enabled = False
    for channel_id in (1, 2, None):
        assert permissions.is_usable(ping, empty_guild, channel_id, empty_member) is False


def test_no_guild_uses_global_flags(permissions):
    ping = permissions.registry.commands["ping"]
    assert permissions.is_usable(ping, None) is True
    permissions.set_group_enabled(None, ping.group, False)
    assert permissions.is_usable(ping, None) is False
    assert permissions.is_command_enabled(ping, None) is True


def test_guarded_is_always_usable(permissions, empty_guild):
    enable = permissions.registry.commands["enable"]
    state = permissions.get_state(empty_guild, create=True)
    state.command_server["enable"] = False
    state.command_channel[5] = {"enable": False}
    state.group_server["core"] = False
    enable.whitelist.roles = True
    enable.global_enabled = False

    assert permissions.is_usable(enable, empty_guild, 5, Member(1, [7])) is True
    assert permissions.is_usable(enable, None) is True


def test_guarded_group_protects_its_commands(registry, events):
    registry.register_group("core", guarded=True)
    registry.register_command(Command("info", "core"))
    permissions = PermissionManager(registry, events)
    info = registry.commands["info"]
    permissions.set_command_enabled(42, info, False)
    assert permissions.is_usable(info, 42) is True


@pytest.mark.parametrize(
    "mutation",
    [
        lambda p, e: p.set_command_enabled(1, e, False),
        lambda p, e: p.set_command_enabled(None, e, True),
        lambda p, e: p.set_command_enabled(1, e, True, PermissionScope.channel(3)),
        lambda p, e: p.set_group_enabled(1, e.group, False, PermissionScope.role(4)),
        lambda p, e: p.set_whitelist(e, "roles", True),
        lambda p, e: p.set_whitelist(e.group, OverrideScope.CHANNELS_WHITELIST, True, 1),
    ],
)
def test_guarded_mutations_fail(permissions, changes, mutation):
    enable = permissions.registry.commands["enable"]
    with pytest.raises(GuardedEntity):
        mutation(permissions, enable)
    assert changes == []
    assert permissions.get_state(1) is None


def test_guarded_trusted_mutation_is_recorded(permissions):
    enable = permissions.registry.commands["enable"]
    permissions.set_command_enabled(1, enable, False, trusted=True)
    assert permissions.get_state(1).command_server == {"enable": False}
    assert permissions.is_usable(enable, 1) is True


def test_channel_deny_beats_role_allow(permissions, empty_guild):
    ping = permissions.registry.commands["ping"]
    permissions.set_command_enabled(empty_guild, ping, False, PermissionScope.channel(10))
    permissions.set_command_enabled(empty_guild, ping, True, PermissionScope.role(20))
    member = Member(1, [20])

    assert permissions.is_usable(ping, empty_guild, 10, member) is False
    assert permissions.is_usable(ping, empty_guild, 11, member) is True


def test_role_deny_beats_server_allow(permissions, empty_guild):
    ban = permissions.registry.commands["ban"]
    permissions.set_command_enabled(empty_guild, ban, True)
    permissions.set_command_enabled(empty_guild, ban, False, PermissionScope.role(30))

    assert permissions.is_usable(ban, empty_guild, 1, Member(1, [30, 31])) is False
    assert permissions.is_usable(ban, empty_guild, 1, Member(2, [31])) is True


def test_group_deny_applies_to_its_commands(permissions, empty_guild):
    kick = permissions.registry.commands["kick"]
    permissions.set_group_enabled(empty_guild, kick.group, False)
    assert permissions.is_usable(kick, empty_guild, 1, Member(1, [])) is False
    assert permissions.is_command_enabled(kick, empty_guild, 1) is True
    assert permissions.is_group_enabled(kick.group, empty_guild, 1) is False


def test_roles_whitelist_requires_explicit_allow(permissions, empty_guild):
    ping = permissions.registry.commands["ping"]
    permissions.set_command_enabled(empty_guild, ping, True)
    permissions.set_whitelist(ping, "roles", True, empty_guild)

    assert permissions.is_usable(ping, empty_guild, 1, Member(1, [50])) is False
    assert permissions.is_usable(ping, empty_guild, 1, None) is False

    permissions.set_command_enabled(empty_guild, ping, True, PermissionScope.role(50))
    assert permissions.is_usable(ping, empty_guild, 1, Member(1, [50])) is True
    assert permissions.is_usable(ping, empty_guild, 1, Member(2, [51])) is False


def test_channels_whitelist_requires_explicit_allow(permissions, empty_guild):
    echo = permissions.registry.commands["echo"]
    permissions.set_whitelist(echo.group, "channels", True, empty_guild)
    assert permissions.is_usable(echo, empty_guild, 60, Member(1, [])) is False

    permissions.set_group_enabled(empty_guild, echo.group, True, PermissionScope.channel(60))
    assert permissions.is_usable(echo, empty_guild, 60, Member(1, [])) is True
    assert permissions.is_usable(echo, empty_guild, 61, Member(1, [])) is False


def test_whitelist_toggle_keeps_overrides(permissions, empty_guild):
    ping = permissions.registry.commands["ping"]
    permissions.set_command_enabled(empty_guild, ping, True, PermissionScope.role(70))
    permissions.set_whitelist(ping, "roles", True, empty_guild)
    permissions.set_whitelist(ping, "roles", False, empty_guild)
    assert permissions.get_state(empty_guild).command_role == {"ping": {70: True}}
    assert ping.whitelist.roles is False


def test_ping_scenario(permissions, guild_factory, member_factory):
    ping = permissions.registry.commands["ping"]
    guild = guild_factory.get()
    member = member_factory.get(roles=[random.randint(1, 999)])
    channel_c, other = 100, 200

    assert permissions.is_usable(ping, guild, other, member) is True

    permissions.set_command_enabled(guild, ping, False, SERVER)
    assert permissions.is_usable(ping, guild, other, member) is False
    assert permissions.is_usable(ping, guild, channel_c, member) is False

    permissions.set_command_enabled(guild, ping, True, PermissionScope.channel(channel_c))
    assert permissions.is_usable(ping, guild, channel_c, member) is True
    assert permissions.is_usable(ping, guild, other, member) is False


def test_state_is_per_guild(permissions, guild_factory):
    ping = permissions.registry.commands["ping"]
    first, second = guild_factory.get(), guild_factory.get()
    permissions.set_command_enabled(first, ping, False)
    assert permissions.is_usable(ping, first, 1) is False
    assert permissions.is_usable(ping, second, 1) is True
    assert permissions.guild_ids == [first.id]


def test_mutations_emit_change_events(permissions, changes):
    ping = permissions.registry.commands["ping"]
    util = ping.group

    returned = permissions.set_command_enabled(5, ping, 0, PermissionScope.channel(9))
    permissions.set_group_enabled(None, util, False)
    permissions.set_whitelist(ping, "channels", True, 5)

    assert changes == [
        ChangeEvent(5, EntityKind.COMMAND, "ping", False, OverrideScope.CHANNEL, 9),
        ChangeEvent(GLOBAL, EntityKind.GROUP, "util", False, OverrideScope.SERVER),
        ChangeEvent(5, EntityKind.COMMAND, "ping", True, OverrideScope.CHANNELS_WHITELIST),
    ]
    assert returned is changes[0]
    assert changes[0].key == "cmd-ping"
    assert changes[1].is_global
    assert util.global_enabled is False


def test_global_mutation_rejects_sub_scopes(permissions):
    ping = permissions.registry.commands["ping"]
    with pytest.raises(ValueError):
        permissions.set_command_enabled(None, ping, False, PermissionScope.channel(1))


def test_unknown_scope_values(permissions):
    ping = permissions.registry.commands["ping"]
    with pytest.raises(TypeError):
        permissions.set_command_enabled(1, ping, False, "everywhere")
    with pytest.raises(ValueError):
        permissions.set_whitelist(ping, "members", True)
    with pytest.raises(ValueError):
        permissions.set_whitelist(ping, OverrideScope.CHANNEL, True)


def test_remove_channel_and_role(permissions, events):
    ping = permissions.registry.commands["ping"]
    pruned = []
    events.add_listener(lambda *args: pruned.append(("channel", *args)), "channel_remove")
    events.add_listener(lambda *args: pruned.append(("role", *args)), "role_remove")
    permissions.set_command_enabled(1, ping, False, PermissionScope.channel(2))
    permissions.set_group_enabled(1, ping.group, False, PermissionScope.role(3))

    permissions.remove_channel(1, 2)
    permissions.remove_role(1, 3)

    state = permissions.get_state(1)
    assert state.command_channel == {}
    assert state.group_role == {}
    assert state.is_empty()
    assert pruned == [("channel", 1, 2), ("role", 1, 3)]


def test_clear_guild(permissions, events):
    ping = permissions.registry.commands["ping"]
    cleared = []
    events.add_listener(cleared.append, "guild_clear")
    permissions.set_command_enabled(1, ping, False)
    permissions.clear_guild(1)
    assert permissions.get_state(1) is None
    assert permissions.is_usable(ping, 1, 1) is True
    assert cleared == [1]


def test_report_all(permissions):
    ping = permissions.registry.commands["ping"]
    kick = permissions.registry.commands["kick"]
    permissions.set_command_enabled(1, ping, False)
    permissions.set_command_enabled(1, ping, True, PermissionScope.channel(2))
    permissions.set_whitelist(kick, "roles", True, 1)
    permissions.set_group_enabled(1, kick.group, False, PermissionScope.role(3))

    report = permissions.report(1)
    assert report.target is ALL
    by_name = {entry.name: entry for entry in report.commands}
    assert set(by_name) == {"ping", "kick"}
    assert by_name["ping"].server is False
    assert by_name["ping"].channels == {2: True}
    assert by_name["kick"].whitelist.roles is True
    assert [(g.name, g.roles) for g in report.groups] == [("mod", {3: False})]


def test_report_scoped(permissions):
    ping = permissions.registry.commands["ping"]
    permissions.set_command_enabled(1, ping, False, PermissionScope.channel(2))
    permissions.set_command_enabled(1, ping, True, PermissionScope.channel(4))

    report = permissions.report(1, PermissionScope.channel(4))
    assert [(e.name, e.channels) for e in report.commands] == [("ping", {4: True})]
    assert not permissions.report(1, PermissionScope.role(4))

    entity_report = permissions.report(1, ping)
    assert entity_report.commands[0].channels == {2: False, 4: True}
    assert entity_report.groups == []
    assert permissions.report(1, ping.group).groups[0].has_overrides is False
