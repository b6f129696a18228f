from collections import namedtuple
from unittest.mock import MagicMock

import discord
import pytest
import yaml
from discord.ext import commands

from commando.cogs.commandstate.commandstate import UNGROUPED, CommandState
from commando.cogs.commandstate.converters import (
    CommandOrGroupConverter,
    PermissionScopeType,
    PermissionTargetConverter,
    WhitelistKindConverter,
)
from commando.cogs.commandstate.report import build_embed, to_yaml
from commando.core.permissions import ALL, SERVER, PermissionScope
from commando.core.registry import Command
from commando.pytest.core import *

Context = namedtuple("Context", "guild cog")
InvokeContext = namedtuple("InvokeContext", "command guild channel author")
Member = namedtuple("Member", "id roles")


def _role(role_id, name):
    role = MagicMock(spec=discord.Role)
    role.id = role_id
    role.name = name
    return role


def _channel(channel_id, name):
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.name = name
    return channel


@pytest.fixture()
def mock_guild():
    channels = [_channel(11, "general"), _channel(12, "general-2"), _channel(13, "bots")]
    roles = [_role(21, "Mods"), _role(22, "Moderators"), _role(23, "bots")]
    guild = MagicMock(spec=discord.Guild)
    guild.id = 1
    guild.channels = channels
    guild.roles = roles
    guild.get_channel.side_effect = lambda i: next((c for c in channels if c.id == i), None)
    guild.get_role.side_effect = lambda i: next((r for r in roles if r.id == i), None)
    return guild


@pytest.fixture()
def cog(driver):
    return CommandState(MagicMock(), driver=driver)


@commands.command(aliases=["Pong"])
async def ping(ctx):
    """Check that the bot is alive."""


@pytest.mark.parametrize(
    "argument,expected",
    [("c", "channels"), ("Channel", "channels"), ("r", "roles"), ("ROLES", "roles")],
)
async def test_whitelist_kind(argument, expected):
    assert await WhitelistKindConverter().convert(Context(None, None), argument) == expected


async def test_whitelist_kind_rejects():
    with pytest.raises(commands.BadArgument, match="valid type"):
        await WhitelistKindConverter().convert(Context(None, None), "members")


async def test_scope_server_everywhere():
    converter = PermissionScopeType()
    assert await converter.convert(Context(None, None), "SERVER") is SERVER
    with pytest.raises(commands.BadArgument):
        await converter.convert(Context(None, None), "general")


@pytest.mark.parametrize(
    "argument,expected",
    [
        ("<#12>", PermissionScope.channel(12)),
        ("13", PermissionScope.channel(13)),
        ("<@&22>", PermissionScope.role(22)),
        ("moderators", PermissionScope.role(22)),
        ("general-", PermissionScope.channel(12)),
        ("general", PermissionScope.channel(11)),
        ("bots", PermissionScope.channel(13)),
    ],
)
async def test_scope_lookup(mock_guild, argument, expected):
    assert await PermissionScopeType().parse(argument, Context(mock_guild, None)) == expected


async def test_scope_ambiguous(mock_guild):
    with pytest.raises(commands.BadArgument) as exc_info:
        await PermissionScopeType().parse("mod", Context(mock_guild, None))
    assert str(exc_info.value) == (
        'Multiple roles found, please be more specific: "Mods",   "Moderators"'
    )


async def test_scope_not_found(mock_guild):
    with pytest.raises(commands.BadArgument):
        await PermissionScopeType().parse("voice", Context(mock_guild, None))
    with pytest.raises(commands.BadArgument):
        await PermissionScopeType().parse("<@&99>", Context(mock_guild, None))


async def test_command_or_group(cog):
    cog.registry.register_group("util")
    cog.registry.register_command(Command("ping", "util"))
    ctx = Context(None, cog)
    assert (await CommandOrGroupConverter().convert(ctx, "util")).id == "util"
    assert (await CommandOrGroupConverter().convert(ctx, "pin")).name == "ping"
    with pytest.raises(commands.BadArgument):
        await CommandOrGroupConverter().convert(ctx, "nothing")


async def test_permission_target(cog, mock_guild):
    converter = PermissionTargetConverter()
    assert await converter.convert(Context(None, cog), "all") is ALL
    target = await converter.convert(Context(mock_guild, cog), "<#11>")
    assert target == PermissionScope.channel(11)
    cog.registry.register_group("util")
    assert (await converter.convert(Context(mock_guild, cog), "util")).id == "util"


def test_argument_type_is_registered(cog):
    assert isinstance(cog.registry.types["permission"], PermissionScopeType)


def test_registered_command(cog):
    entry = cog.registered_command(ping)
    assert entry.name == "ping"
    assert entry.aliases == ("pong",)
    assert entry.description == "Check that the bot is alive."
    assert entry.group.id == UNGROUPED
    assert entry.guarded is False
    assert cog.registered_command(ping) is entry


def test_own_commands_are_guarded(cog):
    own = cog.get_commands()[0].copy()
    own.cog = cog
    entry = cog.registered_command(own)
    assert entry.guarded is True
    assert entry.group.id == "commandstate"
    assert entry.group.guarded is True


async def test_bot_check(cog):
    entry = cog.registered_command(ping)
    guild = namedtuple("Guild", "id")(5)
    member = Member(1, [])
    assert await cog.bot_check(InvokeContext(ping, guild, 7, member)) is True

    cog.permissions.set_command_enabled(guild, entry, False)
    assert await cog.bot_check(InvokeContext(ping, guild, 7, member)) is False
    assert await cog.bot_check(InvokeContext(ping, None, 7, member)) is True
    assert await cog.bot_check(InvokeContext(None, guild, 7, member)) is True


def test_embed_for_all(permissions):
    ping_entry = permissions.registry.commands["ping"]
    permissions.set_command_enabled(1, ping_entry, False)
    permissions.set_command_enabled(1, ping_entry, True, PermissionScope.channel(11))
    permissions.set_whitelist(ping_entry.group, "roles", True, 1)

    embed = build_embed(permissions.report(1))
    fields = {field.name: field.value for field in embed.fields}
    assert fields["Server Commands:"] == "• **ping** -- disabled"
    assert fields["Channel Commands:"] == "• **ping:** <#11> -- enabled"
    assert fields["Role Commands:"] == "None!"
    assert fields["Whitelisted Groups:"] == "• **util - role:** true"
    assert fields["Whitelisted Commands:"] == "--"


def test_embed_for_command(permissions, mock_guild):
    kick = permissions.registry.commands["kick"]
    permissions.set_command_enabled(mock_guild, kick, False, PermissionScope.role(21))
    permissions.set_command_enabled(None, kick, False)

    embed = build_embed(permissions.report(mock_guild, kick), mock_guild)
    fields = {field.name: field.value for field in embed.fields}
    assert embed.description == "Permissions for command **kick**"
    assert fields["Server:"] == "None!"
    assert fields["Roles:"].endswith("-- disabled")
    assert fields["Channels:"] == "None!"
    assert embed.footer.text == "This command is disabled globally."


def test_embed_for_guarded(permissions):
    embed = build_embed(permissions.report(1, permissions.registry.commands["enable"]))
    assert [field.name for field in embed.fields] == ["Server:", "**Guarded!**"]


def test_yaml_export(permissions):
    ban = permissions.registry.commands["ban"]
    permissions.set_command_enabled(1, ban, False, PermissionScope.channel(3))
    permissions.set_whitelist(ban, "channels", True, 1)

    data = yaml.safe_load(to_yaml(permissions.report(1)))
    assert data == {
        "guild": 1,
        "commands": {
            "ban": {"channels": {3: False}, "whitelist": {"roles": False, "channels": True}}
        },
        "groups": {},
    }
