import re
from typing import Any, List, Optional, Sequence, Union

import discord
from discord.ext import commands

from commando.core.errors import AmbiguousOrNotFound
from commando.core.permissions import ALL, SERVER, PermissionScope
from commando.core.registry import ArgumentType, Command, Group

__all__ = [
    "PermissionScopeType",
    "CommandOrGroupConverter",
    "WhitelistKindConverter",
    "PermissionTargetConverter",
]

CHANNEL_RE = re.compile(r"^(?:<#)?(\d+)>?$")
ROLE_RE = re.compile(r"^(?:<@&)?(\d+)>?$")
MAX_LISTED = 15


def _disambiguation(things: Sequence[Any], label: str) -> str:
    if len(things) > MAX_LISTED:
        return f"Multiple {label} found. Please be more specific."
    names = ",   ".join(
        '"{}"'.format(discord.utils.escape_markdown(thing.name)) for thing in things
    )
    return f"Multiple {label} found, please be more specific: {names}"


def _inexact(things, search: str) -> List[Any]:
    return [thing for thing in things if search in thing.name.lower()]


def _exact(things, search: str) -> List[Any]:
    return [thing for thing in things if thing.name.lower() == search]


class PermissionScopeType(ArgumentType, commands.Converter):
    """Where to enable or disable: ``server``, a channel or a role.

    Channels and roles are accepted as mentions, IDs or names. Names are
    matched by substring first, then exactly.
    """

    def __init__(self):
        super().__init__("permission")

    async def convert(self, ctx: commands.Context, argument: str) -> PermissionScope:
        return await self.parse(argument, ctx)

    async def parse(self, value: str, ctx: commands.Context) -> PermissionScope:
        if value.lower() == "server":
            return SERVER
        guild: Optional[discord.Guild] = ctx.guild
        if guild is None:
            raise commands.BadArgument("Only `server` can be used outside of a server.")

        return self.to_scope(self.find(guild, value))

    @staticmethod
    def to_scope(found: Union[discord.abc.GuildChannel, discord.Role]) -> PermissionScope:
        if isinstance(found, discord.Role):
            return PermissionScope.role(found.id)
        return PermissionScope.channel(found.id)

    @staticmethod
    def find(
        guild: discord.Guild, value: str
    ) -> Union[discord.abc.GuildChannel, discord.Role]:
        match = CHANNEL_RE.match(value)
        if match:
            channel = guild.get_channel(int(match.group(1)))
            if channel is not None:
                return channel
        match = ROLE_RE.match(value)
        if match:
            role = guild.get_role(int(match.group(1)))
            if role is not None:
                return role
            raise commands.BadArgument(f'"{value}" is not a channel or role in this server.')

        search = value.lower()
        channels = _inexact(guild.channels, search)
        roles = _inexact(guild.roles, search)
        if not channels and not roles:
            raise commands.BadArgument(f'No channel or role matches "{value}".')
        if len(channels) == 1:
            return channels[0]
        if len(roles) == 1:
            return roles[0]

        exact_channels = _exact(channels, search)
        exact_roles = _exact(roles, search)
        if len(exact_channels) == 1:
            return exact_channels[0]
        if len(exact_roles) == 1:
            return exact_roles[0]

        if exact_roles or exact_channels:
            channels, roles = exact_channels, exact_roles
        lines = []
        if len(roles) > 0:
            lines.append(_disambiguation(roles, "roles"))
        if len(channels) > 0:
            lines.append(_disambiguation(channels, "channels"))
        raise commands.BadArgument("\n".join(lines))


class CommandOrGroupConverter(commands.Converter):
    """Resolve a command or a group registered with the cog's registry."""

    async def convert(self, ctx: commands.Context, argument: str) -> Union[Command, Group]:
        try:
            return ctx.cog.registry.resolve_command_or_group(argument)
        except AmbiguousOrNotFound as e:
            raise commands.BadArgument(str(e)) from e


class WhitelistKindConverter(commands.Converter):
    CHANNELS = ("c", "chan", "channel", "channels")
    ROLES = ("r", "role", "roles")

    async def convert(self, ctx: commands.Context, argument: str) -> str:
        argument = argument.lower()
        if argument in self.CHANNELS:
            return "channels"
        if argument in self.ROLES:
            return "roles"
        raise commands.BadArgument("Please enter a valid type: 'c' or 'r'")


class PermissionTargetConverter(commands.Converter):
    """``all``, a channel or role, or a command or group."""

    async def convert(self, ctx: commands.Context, argument: str):
        if argument.lower() == "all":
            return ALL
        if ctx.guild is not None:
            try:
                found = PermissionScopeType.find(ctx.guild, argument)
            except commands.BadArgument:
                pass
            else:
                return PermissionScopeType.to_scope(found)
        return await CommandOrGroupConverter().convert(ctx, argument)
