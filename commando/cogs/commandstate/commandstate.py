import asyncio
import io
from typing import Optional, Union

import discord
from discord.ext import commands
from red_commons.logging import getLogger

from commando.core.drivers import BaseDriver
from commando.core.errors import GuardedEntity, RegistrationError
from commando.core.events import EventBus, OverrideScope
from commando.core.permissions import ALL, SERVER, PermissionManager, PermissionScope
from commando.core.registry import Command, Group, Registry
from commando.core.shards import NullBroadcaster, ShardBroadcaster
from commando.core.synchronizer import SettingsSynchronizer

from .converters import (
    CommandOrGroupConverter,
    PermissionScopeType,
    PermissionTargetConverter,
    WhitelistKindConverter,
)
from .report import build_embed, to_yaml

log = getLogger("commando.cogs.commandstate")

UNGROUPED = "ungrouped"

Entity = Union[Command, Group]


def admin_or_owner():
    return commands.check_any(
        commands.is_owner(), commands.has_guild_permissions(administrator=True)
    )


class CommandState(commands.Cog):
    """Enable, disable and whitelist commands and command groups.

    Every top-level command is registered as a command of the group named
    after its cog. The commands of this cog and their group are guarded.
    """

    def __init__(
        self,
        bot: commands.Bot,
        driver: BaseDriver,
        broadcaster: Union[ShardBroadcaster, NullBroadcaster, None] = None,
    ):
        super().__init__()
        self.bot = bot
        self.driver = driver
        self.events = EventBus()
        self.registry = Registry(self.events)
        self.permissions = PermissionManager(self.registry, self.events)
        self.synchronizer = SettingsSynchronizer(
            self.registry, self.permissions, self.events, driver, broadcaster
        )
        self.registry.register_type(PermissionScopeType())

    async def cog_load(self) -> None:
        for command in self.bot.commands:
            self.registered_command(command)
        await self.synchronizer.initialize(guild_ids=[guild.id for guild in self.bot.guilds])

    async def cog_unload(self) -> None:
        await self.synchronizer.teardown()
        await type(self.driver).teardown()

    def registered_command(self, command: commands.Command) -> Optional[Command]:
        """Get the registry entry for a discord.py command, registering it if needed."""
        root = command.root_parent or command
        name = root.name.lower()
        existing = self.registry.commands.get(name)
        if existing is not None:
            return existing

        cog = root.cog
        guarded = cog is self
        group_id = cog.qualified_name.lower() if cog is not None else UNGROUPED
        try:
            if group_id not in self.registry.groups:
                self.registry.register_group(
                    Group(
                        group_id,
                        cog.qualified_name if cog is not None else UNGROUPED.title(),
                        description=(cog.description or "").partition("\n")[0]
                        if cog is not None
                        else "",
                        guarded=guarded,
                    )
                )
            entry = Command(
                name,
                group_id,
                aliases=[alias.lower() for alias in root.aliases],
                description=root.short_doc,
                guarded=guarded,
            )
            self.registry.register_command(entry)
        except (RegistrationError, ValueError) as e:
            log.warning("Couldn't register the command %s: %s", root.qualified_name, e)
            return None
        return entry

    async def bot_check(self, ctx: commands.Context) -> bool:
        if ctx.command is None:
            return True
        command = self.registered_command(ctx.command)
        if command is None:
            return True
        return self.permissions.is_usable(command, ctx.guild, ctx.channel, ctx.author)

    # Gateway events

    @commands.Cog.listener()
    async def on_guild_available(self, guild: discord.Guild) -> None:
        self.events.dispatch("guild_available", guild)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        self.events.dispatch("guild_available", guild)

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        self.permissions.remove_channel(channel.guild.id, channel.id)

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        self.permissions.remove_role(role.guild.id, role.id)

    # Commands

    def _describe_scope(self, ctx: commands.Context, scope: PermissionScope) -> str:
        if scope.kind is OverrideScope.CHANNEL:
            return f"channel <#{scope.id}>"
        if scope.kind is OverrideScope.ROLE:
            role = ctx.guild.get_role(scope.id) if ctx.guild is not None else None
            return f"role {role.name if role is not None else scope.id}"
        return "server" if ctx.guild is not None else "global"

    async def _set_enabled(
        self, ctx: commands.Context, entity: Entity, enabled: bool, scope: PermissionScope
    ) -> None:
        kind = entity.kind.value
        try:
            if isinstance(entity, Command):
                self.permissions.set_command_enabled(ctx.guild, entity, enabled, scope)
            else:
                self.permissions.set_group_enabled(ctx.guild, entity, enabled, scope)
        except GuardedEntity:
            verb = "enable" if enabled else "disable"
            await ctx.send(f"You cannot {verb} the `{entity.name}` {kind}.")
            return
        await ctx.send(
            "{verb} the `{name}` {kind} for type: {scope}.".format(
                verb="Enabled" if enabled else "Disabled",
                name=entity.name,
                kind=kind,
                scope=self._describe_scope(ctx, scope),
            )
        )

    @commands.command(aliases=["enable-command", "cmd-on", "command-on"])
    @admin_or_owner()
    async def enable(
        self,
        ctx: commands.Context,
        command_or_group: CommandOrGroupConverter,
        scope: PermissionScopeType = SERVER,
    ):
        """Enables a command or command group.

        The scope defaults to the whole server. It may be a channel or a
        role, as a mention, an ID or a name. Used in DMs, this changes
        the global setting.
        """
        await self._set_enabled(ctx, command_or_group, True, scope)

    @commands.command(aliases=["disable-command", "cmd-off", "command-off"])
    @admin_or_owner()
    async def disable(
        self,
        ctx: commands.Context,
        command_or_group: CommandOrGroupConverter,
        scope: PermissionScopeType = SERVER,
    ):
        """Disables a command or command group.

        The scope defaults to the whole server. It may be a channel or a
        role, as a mention, an ID or a name. Used in DMs, this changes
        the global setting.
        """
        await self._set_enabled(ctx, command_or_group, False, scope)

    @commands.command(aliases=["togglewhitelist", "toggle-whitelist"])
    @admin_or_owner()
    async def whitelist(
        self,
        ctx: commands.Context,
        command_or_group: CommandOrGroupConverter,
        kind: WhitelistKindConverter,
        toggle: bool = True,
    ):
        """Toggles whitelisting of roles or channels for a command or group.

        While whitelisting is on, only the roles or channels it has been
        explicitly enabled for may use it.
        """
        entity_kind = command_or_group.kind.value
        try:
            self.permissions.set_whitelist(command_or_group, kind, toggle, ctx.guild)
        except GuardedEntity:
            await ctx.send("You cannot modify the whitelist for guarded commands.")
            return
        await ctx.send(
            f"Whitelist for `{command_or_group.name}` {entity_kind} has been set to"
            f" {toggle} with type: {kind}."
        )

    @commands.command()
    async def groups(self, ctx: commands.Context):
        """Lists all command groups and whether they can be used here."""
        lines = []
        for group in self.registry.groups.values():
            enabled = self.permissions.is_group_enabled(group, ctx.guild, ctx.channel, ctx.author)
            state = "Enabled" if enabled else "Disabled"
            guarded = " (guarded)" if group.guarded else ""
            lines.append(f"**{group.name}:** {state}{guarded}")
        await ctx.send("\n".join(lines) or "There are no groups.")

    @commands.group(
        name="permissions",
        aliases=["perms", "perm", "permsinfo", "permission", "perminfo"],
        invoke_without_command=True,
    )
    @admin_or_owner()
    async def permissions_info(
        self, ctx: commands.Context, *, target: PermissionTargetConverter = ALL
    ):
        """Details the permissions for a role, channel, command, group or `all`."""
        report = self.permissions.report(ctx.guild, target)
        await ctx.send(embed=build_embed(report, ctx.guild))

    @permissions_info.command(name="export")
    @admin_or_owner()
    async def permissions_export(self, ctx: commands.Context):
        """Get a YAML file with every permission set in this server."""
        report = self.permissions.report(ctx.guild, ALL)
        fp = io.BytesIO(to_yaml(report).encode("utf-8"))
        await ctx.send(file=discord.File(fp, filename="permissions.yaml"))

    @permissions_info.command(name="clear")
    @commands.guild_only()
    @admin_or_owner()
    async def permissions_clear(self, ctx: commands.Context):
        """Remove every permission set in this server."""
        if not await self._confirm(ctx):
            return
        self.synchronizer.clear(ctx.guild)
        await ctx.send("Every command permission of this server has been removed.")

    @staticmethod
    async def _confirm(ctx: commands.Context) -> bool:
        """Ask "Are you sure?" and get the response as a bool."""
        await ctx.send("Are you sure? (y/n)")

        def check(message: discord.Message) -> bool:
            return (
                message.author == ctx.author
                and message.channel == ctx.channel
                and message.content.lower() in ("y", "yes", "n", "no")
            )

        try:
            message = await ctx.bot.wait_for("message", check=check, timeout=30)
        except asyncio.TimeoutError:
            await ctx.send("Response timed out.")
            return False
        agreed = message.content.lower() in ("y", "yes")
        if not agreed:
            await ctx.send("Action cancelled.")
        return agreed
