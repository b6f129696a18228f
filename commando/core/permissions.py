"""
core.permissions
================
Guild-scoped permission state and the evaluation engine deciding whether
a command may run in a given guild, channel and member context.

State is kept in a side-table keyed by guild ID. Every mutation
dispatches a `ChangeEvent` named ``change`` on the event bus.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import discord
from red_commons.logging import getLogger

from .errors import GuardedEntity
from .events import GLOBAL, ChangeEvent, EntityKind, EventBus, OverrideScope
from .registry import Command, Group, Registry, WhitelistInfo

__all__ = [
    "SERVER",
    "ALL",
    "PermissionScope",
    "GuildPermissionState",
    "EntityReport",
    "PermissionReport",
    "PermissionManager",
]

log = getLogger("commando.permissions")

Entity = Union[Command, Group]
# channel id -> entity id -> value
ChannelMap = Dict[int, Dict[str, bool]]
# entity id -> role id -> value
RoleMap = Dict[str, Dict[int, bool]]


class PermissionScope(NamedTuple):
    """Where an enable/disable override applies inside a guild."""

    kind: OverrideScope
    id: Optional[int] = None

    @classmethod
    def channel(cls, channel_id: int) -> "PermissionScope":
        return cls(OverrideScope.CHANNEL, int(channel_id))

    @classmethod
    def role(cls, role_id: int) -> "PermissionScope":
        return cls(OverrideScope.ROLE, int(role_id))

    @classmethod
    def from_value(cls, value: Any) -> "PermissionScope":
        """Convert a scope, a channel or a role into a `PermissionScope`."""
        if isinstance(value, PermissionScope):
            return value
        if value is None or value == "server":
            return SERVER
        if isinstance(value, discord.Role):
            return cls.role(value.id)
        if isinstance(value, discord.abc.GuildChannel):
            return cls.channel(value.id)
        raise TypeError(f"Can't use {value!r} as a permission scope.")

    def __str__(self) -> str:
        if self.kind is OverrideScope.SERVER:
            return "server"
        return f"{self.kind.value} {self.id}"


SERVER = PermissionScope(OverrideScope.SERVER)


class _AllTargets:
    def __repr__(self) -> str:
        return "ALL"


ALL = _AllTargets()


class GuildPermissionState:
    """Sparse override maps for a single guild.

    A missing key means there is no override at that scope.
    """

    __slots__ = (
        "guild_id",
        "command_server",
        "command_channel",
        "command_role",
        "group_server",
        "group_channel",
        "group_role",
    )

    def __init__(self, guild_id: int):
        self.guild_id = guild_id
        self.command_server: Dict[str, bool] = {}
        self.command_channel: ChannelMap = {}
        self.command_role: RoleMap = {}
        self.group_server: Dict[str, bool] = {}
        self.group_channel: ChannelMap = {}
        self.group_role: RoleMap = {}

    def maps(self, kind: EntityKind) -> Tuple[Dict[str, bool], ChannelMap, RoleMap]:
        if kind is EntityKind.COMMAND:
            return self.command_server, self.command_channel, self.command_role
        return self.group_server, self.group_channel, self.group_role

    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr in self.__slots__[1:])

    def __repr__(self) -> str:
        return f"<GuildPermissionState guild_id={self.guild_id}>"


@dataclass
class EntityReport:
    """The override layers recorded for one command or group in one guild."""

    entity: Entity
    server: Optional[bool] = None
    channels: Dict[int, bool] = field(default_factory=dict)
    roles: Dict[int, bool] = field(default_factory=dict)
    whitelist: WhitelistInfo = field(default_factory=WhitelistInfo)
    global_enabled: bool = True

    @property
    def name(self) -> str:
        return self.entity.name if isinstance(self.entity, Command) else self.entity.id

    @property
    def has_overrides(self) -> bool:
        return self.server is not None or bool(self.channels) or bool(self.roles)

    @property
    def is_notable(self) -> bool:
        return (
            self.has_overrides
            or self.whitelist.roles
            or self.whitelist.channels
            or not self.global_enabled
        )


@dataclass
class PermissionReport:
    guild_id: int
    target: Any
    commands: List[EntityReport] = field(default_factory=list)
    groups: List[EntityReport] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.commands or self.groups)


def _guild_id(guild: Any) -> int:
    if guild is None:
        return GLOBAL
    if isinstance(guild, int):
        return guild
    return guild.id


def _role_ids(member: Any) -> List[int]:
    if member is None:
        return []
    return [getattr(role, "id", role) for role in getattr(member, "roles", ())]


def _entity_id(entity: Entity) -> str:
    return entity.name if isinstance(entity, Command) else entity.id


class PermissionManager:
    """Owns every guild's permission state and evaluates usability.

    Parameters
    ----------
    registry : Registry
        The registry the evaluated entities are registered in.
    events : Optional[EventBus]
        Where change events are dispatched. Defaults to the registry's bus.
    """

    def __init__(self, registry: Registry, events: Optional[EventBus] = None):
        self.registry = registry
        self.events = events if events is not None else registry.events
        self._states: Dict[int, GuildPermissionState] = {}

    def get_state(self, guild: Any, *, create: bool = False) -> Optional[GuildPermissionState]:
        guild_id = _guild_id(guild)
        state = self._states.get(guild_id)
        if state is None and create:
            state = self._states[guild_id] = GuildPermissionState(guild_id)
        return state

    @property
    def guild_ids(self) -> List[int]:
        return list(self._states)

    # Evaluation

    def is_usable(
        self, command: Command, guild: Any, channel: Any = None, member: Any = None
    ) -> bool:
        """Check whether the command and its group may be used here.

        Parameters
        ----------
        command : Command
            The command about to be invoked.
        guild
            The guild, its ID, or ``None`` where there is no guild context.
        channel
            The channel the command was invoked in.
        member
            The invoking member. Its ``roles`` may be role objects or IDs.
        """
        group = command.group
        if command.guarded or (group is not None and group.guarded):
            return True
        entities = [command] if group is None else [command, group]
        guild_id = _guild_id(guild)
        if guild_id == GLOBAL:
            return all(entity.global_enabled for entity in entities)
        return self._evaluate(guild_id, entities, channel, member)

    def is_command_enabled(
        self, command: Command, guild: Any, channel: Any = None, member: Any = None
    ) -> bool:
        if command.guarded:
            return True
        guild_id = _guild_id(guild)
        if guild_id == GLOBAL:
            return command.global_enabled
        return self._evaluate(guild_id, [command], channel, member)

    def is_group_enabled(
        self, group: Group, guild: Any, channel: Any = None, member: Any = None
    ) -> bool:
        if group.guarded:
            return True
        guild_id = _guild_id(guild)
        if guild_id == GLOBAL:
            return group.global_enabled
        return self._evaluate(guild_id, [group], channel, member)

    def _evaluate(
        self, guild_id: int, entities: Sequence[Entity], channel: Any, member: Any
    ) -> bool:
        state = self._states.get(guild_id) or GuildPermissionState(guild_id)
        channel_id = getattr(channel, "id", channel)
        role_ids = _role_ids(member)

        for entity in entities:
            if not self._layers_allow(state, entity, channel_id, role_ids):
                return False

        if any(entity.whitelist.roles for entity in entities):
            if not any(
                state.maps(entity.kind)[2].get(_entity_id(entity), {}).get(role_id) is True
                for entity in entities
                for role_id in role_ids
            ):
                return False

        if any(entity.whitelist.channels for entity in entities):
            if not any(
                state.maps(entity.kind)[1].get(channel_id, {}).get(_entity_id(entity)) is True
                for entity in entities
            ):
                return False

        return True

    @staticmethod
    def _layers_allow(
        state: GuildPermissionState, entity: Entity, channel_id: Optional[int], role_ids: List[int]
    ) -> bool:
        key = _entity_id(entity)
        server, channels, roles = state.maps(entity.kind)

        channel_value = channels.get(channel_id, {}).get(key)
        if channel_value is False:
            return False
        # A channel allow overrides a server deny.
        if channel_value is None and server.get(key) is False:
            return False

        role_values = roles.get(key, {})
        if any(role_values.get(role_id) is False for role_id in role_ids):
            return False

        if channel_value is None and key not in server and not role_values:
            return entity.global_enabled
        return True

    # Mutation

    def set_command_enabled(
        self,
        guild: Any,
        command: Command,
        enabled: bool,
        scope: Any = SERVER,
        *,
        trusted: bool = False,
    ) -> ChangeEvent:
        """Enable or disable a command.

        With ``guild=None`` this sets the command's global flag, used
        where there is no guild context at all.

        Raises
        ------
        GuardedEntity
            The command is guarded and the call isn't ``trusted``.
        """
        return self._set_enabled(guild, command, enabled, scope, trusted)

    def set_group_enabled(
        self,
        guild: Any,
        group: Group,
        enabled: bool,
        scope: Any = SERVER,
        *,
        trusted: bool = False,
    ) -> ChangeEvent:
        """Enable or disable a group. See `set_command_enabled`."""
        return self._set_enabled(guild, group, enabled, scope, trusted)

    def _set_enabled(
        self, guild: Any, entity: Entity, enabled: bool, scope: Any, trusted: bool
    ) -> ChangeEvent:
        if entity.guarded and not trusted:
            raise GuardedEntity(entity)
        enabled = bool(enabled)
        scope = PermissionScope.from_value(scope)
        entity_id = _entity_id(entity)
        guild_id = _guild_id(guild)

        if guild_id == GLOBAL:
            if scope.kind is not OverrideScope.SERVER:
                raise ValueError("Only the server scope applies without a guild.")
            entity.global_enabled = enabled
            event = ChangeEvent(GLOBAL, entity.kind, entity_id, enabled, OverrideScope.SERVER)
        else:
            server, channels, roles = self.get_state(guild_id, create=True).maps(entity.kind)
            if scope.kind is OverrideScope.SERVER:
                server[entity_id] = enabled
            elif scope.kind is OverrideScope.CHANNEL:
                channels.setdefault(scope.id, {})[entity_id] = enabled
            elif scope.kind is OverrideScope.ROLE:
                roles.setdefault(entity_id, {})[scope.id] = enabled
            else:
                raise ValueError(f"{scope.kind.value} is not an enable/disable scope.")
            event = ChangeEvent(guild_id, entity.kind, entity_id, enabled, scope.kind, scope.id)

        log.verbose(
            "%s %s %s in guild %s (%s)",
            "Enabled" if enabled else "Disabled",
            entity.kind.value,
            entity_id,
            guild_id,
            scope,
        )
        self.events.dispatch("change", event)
        return event

    def set_whitelist(
        self,
        entity: Entity,
        kind: Union[str, OverrideScope],
        enabled: bool,
        guild: Any = None,
        *,
        trusted: bool = False,
    ) -> ChangeEvent:
        """Toggle whitelisting of roles or channels for a command or group.

        Existing overrides are kept. The change is recorded with the given
        guild's settings, or the global settings when ``guild`` is ``None``.

        Raises
        ------
        GuardedEntity
            The entity is guarded and the call isn't ``trusted``.
        """
        if entity.guarded and not trusted:
            raise GuardedEntity(entity)
        if isinstance(kind, OverrideScope):
            if not kind.is_whitelist:
                raise ValueError(f"{kind.value} is not a whitelist scope.")
            override_scope = kind
        elif kind == "roles":
            override_scope = OverrideScope.ROLES_WHITELIST
        elif kind == "channels":
            override_scope = OverrideScope.CHANNELS_WHITELIST
        else:
            raise ValueError(f"Unknown whitelist type: {kind!r}")

        enabled = bool(enabled)
        whitelist_kind = "roles" if override_scope is OverrideScope.ROLES_WHITELIST else "channels"
        entity.whitelist.set(whitelist_kind, enabled)
        event = ChangeEvent(
            _guild_id(guild), entity.kind, _entity_id(entity), enabled, override_scope
        )
        self.events.dispatch("change", event)
        return event

    def remove_channel(self, guild_id: int, channel_id: int) -> None:
        """Forget every override recorded for a deleted channel."""
        state = self._states.get(guild_id)
        if state is not None:
            state.command_channel.pop(channel_id, None)
            state.group_channel.pop(channel_id, None)
        self.events.dispatch("channel_remove", guild_id, channel_id)

    def remove_role(self, guild_id: int, role_id: int) -> None:
        """Forget every override recorded for a deleted role."""
        state = self._states.get(guild_id)
        if state is not None:
            for roles in (state.command_role, state.group_role):
                for key in list(roles):
                    roles[key].pop(role_id, None)
                    if not roles[key]:
                        del roles[key]
        self.events.dispatch("role_remove", guild_id, role_id)

    def clear_guild(self, guild_id: int) -> None:
        """Drop all of a guild's overrides."""
        self._states.pop(guild_id, None)
        self.events.dispatch("guild_clear", guild_id)

    # Introspection

    def report(self, guild: Any, target: Any = ALL) -> PermissionReport:
        """Collect the override layers for a guild.

        Parameters
        ----------
        guild
            The guild or its ID.
        target
            `ALL`, a `Command`, a `Group`, or a channel or role
            `PermissionScope` to list the overrides recorded there.
        """
        guild_id = _guild_id(guild)
        state = self._states.get(guild_id) or GuildPermissionState(guild_id)
        report = PermissionReport(guild_id, target)

        if isinstance(target, (Command, Group)):
            entry = self._entity_report(state, target)
            if isinstance(target, Command):
                report.commands.append(entry)
            else:
                report.groups.append(entry)
            return report

        scope = None if target is ALL else PermissionScope.from_value(target)
        for entities, bucket in (
            (self.registry.commands.values(), report.commands),
            (self.registry.groups.values(), report.groups),
        ):
            for entity in entities:
                entry = self._entity_report(state, entity)
                if scope is None:
                    if entry.is_notable:
                        bucket.append(entry)
                elif scope.kind is OverrideScope.CHANNEL:
                    if scope.id in entry.channels:
                        entry.channels = {scope.id: entry.channels[scope.id]}
                        bucket.append(entry)
                elif scope.kind is OverrideScope.ROLE:
                    if scope.id in entry.roles:
                        entry.roles = {scope.id: entry.roles[scope.id]}
                        bucket.append(entry)
                elif entry.server is not None:
                    bucket.append(entry)
        return report

    @staticmethod
    def _entity_report(state: GuildPermissionState, entity: Entity) -> EntityReport:
        key = _entity_id(entity)
        server, channels, roles = state.maps(entity.kind)
        return EntityReport(
            entity=entity,
            server=server.get(key),
            channels={
                channel_id: values[key] for channel_id, values in channels.items() if key in values
            },
            roles=dict(roles.get(key, {})),
            whitelist=WhitelistInfo(entity.whitelist.roles, entity.whitelist.channels),
            global_enabled=entity.global_enabled,
        )

