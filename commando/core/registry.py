"""
core.registry
=============
Registration, search and resolution of commands, command groups and
named argument types.

The registry is the single source of truth for which entities exist.
Guild permission state only ever refers to entities by name or ID and
looks them up through here.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from red_commons.logging import getLogger

from .errors import AmbiguousOrNotFound, DuplicateIdentity, UnknownGroup
from .events import EntityKind, EventBus

__all__ = [
    "WhitelistInfo",
    "Group",
    "Command",
    "ArgumentType",
    "Registry",
    "disambiguation",
]

log = getLogger("commando.registry")


@dataclass
class WhitelistInfo:
    """Whether whitelisting is active for a command or group.

    When active for a scope type, the absence of an explicit allow at
    that scope means deny.
    """

    roles: bool = False
    channels: bool = False

    def get(self, kind: str) -> bool:
        return self.roles if kind == "roles" else self.channels

    def set(self, kind: str, value: bool) -> None:
        if kind == "roles":
            self.roles = value
        elif kind == "channels":
            self.channels = value
        else:
            raise ValueError(f"Unknown whitelist type: {kind!r}")


def _whitelist_from(value: Union[WhitelistInfo, Dict[str, bool], None]) -> WhitelistInfo:
    if value is None:
        return WhitelistInfo()
    if isinstance(value, WhitelistInfo):
        return value
    return WhitelistInfo(roles=bool(value.get("roles")), channels=bool(value.get("channels")))


class Group:
    """A group of commands.

    Attributes
    ----------
    id : str
        Lowercase, unique ID of the group.
    name : str
        Display name, defaults to the ID.
    description : str
        Short description shown in listings.
    commands : Dict[str, Command]
        The commands in this group, added upon their registration.
    guarded : bool
        Whether the group is protected from being disabled or whitelisted.
    whitelist : WhitelistInfo
        Whether the group is whitelist-only for roles and channels.
    global_enabled : bool
        Whether the group is enabled where there is no guild context.
    """

    kind = EntityKind.GROUP

    def __init__(
        self,
        id: str,
        name: Optional[str] = None,
        *,
        description: str = "",
        guarded: bool = False,
        whitelist: Union[WhitelistInfo, Dict[str, bool], None] = None,
    ):
        if not isinstance(id, str):
            raise TypeError("Group ID must be a string.")
        if id != id.lower():
            raise ValueError("Group ID must be lowercase.")
        self.id = id
        self.name = name or id
        self.description = description
        self.commands: Dict[str, "Command"] = {}
        self._guarded = bool(guarded)
        self.whitelist = _whitelist_from(whitelist)
        self.global_enabled = True

    @property
    def guarded(self) -> bool:
        return self._guarded

    @property
    def key(self) -> str:
        return f"grp-{self.id}"

    def __repr__(self) -> str:
        return f"<Group id={self.id!r} guarded={self.guarded}>"


class Command:
    """A registered command.

    Attributes
    ----------
    name : str
        Lowercase, unique name of the command.
    group_id : str
        ID of the group this command belongs to.
    member_name : str
        Name of the command inside its group. Defaults to `name`.
    aliases : Tuple[str, ...]
        Alternative names. These are unique across all commands.
    description : str
        Short description shown in listings.
    guarded : bool
        Whether the command is protected from being disabled or
        whitelisted. This can't change after construction.
    whitelist : WhitelistInfo
        Whether the command is whitelist-only for roles and channels.
    global_enabled : bool
        Whether the command is enabled where there is no guild context.
    group : Optional[Group]
        The group object, set when the command is registered.
    """

    kind = EntityKind.COMMAND

    def __init__(
        self,
        name: str,
        group: str,
        *,
        member_name: Optional[str] = None,
        aliases: Iterable[str] = (),
        description: str = "",
        guarded: bool = False,
        whitelist: Union[WhitelistInfo, Dict[str, bool], None] = None,
    ):
        if not isinstance(name, str):
            raise TypeError("Command name must be a string.")
        if name != name.lower():
            raise ValueError("Command name must be lowercase.")
        aliases = tuple(aliases)
        if any(a != a.lower() for a in aliases):
            raise ValueError("Command aliases must be lowercase.")
        if not isinstance(group, str):
            raise TypeError("Command group must be a string.")
        self.name = name
        self.group_id = group
        self.member_name = member_name or name
        self.aliases = aliases
        self.description = description
        self._guarded = bool(guarded)
        self.whitelist = _whitelist_from(whitelist)
        self.global_enabled = True
        self.group: Optional[Group] = None

    @property
    def guarded(self) -> bool:
        return self._guarded

    @property
    def key(self) -> str:
        return f"cmd-{self.name}"

    @property
    def qualified_name(self) -> str:
        return f"{self.group_id}:{self.member_name}"

    def __repr__(self) -> str:
        return f"<Command name={self.name!r} group={self.group_id!r} guarded={self.guarded}>"


class ArgumentType:
    """Base class for named argument types.

    Subclasses implement `parse`, which turns user input into a value
    and raises on invalid input.
    """

    def __init__(self, type_id: str):
        if type_id != type_id.lower():
            raise ValueError("Argument type ID must be lowercase.")
        self.id = type_id

    async def parse(self, value: str, ctx: Any) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id!r}>"


Entity = Union[Command, Group]


def disambiguation(items: Sequence[Entity], label: str) -> str:
    """Build a message listing every candidate, with its description."""
    entries = []
    for item in items:
        name = item.name if isinstance(item, Command) else item.id
        name = name.replace(" ", "\xa0")
        if item.description:
            entries.append(f'"{name}" ({item.description})')
        else:
            entries.append(f'"{name}"')
    return f"Multiple {label} found, please be more specific: {',   '.join(entries)}"


class Registry:
    """Handles registration and searching of commands and groups."""

    def __init__(self, events: Optional[EventBus] = None):
        self.events = events if events is not None else EventBus()
        self.commands: Dict[str, Command] = {}
        self.groups: Dict[str, Group] = {}
        self.types: Dict[str, ArgumentType] = {}

    # Registration

    def register_group(
        self,
        group: Union[Group, str],
        name: Optional[str] = None,
        *,
        description: str = "",
        guarded: bool = False,
        whitelist: Union[WhitelistInfo, Dict[str, bool], None] = None,
    ) -> "Registry":
        if isinstance(group, str):
            group = Group(
                group, name, description=description, guarded=guarded, whitelist=whitelist
            )
        elif not isinstance(group, Group):
            raise TypeError(f"Invalid group object to register: {group!r}")

        existing = self.groups.get(group.id)
        if existing is not None:
            existing.name = group.name
            log.debug('Group %s is already registered; renamed it to "%s".', group.id, group.name)
            return self

        self.groups[group.id] = group
        self.events.dispatch("group_register", group, self)
        log.debug("Registered group %s.", group.id)
        return self

    def register_groups(self, groups: Iterable[Union[Group, str, Sequence[Any]]]) -> "Registry":
        for group in groups:
            if isinstance(group, (list, tuple)):
                self.register_group(*group)
            else:
                self.register_group(group)
        return self

    def register_command(self, command: Command) -> "Registry":
        if not isinstance(command, Command):
            raise TypeError(f"Invalid command object to register: {command!r}")

        for name in (command.name, *command.aliases):
            if self._name_taken(name):
                raise DuplicateIdentity(
                    f'A command with the name/alias "{name}" is already registered.'
                )
        group = self.groups.get(command.group_id)
        if group is None:
            raise UnknownGroup(command.group_id)
        if any(cmd.member_name == command.member_name for cmd in group.commands.values()):
            raise DuplicateIdentity(
                f'A command with the member name "{command.member_name}" is already registered'
                f" in {group.id}"
            )

        command.group = group
        group.commands[command.name] = command
        self.commands[command.name] = command
        self.events.dispatch("command_register", command, self)
        log.debug("Registered command %s.", command.qualified_name)
        return self

    def register_commands(
        self, commands: Iterable[Command], ignore_invalid: bool = False
    ) -> "Registry":
        for command in commands:
            if ignore_invalid and not isinstance(command, Command):
                log.warning(
                    "Attempting to register an invalid command object: %r; skipping.", command
                )
                continue
            self.register_command(command)
        return self

    def register_type(self, argument_type: ArgumentType) -> "Registry":
        if not isinstance(argument_type, ArgumentType):
            raise TypeError(f"Invalid type object to register: {argument_type!r}")
        if argument_type.id in self.types:
            raise DuplicateIdentity(
                f'An argument type with the ID "{argument_type.id}" is already registered.'
            )
        self.types[argument_type.id] = argument_type
        self.events.dispatch("type_register", argument_type, self)
        log.debug("Registered argument type %s.", argument_type.id)
        return self

    def register_types(
        self, types: Iterable[ArgumentType], ignore_invalid: bool = False
    ) -> "Registry":
        for argument_type in types:
            if ignore_invalid and not isinstance(argument_type, ArgumentType):
                log.warning(
                    "Attempting to register an invalid argument type object: %r; skipping.",
                    argument_type,
                )
                continue
            self.register_type(argument_type)
        return self

    def unregister_command(self, command: Command) -> None:
        self.commands.pop(command.name, None)
        if command.group is not None:
            command.group.commands.pop(command.name, None)
        self.events.dispatch("command_unregister", command)
        log.debug("Unregistered command %s.", command.qualified_name)

    def _name_taken(self, name: str) -> bool:
        return any(cmd.name == name or name in cmd.aliases for cmd in self.commands.values())

    # Searching

    def find_groups(self, query: Optional[str] = None, exact: bool = False) -> List[Group]:
        """Find groups whose ID or name match the query.

        Matching is case-insensitive. Without ``exact``, substring
        matches are returned, unless one of them matches perfectly, in
        which case only that one is returned.
        """
        if not query:
            return list(self.groups.values())

        search = query.lower()
        if exact:
            return [g for g in self.groups.values() if _group_exact(g, search)]

        matches = [
            g for g in self.groups.values() if search in g.id or search in g.name.lower()
        ]
        for group in matches:
            if _group_exact(group, search):
                return [group]
        return matches

    def find_commands(self, query: Optional[str] = None, exact: bool = False) -> List[Command]:
        """Find commands whose name, alias or ``group:member`` name match the query.

        Matching is case-insensitive. Without ``exact``, substring
        matches are returned, unless one of them matches perfectly, in
        which case only that one is returned.
        """
        if not query:
            return list(self.commands.values())

        search = query.lower()
        if exact:
            return [c for c in self.commands.values() if _command_exact(c, search)]

        matches = [
            c
            for c in self.commands.values()
            if search in c.name
            or c.qualified_name == search
            or any(search in alias for alias in c.aliases)
        ]
        for command in matches:
            if command.name == search or search in command.aliases:
                return [command]
        return matches

    # Resolution

    def resolve_group(self, group: Union[Group, str]) -> Group:
        if isinstance(group, Group):
            return group
        if isinstance(group, str):
            groups = self.find_groups(group, exact=True)
            if len(groups) == 1:
                return groups[0]
            raise AmbiguousOrNotFound(group, groups, _resolve_message(group, groups, "groups"))
        raise AmbiguousOrNotFound(group, (), "Unable to resolve group.")

    def resolve_command(self, command: Union[Command, str]) -> Command:
        if isinstance(command, Command):
            return command
        if isinstance(command, str):
            commands = self.find_commands(command, exact=True)
            if len(commands) == 1:
                return commands[0]
            raise AmbiguousOrNotFound(
                command, commands, _resolve_message(command, commands, "commands")
            )
        raise AmbiguousOrNotFound(command, (), "Unable to resolve command.")

    def resolve_command_or_group(self, value: Union[Entity, str]) -> Entity:
        """Resolve user input naming either a group or a command.

        Groups are searched first. Anything but a single match raises
        `AmbiguousOrNotFound` listing every candidate.
        """
        if isinstance(value, (Command, Group)):
            return value
        groups = self.find_groups(value)
        if len(groups) == 1:
            return groups[0]
        commands = self.find_commands(value)
        if len(commands) == 1:
            return commands[0]
        if not commands and not groups:
            raise AmbiguousOrNotFound(value, (), f'No command or group matches "{value}".')
        lines = []
        if len(commands) > 1:
            lines.append(disambiguation(commands, "commands"))
        if len(groups) > 1:
            lines.append(disambiguation(groups, "groups"))
        raise AmbiguousOrNotFound(value, [*commands, *groups], "\n".join(lines))


def _group_exact(group: Group, search: str) -> bool:
    return group.id == search or group.name.lower() == search


def _command_exact(command: Command, search: str) -> bool:
    return (
        command.name == search or search in command.aliases or command.qualified_name == search
    )


def _resolve_message(query: str, matches: Sequence[Entity], label: str) -> str:
    if len(matches) > 1:
        return disambiguation(matches, label)
    return f'Unable to resolve "{query}" to any {label[:-1]}.'
