from typing import Any, Optional, Sequence

__all__ = [
    "CommandoError",
    "GuardedEntity",
    "AmbiguousOrNotFound",
    "RegistrationError",
    "DuplicateIdentity",
    "UnknownGroup",
    "PersistenceError",
    "PersistenceDeserializeFailure",
    "PersistenceWriteFailure",
    "MissingExtraRequirements",
    "InvalidBroadcast",
]


class CommandoError(Exception):
    """Base error class for Commando-related errors."""


class GuardedEntity(CommandoError):
    """Raised when trying to disable or whitelist a guarded command or group."""

    def __init__(self, entity: Any, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entity = entity

    def __str__(self) -> str:
        kind = "command" if hasattr(self.entity, "group_id") else "group"
        return f"The {kind} `{self.entity.name}` is guarded."


class AmbiguousOrNotFound(CommandoError, LookupError):
    """Raised when a name resolves to zero, or more than one, command or group.

    Attributes
    ----------
    query : str
        The text which failed to resolve.
    matches : Sequence
        Every entity the query matched. Empty when nothing matched.
    """

    def __init__(self, query: Any, matches: Sequence[Any] = (), message: Optional[str] = None):
        super().__init__(message)
        self.query = query
        self.matches = list(matches)
        self.message = message

    def __str__(self) -> str:
        if self.message:
            return self.message
        if not self.matches:
            return f'Nothing found matching "{self.query}".'
        return f'"{self.query}" matches {len(self.matches)} entries, please be more specific.'


class RegistrationError(CommandoError):
    """Base class for registry integrity violations."""


class DuplicateIdentity(RegistrationError):
    """Raised when a name, alias, member name or type id is already registered."""


class UnknownGroup(RegistrationError):
    """Raised when a command names a group which has not been registered."""

    def __init__(self, group_id: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.group_id = group_id

    def __str__(self) -> str:
        return f'Group "{self.group_id}" is not registered.'


class PersistenceError(CommandoError):
    """Base class for errors when reading or writing stored settings.

    Attributes
    ----------
    guild_id : str
        The stored record's guild ID (``"0"`` for the global record).
    field : Optional[str]
        The blob which failed, if known.
    """

    def __init__(self, guild_id: str, field: Optional[str] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.guild_id = guild_id
        self.field = field


class PersistenceDeserializeFailure(PersistenceError):
    """A stored record could not be decoded. The guild falls back to defaults."""

    def __str__(self) -> str:
        cause = f" -- {self.__cause__}" if self.__cause__ is not None else ""
        return (
            f"Couldn't parse the {self.field or 'settings'} stored for guild"
            f" {self.guild_id}{cause}"
        )


class PersistenceWriteFailure(PersistenceError):
    """A write to the storage backend did not complete."""

    def __str__(self) -> str:
        cause = f" -- {self.__cause__}" if self.__cause__ is not None else ""
        if self.field is None:
            return f"Failed to delete the settings of guild {self.guild_id}{cause}"
        return f"Failed to save the {self.field} settings of guild {self.guild_id}{cause}"


class MissingExtraRequirements(CommandoError):
    """Raised when an extra requirement is missing but required."""


class InvalidBroadcast(CommandoError):
    """A message received from a sibling shard did not match the expected schema."""
