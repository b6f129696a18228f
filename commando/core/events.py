"""
core.events
===========
Value types describing permission state changes, and the listener bus
which carries them from the permission model to its subscribers.

Mutations never write to storage themselves. They build a `ChangeEvent`
and dispatch it; the settings synchronizer listens for ``change`` and is
the only path to durability.
"""
import asyncio
import enum
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

from red_commons.logging import getLogger

__all__ = ["GLOBAL", "EntityKind", "OverrideScope", "ChangeEvent", "EventBus"]

log = getLogger("commando.events")

GLOBAL = 0
"""Used in place of a guild ID for the global scope (no guild context)."""


class EntityKind(str, enum.Enum):
    COMMAND = "command"
    GROUP = "group"

    @property
    def prefix(self) -> str:
        """The key prefix used for this kind in stored settings."""
        return "cmd" if self is EntityKind.COMMAND else "grp"


class OverrideScope(str, enum.Enum):
    SERVER = "server"
    CHANNEL = "channel"
    ROLE = "role"
    ROLES_WHITELIST = "roles-whitelist"
    CHANNELS_WHITELIST = "channels-whitelist"

    @property
    def blob(self) -> str:
        """Name of the stored blob this scope is written to."""
        return _BLOBS[self]

    @property
    def is_whitelist(self) -> bool:
        return self in (OverrideScope.ROLES_WHITELIST, OverrideScope.CHANNELS_WHITELIST)


_BLOBS = {
    OverrideScope.SERVER: "server",
    OverrideScope.CHANNEL: "channels",
    OverrideScope.ROLE: "roles",
    OverrideScope.ROLES_WHITELIST: "whitelist",
    OverrideScope.CHANNELS_WHITELIST: "whitelist",
}


class ChangeEvent(NamedTuple):
    """A single permission state change.

    Attributes
    ----------
    scope : int
        The guild ID the change applies to, or `GLOBAL`.
    entity_kind : EntityKind
        Whether a command or a group changed.
    entity_id : str
        The command's name or the group's ID.
    enabled : bool
        The new value.
    override_scope : OverrideScope
        Where the override was recorded.
    target_id : Optional[int]
        The channel or role ID for channel and role overrides.
    """

    scope: int
    entity_kind: EntityKind
    entity_id: str
    enabled: bool
    override_scope: OverrideScope
    target_id: Optional[int] = None

    @property
    def is_global(self) -> bool:
        return self.scope == GLOBAL

    @property
    def key(self) -> str:
        return f"{self.entity_kind.prefix}-{self.entity_id}"


Listener = Callable[..., Optional[Awaitable[Any]]]


class EventBus:
    """Named listener registry.

    Listeners may be plain functions or coroutine functions. Plain
    listeners run synchronously inside `dispatch`, in registration
    order. Coroutine listeners are scheduled on the running loop.
    Exceptions raised by a listener are logged and never propagate to
    the code which dispatched the event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._pending = set()

    def add_listener(self, func: Listener, name: Optional[str] = None) -> None:
        name = name or func.__name__
        if name.startswith("on_"):
            name = name[3:]
        self._listeners[name].append(func)

    def remove_listener(self, func: Listener, name: Optional[str] = None) -> None:
        name = name or func.__name__
        if name.startswith("on_"):
            name = name[3:]
        try:
            self._listeners[name].remove(func)
        except ValueError:
            pass

    def listeners(self, name: str) -> List[Listener]:
        return list(self._listeners.get(name, ()))

    def dispatch(self, event_name: str, *args: Any) -> None:
        log.trace("Dispatching event %s", event_name)
        for listener in self.listeners(event_name):
            try:
                result = listener(*args)
            except Exception:
                log.exception("Ignoring exception in %s listener %r", event_name, listener)
                continue
            if inspect.isawaitable(result):
                self._schedule(event_name, listener, result)

    def _schedule(self, event_name: str, listener: Listener, coro: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(
                "No running event loop, dropping %s listener %r", event_name, listener
            )
            if inspect.iscoroutine(coro):
                coro.close()
            return
        task = loop.create_task(self._run_event(event_name, listener, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _run_event(event_name: str, listener: Listener, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("Ignoring exception in %s listener %r", event_name, listener)
