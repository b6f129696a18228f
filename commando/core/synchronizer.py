"""
core.synchronizer
=================
Keeps the in-memory permission state and the stored settings records in
step.

At startup every stored record is decoded and replayed through the
`PermissionManager` mutation API. Afterwards, each change event rewrites
only the blob it touched. Writes for the same guild are applied in the
order the changes happened; writes for different guilds don't wait on
each other.
"""
import asyncio
import json
from typing import Any, Callable, Collection, Dict, List, Optional, Set, Tuple, Union

from red_commons.logging import getLogger
from schema import And, Optional as SOptional, Schema, SchemaError

from .drivers import FIELDS, GLOBAL_RECORD_ID, BaseDriver, Record
from .errors import PersistenceDeserializeFailure, PersistenceWriteFailure
from .events import ChangeEvent, EventBus, OverrideScope
from .permissions import SERVER, PermissionManager, PermissionScope
from .registry import Command, Group, Registry
from .shards import NullBroadcaster, ShardBroadcaster

__all__ = ["SettingsSynchronizer", "SETTINGS_SCHEMAS", "empty_settings"]

log = getLogger("commando.synchronizer")

_ID = And(str, str.isdigit)

SETTINGS_SCHEMAS = {
    "server": Schema({str: bool}),
    "channels": Schema({_ID: {str: bool}}),
    "roles": Schema({str: {_ID: bool}}),
    "whitelist": Schema({SOptional("roles"): {str: bool}, SOptional("channels"): {str: bool}}),
}

Settings = Dict[str, Dict[str, Any]]


def empty_settings() -> Settings:
    return {field: {} for field in FIELDS}


def _record_id(guild: Any) -> str:
    if guild is None:
        return GLOBAL_RECORD_ID
    return str(getattr(guild, "id", guild))


class SettingsSynchronizer:
    """
    Bridge between a `PermissionManager` and a settings driver.

    Parameters
    ----------
    registry : Registry
        Used to find the entities stored keys refer to.
    permissions : PermissionManager
        The state which stored settings are replayed into.
    events : EventBus
        The bus the permission manager and registry dispatch on.
    driver : BaseDriver
        An initialized settings driver.
    broadcaster : Optional[ShardBroadcaster]
        Where global changes are published. Defaults to a
        `NullBroadcaster`.
    """

    def __init__(
        self,
        registry: Registry,
        permissions: PermissionManager,
        events: EventBus,
        driver: BaseDriver,
        broadcaster: Union[ShardBroadcaster, NullBroadcaster, None] = None,
    ):
        self.registry = registry
        self.permissions = permissions
        self.events = events
        self.driver = driver
        self.broadcaster = broadcaster if broadcaster is not None else NullBroadcaster()

        self._cache: Dict[str, Settings] = {}
        self._applied: Set[str] = set()
        self._undecodable: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Set[asyncio.Task] = set()
        self._listeners: List[Tuple[str, Callable]] = []
        self._replaying = False

    async def initialize(self, guild_ids: Optional[Collection[int]] = None) -> None:
        """Load every stored record and replay it into the permission state.

        Parameters
        ----------
        guild_ids : Optional[Collection[int]]
            The guilds available right now. Settings of other guilds are
            cached and applied once ``guild_available`` is dispatched for
            them. Omit to apply everything.
        """
        wanted = None if guild_ids is None else {str(guild_id) for guild_id in guild_ids}
        async for guild_id, record in self.driver.aiter_records():
            try:
                settings = self.decode(guild_id, record)
            except PersistenceDeserializeFailure as e:
                if not guild_id.isdigit():
                    log.warning("%s. Ignoring it.", e)
                    continue
                log.warning("%s. Using default settings for it.", e)
                settings = empty_settings()
                self._undecodable.add(guild_id)
            self._cache[guild_id] = settings
            if guild_id == GLOBAL_RECORD_ID or wanted is None or guild_id in wanted:
                self._apply(guild_id, settings)

        log.debug("Loaded settings of %s guilds", len(self._cache))

        for name, listener in (
            ("change", self.on_change),
            ("command_register", self.on_command_register),
            ("group_register", self.on_group_register),
            ("guild_available", self.on_guild_available),
            ("channel_remove", self.on_channel_remove),
            ("role_remove", self.on_role_remove),
            ("guild_clear", self.on_guild_clear),
        ):
            self.events.add_listener(listener, name)
            self._listeners.append((name, listener))

        await self.broadcaster.initialize(self.on_remote_change)

    async def teardown(self) -> None:
        """Unsubscribe from events. Writes which are still running aren't awaited."""
        for name, listener in self._listeners:
            self.events.remove_listener(listener, name)
        self._listeners.clear()
        await self.broadcaster.close()

    async def wait_for_writes(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def get(self, guild: Any, key: str, default: Any = None) -> Any:
        """Get a copy of one of the cached settings blobs of a guild.

        Parameters
        ----------
        guild
            The guild, its ID, or ``None`` for the global settings.
        key : str
            One of ``server``, ``channels``, ``roles`` or ``whitelist``.
        """
        settings = self._cache.get(_record_id(guild))
        if settings is None or key not in settings:
            return default
        return json.loads(json.dumps(settings[key]))

    def clear(self, guild: Any) -> None:
        """Remove every setting of a guild, in memory and in storage."""
        if guild is None:
            raise ValueError("The global settings can't be cleared.")
        self.permissions.clear_guild(int(_record_id(guild)))

    # Decoding and replaying

    @staticmethod
    def decode(guild_id: str, record: Record) -> Settings:
        """Decode the blobs of a stored record.

        Raises
        ------
        PersistenceDeserializeFailure
            A blob isn't valid JSON, or isn't shaped like a settings blob.
        """
        if not guild_id.isdigit():
            raise PersistenceDeserializeFailure(guild_id)
        settings = empty_settings()
        for field in FIELDS:
            text = record.get(field)
            if text is None:
                continue
            try:
                settings[field] = SETTINGS_SCHEMAS[field].validate(json.loads(text))
            except (ValueError, SchemaError) as e:
                raise PersistenceDeserializeFailure(guild_id, field) from e
        return settings

    def _entity_for_key(self, key: str) -> Optional[Union[Command, Group]]:
        prefix, _sep, name = key.partition("-")
        if prefix == "cmd":
            return self.registry.commands.get(name)
        if prefix == "grp":
            return self.registry.groups.get(name)
        return None

    def _set_enabled(self, guild: Optional[int], entity, enabled: bool, scope) -> None:
        if isinstance(entity, Command):
            self.permissions.set_command_enabled(guild, entity, enabled, scope, trusted=True)
        else:
            self.permissions.set_group_enabled(guild, entity, enabled, scope, trusted=True)

    def _apply(self, guild_id: str, settings: Settings, only_key: Optional[str] = None) -> None:
        """Replay settings through the permission manager without writing them back."""
        guild = None if guild_id == GLOBAL_RECORD_ID else int(guild_id)

        def entities(keys):
            for key in keys:
                if only_key is not None and key != only_key:
                    continue
                entity = self._entity_for_key(key)
                if entity is not None:
                    yield key, entity

        self._replaying = True
        try:
            for key, entity in entities(list(settings["server"])):
                self._set_enabled(guild, entity, settings["server"][key], SERVER)
            if guild is not None:
                for channel_id, values in settings["channels"].items():
                    scope = PermissionScope.channel(int(channel_id))
                    for key, entity in entities(list(values)):
                        self._set_enabled(guild, entity, values[key], scope)
                for key, entity in entities(list(settings["roles"])):
                    for role_id, value in settings["roles"][key].items():
                        self._set_enabled(guild, entity, value, PermissionScope.role(int(role_id)))
            for kind in ("roles", "channels"):
                values = settings["whitelist"].get(kind, {})
                for key, entity in entities(list(values)):
                    self.permissions.set_whitelist(entity, kind, values[key], guild, trusted=True)
        finally:
            self._replaying = False
        if only_key is None:
            self._applied.add(guild_id)

    # Listeners

    def on_change(self, event: ChangeEvent) -> None:
        if self._replaying:
            return
        guild_id = GLOBAL_RECORD_ID if event.is_global else str(event.scope)
        settings = self._cache.setdefault(guild_id, empty_settings())
        blob = settings[event.override_scope.blob]
        scope = event.override_scope

        if scope is OverrideScope.SERVER:
            blob[event.key] = event.enabled
        elif scope is OverrideScope.CHANNEL:
            blob.setdefault(str(event.target_id), {})[event.key] = event.enabled
        elif scope is OverrideScope.ROLE:
            blob.setdefault(event.key, {})[str(event.target_id)] = event.enabled
        else:
            kind = "roles" if scope is OverrideScope.ROLES_WHITELIST else "channels"
            blob.setdefault(kind, {})[event.key] = event.enabled

        self._schedule_write(guild_id, scope.blob, json.dumps(blob))
        if event.is_global:
            self._schedule(self.broadcaster.publish(event.key, event.enabled, scope.value))

    def on_command_register(self, command: Command, registry: Registry) -> None:
        self._apply_key(command.key)

    def on_group_register(self, group: Group, registry: Registry) -> None:
        self._apply_key(group.key)

    def _apply_key(self, key: str) -> None:
        for guild_id, settings in self._cache.items():
            if guild_id in self._applied:
                self._apply(guild_id, settings, only_key=key)

    def on_guild_available(self, guild: Any) -> None:
        guild_id = _record_id(guild)
        settings = self._cache.get(guild_id)
        if settings is not None and guild_id not in self._applied:
            log.debug("Applying settings of guild %s", guild_id)
            self._apply(guild_id, settings)

    def on_channel_remove(self, guild_id: int, channel_id: int) -> None:
        record_id = str(guild_id)
        settings = self._cache.get(record_id)
        if settings is None:
            return
        if settings["channels"].pop(str(channel_id), None) is not None:
            self._schedule_write(record_id, "channels", json.dumps(settings["channels"]))

    def on_role_remove(self, guild_id: int, role_id: int) -> None:
        record_id = str(guild_id)
        settings = self._cache.get(record_id)
        if settings is None:
            return
        roles = settings["roles"]
        changed = False
        for key in list(roles):
            if roles[key].pop(str(role_id), None) is not None:
                changed = True
                if not roles[key]:
                    del roles[key]
        if changed:
            self._schedule_write(record_id, "roles", json.dumps(roles))

    def on_guild_clear(self, guild_id: int) -> None:
        record_id = str(guild_id)
        settings = self._cache.pop(record_id, None)
        self._applied.discard(record_id)
        self._undecodable.discard(record_id)
        self._schedule_for(record_id, self._delete, record_id)
        if settings is not None and any(settings["whitelist"].values()):
            self._keep_whitelist(settings["whitelist"])

    def _keep_whitelist(self, whitelist: Dict[str, Dict[str, bool]]) -> None:
        """Move whitelist flags of a deleted record into the global record.

        The flags live on the entities, so they outlive the record which
        stored them.
        """
        blob = self._cache.setdefault(GLOBAL_RECORD_ID, empty_settings())["whitelist"]
        for kind, values in whitelist.items():
            for key, value in values.items():
                entity = self._entity_for_key(key)
                if entity is not None:
                    value = entity.whitelist.get(kind)
                blob.setdefault(kind, {})[key] = value
        self._schedule_write(GLOBAL_RECORD_ID, "whitelist", json.dumps(blob))

    async def on_remote_change(self, key: str, value: bool, scope: str = "server") -> None:
        """Apply a global change published by a sibling shard."""
        override_scope = OverrideScope(scope)
        settings = self._cache.setdefault(GLOBAL_RECORD_ID, empty_settings())
        if override_scope is OverrideScope.SERVER:
            settings["server"][key] = value
        else:
            kind = "roles" if override_scope is OverrideScope.ROLES_WHITELIST else "channels"
            settings["whitelist"].setdefault(kind, {})[key] = value
        entity = self._entity_for_key(key)
        if entity is None:
            return
        self._replaying = True
        try:
            if override_scope is OverrideScope.SERVER:
                self._set_enabled(None, entity, value, SERVER)
            else:
                self.permissions.set_whitelist(entity, override_scope, value, trusted=True)
        finally:
            self._replaying = False

    # Writing

    def _schedule(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            log.warning("No running event loop, a settings write was dropped")
            coro.close()
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _schedule_for(self, guild_id: str, func: Callable, *args) -> None:
        lock = self._locks.setdefault(guild_id, asyncio.Lock())
        self._schedule(self._locked(lock, func, *args))

    def _schedule_write(self, guild_id: str, field: str, text: str) -> None:
        if guild_id in self._undecodable:
            # The stored record failed to load, replace all of its blobs
            self._undecodable.discard(guild_id)
            settings = self._cache[guild_id]
            for name in FIELDS:
                self._schedule_for(
                    guild_id, self._write, guild_id, name, json.dumps(settings[name])
                )
            return
        self._schedule_for(guild_id, self._write, guild_id, field, text)

    @staticmethod
    async def _locked(lock: asyncio.Lock, func: Callable, *args) -> None:
        async with lock:
            await func(*args)

    async def _write(self, guild_id: str, field: str, text: str) -> None:
        try:
            await self.driver.upsert(guild_id, field, text)
        except Exception as e:
            error = PersistenceWriteFailure(guild_id, field)
            error.__cause__ = e
            log.error("%s", error, exc_info=e)
        else:
            log.trace("Saved %s of guild %s", field, guild_id)

    async def _delete(self, guild_id: str) -> None:
        try:
            await self.driver.delete(guild_id)
        except Exception as e:
            error = PersistenceWriteFailure(guild_id)
            error.__cause__ = e
            log.error("%s", error, exc_info=e)
