import asyncio
import json
import os
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Tuple
from uuid import uuid4

from .. import data_manager
from .base import FIELDS, BaseDriver, Record, empty_record
from .log import log

__all__ = ["JsonDriver"]


_shared_datastore: Dict[Path, Dict[str, Record]] = {}
_locks: Dict[Path, asyncio.Lock] = {}


class JsonDriver(BaseDriver):
    """
    Subclass of :py:class:`.BaseDriver`.

    Every driver pointing at the same file shares one in-memory copy of
    its contents.

    .. py:attribute:: file_name

        The name of the file in which to store JSON data.

    .. py:attribute:: data_path

        The path in which to store the file indicated by :py:attr:`file_name`.
    """

    def __init__(
        self,
        *,
        data_path_override: Optional[Path] = None,
        file_name_override: str = "settings.json",
    ):
        super().__init__()
        self.file_name = file_name_override
        if data_path_override is not None:
            self.data_path = data_path_override
        else:
            self.data_path = data_manager.core_data_path()
        self.data_path.mkdir(parents=True, exist_ok=True)
        self.data_path = self.data_path / self.file_name

        self._load_data()

    @property
    def data(self) -> Dict[str, Record]:
        return _shared_datastore[self.data_path]

    @property
    def _lock(self) -> asyncio.Lock:
        return _locks.setdefault(self.data_path, asyncio.Lock())

    @classmethod
    async def initialize(cls, **storage_details) -> None:
        # No initializing to do
        return

    @classmethod
    async def teardown(cls) -> None:
        _shared_datastore.clear()
        _locks.clear()

    @staticmethod
    def get_config_details() -> Dict[str, Any]:
        # No driver-specific configuration needed
        return {}

    def _load_data(self) -> None:
        if self.data_path in _shared_datastore:
            return

        try:
            with self.data_path.open("r", encoding="utf-8") as fs:
                data = json.load(fs)
        except FileNotFoundError:
            data = {}
            with self.data_path.open("w", encoding="utf-8") as fs:
                json.dump(data, fs)
        _shared_datastore[self.data_path] = data

    async def get_record(self, guild_id: str) -> Optional[Record]:
        record = self.data.get(guild_id)
        if record is None:
            return None
        return {field: record.get(field) for field in FIELDS}

    async def aiter_records(self) -> AsyncIterator[Tuple[str, Record]]:
        for guild_id, record in list(self.data.items()):
            yield guild_id, {field: record.get(field) for field in FIELDS}

    async def upsert(self, guild_id: str, field: str, text: Optional[str]) -> None:
        self._check_field(field)
        log.invisible("Upsert %s of %s in %s", field, guild_id, self.data_path)
        async with self._lock:
            self.data.setdefault(guild_id, empty_record())[field] = text
            await self._save()

    async def delete(self, guild_id: str) -> None:
        async with self._lock:
            try:
                del self.data[guild_id]
            except KeyError:
                pass
            else:
                log.invisible("Deleted %s in %s", guild_id, self.data_path)
                await self._save()

    @classmethod
    async def delete_all_data(cls, **kwargs) -> None:
        driver = cls(**kwargs)
        async with driver._lock:
            driver.data.clear()
            await driver._save()

    async def _save(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _save_json, self.data_path, dict(self.data))


def _save_json(path: Path, data: Dict[str, Any]) -> None:
    """
    Save the data atomically.

    The temp file is synced before it replaces the target, and the
    directory is synced afterwards where the platform allows it.
    Without both, the filesystem makes no durability or atomicity
    guarantee under high write volumes.

    In depth overview of underlying reasons why this is needed:
        https://lwn.net/Articles/457667/
    """
    filename = path.stem
    tmp_file = "{}-{}.tmp".format(filename, uuid4().fields[0])
    tmp_path = path.parent / tmp_file
    with tmp_path.open(encoding="utf-8", mode="w") as fs:
        json.dump(data, fs)
        fs.flush()  # This does get closed on context exit, ...
        os.fsync(fs.fileno())  # but that needs to happen prior to this line

    tmp_path.replace(path)

    try:
        flag = os.O_DIRECTORY  # pylint: disable=no-member
    except AttributeError:
        pass
    else:
        fd = os.open(path.parent, flag)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
