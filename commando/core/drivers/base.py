import abc
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Type

__all__ = ["BaseDriver", "FIELDS", "GLOBAL_RECORD_ID", "Record", "empty_record"]

FIELDS = ("server", "channels", "roles", "whitelist")
"""The independently written text blobs of every settings record."""

GLOBAL_RECORD_ID = "0"
"""The guild ID the global settings are stored under."""

Record = Dict[str, Optional[str]]


def empty_record() -> Record:
    return dict.fromkeys(FIELDS)


class BaseDriver(abc.ABC):
    """Stores one settings record per guild ID.

    Records are made of the text blobs named in `FIELDS`. Drivers never
    look inside the blobs; decoding them is up to the caller.
    """

    def __init__(self, **kwargs):
        pass

    @classmethod
    @abc.abstractmethod
    async def initialize(cls, **storage_details) -> None:
        """
        Initialize this driver.

        Parameters
        ----------
        **storage_details
            The storage details required to initialize this driver.
            Should be the same as :func:`data_manager.storage_details`

        Raises
        ------
        MissingExtraRequirements
            If initializing the driver requires an extra which isn't
            installed.

        """
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    async def teardown(cls) -> None:
        """
        Tear down this driver.
        """
        raise NotImplementedError

    @staticmethod
    @abc.abstractmethod
    def get_config_details() -> Dict[str, Any]:
        """
        Asks users for additional configuration information necessary
        to use this driver.

        Returns
        -------
        Dict[str, Any]
            Dictionary of configuration details.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def get_record(self, guild_id: str) -> Optional[Record]:
        """
        Get the settings record stored for a guild.

        Parameters
        ----------
        guild_id : str
            The guild's ID, or `GLOBAL_RECORD_ID`.

        Returns
        -------
        Optional[Record]
            The stored blobs, or ``None`` if nothing is stored.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def aiter_records(self) -> AsyncIterator[Tuple[str, Record]]:
        """Iterate over every stored record.

        Yields
        ------
        Tuple[str, Record]
            Asynchronously yields (guild_id, record) tuples.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert(self, guild_id: str, field: str, text: Optional[str]) -> None:
        """
        Write a single blob of a guild's record, creating the record if
        needed. The other blobs are left untouched.

        Parameters
        ----------
        guild_id : str
            The guild's ID, or `GLOBAL_RECORD_ID`.
        field : str
            One of `FIELDS`.
        text : Optional[str]
            The encoded blob.

        Raises
        ------
        ValueError
            If ``field`` isn't one of `FIELDS`.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, guild_id: str) -> None:
        """
        Delete a guild's record. Deleting a missing record does nothing.
        """
        raise NotImplementedError

    @classmethod
    async def migrate_to(cls, new_driver_cls: Type["BaseDriver"]) -> None:
        """Migrate data from this backend to another.

        Both drivers must be initialized beforehand.

        This will only move the data - no instance metadata is modified
        as a result of this operation.

        Parameters
        ----------
        new_driver_cls
            Subclass of `BaseDriver`.

        """
        # Backend-agnostic method of migrating from one driver to another.
        this_driver = cls()
        other_driver = new_driver_cls()
        async for guild_id, record in this_driver.aiter_records():
            for field in FIELDS:
                if record.get(field) is not None:
                    await other_driver.upsert(guild_id, field, record[field])

    @classmethod
    async def delete_all_data(cls, **kwargs) -> None:
        """Delete all data being stored by this driver.

        The driver must be initialized before this operation.

        The BaseDriver provides a generic method which may be overridden
        by subclasses.

        Parameters
        ----------
        **kwargs
            Driver-specific kwargs to change the way this method
            operates.

        """
        driver = cls()
        guild_ids = [guild_id async for guild_id, _record in driver.aiter_records()]
        for guild_id in guild_ids:
            await driver.delete(guild_id)

    @staticmethod
    def _check_field(field: str) -> None:
        if field not in FIELDS:
            raise ValueError(f"Unknown settings field: {field!r}")
