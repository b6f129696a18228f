"""Settings storage backends, selected by the instance's ``STORAGE_TYPE``."""
import enum
from typing import Optional, Type

from .. import data_manager
from .base import FIELDS, GLOBAL_RECORD_ID, BaseDriver, Record
from .json import JsonDriver
from .postgres import PostgresDriver

__all__ = [
    "get_driver",
    "get_driver_class",
    "BaseDriver",
    "JsonDriver",
    "PostgresDriver",
    "BackendType",
    "FIELDS",
    "GLOBAL_RECORD_ID",
    "Record",
]


class BackendType(enum.Enum):
    JSON = "JSON"
    POSTGRES = "Postgres"


_DRIVER_CLASSES = {BackendType.JSON: JsonDriver, BackendType.POSTGRES: PostgresDriver}


def get_driver_class(storage_type: Optional[BackendType] = None) -> Type[BaseDriver]:
    """Look up the driver class of a backend, the configured one by default.

    Raises
    ------
    ValueError
        No driver stores settings in ``storage_type``.
    """
    if storage_type is None:
        storage_type = BackendType(data_manager.storage_type())
    driver_cls = _DRIVER_CLASSES.get(storage_type)
    if driver_cls is None:
        raise ValueError(f"No driver found for storage type {storage_type}")
    return driver_cls


def get_driver(storage_type: Optional[BackendType] = None, **kwargs) -> BaseDriver:
    """Instantiate a settings driver. ``kwargs`` go to the driver's constructor.

    Without a configured instance the JSON backend is used.
    """
    if storage_type is None:
        try:
            storage_type = BackendType(data_manager.storage_type())
        except RuntimeError:
            storage_type = BackendType.JSON
    return get_driver_class(storage_type)(**kwargs)
