from .. import __version__
from .events import EventBus
from .permissions import PermissionManager
from .registry import Command, Group, Registry
from .synchronizer import SettingsSynchronizer

__all__ = [
    "Command",
    "EventBus",
    "Group",
    "PermissionManager",
    "Registry",
    "SettingsSynchronizer",
    "__version__",
]
