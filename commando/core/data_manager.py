import json
import os
import sys
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional

import platformdirs

from .cli import ExitCodes

__all__ = (
    "basic_config",
    "load_existing_config",
    "create_temp_config",
    "load_basic_configuration",
    "save_config",
    "core_data_path",
    "data_path",
    "instance_name",
    "metadata_file",
    "storage_type",
    "storage_details",
    "shard_details",
    "ShardDetails",
)

basic_config: Optional[Dict[str, Any]] = None

_instance_name: Optional[str] = None

basic_config_default: Dict[str, Any] = {
    "DATA_PATH": None,
    "CORE_PATH_APPEND": "core",
    "SHARD_ID": 0,
    "SHARD_COUNT": 1,
    "SHARD_HOST": "127.0.0.1",
    "SHARD_BASE_PORT": 5560,
}

appdir = platformdirs.PlatformDirs("Commando")
config_dir = appdir.user_config_path
_system_user = sys.platform == "linux" and 0 < os.getuid() < 1000
if _system_user:
    if Path.home().exists():
        # Keep using site_data_path for instances created before the home dir existed.
        _maybe_config_file = appdir.site_data_path / "config.json"
        if _maybe_config_file.exists():
            config_dir = _maybe_config_file.parent
    else:
        config_dir = appdir.site_data_path

config_file = config_dir / "config.json"


class ShardDetails(NamedTuple):
    shard_id: int
    shard_count: int
    host: str
    base_port: int

    @property
    def is_sharded(self) -> bool:
        return self.shard_count > 1


def load_existing_config() -> Dict[str, Any]:
    """Get the contents of the config file, or an empty dictionary if it does not exist.

    Returns
    -------
    dict
        The config data.
    """
    if not config_file.exists():
        return {}

    with config_file.open(encoding="utf-8") as fs:
        return json.load(fs)


def save_config(name: str, data: Dict[str, Any], remove: bool = False) -> None:
    _config = load_existing_config()
    if remove and name in _config:
        _config.pop(name)
    else:
        _config[name] = data

    config_file.parent.mkdir(parents=True, exist_ok=True)
    with config_file.open("w", encoding="utf-8") as fs:
        json.dump(_config, fs, indent=4)


def create_temp_config() -> str:
    """
    Creates a default instance, so commando can be ran
    without creating an instance.

    .. warning:: The data of this instance will be removed
        on next system restart.

    Returns
    -------
    str
        The temporary instance's name.
    """
    name = "temporary_commando"

    default_dirs = deepcopy(basic_config_default)
    default_dirs["DATA_PATH"] = tempfile.mkdtemp()
    default_dirs["STORAGE_TYPE"] = "JSON"
    default_dirs["STORAGE_DETAILS"] = {}

    save_config(name, default_dirs)
    return name


def load_basic_configuration(instance_name_: str) -> None:
    """Loads the basic bootstrap configuration necessary for the
    settings drivers to know where to store or look for data.

    .. important::
        It is necessary to call this function BEFORE getting any driver!

    Parameters
    ----------
    instance_name_ : str
        The instance name given by CLI argument.
    """
    global basic_config
    global _instance_name
    _instance_name = instance_name_

    try:
        with config_file.open(encoding="utf-8") as fs:
            config = json.load(fs)
    except FileNotFoundError:
        print("You need to configure an instance in {} first.".format(config_file))
        sys.exit(ExitCodes.CONFIGURATION_ERROR)
    try:
        basic_config = {**basic_config_default, **config[_instance_name]}
    except KeyError:
        print("Instance with this name doesn't exist.")
        sys.exit(ExitCodes.INVALID_CLI_USAGE)


def data_path() -> Path:
    """Gets the base data path.

    Returns
    -------
    pathlib.Path
        The instance's data directory.
    """
    if basic_config is None:
        raise RuntimeError("You must load the basic config before you can get the base data path.")
    return Path(basic_config["DATA_PATH"]).resolve()


def core_data_path() -> Path:
    try:
        base_data_path = data_path()
    except RuntimeError as e:
        raise RuntimeError(
            "You must load the basic config before you can get the core data path."
        ) from e
    core_path = base_data_path / basic_config["CORE_PATH_APPEND"]
    core_path.mkdir(exist_ok=True, parents=True)

    return core_path.resolve()


def instance_name() -> Optional[str]:
    """Gets instance's name.

    Returns
    -------
    str
        Instance name.
    """
    return _instance_name


def metadata_file() -> Path:
    """Gets the path of metadata file.

    Returns
    -------
    pathlib.Path
        Path to ``config.json``.
    """
    return config_file


def storage_type() -> str:
    """Gets the storage type as a string.

    Returns
    -------
    str
        Storage type.
    """
    try:
        return basic_config["STORAGE_TYPE"]
    except (KeyError, TypeError) as e:
        raise RuntimeError("Basic config has not been loaded yet.") from e


def storage_details() -> Dict[str, str]:
    """Gets any details necessary for settings drivers to load.

    Returns
    -------
    Dict[str, str]
        Storage details.
    """
    return deepcopy(basic_config.get("STORAGE_DETAILS", {}))


def shard_details() -> ShardDetails:
    """Gets this process' shard ID, the shard count and where shards talk to each other.

    Returns
    -------
    ShardDetails
        Shard details. Unsharded instances report a single shard.
    """
    config = basic_config if basic_config is not None else basic_config_default
    return ShardDetails(
        shard_id=int(config.get("SHARD_ID", 0)),
        shard_count=int(config.get("SHARD_COUNT", 1)),
        host=config.get("SHARD_HOST", basic_config_default["SHARD_HOST"]),
        base_port=int(config.get("SHARD_BASE_PORT", basic_config_default["SHARD_BASE_PORT"])),
    )
