import json
from pathlib import Path

import pytest

from commando.core import data_manager
from commando.core.cli import ExitCodes
from commando.pytest.data_manager import *


@pytest.fixture()
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.json"
    monkeypatch.setattr(data_manager, "config_file", path)
    return path


def test_no_basic():
    with pytest.raises(RuntimeError):
        data_manager.core_data_path()

    with pytest.raises(RuntimeError):
        data_manager.storage_type()


def test_load_basic_configuration(config_file, data_mgr_config):
    data_manager.save_config("instance", data_mgr_config)
    data_manager.load_basic_configuration("instance")

    assert data_manager.instance_name() == "instance"
    assert data_manager.data_path() == Path(data_mgr_config["DATA_PATH"]).resolve()
    assert data_manager.core_data_path() == data_manager.data_path() / "core"
    assert data_manager.core_data_path().is_dir()
    assert data_manager.storage_type() == "JSON"
    assert data_manager.storage_details() == {}


def test_missing_keys_fall_back_to_defaults(config_file, tmpdir):
    data_manager.save_config("old", {"DATA_PATH": str(tmpdir), "STORAGE_TYPE": "JSON"})
    data_manager.load_basic_configuration("old")

    shards = data_manager.shard_details()
    assert shards.shard_count == 1
    assert shards.is_sharded is False
    assert shards.base_port == 5560


def test_shard_details(config_file, data_mgr_config):
    data_mgr_config.update(SHARD_ID=2, SHARD_COUNT=4, SHARD_HOST="10.0.0.2")
    data_manager.save_config("sharded", data_mgr_config)
    data_manager.load_basic_configuration("sharded")

    shards = data_manager.shard_details()
    assert (shards.shard_id, shards.shard_count, shards.host) == (2, 4, "10.0.0.2")
    assert shards.is_sharded is True


def test_unknown_instance_exits(config_file, data_mgr_config):
    data_manager.save_config("instance", data_mgr_config)
    with pytest.raises(SystemExit) as exc_info:
        data_manager.load_basic_configuration("nope")
    assert exc_info.value.code == ExitCodes.INVALID_CLI_USAGE


def test_missing_config_exits(config_file):
    with pytest.raises(SystemExit) as exc_info:
        data_manager.load_basic_configuration("instance")
    assert exc_info.value.code == ExitCodes.CONFIGURATION_ERROR


def test_save_config_remove(config_file, data_mgr_config):
    data_manager.save_config("first", data_mgr_config)
    data_manager.save_config("second", data_mgr_config)
    data_manager.save_config("first", {}, remove=True)

    with config_file.open(encoding="utf-8") as fs:
        assert list(json.load(fs)) == ["second"]


def test_create_temp_config(config_file):
    name = data_manager.create_temp_config()
    data_manager.load_basic_configuration(name)
    assert data_manager.storage_type() == "JSON"
    assert data_manager.data_path().is_dir()
