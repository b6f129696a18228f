import pytest

from commando.core import data_manager

__all__ = ["cleanup_datamanager", "data_mgr_config"]


@pytest.fixture(autouse=True)
def cleanup_datamanager():
    data_manager.basic_config = None


@pytest.fixture()
def data_mgr_config(tmpdir):
    default = data_manager.basic_config_default.copy()
    default["DATA_PATH"] = str(tmpdir)
    default["STORAGE_TYPE"] = "JSON"
    default["STORAGE_DETAILS"] = {}
    return default
