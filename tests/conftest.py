import pytest

from commando.core.drivers import JsonDriver


@pytest.fixture(autouse=True)
async def _teardown_json_driver():
    yield
    await JsonDriver.teardown()
