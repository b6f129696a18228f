import random
import uuid
from collections import namedtuple
from pathlib import Path

import pytest

from commando.core import data_manager
from commando.core.drivers import JsonDriver
from commando.core.events import EventBus
from commando.core.permissions import PermissionManager
from commando.core.registry import Command, Group, Registry
from commando.core.synchronizer import SettingsSynchronizer

__all__ = [
    "override_data_path",
    "events",
    "registry",
    "populated_registry",
    "permissions",
    "driver",
    "synchronizer_factory",
    "guild_factory",
    "empty_guild",
    "empty_channel",
    "empty_role",
    "member_factory",
    "empty_member",
]


@pytest.fixture(autouse=True)
def override_data_path(tmpdir):
    data_manager.basic_config = dict(data_manager.basic_config_default)
    data_manager.basic_config["DATA_PATH"] = str(tmpdir)
    data_manager.basic_config["STORAGE_TYPE"] = "JSON"
    data_manager.basic_config["STORAGE_DETAILS"] = {}
    yield
    data_manager.basic_config = None


@pytest.fixture()
def events():
    return EventBus()


@pytest.fixture()
def registry(events):
    return Registry(events)


@pytest.fixture()
def populated_registry(registry):
    """A registry with a guarded ``core`` group and two plain groups."""
    registry.register_groups(
        [
            Group("core", "Core", description="Built-in commands", guarded=True),
            ("util", "Utility"),
            ("mod", "Moderation"),
        ]
    )
    registry.register_commands(
        [
            Command("enable", "core", guarded=True),
            Command("ping", "util", description="Pong!"),
            Command("echo", "util", aliases=["say"]),
            Command("kick", "mod"),
            Command("ban", "mod", aliases=["hammer"]),
            Command("kickall", "mod", member_name="kick-all"),
        ]
    )
    return registry


@pytest.fixture()
def permissions(populated_registry, events):
    return PermissionManager(populated_registry, events)


@pytest.fixture()
def driver(tmpdir_factory):
    path = Path(str(tmpdir_factory.mktemp(str(uuid.uuid4()))))
    yield JsonDriver(data_path_override=path)


@pytest.fixture()
async def synchronizer_factory(driver):
    """Build a fresh registry, permission manager and synchronizer on the same driver.

    Every call mirrors a bot restart: entities are registered anew on a
    blank permission state. Call `initialize` to load the stored settings.
    """
    created = []

    def factory(register=True, broadcaster=None, settings_driver=None):
        events = EventBus()
        registry = Registry(events)
        permissions = PermissionManager(registry, events)
        synchronizer = SettingsSynchronizer(
            registry, permissions, events, settings_driver or driver, broadcaster
        )
        if register:
            registry.register_groups([("util", "Utility"), ("mod", "Moderation")])
            registry.register_commands(
                [Command("ping", "util"), Command("kick", "mod"), Command("ban", "mod")]
            )
        created.append(synchronizer)
        return synchronizer

    yield factory

    for synchronizer in created:
        await synchronizer.wait_for_writes()
        await synchronizer.teardown()


# region Dpy Mocks
@pytest.fixture()
def guild_factory():
    mock_guild = namedtuple("Guild", "id members")

    class GuildFactory:
        def get(self):
            return mock_guild(random.randint(1, 999999999), [])

    return GuildFactory()


@pytest.fixture()
def empty_guild(guild_factory):
    return guild_factory.get()


@pytest.fixture(scope="module")
def empty_channel():
    mock_channel = namedtuple("Channel", "id")
    return mock_channel(random.randint(1, 999999999))


@pytest.fixture(scope="module")
def empty_role():
    mock_role = namedtuple("Role", "id")
    return mock_role(random.randint(1, 999999999))


@pytest.fixture()
def member_factory(guild_factory):
    mock_member = namedtuple("Member", "id guild roles")

    class MemberFactory:
        def get(self, roles=()):
            return mock_member(random.randint(1, 999999999), guild_factory.get(), list(roles))

    return MemberFactory()


@pytest.fixture()
def empty_member(member_factory):
    return member_factory.get()


# endregion
