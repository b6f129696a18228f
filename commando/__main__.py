"""Maintenance of the stored command permission settings of an instance."""
import asyncio
import sys
from argparse import Namespace
from typing import Type

import rich
from red_commons.logging import getLogger

import commando.logging
from commando import __version__
from commando.core import data_manager, drivers
from commando.core.cli import ExitCodes, confirm, parse_cli_flags
from commando.core.errors import MissingExtraRequirements, PersistenceDeserializeFailure
from commando.core.synchronizer import SettingsSynchronizer

log = getLogger("commando.main")


async def show(driver_cls: Type[drivers.BaseDriver], cli_flags: Namespace) -> ExitCodes:
    guild_id = str(cli_flags.guild_id)
    record = await driver_cls().get_record(guild_id)
    if record is None:
        print(f"No settings are stored for guild {guild_id}.")
        return ExitCodes.SHUTDOWN
    try:
        settings = SettingsSynchronizer.decode(guild_id, record)
    except PersistenceDeserializeFailure as e:
        log.error("%s", e)
        return ExitCodes.CRITICAL
    rich.print_json(data=settings)
    return ExitCodes.SHUTDOWN


async def clear(driver_cls: Type[drivers.BaseDriver], cli_flags: Namespace) -> ExitCodes:
    guild_id = str(cli_flags.guild_id)
    if cli_flags.interactive and not confirm(
        f"Delete every command permission setting of guild {guild_id}?", default=False
    ):
        print("Not deleting anything.")
        return ExitCodes.SHUTDOWN
    await driver_cls().delete(guild_id)
    print(f"Deleted the settings of guild {guild_id}.")
    return ExitCodes.SHUTDOWN


async def convert(driver_cls: Type[drivers.BaseDriver], cli_flags: Namespace) -> ExitCodes:
    if cli_flags.backend == "postgres":
        target = drivers.BackendType.POSTGRES
    else:
        target = drivers.BackendType.JSON
    new_driver_cls = drivers.get_driver_class(target)
    if new_driver_cls is driver_cls:
        print(f"The instance already uses the {target.value} backend.")
        return ExitCodes.SHUTDOWN

    new_storage_details = new_driver_cls.get_config_details()
    try:
        await new_driver_cls.initialize(**new_storage_details)
    except MissingExtraRequirements as e:
        log.critical("%s", e)
        return ExitCodes.CONFIGURATION_ERROR
    try:
        await driver_cls.migrate_to(new_driver_cls)
    finally:
        await new_driver_cls.teardown()

    config = dict(data_manager.basic_config)
    config["STORAGE_TYPE"] = target.value
    config["STORAGE_DETAILS"] = new_storage_details
    data_manager.save_config(data_manager.instance_name(), config)
    print(f"Converted the settings to {target.value}.")
    return ExitCodes.SHUTDOWN


COMMANDS = {"show": show, "clear": clear, "convert": convert}


async def run(cli_flags: Namespace) -> ExitCodes:
    driver_cls = drivers.get_driver_class()
    try:
        await driver_cls.initialize(**data_manager.storage_details())
    except MissingExtraRequirements as e:
        log.critical("%s", e)
        return ExitCodes.CONFIGURATION_ERROR
    try:
        return await COMMANDS[cli_flags.command](driver_cls, cli_flags)
    finally:
        await driver_cls.teardown()


def main() -> None:
    cli_flags = parse_cli_flags(sys.argv[1:])
    if cli_flags.version:
        print("Commando version {}".format(__version__))
        sys.exit(ExitCodes.SHUTDOWN)
    if not cli_flags.instance_name or not cli_flags.command:
        print("An instance name and a command are required. See --help.")
        sys.exit(ExitCodes.INVALID_CLI_USAGE)

    data_manager.load_basic_configuration(cli_flags.instance_name)
    commando.logging.init_logging(
        level=cli_flags.logging_level,
        location=data_manager.data_path() / "logs",
        cli_flags=cli_flags,
    )

    try:
        exit_code = asyncio.run(run(cli_flags))
    except KeyboardInterrupt:
        print("Aborted!")
        exit_code = ExitCodes.SHUTDOWN
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
