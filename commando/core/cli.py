import argparse
import logging
import sys
from enum import IntEnum
from typing import List, Optional

from red_commons.logging import TRACE, VERBOSE


# This needs to be an int enum to be used
# with sys.exit
class ExitCodes(IntEnum):
    #: Clean shutdown (through signals, keyboard interrupt, finished command, etc.).
    SHUTDOWN = 0
    #: An unrecoverable error occurred during application's runtime.
    CRITICAL = 1
    #: The CLI command was used incorrectly, such as when the wrong number of arguments are given.
    INVALID_CLI_USAGE = 2
    #: Some kind of configuration error occurred.
    CONFIGURATION_ERROR = 78  # Exit code borrowed from os.EX_CONFIG.


def confirm(text: str, default: Optional[bool] = None) -> bool:
    if default is None:
        options = "y/n"
    elif default is True:
        options = "Y/n"
    elif default is False:
        options = "y/N"
    else:
        raise TypeError(f"expected bool, not {type(default)}")

    while True:
        try:
            value = input(f"{text}: [{options}] ").lower().strip()
        except KeyboardInterrupt:
            print("\nAborted!")
            sys.exit(ExitCodes.SHUTDOWN)
        except EOFError:
            print("\nAborted!")
            sys.exit(ExitCodes.INVALID_CLI_USAGE)
        if value in ("y", "yes"):
            return True
        if value in ("n", "no"):
            return False
        if value == "":
            if default is not None:
                return default
        print("Error: invalid input")


def non_negative_int(arg: str) -> int:
    try:
        x = int(arg)
    except ValueError:
        raise argparse.ArgumentTypeError("The argument has to be a number.")
    if x < 0:
        raise argparse.ArgumentTypeError("The argument has to be a non-negative integer.")
    if x > sys.maxsize:
        raise argparse.ArgumentTypeError(
            f"The argument has to be lower than or equal to {sys.maxsize}."
        )
    return x


def cli_level_to_log_level(level: int) -> int:
    if level == 0:
        log_level = logging.INFO
    elif level == 1:
        log_level = logging.DEBUG
    elif level == 2:
        log_level = VERBOSE
    else:
        log_level = TRACE
    return log_level


def parse_cli_flags(args: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Commando - command permission settings maintenance",
        usage="python -m commando <instance_name> <command> [arguments]",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show the current version")
    parser.add_argument(
        "instance_name", nargs="?", help="Name of the instance whose settings are managed."
    )
    parser.add_argument(
        "--debug",
        "--verbose",
        "-v",
        action="count",
        default=0,
        dest="logging_level",
        help="Increase the verbosity of the logs, each usage of this flag increases the verbosity"
        " level by 1.",
    )
    parser.add_argument(
        "--force-rich-logging",
        action="store_true",
        dest="rich_logging",
        default=None,
        help="Forcefully enables the Rich logging handlers."
        " This is normally enabled for supported active terminals.",
    )
    parser.add_argument(
        "--force-disable-rich-logging",
        action="store_false",
        dest="rich_logging",
        default=None,
        help="Forcefully disables the Rich logging handlers.",
    )
    parser.add_argument(
        "--rich-traceback-extra-lines",
        type=non_negative_int,
        default=0,
        help="Set the number of additional lines of code before and after the executed line"
        " that should be shown in tracebacks generated by Rich.",
    )
    parser.add_argument(
        "--rich-traceback-show-locals",
        action="store_true",
        help="Enable showing local variables in tracebacks generated by Rich.",
    )

    subparsers = parser.add_subparsers(dest="command")

    show = subparsers.add_parser("show", help="Show the settings stored for a guild.")
    show.add_argument(
        "guild_id",
        type=non_negative_int,
        nargs="?",
        default=0,
        help="The guild's ID. Omit to show the global settings.",
    )

    clear = subparsers.add_parser("clear", help="Delete the settings stored for a guild.")
    clear.add_argument("guild_id", type=non_negative_int, help="The guild's ID.")
    clear.add_argument(
        "--no-prompt",
        action="store_false",
        dest="interactive",
        default=True,
        help="Don't ask for confirmation.",
    )

    convert = subparsers.add_parser(
        "convert", help="Copy every stored record to another storage backend."
    )
    convert.add_argument(
        "backend",
        type=str.lower,
        choices=["json", "postgres"],
        help="The storage backend to convert to.",
    )

    args = parser.parse_args(args)
    args.logging_level = cli_level_to_log_level(args.logging_level)

    return args
