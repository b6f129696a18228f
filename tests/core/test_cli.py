import logging

import pytest
from red_commons.logging import TRACE, VERBOSE

from commando.core.cli import ExitCodes, confirm, parse_cli_flags


def test_parse_show():
    flags = parse_cli_flags(["instance", "show", "1234"])
    assert flags.instance_name == "instance"
    assert flags.command == "show"
    assert flags.guild_id == 1234
    assert flags.logging_level == logging.INFO


def test_parse_show_defaults_to_global():
    assert parse_cli_flags(["instance", "show"]).guild_id == 0


def test_parse_clear_and_convert():
    flags = parse_cli_flags(["instance", "clear", "5", "--no-prompt"])
    assert (flags.command, flags.guild_id, flags.interactive) == ("clear", 5, False)
    assert parse_cli_flags(["instance", "clear", "5"]).interactive is True
    assert parse_cli_flags(["instance", "convert", "Postgres"]).backend == "postgres"


@pytest.mark.parametrize(
    "flags,level",
    [([], logging.INFO), (["-v"], logging.DEBUG), (["-vv"], VERBOSE), (["-vvv"], TRACE)],
)
def test_verbosity(flags, level):
    assert parse_cli_flags([*flags, "instance", "show"]).logging_level == level


def test_invalid_usage():
    with pytest.raises(SystemExit) as exc_info:
        parse_cli_flags(["instance", "clear", "-5"])
    assert exc_info.value.code == ExitCodes.INVALID_CLI_USAGE


@pytest.mark.parametrize(
    "answers,default,expected",
    [
        (["y"], None, True),
        (["No"], None, False),
        ([""], True, True),
        (["maybe", "yes"], False, True),
    ],
)
def test_confirm(monkeypatch, answers, default, expected):
    replies = iter(answers)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(replies))
    assert confirm("Sure?", default=default) is expected
