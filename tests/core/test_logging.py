import logging

from red_commons.logging import TRACE, VERBOSE, RedTraceLogger

from commando.core import events, permissions, shards, synchronizer
from commando.logging import RotatingFileHandler


def _emit(handler, count):
    for n in range(count):
        handler.handle(logging.makeLogRecord({"msg": f"message number {n:04}", "levelno": 20}))


def test_rotating_file_handler_parts(tmp_path):
    handler = RotatingFileHandler("latest", tmp_path, maxBytes=100, backupCount=2)
    try:
        _emit(handler, 50)
    finally:
        handler.close()

    names = sorted(path.name for path in tmp_path.iterdir())
    assert names == ["latest-part1.log", "latest-part2.log", "latest-part3.log"]


def test_rotating_file_handler_resumes_highest_part(tmp_path):
    (tmp_path / "commando-part1.log").write_text("old\n")
    (tmp_path / "commando-part4.log").write_text("newer\n")
    (tmp_path / "unrelated.log").write_text("")

    handler = RotatingFileHandler("commando", tmp_path, maxBytes=1000, backupCount=8)
    try:
        assert handler.baseFilename == str((tmp_path / "commando-part4.log").resolve())
    finally:
        handler.close()


def test_loggers_have_trace_and_verbose_levels(caplog):
    for module in (events, permissions, shards, synchronizer):
        assert isinstance(module.log, RedTraceLogger)

    with caplog.at_level(TRACE, logger="commando.events"):
        events.log.trace("traced")
        events.log.verbose("verbose")

    assert [(r.levelno, r.levelname) for r in caplog.records] == [
        (TRACE, "TRACE"),
        (VERBOSE, "VERBOSE"),
    ]
