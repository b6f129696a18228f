import argparse
import logging.handlers
import pathlib
import re
import sys
from logging import LogRecord
from os import isatty
from typing import List, Optional, Tuple

import rich
from rich.highlighter import NullHighlighter
from rich.logging import RichHandler
from rich.style import Style
from rich.text import Text
from rich.theme import Theme

MAX_OLD_LOGS = 8


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler which keeps its parts in order.

    Logs start as ``{stem}.log``. The first rollover renames it to
    ``{stem}-part1.log`` and continues in ``{stem}-part2.log``, and so on.
    Once ``backupCount`` parts exist, the oldest is dropped and the rest
    move down by one.

    On startup the part with the highest number found in ``directory``
    is appended to.
    """

    def __init__(
        self,
        stem: str,
        directory: pathlib.Path,
        maxBytes: int = 0,
        backupCount: int = 0,
        encoding: Optional[str] = None,
    ) -> None:
        self.baseStem = stem
        self.directory = directory.resolve()
        self._part_re = re.compile(rf"{re.escape(stem)}(?:-part(?P<part>\d+))?\.log")
        parts = [self._part_number(path) for path in directory.iterdir()]
        highest_part = max((part for part in parts if part), default=0)
        super().__init__(
            self._part_path(highest_part),
            mode="a",
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
            delay=False,
        )

    def _part_number(self, path: pathlib.Path) -> Optional[int]:
        match = self._part_re.fullmatch(path.name)
        if match is None:
            return None
        return int(match["part"] or 0)

    def _part_path(self, part: int) -> pathlib.Path:
        if part:
            return self.directory / f"{self.baseStem}-part{part}.log"
        return self.directory / f"{self.baseStem}.log"

    def doRollover(self):
        if self.stream:
            self.stream.close()
            self.stream = None

        current = pathlib.Path(self.baseFilename)
        if self.backupCount < 1:
            current.unlink()
            self.stream = self._open()
            return

        initial_path = self._part_path(0)
        if initial_path.exists():
            initial_path.replace(self._part_path(1))

        latest_part = self._part_number(current) or 1
        if latest_part > self.backupCount:
            # part2 becomes part1 and so on, the last part starts empty
            for part in range(1, self.backupCount + 1):
                next_log = self._part_path(part + 1)
                if next_log.exists():
                    next_log.replace(self._part_path(part))
            self.baseFilename = str(self._part_path(self.backupCount + 1))
        else:
            self.baseFilename = str(self._part_path(latest_part + 1))

        self.stream = self._open()


class CommandoRichHandler(RichHandler):
    """RichHandler which shows the logger's name in place of the source path."""

    def get_level_text(self, record: LogRecord) -> Text:
        level_text = super().get_level_text(record)
        level_text.stylize("bold")
        return level_text

    def render_message(self, record: LogRecord, message: str) -> Text:
        message_text = super().render_message(record, message)
        return Text.assemble((f"[{record.name}] ", "bright_black"), message_text)


def init_logging(level: int, location: pathlib.Path, cli_flags: argparse.Namespace) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # DEBUG logging for discord.py is a bit too ridiculous :)
    dpy_logger = logging.getLogger("discord")
    dpy_logger.setLevel(logging.INFO)

    rich_console = rich.get_console()
    rich.reconfigure(tab_size=4)
    rich_console.push_theme(
        Theme(
            {
                "log.time": Style(dim=True),
                "logging.level.warning": Style(color="yellow"),
                "logging.level.critical": Style(color="white", bgcolor="red"),
                "logging.level.verbose": Style(color="magenta", italic=True, dim=True),
                "logging.level.trace": Style(color="white", italic=True, dim=True),
                "repr.number": Style(color="cyan"),
            }
        )
    )
    rich_console.file = sys.stdout

    enable_rich_logging = False

    if isatty(0) and cli_flags.rich_logging is None:
        enable_rich_logging = True
    elif cli_flags.rich_logging is True:
        enable_rich_logging = True

    file_formatter = logging.Formatter(
        "[{asctime}] [{levelname}] {name}: {message}", datefmt="%Y-%m-%d %H:%M:%S", style="{"
    )
    if enable_rich_logging is True:
        rich_formatter = logging.Formatter("{message}", datefmt="[%X]", style="{")

        stdout_handler = CommandoRichHandler(
            rich_tracebacks=True,
            show_path=False,
            highlighter=NullHighlighter(),
            tracebacks_extra_lines=cli_flags.rich_traceback_extra_lines,
            tracebacks_show_locals=cli_flags.rich_traceback_show_locals,
        )
        stdout_handler.setFormatter(rich_formatter)
    else:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(file_formatter)

    root_logger.addHandler(stdout_handler)
    logging.captureWarnings(True)

    if not location.exists():
        location.mkdir(parents=True, exist_ok=True)
    # Rotate latest logs to previous logs
    previous_logs: List[pathlib.Path] = []
    latest_logs: List[Tuple[pathlib.Path, str]] = []
    for path in location.iterdir():
        match = re.match(r"latest(?P<part>-part\d+)?\.log", path.name)
        if match:
            part = match.groupdict(default="")["part"]
            latest_logs.append((path, part))
        match = re.match(r"previous(?:-part\d+)?.log", path.name)
        if match:
            previous_logs.append(path)
    for path in previous_logs:
        path.unlink()
    for path, part in latest_logs:
        path.replace(location / f"previous{part}.log")

    latest_fhandler = RotatingFileHandler(
        stem="latest",
        directory=location,
        maxBytes=1_000_000,  # About 1MB per logfile
        backupCount=MAX_OLD_LOGS,
        encoding="utf-8",
    )
    all_fhandler = RotatingFileHandler(
        stem="commando",
        directory=location,
        maxBytes=1_000_000,
        backupCount=MAX_OLD_LOGS,
        encoding="utf-8",
    )

    for fhandler in (latest_fhandler, all_fhandler):
        fhandler.setFormatter(file_formatter)
        root_logger.addHandler(fhandler)
