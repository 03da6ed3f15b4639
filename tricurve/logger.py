"""
TriCurve Logging System
=======================

Optional console / file logging for applications that embed the engine.

Engine modules only call ``logging.getLogger(__name__)`` and never install
handlers themselves. An application opts in once, either explicitly through
``configure_logging()`` or implicitly through the first ``get_logger()`` call.
Console output goes through ``rich`` with a highlighter tuned to engine
decisions (accepted / rejected / clamped, bps, ticks, market ids); file output
is a size-rotated UTF-8 log.

Usage:
    >>> from tricurve.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Market %s opened", "SPOT-ETH")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)


DEFAULT_LOG_FILE = Path.cwd() / "logs" / "tricurve.log"

TRICURVE_THEME = Theme({
    "tricurve.accepted":   "bold green",
    "tricurve.rejected":   "bold red",
    "tricurve.clamped":    "bold yellow",
    "tricurve.error_name": "bold red",
    "tricurve.level":      "bold",
    "tricurve.module":     "magenta",
    "tricurve.bps":        "cyan",
    "tricurve.tick":       "bold cyan",
    "tricurve.market":     "bold magenta",
    "tricurve.timestamp":  "dim cyan",
})


def _warn(message: str) -> None:
    # handlers may not exist yet
    print(f"tricurve.logger: {message}", file=sys.stderr)


@dataclass(frozen=True)
class LogSettings:
    """Resolved handler settings for one ``configure`` call."""
    level: int
    fmt: str
    datefmt: str
    highlighting: bool

    @classmethod
    def resolve(cls, log_level: Optional[str] = None) -> "LogSettings":
        name = str(log_level or LOG_LEVEL).upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            _warn(f"Unknown log level {name!r}, using INFO")
            level = logging.INFO
        return cls(
            level=level,
            fmt=LogManager.validate_log_format(LOG_FORMAT),
            datefmt=LogManager.validate_date_format(LOG_DATE_FORMAT),
            highlighting=bool(LOG_CONSOLE_HIGHLIGHTING),
        )


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that removes ANSI escape sequences, carriage returns and other
    non-printable control characters (tab and newline survive), so pool ids or
    token symbols passed in by callers cannot rewrite the terminal.
    """

    _unsafe = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"   # CSI sequences
        r"|\x1b[@-Z\\-_]"            # two-byte escapes
        r"|[\x00-\x08\x0B-\x1F\x7F]"  # control chars except \t and \n
    )

    @classmethod
    def sanitize(cls, text: str) -> str:
        return cls._unsafe.sub("", text) if text else text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class TriCurveLogHighlighter(RegexHighlighter):
    """Highlights engine decisions and fixed-point diagnostics."""

    base_style = "tricurve."
    highlights = [
        r"(?P<accepted>\b(?:accepted|applied|committed)\b)",
        r"(?P<rejected>\b(?:rejected|REJECTED)\b)",
        r"(?P<clamped>\b(?:clamped|tx_cap|epoch_cap|price_improvement|insufficient_buffer)\b)",
        r"(?P<error_name>\b\w*(?:Error|Violation|Exceeded|Overflow|Commitment|OutOfBounds|"
        r"InvalidRange|NoRouteFound|RouteTooComplex|UpdateTooFrequent)\b)",
        r"(?P<level>\b(?:DEBUG|INFO|WARNING|ERROR|CRITICAL)\b)",
        r"(?P<module>\btricurve(?:\.\w+)+)",
        r"(?P<bps>-?\b\d+\s?bps\b)",
        r"(?P<tick>\btick[= ]-?\d+\b)",
        r"(?P<market>\bmarket[= ][\w\-]+)",
        r"(?P<timestamp>^\S+ UTC)",
    ]


class LogManager:
    """
    Process-wide owner of the root logger's handlers (singleton).

    ``configure`` installs handlers at most once until ``reset`` detaches
    them. Engine configuration never passes through here.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._handlers = []
                instance._configured = False
                cls._instance = instance
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    # -- Format validation --------------------------------------------------

    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Return ``log_format`` if it is a usable %-style logging format,
        otherwise the default from the environment settings.
        """
        default = str(LOG_FORMAT.default())
        if not log_format:
            return default
        log_format = str(log_format)
        try:
            logging.PercentStyle(log_format).validate()
            logging.Formatter(log_format).format(
                logging.LogRecord("tricurve", logging.INFO, "", 0, "probe", (), None)
            )
        except (ValueError, KeyError, TypeError) as e:
            _warn(f"Validation Error in log format ({e}), using default")
            return default
        return log_format

    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """
        Return ``date_format`` if it contains at least one strftime directive
        and renders, otherwise the default.
        """
        default = str(LOG_DATE_FORMAT.default())
        if not date_format:
            return default
        date_format = str(date_format)
        if not re.search(r"%[-_0^#]?[A-Za-z]", date_format):
            _warn(f"Invalid date format {date_format!r}, using default")
            return default
        try:
            time.strftime(date_format, time.gmtime(0))
        except ValueError:
            _warn(f"Invalid date format {date_format!r}, using default")
            return default
        return date_format

    # -- Handlers -----------------------------------------------------------

    @staticmethod
    def _console_handler(settings: LogSettings, formatter: logging.Formatter) -> logging.Handler:
        if settings.highlighting:
            handler: logging.Handler = RichHandler(
                console=Console(theme=TRICURVE_THEME, highlight=False),
                highlighter=TriCurveLogHighlighter(),
                keywords=[],
                markup=False,
                rich_tracebacks=True,
                show_time=False,
                show_level=False,
                show_path=False,
            )
        else:
            handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        return handler

    @staticmethod
    def _file_handler(path: Path, formatter: logging.Formatter) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        return handler

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = False,
    ) -> None:
        """
        Install handlers on the root logger. Later calls are no-ops until
        ``reset()``.

        Args:
            log_level: level name; defaults to LOG_LEVEL from the environment
            log_file: rotating log path; defaults to ./logs/tricurve.log
            console_output: attach a console (rich) handler
            file_output: attach a rotating file handler
        """
        with self._lock:
            if self._configured:
                return
            settings = LogSettings.resolve(log_level)

            # Timestamps are always UTC so logs from different hosts line up
            formatter = TerminalSafeFormatter(fmt=settings.fmt, datefmt=settings.datefmt + " UTC")
            formatter.converter = time.gmtime

            handlers: List[logging.Handler] = []
            if console_output:
                handlers.append(self._console_handler(settings, formatter))
            if file_output:
                handlers.append(self._file_handler(Path(log_file or DEFAULT_LOG_FILE), formatter))

            root = logging.getLogger()
            root.setLevel(settings.level)
            for handler in handlers:
                handler.setLevel(settings.level)
                root.addHandler(handler)
            self._handlers = handlers
            self._configured = True

    def reset(self) -> None:
        """Detach and close the handlers installed by ``configure``."""
        with self._lock:
            root = logging.getLogger()
            for handler in self._handlers:
                root.removeHandler(handler)
                handler.close()
            self._handlers = []
            self._configured = False

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


def configure_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    console_output: bool = True,
    file_output: bool = False,
) -> None:
    """Configure the process-wide handlers once."""
    LogManager().configure(
        log_level=log_level,
        log_file=log_file,
        console_output=console_output,
        file_output=file_output,
    )


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, configuring the handlers on first use."""
    return LogManager().get_logger(name)
