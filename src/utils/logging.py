"""Logging utilities module."""

import logging
import re
import sys
from collections.abc import Mapping
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import Any, ClassVar

import colorama
from colorama import Fore, Style

__all__ = ["Logger", "format_context", "get_logger"]

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def format_context(data: Mapping[str, Any] | None) -> str:
    """Render structured log context as a dimmed ``$${key: value}$$`` marker.

    Args:
        data (Mapping[str, Any] | None): Context values to render

    Returns:
        str: The rendered marker, or an empty string when there is no context
    """
    if not data:
        return ""
    inner = ", ".join(f"{k}: {v}" for k, v in data.items())
    return f"$${{{inner}}}$$"


class MarkerFormatter(logging.Formatter):
    """Base for formatters that understand the ``$$`` message markers.

    ``$$'value'$$`` highlights a single value and ``$${key: value}$$`` holds
    structured context. Subclasses decide how the markers are rendered; the
    record itself is restored afterwards so every handler sees the original.
    """

    QUOTED_PATTERN = re.compile(r"\$\$'((?:[^']|'(?!\$\$))*)'\$\$")
    BRACED_PATTERN = re.compile(r"\$\$\{(.*?)\}\$\$")

    def render_markers(self, message: str) -> str:
        """Return ``message`` with its markers rendered."""
        raise NotImplementedError

    def format(self, record: logging.LogRecord) -> str:
        """Formats a log record after rendering its markers."""
        if not isinstance(record.msg, str):
            return super().format(record)

        original = record.msg
        record.msg = self.render_markers(original)
        try:
            return super().format(record)
        finally:
            record.msg = original


class CleanFormatter(MarkerFormatter):
    """Formatter that drops the markers and keeps their content.

    Used for the log file and for consoles without color support.
    """

    @classmethod
    def strip_markers(cls, message: str) -> str:
        """Remove the ``$$`` markers from a message while keeping their content."""
        cleaned = cls.QUOTED_PATTERN.sub(r"'\1'", message)
        return cls.BRACED_PATTERN.sub(r"{\1}", cleaned)

    def render_markers(self, message: str) -> str:
        return self.strip_markers(message)


class ColorFormatter(MarkerFormatter):
    """Formatter that adds terminal colors to log messages.

    Color Scheme:
        DEBUG: Cyan
        INFO: Green
        SUCCESS: Bright Green
        WARNING: Yellow
        ERROR: Red
        CRITICAL: Bright Red
        Quoted values: Light Blue (e.g., $$'example'$$)
        Context values: Dimmed (e.g., $${key: value}$$)
    """

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "SUCCESS": Fore.GREEN + Style.BRIGHT,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }

    def render_markers(self, message: str) -> str:
        highlighted = self.QUOTED_PATTERN.sub(
            rf"{Fore.LIGHTBLUE_EX}'\1'{Style.RESET_ALL}", message
        )
        return self.BRACED_PATTERN.sub(
            rf"{Style.DIM}{{\1}}{Style.RESET_ALL}", highlighted
        )

    def format(self, record: logging.LogRecord) -> str:
        """Formats a log record with ANSI color codes."""
        levelname = record.levelname
        record.levelname = (
            f"{self.COLORS.get(levelname, '')}{levelname}{Style.RESET_ALL}"
        )
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _caller_class_name(frame: FrameType) -> str | None:
    """Name of the class whose method owns ``frame``, if any."""
    owner = frame.f_locals.get("self")
    if owner is not None:
        return None if isinstance(owner, logging.Logger) else type(owner).__name__
    cls = frame.f_locals.get("cls")
    return cls.__name__ if isinstance(cls, type) else None


class Logger(logging.Logger):
    """Logger that prefixes messages with the calling class and adds SUCCESS.

    A call such as ``log.info("done")`` inside ``MovieSyncClient.sync`` is
    emitted as ``MovieSyncClient: done``.
    """

    SUCCESS = logging.INFO + 5

    def __init__(self, name, level=logging.NOTSET):
        super().__init__(name, level)
        if logging.getLevelName(self.SUCCESS) != "SUCCESS":
            logging.addLevelName(self.SUCCESS, "SUCCESS")

    def _log(
        self,
        level,
        msg,
        args,
        exc_info=None,
        extra=None,
        stack_info=False,
        stacklevel=1,
    ):
        # Frame 0 is _log, frame 1 the level method, frame 2 the caller
        try:
            class_name = _caller_class_name(sys._getframe(2))
        except ValueError:
            class_name = None
        if class_name and isinstance(msg, str):
            msg = f"{class_name}: {msg}"

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )

    def success(self, msg, *args, **kwargs):
        """Log a message with SUCCESS level."""
        if self.isEnabledFor(self.SUCCESS):
            self._log(self.SUCCESS, msg, args, **kwargs)

    def level_number(self, log_level: str) -> int:
        """Translate a level name, including SUCCESS, to its number."""
        name = str(log_level).upper()
        if name == "SUCCESS":
            return self.SUCCESS
        return getattr(logging, name)

    def setup(self, log_level: str, log_dir: str | None = None) -> None:
        """Configure console output and, with ``log_dir``, a rotating log file.

        Args:
            log_level (str): Logging level ('DEBUG', 'INFO', 'SUCCESS', etc.)
            log_dir (str | None, optional): Directory where log files will be stored.
        """
        level = self.level_number(log_level)
        self.setLevel(level)
        self.propagate = False

        for handler in self.handlers[:]:
            self.removeHandler(handler)
            handler.close()

        # Source locations only help when debugging
        log_format = (
            "%(asctime)s - %(name)s - %(levelname)s\t%(filename)s:%(lineno)d\t"
            "%(message)s"
            if level <= logging.DEBUG
            else "%(asctime)s - %(name)s - %(levelname)s\t%(message)s"
        )

        if log_dir is not None:
            self.addHandler(self._file_handler(Path(log_dir), level, log_format))
        self.addHandler(self._console_handler(level, log_format))

    def _file_handler(
        self, log_dir: Path, level: int, log_format: str
    ) -> RotatingFileHandler:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / f"{self.name}.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        handler.setFormatter(CleanFormatter(log_format, datefmt=DATE_FORMAT))
        handler.setLevel(level)
        return handler

    @staticmethod
    def _console_handler(level: int, log_format: str) -> logging.StreamHandler:
        formatter_cls = ColorFormatter if _enable_console_colors() else CleanFormatter
        handler = logging.StreamHandler()
        handler.setFormatter(formatter_cls(log_format, datefmt=DATE_FORMAT))
        handler.setLevel(level)
        return handler


def _enable_console_colors() -> bool:
    """Prepare the console for ANSI colors and report whether they are used."""
    from src.utils import terminal

    try:
        if not terminal.supports_color():
            return False
        if sys.platform == "win32":
            colorama.just_fix_windows_console()
        else:
            colorama.init()
    except (AttributeError, OSError):
        return False
    return True


logging.setLoggerClass(Logger)


def _get_logger(
    log_name: str, log_level: str = "INFO", log_dir: str | Path | None = None
) -> Logger:
    """Get a configured instance of Logger.

    Args:
        log_name (str): Name of the logger and base name for log file.
        log_level (str): Logging level. Defaults to "INFO".
        log_dir (str | Path | None): Directory where log files will be stored.

    Returns:
        Logger: Configured logger instance
    """
    logger = logging.getLogger(log_name)
    if not isinstance(logger, Logger):
        logger = Logger(log_name)
    logger.setup(log_level, str(log_dir) if log_dir is not None else None)
    return logger


@lru_cache(maxsize=1)
def get_logger() -> Logger:
    """Get the main application logger, writing to ``<data>/logs/ReelSync.log``."""
    from src.config.settings import get_config

    config = get_config()
    return _get_logger(
        log_name="ReelSync",
        log_level=config.log_level,
        log_dir=config.data_path / "logs",
    )
