"""Terminal Utilities Module."""

import locale
import os
import sys
from functools import lru_cache

import colorama


@lru_cache(maxsize=1)
def supports_utf8() -> bool:
    """Check if the terminal supports UTF-8 encoding.

    Returns:
        bool: True if the terminal supports UTF-8 encoding, False otherwise
    """
    encoding = sys.stdout.encoding or locale.getpreferredencoding(False)
    return encoding.lower().startswith("utf")


@lru_cache(maxsize=1)
def supports_color() -> bool:
    """Check if log output to stdout should use ANSI color codes.

    ``NO_COLOR`` always disables colors and ``FORCE_COLOR`` always enables them.
    Otherwise colors are used only for interactive terminals; on Windows the
    console must also advertise virtual terminal support.

    Returns:
        bool: True if the terminal supports color, False otherwise
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True

    if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
        return False

    if sys.platform == "win32":
        return (
            getattr(colorama, "fixed_windows_console", False)
            or "ANSICON" in os.environ
            or "WT_SESSION" in os.environ
            or os.environ.get("TERM_PROGRAM") == "vscode"
        )

    return os.environ.get("TERM") != "dumb"
