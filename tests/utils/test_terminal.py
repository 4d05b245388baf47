"""Tests for terminal capability helpers."""

import locale
import sys
from types import SimpleNamespace

import colorama
import pytest

from src.utils.terminal import supports_color, supports_utf8

COLOR_ENV = ("NO_COLOR", "FORCE_COLOR", "TERM", "WT_SESSION", "ANSICON", "TERM_PROGRAM")


@pytest.fixture(autouse=True)
def clean_terminal(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear cached capabilities and color-related environment variables."""
    supports_utf8.cache_clear()
    supports_color.cache_clear()
    for key in COLOR_ENV:
        monkeypatch.delenv(key, raising=False)


def _stdout(
    monkeypatch: pytest.MonkeyPatch, *, encoding: str | None = "UTF-8", tty=True
) -> None:
    monkeypatch.setattr(
        sys, "stdout", SimpleNamespace(encoding=encoding, isatty=lambda: tty)
    )


def test_supports_utf8_reads_stdout_encoding(monkeypatch: pytest.MonkeyPatch) -> None:
    """A UTF-8 stdout supports UTF-8 output."""
    _stdout(monkeypatch, encoding="utf-8")

    assert supports_utf8()


def test_supports_utf8_falls_back_to_locale(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without a stdout encoding the preferred locale encoding decides."""
    _stdout(monkeypatch, encoding=None)
    monkeypatch.setattr(locale, "getpreferredencoding", lambda _: "cp1252")

    assert not supports_utf8()


@pytest.mark.parametrize(
    ("env", "tty", "expected"),
    [
        ({"NO_COLOR": "1", "FORCE_COLOR": "1"}, True, False),
        ({"FORCE_COLOR": "1"}, False, True),
        ({"TERM": "xterm-256color"}, True, True),
        ({"TERM": "dumb"}, True, False),
        ({"TERM": "xterm-256color"}, False, False),
    ],
)
def test_supports_color_on_linux(
    monkeypatch: pytest.MonkeyPatch, env: dict[str, str], tty: bool, expected: bool
) -> None:
    """Overrides win; otherwise an interactive, non-dumb terminal is required."""
    _stdout(monkeypatch, tty=tty)
    monkeypatch.setattr(sys, "platform", "linux")
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    assert supports_color() is expected


@pytest.mark.parametrize(
    ("env", "expected"),
    [
        ({"WT_SESSION": "1"}, True),
        ({"ANSICON": "1"}, True),
        ({"TERM_PROGRAM": "vscode"}, True),
        ({}, False),
    ],
)
def test_supports_color_on_windows(
    monkeypatch: pytest.MonkeyPatch, env: dict[str, str], expected: bool
) -> None:
    """Windows consoles need a known VT-capable host."""
    _stdout(monkeypatch)
    monkeypatch.setattr(sys, "platform", "win32")
    monkeypatch.setattr(colorama, "fixed_windows_console", False, raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    assert supports_color() is expected
