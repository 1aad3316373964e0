"""Colour-tag names, terminal escapes and escape stripping."""

from __future__ import annotations

import re

from wfsimg.layout import Color

_NAMES = {
    Color.NONE: "none",
    Color.RED: "red",
    Color.GREEN: "green",
    Color.BLUE: "blue",
    Color.YELLOW: "yellow",
    Color.MAGENTA: "magenta",
    Color.CYAN: "cyan",
    Color.WHITE: "white",
    Color.BLACK: "black",
    Color.ORANGE: "orange",
    Color.PURPLE: "purple",
    Color.GRAY: "gray",
}

_BY_NAME = {name: color for color, name in _NAMES.items()}

_ANSI = {
    Color.NONE: "",
    Color.RED: "\033[31m",
    Color.GREEN: "\033[32m",
    Color.BLUE: "\033[34m",
    Color.YELLOW: "\033[33m",
    Color.MAGENTA: "\033[35m",
    Color.CYAN: "\033[36m",
    Color.WHITE: "\033[37m",
    Color.BLACK: "\033[30m",
    Color.ORANGE: "\033[38;5;208m",
    Color.PURPLE: "\033[35m",
    Color.GRAY: "\033[90m",
}

ANSI_RESET = "\033[0m"

# An escape, optionally followed by "[...m"; an unterminated sequence
# swallows the rest of the text.
_ESCAPE = re.compile(r"\x1b(?:\[[^m]*m?)?")
_PATH_LIMIT = 1023


def parse_color_name(name: str | bytes) -> Color:
    """Return the colour for a case-insensitive name; raise ValueError if unknown."""
    if isinstance(name, (bytes, bytearray)):
        name = bytes(name).decode("utf-8", "replace")
    key = name.split("\0", 1)[0].lower()
    try:
        return _BY_NAME[key]
    except KeyError:
        raise ValueError(f"unknown color: {name!r}") from None


def _as_color(code: int) -> Color:
    try:
        return Color(code)
    except ValueError:
        return Color.NONE


def color_name(code: int) -> str:
    """Name of a colour code; codes outside the palette read as "none"."""
    return _NAMES[_as_color(code)]


def color_ansi(code: int) -> str:
    """Terminal escape that switches to the colour; empty for no colour."""
    return _ANSI[_as_color(code)]


def strip_ansi_codes(path: str) -> str:
    """Remove terminal colour escapes from a path, bounded to the path limit."""
    return _ESCAPE.sub("", path)[:_PATH_LIMIT]