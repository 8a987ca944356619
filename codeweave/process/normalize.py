"""Terminal output normalization."""

from __future__ import annotations

import re

ANSI_ESCAPE_SEQUENCE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def _collapse_carriage_returns(line: str) -> str:
    # Keep what a terminal would show: the text after the last CR that has any.
    if "\r" not in line:
        return line
    segments = [segment for segment in line.split("\r") if segment]
    return segments[-1] if segments else ""


def normalize_output(text: str, plain: bool = False) -> str:
    """Normalize raw process output.

    CRLF becomes LF, carriage-return overwrite runs are collapsed to the text
    after the last carriage return, runs of three or more newlines collapse to
    one blank line and, in ``plain`` mode, ANSI escape sequences are removed.
    """
    if not text:
        return text
    text = text.replace("\r\n", "\n")
    text = "\n".join(_collapse_carriage_returns(line) for line in text.split("\n"))
    if plain:
        text = ANSI_ESCAPE_SEQUENCE.sub("", text)
    return _EXCESS_NEWLINES.sub("\n\n", text)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_SEQUENCE.sub("", text)
