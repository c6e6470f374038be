"""Swim time conversions between compact text, milliseconds and display text.

Three representations are in play:

* ``MMSSCC`` compact text typed into entry fields (``"012345"``),
* an integer number of milliseconds stored in the database (``83450``),
* ``MM:SS.CC`` display text rendered for people (``"01:23.45"``).

A Duration of ``0`` means "no time recorded". Malformed compact text also
parses to ``0`` unless the caller asks for ``strict`` parsing.
"""

from __future__ import annotations

import re

MS_PER_MINUTE = 60000
MS_PER_SECOND = 1000
MS_PER_CENTISECOND = 10

COMPACT_LENGTH = 6
ZERO_COMPACT = "000000"

_NON_DIGITS = re.compile(r"\D")


class TimeParseError(ValueError):
    """Raised by strict parsing when compact text is not six digits."""


def _clean(text: str | None) -> str:
    return _NON_DIGITS.sub("", text or "")


def parse_compact_time(text: str | None, strict: bool = False) -> int:
    """Convert ``MMSSCC`` text into milliseconds.

    Non-digit characters are stripped first, so ``"01:23.45"`` parses the
    same as ``"012345"``. Anything that does not leave exactly six digits
    returns 0, or raises :class:`TimeParseError` when ``strict`` is set.
    Seconds and centiseconds are not range checked.
    """
    digits = _clean(text)
    if len(digits) != COMPACT_LENGTH:
        if strict:
            raise TimeParseError(
                f"Invalid time '{text}'. Expected mmsshh (e.g. 012345 for 1:23.45)."
            )
        return 0
    minutes = int(digits[0:2])
    seconds = int(digits[2:4])
    centiseconds = int(digits[4:6])
    return minutes * MS_PER_MINUTE + seconds * MS_PER_SECOND + centiseconds * MS_PER_CENTISECOND


def _split_duration(ms: int) -> tuple[int, int, int]:
    """Return (minutes, seconds, centiseconds), rounding half-up on centiseconds."""
    whole_seconds, remainder = divmod(int(ms), MS_PER_SECOND)
    centiseconds = (remainder + MS_PER_CENTISECOND // 2) // MS_PER_CENTISECOND
    if centiseconds == 100:
        whole_seconds += 1
        centiseconds = 0
    minutes, seconds = divmod(whole_seconds, 60)
    return minutes, seconds, centiseconds


def format_duration(ms: int) -> str:
    """Render milliseconds as ``MM:SS.CC``.

    Zero renders as ``"00:00.00"``; deciding whether that means "unset" is
    up to the caller (see :func:`format_result_time`).
    """
    minutes, seconds, centiseconds = _split_duration(ms)
    return f"{minutes:02d}:{seconds:02d}.{centiseconds:02d}"


def format_compact_display(ms: int) -> str:
    """Render milliseconds as ``MMSSCC`` compact text."""
    minutes, seconds, centiseconds = _split_duration(ms)
    return f"{minutes:02d}{seconds:02d}{centiseconds:02d}"


def format_result_time(ms: int, status: str | None = None) -> str:
    """Text shown in a results table cell.

    Non-finishers show their status, finishers without a time show nothing.
    """
    if status and str(status).upper() != "FINISHED":
        return str(status).upper()
    if not ms:
        return ""
    return format_duration(ms)


__all__ = [
    "TimeParseError",
    "ZERO_COMPACT",
    "parse_compact_time",
    "format_duration",
    "format_compact_display",
    "format_result_time",
]
