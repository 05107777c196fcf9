"""Daily-note date formats and relative date aliases.

Daily-note filenames are configured with moment.js style format strings
(``YYYY-MM-DD``, ``dddd, MMMM Do YYYY``, ``YYYY/MM/YYYY-MM-DD``...), so the
renderer and the parser here share a single token table. Parsing is strict:
a string is only accepted if rendering the parsed date reproduces it exactly.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

from .errors import DailyAliasInvalid

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"

# Ordered: listing and completion follow this order
DAILY_ALIASES = ("today", "yesterday", "tomorrow")

_ALIAS_OFFSETS = {
    "today": 0,
    "yesterday": -1,
    "tomorrow": 1,
}

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# Sunday first, matching the `d` token (0 = Sunday)
WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)

_TOKEN_RE = re.compile(
    r"\[[^\]]*\]"
    r"|YYYY|YY"
    r"|MMMM|MMM|MM|M"
    r"|DDDD|DDD|DD|Do|D"
    r"|dddd|ddd|d"
    r"|GGGG|WW|W"
)

_TOKEN_PATTERNS = {
    "YYYY": r"\d{4}",
    "YY": r"\d{2}",
    "MMMM": "|".join(MONTH_NAMES),
    "MMM": "|".join(name[:3] for name in MONTH_NAMES),
    "MM": r"\d{2}",
    "M": r"\d{1,2}",
    "DDDD": r"\d{3}",
    "DDD": r"\d{1,3}",
    "DD": r"\d{2}",
    "Do": r"\d{1,2}(?:st|nd|rd|th)",
    "D": r"\d{1,2}",
    "dddd": "|".join(WEEKDAY_NAMES),
    "ddd": "|".join(name[:3] for name in WEEKDAY_NAMES),
    "d": r"[0-6]",
    "GGGG": r"\d{4}",
    "WW": r"\d{2}",
    "W": r"\d{1,2}",
}


def _tokenize(fmt: str) -> list[tuple[bool, str]]:
    """Split a format into (is_token, text) pieces. Bracketed text is literal."""
    pieces: list[tuple[bool, str]] = []
    pos = 0
    for match in _TOKEN_RE.finditer(fmt):
        if match.start() > pos:
            pieces.append((False, fmt[pos:match.start()]))
        text = match.group(0)
        if text.startswith("["):
            pieces.append((False, text[1:-1]))
        else:
            pieces.append((True, text))
        pos = match.end()
    if pos < len(fmt):
        pieces.append((False, fmt[pos:]))
    return pieces


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _sunday_index(d: date) -> int:
    return (d.weekday() + 1) % 7


def _render_token(token: str, d: date) -> str:
    if token == "YYYY":
        return f"{d.year:04d}"
    if token == "YY":
        return f"{d.year % 100:02d}"
    if token == "MMMM":
        return MONTH_NAMES[d.month - 1]
    if token == "MMM":
        return MONTH_NAMES[d.month - 1][:3]
    if token == "MM":
        return f"{d.month:02d}"
    if token == "M":
        return str(d.month)
    if token in ("DDDD", "DDD"):
        day_of_year = d.timetuple().tm_yday
        return f"{day_of_year:03d}" if token == "DDDD" else str(day_of_year)
    if token == "DD":
        return f"{d.day:02d}"
    if token == "Do":
        return _ordinal(d.day)
    if token == "D":
        return str(d.day)
    if token == "dddd":
        return WEEKDAY_NAMES[_sunday_index(d)]
    if token == "ddd":
        return WEEKDAY_NAMES[_sunday_index(d)][:3]
    if token == "d":
        return str(_sunday_index(d))
    if token == "GGGG":
        return f"{d.isocalendar()[0]:04d}"
    if token == "WW":
        return f"{d.isocalendar()[1]:02d}"
    if token == "W":
        return str(d.isocalendar()[1])
    raise ValueError(f"Unknown date token: {token}")


def render_date(d: Union[date, datetime], fmt: str = DEFAULT_DATE_FORMAT) -> str:
    """Render a date using a daily-note format string."""
    if isinstance(d, datetime):
        d = d.date()
    return "".join(
        _render_token(text, d) if is_token else text
        for is_token, text in _tokenize(fmt)
    )


def _compile(fmt: str) -> tuple[re.Pattern, list[str]]:
    tokens: list[str] = []
    parts = []
    for is_token, text in _tokenize(fmt):
        if is_token:
            parts.append(f"({_TOKEN_PATTERNS[text]})")
            tokens.append(text)
        else:
            parts.append(re.escape(text))
    return re.compile("^" + "".join(parts) + "$"), tokens


def _build_date(values: dict[str, str]) -> Optional[date]:
    year: Optional[int] = None
    if "YYYY" in values:
        year = int(values["YYYY"])
    elif "YY" in values:
        yy = int(values["YY"])
        year = 2000 + yy if yy < 69 else 1900 + yy

    month: Optional[int] = None
    if "MM" in values:
        month = int(values["MM"])
    elif "M" in values:
        month = int(values["M"])
    elif "MMMM" in values:
        month = MONTH_NAMES.index(values["MMMM"]) + 1
    elif "MMM" in values:
        month = [name[:3] for name in MONTH_NAMES].index(values["MMM"]) + 1

    day: Optional[int] = None
    if "DD" in values:
        day = int(values["DD"])
    elif "D" in values:
        day = int(values["D"])
    elif "Do" in values:
        day = int(values["Do"][:-2])

    if year is not None and month is not None:
        return date(year, month, day or 1)

    day_of_year = values.get("DDDD") or values.get("DDD")
    if year is not None and day_of_year is not None:
        doy = int(day_of_year)
        if not 1 <= doy <= 366:
            return None
        return date(year, 1, 1) + timedelta(days=doy - 1)

    week = values.get("WW") or values.get("W")
    if "GGGG" in values and week is not None:
        iso_weekday = 1
        if "d" in values:
            iso_weekday = int(values["d"]) or 7
        elif "dddd" in values:
            iso_weekday = WEEKDAY_NAMES.index(values["dddd"]) or 7
        elif "ddd" in values:
            iso_weekday = [name[:3] for name in WEEKDAY_NAMES].index(values["ddd"]) or 7
        return date.fromisocalendar(int(values["GGGG"]), int(week), iso_weekday)

    if year is not None:
        return date(year, 1, 1)
    return None


def parse_date(text: str, fmt: str = DEFAULT_DATE_FORMAT) -> Optional[date]:
    """Parse text strictly against a daily-note format.

    Returns None when the text is not exactly what `render_date` would
    produce for some date; out-of-range values are never clamped.
    """
    pattern, tokens = _compile(fmt)
    match = pattern.match(text)
    if match is None:
        return None

    values: dict[str, str] = {}
    for token, value in zip(tokens, match.groups()):
        values.setdefault(token, value)

    try:
        parsed = _build_date(values)
    except ValueError:
        return None

    if parsed is None or render_date(parsed, fmt) != text:
        return None
    return parsed


def alias_date(token: str, now: Union[date, datetime], fmt: str = DEFAULT_DATE_FORMAT) -> date:
    """Map `today`/`yesterday`/`tomorrow` or an explicit date string to a date.

    Raises:
        DailyAliasInvalid: If the token is neither an alias nor a date in `fmt`.
    """
    if isinstance(now, datetime):
        now = now.date()

    offset = _ALIAS_OFFSETS.get(token)
    if offset is not None:
        return now + timedelta(days=offset)

    parsed = parse_date(token, fmt)
    if parsed is None:
        raise DailyAliasInvalid(
            f"Invalid date identifier '{token}': expected one of "
            f"{', '.join(DAILY_ALIASES)} or a date formatted as {fmt}"
        )
    return parsed


def is_daily_alias(token: str) -> bool:
    return token in _ALIAS_OFFSETS
