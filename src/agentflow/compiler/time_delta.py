"""Resolution of the `stop-after` trigger setting.

A stop time is either relative to compilation (`+25h`, `+1d12h`, `+1mo`)
or an absolute date-time in one of several common formats. Both resolve to
a UTC timestamp formatted "YYYY-MM-DD HH:MM:SS" at compile time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from agentflow.core.exceptions import TriggerConfigError

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "%Y-%m-%d %H:%M:%S"

_DELTA_PART = re.compile(r"(\d+)(mo|w|d|h|m)")
_ORDINAL = re.compile(r"\b(\d+)(st|nd|rd|th)\b")

# Upper bounds per unit
_LIMITS: dict[str, tuple[int, str]] = {
    "mo": (12, "months"),
    "w": (52, "weeks"),
    "d": (365, "days"),
    "h": (8760, "hours"),
    "m": (525600, "minutes"),
}

# Month/day ambiguity is resolved month-first
ABSOLUTE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%B %d, %Y %H:%M:%S",
    "%B %d, %Y %H:%M",
    "%B %d, %Y",
    "%b %d, %Y %H:%M:%S",
    "%b %d, %Y %H:%M",
    "%b %d, %Y",
    "%d %B %Y %H:%M:%S",
    "%d %B %Y %H:%M",
    "%d %B %Y",
    "%d %b %Y %H:%M:%S",
    "%d %b %Y %H:%M",
    "%d %b %Y",
    "%B %d %Y %H:%M:%S",
    "%B %d %Y %H:%M",
    "%B %d %Y",
    "%b %d %Y %H:%M:%S",
    "%b %d %Y %H:%M",
    "%b %d %Y",
    "%a, %d %b %Y %H:%M:%S %Z",
)


@dataclass(frozen=True)
class TimeDelta:
    """Relative offset parsed from `+NmoNwNdNhNm`."""

    months: int = 0
    weeks: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0

    def __str__(self) -> str:
        parts = [
            f"{value}{unit}"
            for value, unit in (
                (self.months, "mo"),
                (self.weeks, "w"),
                (self.days, "d"),
                (self.hours, "h"),
                (self.minutes, "m"),
            )
            if value > 0
        ]
        return "+" + "".join(parts) if parts else "0m"

    def apply(self, start: datetime) -> datetime:
        """Add the delta to start. Month overflow rolls into the next month."""
        month_index = start.month - 1 + self.months
        year = start.year + month_index // 12
        month = month_index % 12 + 1
        shifted = datetime.combine(
            date(year, month, 1) + timedelta(days=start.day - 1),
            start.timetz(),
        )
        return shifted + timedelta(
            weeks=self.weeks, days=self.days, hours=self.hours, minutes=self.minutes
        )


def _invalid(value: str, reason: str, source: str | None) -> TriggerConfigError:
    return TriggerConfigError("stop-after", value, reason, source=source)


def parse_time_delta(value: str, source: str | None = None) -> TimeDelta:
    """Parse a relative stop time such as "+1d12h30m".

    Each unit may appear once, and the whole string must be consumed.

    Raises:
        TriggerConfigError: On malformed input or values over the unit limit.

    """
    if not value.startswith("+"):
        raise _invalid(value, "relative time must start with '+'", source)
    body = value[1:]
    if not body:
        raise _invalid(value, "empty time delta after '+'", source)

    matches = list(_DELTA_PART.finditer(body))
    if not matches:
        raise _invalid(value, "expected a format like +25h, +3d, +1w, +1mo, +1d12h30m", source)
    if sum(len(m.group(0)) for m in matches) != len(body):
        raise _invalid(value, "extra characters in time delta", source)

    amounts: dict[str, int] = {}
    for match in matches:
        number, unit = int(match.group(1)), match.group(2)
        if unit in amounts:
            raise _invalid(value, f"duplicate unit '{unit}'", source)
        limit, label = _LIMITS[unit]
        if number > limit:
            raise _invalid(value, f"{number} {label} exceeds maximum of {limit} {label}", source)
        amounts[unit] = number

    return TimeDelta(
        months=amounts.get("mo", 0),
        weeks=amounts.get("w", 0),
        days=amounts.get("d", 0),
        hours=amounts.get("h", 0),
        minutes=amounts.get("m", 0),
    )


def parse_absolute_datetime(value: str, source: str | None = None) -> str:
    """Parse an absolute date-time and format it as UTC "YYYY-MM-DD HH:MM:SS".

    Ordinal suffixes ("1st June 2025") and repeated spaces are accepted.

    Raises:
        TriggerConfigError: If no supported format matches.

    """
    text = _ORDINAL.sub(r"\1", " ".join(value.split()))
    for fmt in ABSOLUTE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.strftime(OUTPUT_FORMAT)
    raise _invalid(
        value,
        "unable to parse date-time; supported formats include YYYY-MM-DD HH:MM:SS, "
        "MM/DD/YYYY, January 2 2006, 1st June 2025",
        source,
    )


def resolve_stop_time(value: str, compiled_at: datetime | None = None, source: str | None = None) -> str:
    """Resolve a `stop-after` value to an absolute UTC timestamp.

    Args:
        value: Relative ("+N<unit>...") or absolute stop time.
        compiled_at: Reference time for relative values (defaults to now, UTC).
        source: Source location attached to errors.

    Returns:
        Timestamp formatted "YYYY-MM-DD HH:MM:SS", or "" for an empty value.

    Raises:
        TriggerConfigError: If the value cannot be parsed.

    """
    value = value.strip()
    if not value:
        return ""
    if value.startswith("+"):
        start = compiled_at or datetime.now(timezone.utc)
        if start.tzinfo is not None:
            start = start.astimezone(timezone.utc)
        resolved = parse_time_delta(value, source).apply(start).strftime(OUTPUT_FORMAT)
        logger.debug("Resolved stop-after %s to %s", value, resolved)
        return resolved
    return parse_absolute_datetime(value, source)
