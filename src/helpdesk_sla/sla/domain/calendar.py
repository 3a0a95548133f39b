"""
Business Calendar
=================

Working-time arithmetic for SLA clocks.

A calendar is a pure function of a policy's business-hours table, holiday
list and timezone. It answers three questions:

- is an instant inside working time?
- how many working minutes lie between two instants?
- which instant is reached after consuming N working minutes?

All day-boundary math happens in the policy timezone. Daily windows are
half-open ``[start, end)`` and never cross midnight.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from helpdesk_sla.core import CalendarComputationError


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_clock(value: str) -> int:
    """Parse ``HH:MM`` into minutes after midnight (``24:00`` allowed)."""
    match = _CLOCK_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise CalendarComputationError(f"Invalid time of day: {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise CalendarComputationError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def load_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name or raise CalendarComputationError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise CalendarComputationError(f"Unknown timezone: {name!r}") from e


@dataclass(frozen=True)
class DayWindow:
    """Working window for one weekday, in minutes after local midnight."""

    start_minute: int
    end_minute: int

    def __post_init__(self):
        if not 0 <= self.start_minute <= MINUTES_PER_DAY:
            raise CalendarComputationError(f"Window start out of range: {self.start_minute}")
        if not 0 <= self.end_minute <= MINUTES_PER_DAY:
            raise CalendarComputationError(f"Window end out of range: {self.end_minute}")
        if self.start_minute > self.end_minute:
            raise CalendarComputationError(
                f"Window start {format_clock(self.start_minute)} is after "
                f"end {format_clock(self.end_minute)}"
            )

    @property
    def is_empty(self) -> bool:
        return self.end_minute == self.start_minute

    @property
    def length_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def contains(self, minute_of_day: float) -> bool:
        return self.start_minute <= minute_of_day < self.end_minute

    @classmethod
    def parse(cls, raw: Any) -> Optional["DayWindow"]:
        """
        Parse one day of a business-hours table.

        Accepts ``{"start": "09:00", "end": "18:00"}``, ``"09:00-18:00"``,
        ``"closed"``, ``None`` or ``{"start": None, "end": None}``.
        Returns None for a closed day.
        """
        if raw is None:
            return None

        if isinstance(raw, str):
            text = raw.strip().lower()
            if text in ("", "closed"):
                return None
            if "-" not in text:
                raise CalendarComputationError(f"Invalid business-hours range: {raw!r}")
            start, end = (part.strip() for part in text.split("-", 1))
            return cls(parse_clock(start), parse_clock(end))

        if isinstance(raw, Mapping):
            start, end = raw.get("start"), raw.get("end")
            if start is None and end is None:
                return None
            if start is None or end is None:
                raise CalendarComputationError(
                    f"Business-hours window needs both start and end: {dict(raw)!r}"
                )
            return cls(parse_clock(start), parse_clock(end))

        raise CalendarComputationError(f"Unsupported business-hours value: {raw!r}")

    def to_dict(self) -> dict:
        return {"start": format_clock(self.start_minute), "end": format_clock(self.end_minute)}


@dataclass(frozen=True)
class BusinessHours:
    """Weekly working schedule, indexed Monday=0 .. Sunday=6."""

    windows: Tuple[Optional[DayWindow], ...]

    def __post_init__(self):
        if len(self.windows) != 7:
            raise CalendarComputationError("Business hours must define exactly seven days")

    @classmethod
    def parse(cls, raw: Optional[Mapping[str, Any]]) -> "BusinessHours":
        """Parse a ``day name -> window`` mapping; missing days are closed."""
        if raw is None:
            return cls.weekdays()
        if isinstance(raw, BusinessHours):
            return raw
        if not isinstance(raw, Mapping):
            raise CalendarComputationError("Business hours must be a mapping of day name to window")

        normalized = {}
        for key, value in raw.items():
            day = str(key).strip().lower()
            if day not in WEEKDAYS:
                raise CalendarComputationError(f"Unknown weekday in business hours: {key!r}")
            normalized[day] = DayWindow.parse(value)

        return cls(tuple(normalized.get(day) for day in WEEKDAYS))

    @classmethod
    def weekdays(cls, start: str = "09:00", end: str = "18:00") -> "BusinessHours":
        """Monday to Friday, same window every day, weekends closed."""
        window = DayWindow(parse_clock(start), parse_clock(end))
        return cls((window,) * 5 + (None, None))

    def window_for(self, weekday: int) -> Optional[DayWindow]:
        return self.windows[weekday]

    @property
    def has_working_time(self) -> bool:
        return any(w is not None and not w.is_empty for w in self.windows)

    def to_dict(self) -> dict:
        return {
            day: (window.to_dict() if window is not None else None)
            for day, window in zip(WEEKDAYS, self.windows)
        }


def parse_holidays(raw: Optional[Iterable[Any]]) -> Tuple[date, ...]:
    """Parse ISO date strings (or dates) into a sorted, de-duplicated tuple."""
    if not raw:
        return ()

    parsed = set()
    for item in raw:
        if isinstance(item, datetime):
            parsed.add(item.date())
        elif isinstance(item, date):
            parsed.add(item)
        else:
            try:
                parsed.add(date.fromisoformat(str(item).strip()))
            except ValueError as e:
                raise CalendarComputationError(f"Invalid holiday date: {item!r}") from e
    return tuple(sorted(parsed))


class BusinessCalendar:
    """
    Working-time calculator for one policy.

    In 24/7 mode every instant is working time and all answers reduce to
    wall-clock arithmetic.
    """

    # Upper bound on the forward search in advance_working_time
    MAX_HORIZON_DAYS = 3660

    def __init__(
        self,
        business_hours: Optional[BusinessHours] = None,
        tz_name: str = "UTC",
        holidays: Iterable[date] = (),
        use_business_hours: bool = True
    ):
        self._use_business_hours = use_business_hours
        self._hours = business_hours or BusinessHours.weekdays()
        self._tz_name = tz_name
        self._zone = load_timezone(tz_name)
        self._holidays = frozenset(holidays)

    @classmethod
    def always_open(cls) -> "BusinessCalendar":
        """24/7 calendar."""
        return cls(use_business_hours=False)

    @classmethod
    def for_policy(cls, policy: Any) -> "BusinessCalendar":
        """Build the calendar described by a policy's calendar settings."""
        return cls(
            business_hours=policy.business_hours,
            tz_name=policy.timezone,
            holidays=policy.holidays,
            use_business_hours=policy.use_business_hours
        )

    def to_snapshot(self) -> Dict[str, Any]:
        """JSON-safe description of this calendar, inverse of from_snapshot."""
        if self.is_always_open:
            return {"use_business_hours": False}
        return {
            "use_business_hours": True,
            "business_hours": self._hours.to_dict(),
            "timezone": self._tz_name,
            "holidays": [d.isoformat() for d in sorted(self._holidays)],
        }

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "BusinessCalendar":
        if not data.get("use_business_hours"):
            return cls.always_open()
        return cls(
            business_hours=BusinessHours.parse(data.get("business_hours")),
            tz_name=data.get("timezone") or "UTC",
            holidays=parse_holidays(data.get("holidays")),
        )

    @property
    def is_always_open(self) -> bool:
        return not self._use_business_hours

    @property
    def timezone_name(self) -> str:
        return self._tz_name

    def is_holiday(self, local_date: date) -> bool:
        return local_date in self._holidays

    def is_working_instant(self, t: datetime) -> bool:
        if self.is_always_open:
            return True

        local = ensure_utc(t).astimezone(self._zone)
        if self.is_holiday(local.date()):
            return False

        window = self._hours.window_for(local.weekday())
        if window is None or window.is_empty:
            return False

        minute_of_day = local.hour * 60 + local.minute + local.second / 60
        return window.contains(minute_of_day)

    def working_minutes_between(self, start: datetime, end: datetime) -> float:
        """Working minutes in ``[start, end)``; zero when end <= start."""
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            return 0.0

        if self.is_always_open:
            return (end - start).total_seconds() / 60

        total_seconds = 0.0
        day = start.astimezone(self._zone).date()
        last_day = end.astimezone(self._zone).date()
        while day <= last_day:
            bounds = self._window_bounds(day)
            if bounds is not None:
                window_start, window_end = bounds
                overlap_start = max(window_start, start)
                overlap_end = min(window_end, end)
                if overlap_end > overlap_start:
                    total_seconds += (overlap_end - overlap_start).total_seconds()
            day += timedelta(days=1)

        return total_seconds / 60

    def advance_working_time(self, start: datetime, minutes: float) -> datetime:
        """
        Instant reached after consuming ``minutes`` of working time from ``start``.

        Inverse of working_minutes_between: for any d >= 0,
        ``working_minutes_between(start, advance_working_time(start, d)) == d``.
        """
        start = ensure_utc(start)
        if minutes <= 0:
            return start

        if self.is_always_open:
            return start + timedelta(minutes=minutes)

        remaining = minutes * 60
        day = start.astimezone(self._zone).date()
        for _ in range(self.MAX_HORIZON_DAYS):
            bounds = self._window_bounds(day)
            if bounds is not None:
                window_start, window_end = bounds
                segment_start = max(window_start, start)
                if window_end > segment_start:
                    available = (window_end - segment_start).total_seconds()
                    if remaining <= available:
                        return segment_start + timedelta(seconds=remaining)
                    remaining -= available
            day += timedelta(days=1)

        raise CalendarComputationError(
            f"No working time within {self.MAX_HORIZON_DAYS} days of {start.isoformat()}"
        )

    def _window_bounds(self, local_date: date) -> Optional[Tuple[datetime, datetime]]:
        """UTC bounds of the working window on a local date, or None if closed."""
        if self.is_holiday(local_date):
            return None

        window = self._hours.window_for(local_date.weekday())
        if window is None or window.is_empty:
            return None

        midnight = datetime.combine(local_date, time())
        window_start = (midnight + timedelta(minutes=window.start_minute)).replace(tzinfo=self._zone)
        window_end = (midnight + timedelta(minutes=window.end_minute)).replace(tzinfo=self._zone)
        window_start = window_start.astimezone(timezone.utc)
        window_end = window_end.astimezone(timezone.utc)

        if window_end <= window_start:
            return None
        return window_start, window_end


# ========== Policy-level helpers ==========

def is_working_instant(policy: Any, t: datetime) -> bool:
    return BusinessCalendar.for_policy(policy).is_working_instant(t)


def working_minutes_between(policy: Any, start: datetime, end: datetime) -> float:
    return BusinessCalendar.for_policy(policy).working_minutes_between(start, end)


def advance_working_time(policy: Any, start: datetime, minutes: float) -> datetime:
    return BusinessCalendar.for_policy(policy).advance_working_time(start, minutes)
