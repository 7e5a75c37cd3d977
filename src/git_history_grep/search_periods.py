from __future__ import annotations

import calendar
import datetime as dt

_UNIT_DAYS = {"d": 1, "w": 7}
_UNIT_MONTHS = {"m": 1, "y": 12}


def months_before(when: dt.datetime, months: int) -> dt.datetime:
    total = when.year * 12 + (when.month - 1) - months
    year, month0 = divmod(total, 12)
    month = month0 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def parse_iso_datetime(value: str) -> dt.datetime:
    s = (value or "").strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    d = dt.datetime.fromisoformat(s)
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return d


def parse_since(value: str, *, now: dt.datetime | None = None) -> dt.datetime:
    """
    Turn a --since value into an aware cutoff instant:
      - 30d, 6w, 18m, 2y: relative to `now`
      - 2024-01-31: midnight UTC on that date
      - 2024-01-31T12:00:00+02:00: as given (naive means UTC)
    """
    s = (value or "").strip()
    if now is None:
        now = dt.datetime.now(dt.timezone.utc)
    if len(s) >= 2 and s[:-1].isdigit():
        n = int(s[:-1])
        unit = s[-1].lower()
        try:
            if unit in _UNIT_DAYS:
                return now - dt.timedelta(days=n * _UNIT_DAYS[unit])
            if unit in _UNIT_MONTHS:
                return months_before(now, n * _UNIT_MONTHS[unit])
        except (OverflowError, ValueError):
            raise ValueError(f"Invalid --since value: {value!r} (too far in the past)") from None
    if len(s) == 10:
        try:
            d = dt.date.fromisoformat(s)
        except ValueError:
            pass
        else:
            return dt.datetime(d.year, d.month, d.day, tzinfo=dt.timezone.utc)
    try:
        return parse_iso_datetime(s)
    except ValueError:
        raise ValueError(f"Invalid --since value: {value!r} (expected e.g. 18m, 2y, 30d, 6w, or an ISO date)") from None
