from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone

import pytz

DEFAULT_TIMEZONE = "UTC"


class TimezoneUtils:
    """Utilities for consistent timezone handling across the engine.

    Timestamps are stored as timezone-aware UTC. Some backends (SQLite) hand
    them back naive, so every comparison goes through ``ensure_timezone_aware``.
    """

    @staticmethod
    def validate_timezone(tz_name: str | None) -> bool:
        """Return True when pytz knows the timezone identifier."""
        return bool(tz_name) and tz_name in pytz.all_timezones_set

    @staticmethod
    def _get_timezone(tz_name: str | None):
        if not TimezoneUtils.validate_timezone(tz_name):
            return pytz.timezone(DEFAULT_TIMEZONE)
        return pytz.timezone(tz_name)

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp (timezone aware)."""
        return datetime.now(dt_timezone.utc)

    @staticmethod
    def ensure_timezone_aware(
        dt: datetime | None, assume_utc: bool = True
    ) -> datetime | None:
        """Guarantee that a datetime carries timezone information."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            if not assume_utc:
                raise ValueError("Naive datetime provided without explicit timezone handling.")
            return dt.replace(tzinfo=dt_timezone.utc)
        return dt

    @staticmethod
    def convert_to_timezone(dt: datetime | None, to_timezone: str | None) -> datetime | None:
        """Convert a datetime into the target timezone, assuming UTC for naive values."""
        if dt is None:
            return None
        target = TimezoneUtils._get_timezone(to_timezone)
        return TimezoneUtils.ensure_timezone_aware(dt).astimezone(target)

    @staticmethod
    def business_date(value: datetime | date, tz_name: str | None = None) -> date:
        """Return the calendar date of ``value`` as seen in the business timezone.

        Plain ``date`` objects are already calendar dates and pass through.
        """
        if isinstance(value, datetime):
            return TimezoneUtils.convert_to_timezone(value, tz_name).date()
        return value

    @staticmethod
    def start_of_business_day(value: datetime | date, tz_name: str | None = None) -> datetime:
        """Local midnight of ``value``'s business date, returned as aware UTC."""
        day = TimezoneUtils.business_date(value, tz_name)
        tz = TimezoneUtils._get_timezone(tz_name)
        local_midnight = tz.localize(datetime(day.year, day.month, day.day))
        return local_midnight.astimezone(dt_timezone.utc)

    @staticmethod
    def parse_iso(raw: str | None) -> datetime | None:
        """Parse an ISO-8601 string from an API payload into aware UTC."""
        if not raw:
            return None
        parsed = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
        return TimezoneUtils.ensure_timezone_aware(parsed).astimezone(dt_timezone.utc)

    @staticmethod
    def format_datetime_for_api(dt: datetime | None) -> str | None:
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        return aware.isoformat() if aware else None
