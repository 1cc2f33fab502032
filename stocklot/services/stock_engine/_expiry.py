"""Freshness classification for batches. Pure functions, no I/O."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from ...utils.timezone_utils import TimezoneUtils
from ._types import FreshnessState

DEFAULT_EXPIRING_SOON_DAYS = 30


def days_until_expiry(
    expiry_date: Optional[datetime],
    as_of: Union[datetime, date],
    tz_name: Optional[str] = None,
) -> Optional[int]:
    """Whole calendar days from ``as_of`` to ``expiry_date`` in the business timezone.

    Negative once the expiry day is in the past; ``None`` when there is no expiry.
    """
    if expiry_date is None:
        return None
    expiry_day = TimezoneUtils.business_date(expiry_date, tz_name)
    today = TimezoneUtils.business_date(as_of, tz_name)
    return (expiry_day - today).days


def classify(
    batch,
    as_of: Union[datetime, date],
    expiring_soon_days: int = DEFAULT_EXPIRING_SOON_DAYS,
    tz_name: Optional[str] = None,
) -> FreshnessState:
    """Freshness of ``batch`` (anything with an ``expiry_date``) as of ``as_of``."""
    remaining = days_until_expiry(getattr(batch, "expiry_date", None), as_of, tz_name)
    if remaining is None:
        return FreshnessState.HEALTHY
    if remaining < 0:
        return FreshnessState.EXPIRED
    if remaining <= expiring_soon_days:
        return FreshnessState.EXPIRING_SOON
    return FreshnessState.HEALTHY
