# marketplace_payments/utils/review_window.py
"""
Time arithmetic for the deliverable review window.

Timestamps read back from some databases are naive; they are treated as UTC.
"""

from datetime import datetime, timezone
from typing import Optional

from marketplace_payments.core.config import settings
from marketplace_payments.schemas.deliverable import UrgencyLevel

HIGH_URGENCY_HOURS = 12
MEDIUM_URGENCY_HOURS = 24


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_elapsed(submitted_at: datetime, now: Optional[datetime] = None) -> float:
    """Hours since submission; a submission stamped in the future counts as 0."""
    now = as_utc(now or datetime.now(timezone.utc))
    elapsed = (now - as_utc(submitted_at)).total_seconds() / 3600
    return max(0.0, elapsed)


def hours_remaining(
    submitted_at: datetime,
    now: Optional[datetime] = None,
    window_hours: Optional[int] = None,
) -> float:
    window = window_hours if window_hours is not None else settings.AUTO_APPROVAL_HOURS
    return max(0.0, window - hours_elapsed(submitted_at, now))


def should_auto_approve(submitted_at: datetime, now: Optional[datetime] = None) -> bool:
    return hours_elapsed(submitted_at, now) >= settings.AUTO_APPROVAL_HOURS


def needs_attention(submitted_at: datetime, now: Optional[datetime] = None) -> bool:
    """The reviewer should be nudged once most of the window is gone."""
    return hours_elapsed(submitted_at, now) > settings.REVIEW_ATTENTION_HOURS


def urgency_level(remaining_hours: float) -> UrgencyLevel:
    """
    Map hours left in the review window to an urgency bucket.

    <= 0 expired, <= 12 high, <= 24 medium, otherwise low.
    """
    if remaining_hours <= 0:
        return UrgencyLevel.expired
    if remaining_hours <= HIGH_URGENCY_HOURS:
        return UrgencyLevel.high
    if remaining_hours <= MEDIUM_URGENCY_HOURS:
        return UrgencyLevel.medium
    return UrgencyLevel.low


def format_time_remaining(remaining_hours: float) -> str:
    if remaining_hours <= 0:
        return "Auto-approval due"
    if remaining_hours < 1:
        minutes = max(1, int(round(remaining_hours * 60)))
        return f"{minutes}m remaining"
    if remaining_hours < 24:
        return f"{int(remaining_hours)}h remaining"
    days = int(remaining_hours // 24)
    hours = int(remaining_hours % 24)
    return f"{days}d {hours}h remaining"
