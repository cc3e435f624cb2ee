"""
Rolling usage window for read/download quotas.

A window lasts USAGE_PERIOD_DAYS (30) from ``period_started_at``. Once it has
elapsed both usage sets are emptied and the window restarts at "now",
independently of when the subscription itself was granted or renewed.
"""

from datetime import datetime, timedelta
from typing import Optional
import logging

from flask import current_app, has_app_context

from shelfpass import db
from shelfpass.models import PeriodUsage

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30


def _period_days(period_days: Optional[int]) -> int:
    if period_days is not None:
        return period_days
    if has_app_context():
        return current_app.config.get('USAGE_PERIOD_DAYS', DEFAULT_PERIOD_DAYS)
    return DEFAULT_PERIOD_DAYS


def should_reset(period_start: Optional[datetime], now: datetime, period_days: Optional[int] = None) -> bool:
    if period_start is None:
        return True
    return (now - period_start) > timedelta(days=_period_days(period_days))


def window_anchor(user) -> Optional[datetime]:
    """Start of the user's current window; falls back to the subscription start."""
    return user.period_started_at or user.subscription_start


def reset_period(user, now: datetime) -> None:
    """Empty both usage sets and restart the window at ``now`` (not committed)."""
    if user.id is not None:
        PeriodUsage.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        db.session.expire(user, ['usages'])
    user.period_started_at = now


def reset_if_needed(user, now: datetime, period_days: Optional[int] = None) -> bool:
    """Reset the window when it is stale. Returns True if a reset happened."""
    if not should_reset(window_anchor(user), now, period_days):
        return False
    logger.debug(f"Usage period reset for user {user.id}")
    reset_period(user, now)
    return True
