from datetime import datetime, timedelta

import pytest

from shelfpass import db
from shelfpass.models import PeriodUsage, ACTION_READ, ACTION_DOWNLOAD
from shelfpass.services.plans import limits_for, is_paid_plan, NO_LIMITS, PlanLimits
from shelfpass.services.usage_period import should_reset, reset_if_needed, window_anchor
from shelfpass.utils.time import utcnow


def test_plan_limits():
    assert limits_for('basic') == PlanLimits(max_reads=10, max_downloads=5)
    assert limits_for('premium') == PlanLimits(max_reads=100, max_downloads=25)
    assert limits_for('none') == NO_LIMITS
    assert limits_for('gold') == NO_LIMITS
    assert limits_for(None).is_empty


def test_limit_for_action():
    limits = limits_for('basic')
    assert limits.limit_for(ACTION_READ) == 10
    assert limits.limit_for(ACTION_DOWNLOAD) == 5
    with pytest.raises(ValueError):
        limits.limit_for('print')


def test_paid_plans():
    assert is_paid_plan('basic')
    assert is_paid_plan('premium')
    assert not is_paid_plan('none')
    assert not is_paid_plan('')


def test_should_reset_boundaries():
    now = datetime(2024, 3, 31, 12, 0)
    assert should_reset(None, now)
    assert not should_reset(now - timedelta(days=30), now)
    assert should_reset(now - timedelta(days=30, seconds=1), now)
    assert should_reset(now - timedelta(days=8), now, period_days=7)


def test_should_reset_uses_configured_period(app):
    app.config['USAGE_PERIOD_DAYS'] = 10
    now = utcnow()
    assert should_reset(now - timedelta(days=11), now)
    assert not should_reset(now - timedelta(days=9), now)


def test_window_anchor_falls_back_to_subscription_start(make_user):
    start = utcnow() - timedelta(days=3)
    user = make_user(subscription_start=start)
    assert window_anchor(user) == start

    later = utcnow()
    user.period_started_at = later
    assert window_anchor(user) == later


def test_reset_if_needed_clears_both_sets(subscriber, make_book):
    book = make_book()
    db.session.add_all([
        PeriodUsage(user_id=subscriber.id, book_id=book.id, action=ACTION_READ),
        PeriodUsage(user_id=subscriber.id, book_id=book.id, action=ACTION_DOWNLOAD),
    ])
    db.session.commit()
    assert subscriber.read_books_in_period == {book.id}

    now = utcnow() + timedelta(days=31)
    assert reset_if_needed(subscriber, now) is True
    db.session.commit()

    assert subscriber.period_started_at == now
    assert subscriber.read_books_in_period == set()
    assert subscriber.downloaded_books_in_period == set()
    assert PeriodUsage.query.count() == 0

    # idempotent within the new window
    assert reset_if_needed(subscriber, now + timedelta(hours=1)) is False
    assert subscriber.period_started_at == now


def test_reset_if_needed_keeps_fresh_window(subscriber, make_book):
    book = make_book()
    db.session.add(PeriodUsage(user_id=subscriber.id, book_id=book.id, action=ACTION_READ))
    db.session.commit()

    assert reset_if_needed(subscriber, utcnow()) is False
    assert subscriber.read_books_in_period == {book.id}
