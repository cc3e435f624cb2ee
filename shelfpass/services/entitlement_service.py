"""
Entitlement engine: subscription lifecycle and per-period quota enforcement.

Subscription status moves between three states:

    none ----grant----> active ----sweep / cancel----> expired
                          ^                               |
                          +-------------grant-------------+

An access check never trusts the stored status alone: a subscription whose
end date has passed is denied even while it still reads "active". The read
path does not write the correction back; only the expiry sweep or an explicit
cancel persists it.

Usage:
    decision = EntitlementService().check_and_consume(user.id, book.id, 'read')
    if not decision.allowed:
        return jsonify({'error': decision.message}), 403
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional
import logging

from flask import current_app, has_app_context
from sqlalchemy import and_, func, insert, literal, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shelfpass import db
from shelfpass.models import (
    User, PeriodUsage, ACTIONS, ACTION_READ,
    PLAN_NONE, STATUS_ACTIVE, STATUS_EXPIRED
)
from shelfpass.services.plans import limits_for, is_paid_plan
from shelfpass.services.usage_period import reset_if_needed, reset_period, should_reset, window_anchor
from shelfpass.utils.audit_log import log_action
from shelfpass.utils.time import utcnow
from shelfpass.utils import messages

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_DAYS = 30


class DenialReason(str, Enum):
    NOT_FOUND = 'not_found'
    SUBSCRIPTION_INACTIVE = 'subscription_inactive'
    NO_ACTIVE_PLAN = 'no_active_plan'
    QUOTA_EXCEEDED = 'quota_exceeded'


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    action: str
    reason: Optional[DenialReason] = None

    @classmethod
    def authorize(cls, action):
        return cls(True, action)

    @classmethod
    def deny(cls, action, reason):
        return cls(False, action, reason)

    @property
    def message(self) -> str:
        """Human-readable reason for a denial; empty when allowed."""
        if self.allowed:
            return ''
        if self.reason is DenialReason.QUOTA_EXCEEDED:
            text = messages.READ_LIMIT_REACHED if self.action == ACTION_READ else messages.DOWNLOAD_LIMIT_REACHED
        else:
            text = {
                DenialReason.NOT_FOUND: messages.USER_NOT_FOUND,
                DenialReason.SUBSCRIPTION_INACTIVE: messages.SUBSCRIPTION_INACTIVE,
                DenialReason.NO_ACTIVE_PLAN: messages.NO_ACTIVE_PLAN,
            }[self.reason]
        return str(text)


@dataclass
class BulkResult:
    updated: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.updated)


def subscription_days() -> int:
    if has_app_context():
        return current_app.config.get('SUBSCRIPTION_PERIOD_DAYS', DEFAULT_SUBSCRIPTION_DAYS)
    return DEFAULT_SUBSCRIPTION_DAYS


def is_entitled(user, now: datetime) -> bool:
    """Active status alone is not enough; the end date must still be ahead."""
    return (
        user.subscription_status == STATUS_ACTIVE
        and user.subscription_end is not None
        and user.subscription_end >= now
    )


class EntitlementService:
    """Grants, cancels and quota checks against the user store."""

    def check_and_consume(self, user_id, book_id, action, now: Optional[datetime] = None) -> AccessDecision:
        """
        Authorize a read or download and record it against the current period.

        Repeat access to a book already in the period's set is always allowed
        and consumes nothing. The quota check and the insert happen in one
        conditional INSERT, with the user row locked where the database
        supports it, so concurrent requests cannot both slip under the limit.

        Raises:
            ValueError: unknown action
            SQLAlchemyError: storage failure (session rolled back)
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        now = now or utcnow()

        try:
            user = db.session.get(User, user_id, with_for_update=True)
            if user is None:
                return AccessDecision.deny(action, DenialReason.NOT_FOUND)

            decision = self._consume(user, book_id, action, now)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # A concurrent request may have recorded the same book first
            recorded = db.session.query(PeriodUsage.id).filter_by(
                user_id=user_id, book_id=book_id, action=action
            ).first()
            if recorded is None:
                logger.exception(f"Could not record {action} of book {book_id} for user {user_id}")
                raise
            logger.info(f"Concurrent {action} of book {book_id} by user {user_id}; treated as repeat")
            return AccessDecision.authorize(action)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Entitlement check failed for user {user_id}")
            raise

        if not decision.allowed:
            logger.info(f"Denied {action} of book {book_id} for user {user_id}: {decision.reason.value}")
        return decision

    def _consume(self, user, book_id, action, now) -> AccessDecision:
        if not is_entitled(user, now):
            return AccessDecision.deny(action, DenialReason.SUBSCRIPTION_INACTIVE)

        reset_if_needed(user, now)

        limits = limits_for(user.subscription_plan)
        if limits.is_empty:
            return AccessDecision.deny(action, DenialReason.NO_ACTIVE_PLAN)

        already = db.session.query(PeriodUsage.id).filter_by(
            user_id=user.id, book_id=book_id, action=action
        ).first()
        if already:
            return AccessDecision.authorize(action)

        if not self._record_usage(user.id, book_id, action, limits.limit_for(action), now):
            return AccessDecision.deny(action, DenialReason.QUOTA_EXCEEDED)
        return AccessDecision.authorize(action)

    @staticmethod
    def _record_usage(user_id, book_id, action, limit, now) -> bool:
        """Insert the usage row only while the set is below ``limit``."""
        usage = PeriodUsage.__table__
        used = (
            select(func.count(usage.c.id))
            .where(and_(usage.c.user_id == user_id, usage.c.action == action))
            .correlate(None)
            .scalar_subquery()
        )
        row = select(
            literal(user_id, type_=db.Integer),
            literal(book_id, type_=db.Integer),
            literal(action, type_=db.String),
            literal(now, type_=db.DateTime),
        ).where(used < limit)
        stmt = insert(usage).from_select(
            ['user_id', 'book_id', 'action', 'consumed_at'], row)
        result = db.session.execute(stmt)
        return result.rowcount == 1

    def _apply_grant(self, user, plan, now):
        user.subscription_plan = plan
        user.subscription_status = STATUS_ACTIVE
        user.subscription_start = now
        user.subscription_end = now + timedelta(days=subscription_days())
        reset_period(user, now)

    def _apply_cancel(self, user, now):
        user.subscription_status = STATUS_EXPIRED
        user.subscription_plan = PLAN_NONE
        user.subscription_end = now

    @staticmethod
    def _check_plan(plan):
        if not is_paid_plan(plan):
            raise ValueError(f"Cannot grant plan: {plan}")

    def grant(self, user_id, plan, now: Optional[datetime] = None, commit: bool = True) -> Optional[User]:
        """
        Activate ``plan`` for SUBSCRIPTION_PERIOD_DAYS starting now.

        Works from any status and restarts the usage period. With
        ``commit=False`` the caller owns the transaction.

        Returns:
            The updated user, or None if the user does not exist
        """
        self._check_plan(plan)
        now = now or utcnow()
        user = db.session.get(User, user_id)
        if user is None:
            return None

        self._apply_grant(user, plan, now)
        if commit:
            self._commit(f"grant {plan} to user {user_id}")
            log_action('SUBSCRIPTION_GRANTED', f"Subscription {plan} granted to {user.email}",
                       subject=user, additional_info={'plan': plan, 'end': user.subscription_end.isoformat()})
        return user

    def cancel(self, user_id, now: Optional[datetime] = None) -> Optional[User]:
        """Expire the subscription immediately; usage history is kept."""
        now = now or utcnow()
        user = db.session.get(User, user_id)
        if user is None:
            return None

        self._apply_cancel(user, now)
        self._commit(f"cancel subscription of user {user_id}")
        log_action('SUBSCRIPTION_CANCELLED', f"Subscription cancelled for {user.email}", subject=user)
        return user

    def bulk_grant(self, user_ids: Iterable[int], plan, now: Optional[datetime] = None) -> BulkResult:
        """Grant ``plan`` to each id; unknown ids are reported, not fatal."""
        self._check_plan(plan)
        now = now or utcnow()
        result = self._bulk(user_ids, lambda user: self._apply_grant(user, plan, now))
        self._commit(f"bulk grant {plan}")
        log_action('SUBSCRIPTION_BULK_GRANTED', f"Subscription {plan} granted to {result.count} users",
                   additional_info={'plan': plan, 'user_ids': result.updated, 'missing': result.missing})
        return result

    def bulk_cancel(self, user_ids: Iterable[int], now: Optional[datetime] = None) -> BulkResult:
        now = now or utcnow()
        result = self._bulk(user_ids, lambda user: self._apply_cancel(user, now))
        self._commit("bulk cancel")
        log_action('SUBSCRIPTION_BULK_CANCELLED', f"Subscription cancelled for {result.count} users",
                   additional_info={'user_ids': result.updated, 'missing': result.missing})
        return result

    @staticmethod
    def _bulk(user_ids, apply) -> BulkResult:
        result = BulkResult()
        for user_id in dict.fromkeys(user_ids):
            user = db.session.get(User, user_id)
            if user is None:
                result.missing.append(user_id)
                continue
            apply(user)
            result.updated.append(user_id)
        return result

    @staticmethod
    def _commit(what):
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to {what}")
            raise

    def usage_summary(self, user, now: Optional[datetime] = None) -> dict:
        """
        Subscription and quota usage as shown in the admin lookup.

        A window that has already elapsed reports zero usage; the rows are
        left for the next access check to clear.
        """
        now = now or utcnow()
        limits = limits_for(user.subscription_plan)
        if should_reset(window_anchor(user), now):
            reads_used = downloads_used = 0
        else:
            reads_used = len(user.read_books_in_period)
            downloads_used = len(user.downloaded_books_in_period)
        return {
            'id': user.id,
            'name': user.name,
            'email': user.email,
            'subscription_plan': user.subscription_plan or PLAN_NONE,
            'subscription_status': user.subscription_status,
            'subscription_start': user.subscription_start.isoformat() if user.subscription_start else None,
            'subscription_end': user.subscription_end.isoformat() if user.subscription_end else None,
            'period_started_at': user.period_started_at.isoformat() if user.period_started_at else None,
            'entitled': is_entitled(user, now),
            'reads_used': reads_used,
            'downloads_used': downloads_used,
            'max_reads': limits.max_reads,
            'max_downloads': limits.max_downloads,
            'created_at': user.created_at.isoformat() if user.created_at else None,
        }
