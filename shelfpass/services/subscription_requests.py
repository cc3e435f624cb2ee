"""
Subscription request queue.

Users ask for a plan; admins approve (which grants it) or dismiss. The
database keeps at most one pending request per user and plan through a
unique ``pending_key`` that is cleared once the request is processed, so a
double submit can never produce two rows.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shelfpass import db
from shelfpass.models import SubscriptionRequest, REQUEST_PENDING, REQUEST_PROCESSED, pending_key_for
from shelfpass.services.entitlement_service import EntitlementService
from shelfpass.services.plans import is_paid_plan
from shelfpass.utils.audit_log import log_action
from shelfpass.utils.time import utcnow

logger = logging.getLogger(__name__)

REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_PROCESSED)


class RequestOutcome(str, Enum):
    APPROVED = 'approved'
    DISMISSED = 'dismissed'
    NOT_FOUND = 'not_found'
    USER_NOT_FOUND = 'user_not_found'
    ALREADY_PROCESSED = 'already_processed'


class SubscriptionRequestService:

    def __init__(self, entitlements: Optional[EntitlementService] = None):
        self.entitlements = entitlements or EntitlementService()

    def submit(self, user_id, plan, note: Optional[str] = None) -> Tuple[SubscriptionRequest, bool]:
        """
        Queue a request for ``plan``.

        Returns:
            (request, created) - created is False when an identical request
            was already pending and is returned instead
        """
        if not is_paid_plan(plan):
            raise ValueError(f"Cannot request plan: {plan}")

        request = SubscriptionRequest(user_id=user_id, plan=plan, note=(note or '').strip(),
                                      pending_key=pending_key_for(user_id, plan))
        db.session.add(request)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.pending_for(user_id, plan)
            if existing is None:
                # not the pending-uniqueness violation (e.g. unknown user)
                raise
            logger.info(f"Subscription request {plan} for user {user_id} already pending ({existing.id})")
            return existing, False
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to store subscription request for user {user_id}")
            raise

        logger.info(f"Subscription request {request.id} created: {plan} for user {user_id}")
        log_action('SUBSCRIPTION_REQUESTED', f"User {user_id} requested {plan}",
                   subject=request, additional_info={'plan': plan})
        return request, True

    @staticmethod
    def pending_for(user_id, plan) -> Optional[SubscriptionRequest]:
        return SubscriptionRequest.query.filter_by(
            user_id=user_id, plan=plan, status=REQUEST_PENDING).first()

    @staticmethod
    def _claim(request_id, now) -> bool:
        """Move pending -> processed; False if someone else got there first."""
        result = db.session.execute(
            update(SubscriptionRequest)
            .where(SubscriptionRequest.id == request_id, SubscriptionRequest.status == REQUEST_PENDING)
            .values(status=REQUEST_PROCESSED, processed_at=now, pending_key=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def approve(self, request_id, now: Optional[datetime] = None) -> RequestOutcome:
        """
        Grant the requested plan and mark the request processed.

        Both changes are committed together; if either fails nothing is
        committed, so a request is never processed without its grant.
        """
        now = now or utcnow()
        request = db.session.get(SubscriptionRequest, request_id)
        if request is None:
            return RequestOutcome.NOT_FOUND
        if request.status == REQUEST_PROCESSED:
            return RequestOutcome.ALREADY_PROCESSED

        user_id, plan = request.user_id, request.plan
        try:
            if not self._claim(request_id, now):
                db.session.rollback()
                return RequestOutcome.ALREADY_PROCESSED

            user = self.entitlements.grant(user_id, plan, now=now, commit=False)
            if user is None:
                db.session.rollback()
                return RequestOutcome.USER_NOT_FOUND

            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to approve subscription request {request_id}")
            raise

        logger.info(f"Subscription request {request_id} approved: {plan} for user {user_id}")
        log_action('SUBSCRIPTION_REQUEST_APPROVED', f"Request {request_id} approved ({plan})",
                   subject=request, additional_info={'user_id': user_id, 'plan': plan})
        return RequestOutcome.APPROVED

    def dismiss(self, request_id, now: Optional[datetime] = None) -> RequestOutcome:
        """Mark processed without granting. Already processed requests are left as they are."""
        now = now or utcnow()
        request = db.session.get(SubscriptionRequest, request_id)
        if request is None:
            return RequestOutcome.NOT_FOUND
        if request.status == REQUEST_PROCESSED:
            return RequestOutcome.DISMISSED

        try:
            claimed = self._claim(request_id, now)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to dismiss subscription request {request_id}")
            raise

        if claimed:
            log_action('SUBSCRIPTION_REQUEST_DISMISSED', f"Request {request_id} dismissed",
                       subject=request, additional_info={'plan': request.plan})
        return RequestOutcome.DISMISSED

    @staticmethod
    def list_requests(status: Optional[str] = REQUEST_PENDING) -> List[SubscriptionRequest]:
        """
        Requests newest first, one per (user, plan, status).

        ``status`` filters to pending or processed; any other value lists all.
        Older rows sharing a key with a newer one are dropped.
        """
        query = SubscriptionRequest.query
        if status in REQUEST_STATUSES:
            query = query.filter(SubscriptionRequest.status == status)
        items = query.order_by(SubscriptionRequest.created_at.desc(), SubscriptionRequest.id.desc()).all()

        seen = set()
        unique = []
        for item in items:
            key = (item.user_id, item.plan, item.status)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)
        return unique
