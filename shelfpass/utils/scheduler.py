"""Background expiry sweep for subscriptions past their end date"""
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
import logging

from shelfpass.utils.time import utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'expiry_sweep'


def expire_subscriptions(now=None):
    """Flip active subscriptions whose end date has passed to expired.

    Returns the number of users updated. Users already expired are not
    matched, so overlapping runs are harmless.
    """
    from shelfpass import db
    from shelfpass.models import User, STATUS_ACTIVE, STATUS_EXPIRED

    now = now or utcnow()
    result = db.session.execute(
        update(User)
        .where(User.subscription_status == STATUS_ACTIVE, User.subscription_end < now)
        .values(subscription_status=STATUS_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount


class ExpirySweepScheduler:
    """Interval job owned by the host process.

    Nothing runs until start() is called; shutdown() stops the thread, which
    keeps tests and short-lived processes clean.
    """

    JOB_ID = 'expire_subscriptions'

    def __init__(self, app, interval_minutes=None):
        self.app = app
        self.interval_minutes = interval_minutes or app.config.get('EXPIRY_SWEEP_INTERVAL_MINUTES', 60)
        self._scheduler = None

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        if self.running:
            return

        self._scheduler = BackgroundScheduler()
        self._scheduler.configure(
            jobstores={'default': {'type': 'memory'}},
            job_defaults={'coalesce': True, 'max_instances': 1}
        )
        self._scheduler.add_job(
            self.run_once,
            'interval',
            minutes=self.interval_minutes,
            id=self.JOB_ID,
            name='Expire subscriptions past their end date',
            replace_existing=True
        )
        self._scheduler.start()
        logger.info(f"Expiry sweep started (every {self.interval_minutes} min)")

    def shutdown(self, wait=True):
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Expiry sweep stopped")
        self._scheduler = None

    def run_once(self, now=None):
        """One sweep cycle. Storage errors are logged and the cycle skipped."""
        with self.app.app_context():
            from shelfpass import db
            try:
                expired = expire_subscriptions(now)
            except SQLAlchemyError as e:
                logger.error(f"Expiry sweep failed, retrying next cycle: {e}")
                db.session.rollback()
                return None

            if expired:
                from shelfpass.utils.audit_log import log_action
                log_action('SUBSCRIPTIONS_EXPIRED', f"Expiry sweep expired {expired} subscriptions",
                           additional_info={'count': expired})
            logger.info(f"Expiry sweep complete: {expired} subscriptions expired")
            return expired


def init_scheduler(app):
    """Register an (unstarted) expiry sweep on the app."""
    sweep = ExpirySweepScheduler(app)
    app.extensions[EXTENSION_KEY] = sweep
    return sweep


def get_scheduler(app):
    return app.extensions.get(EXTENSION_KEY)
