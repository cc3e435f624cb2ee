from shelfpass import db
from shelfpass.utils.time import utcnow
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin


PLAN_NONE = 'none'
PLAN_BASIC = 'basic'
PLAN_PREMIUM = 'premium'

STATUS_NONE = 'none'
STATUS_ACTIVE = 'active'
STATUS_EXPIRED = 'expired'

REQUEST_PENDING = 'pending'
REQUEST_PROCESSED = 'processed'

ACTION_READ = 'read'
ACTION_DOWNLOAD = 'download'
ACTIONS = (ACTION_READ, ACTION_DOWNLOAD)


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120))
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Entitlement state
    subscription_plan = db.Column(db.String(20), default=PLAN_NONE, nullable=False, index=True)
    subscription_status = db.Column(db.String(20), default=STATUS_NONE, nullable=False, index=True)
    subscription_start = db.Column(db.DateTime)
    subscription_end = db.Column(db.DateTime, index=True)
    period_started_at = db.Column(db.DateTime)

    usages = db.relationship('PeriodUsage', back_populates='user', lazy=True,
                             cascade='all, delete-orphan')
    subscription_requests = db.relationship('SubscriptionRequest', back_populates='user', lazy=True,
                                            cascade='all, delete-orphan')

    def __str__(self):
        return self.email

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def _books_in_period(self, action):
        return {u.book_id for u in self.usages if u.action == action}

    @property
    def read_books_in_period(self):
        """Ids of books read in the current usage window."""
        return self._books_in_period(ACTION_READ)

    @property
    def downloaded_books_in_period(self):
        """Ids of books downloaded in the current usage window."""
        return self._books_in_period(ACTION_DOWNLOAD)


class PeriodUsage(db.Model):
    """One book in one of a user's per-period usage sets."""
    __tablename__ = 'period_usage'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'book_id', 'action', name='uq_period_usage_user_book_action'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id', ondelete='CASCADE'), nullable=False)
    action = db.Column(db.String(20), nullable=False)
    consumed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship('User', back_populates='usages')

    def __str__(self):
        return f"PeriodUsage {self.user_id}/{self.book_id}: {self.action}"


class Book(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    author = db.Column(db.String(200), index=True)
    category = db.Column(db.String(100), index=True)
    tags = db.Column(db.JSON, default=list, nullable=False)
    description = db.Column(db.Text)
    is_premium = db.Column(db.Boolean, default=False, nullable=False, index=True)
    pdf_path = db.Column(db.String(255), nullable=False)
    thumbnail_path = db.Column(db.String(255))
    upload_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    view_count = db.Column(db.Integer, default=0, nullable=False)
    download_count = db.Column(db.Integer, default=0, nullable=False)
    featured = db.Column(db.Boolean, default=False, nullable=False)
    featured_tagline = db.Column(db.String(200))

    def __str__(self):
        return f"{self.title} by {self.author or 'Unknown'}"

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'category': self.category,
            'tags': list(self.tags or []),
            'description': self.description,
            'is_premium': self.is_premium,
            'thumbnail_path': self.thumbnail_path,
            'upload_date': self.upload_date.isoformat() if self.upload_date else None,
            'view_count': self.view_count,
            'download_count': self.download_count,
            'featured': self.featured,
            'featured_tagline': self.featured_tagline,
        }


def pending_key_for(user_id, plan):
    return f"{user_id}:{plan}"


def _default_pending_key(context):
    params = context.get_current_parameters()
    if params.get('status') not in (None, REQUEST_PENDING):
        return None
    return pending_key_for(params['user_id'], params['plan'])


class SubscriptionRequest(db.Model):
    __tablename__ = 'subscription_request'
    __table_args__ = (
        # one pending request per user+plan; pending_key is NULL once processed
        db.UniqueConstraint('pending_key', name='uq_subscription_request_pending'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    plan = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), default=REQUEST_PENDING, nullable=False, index=True)
    note = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime)
    pending_key = db.Column(db.String(64), default=_default_pending_key)

    user = db.relationship('User', back_populates='subscription_requests')

    def __str__(self):
        return f"SubscriptionRequest {self.id}: {self.plan} for user {self.user_id} - Status: {self.status}"

    def to_dict(self):
        user = self.user
        return {
            'id': self.id,
            'plan': self.plan,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'note': self.note or '',
            'user': {
                'id': user.id,
                'name': user.name,
                'email': user.email,
                'subscription_status': user.subscription_status,
                'subscription_plan': user.subscription_plan,
                'subscription_end': user.subscription_end.isoformat() if user.subscription_end else None,
            } if user else None,
        }
