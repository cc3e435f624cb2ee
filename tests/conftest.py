import os
from datetime import timedelta

import pytest
from flask import g

os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

from shelfpass import create_app, db  # noqa: E402
from shelfpass.models import User, Book, PLAN_BASIC, STATUS_ACTIVE  # noqa: E402
from shelfpass.utils.time import utcnow  # noqa: E402


@pytest.fixture
def app(tmp_path):
    """Create and configure a test app."""
    upload_folder = tmp_path / 'uploads'
    upload_folder.mkdir()
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI='sqlite:///:memory:',
        UPLOAD_FOLDER=str(upload_folder),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(email=None, name=None, is_admin=False, **fields):
        counter['n'] += 1
        user = User(
            email=email or f"user{counter['n']}@test.com",
            name=name or f"User {counter['n']}",
            is_admin=is_admin,
            **fields
        )
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def make_book(app):
    counter = {'n': 0}

    def _make_book(title=None, pdf_path=None, **fields):
        counter['n'] += 1
        book = Book(
            title=title or f"Test Book Number {counter['n']}",
            pdf_path=pdf_path or f"books/book{counter['n']}.pdf",
            **fields
        )
        db.session.add(book)
        db.session.commit()
        return book
    return _make_book


@pytest.fixture
def admin_user(make_user):
    """Create an admin test user."""
    return make_user(email='admin@test.com', name='Admin', is_admin=True)


@pytest.fixture
def regular_user(make_user):
    """Create a regular test user without a subscription."""
    return make_user(email='user@test.com', name='Reader')


@pytest.fixture
def subscriber(make_user):
    """A user with an active basic subscription that started yesterday."""
    start = utcnow() - timedelta(days=1)
    return make_user(
        email='subscriber@test.com',
        name='Subscriber',
        subscription_plan=PLAN_BASIC,
        subscription_status=STATUS_ACTIVE,
        subscription_start=start,
        subscription_end=start + timedelta(days=30),
        period_started_at=start,
    )


@pytest.fixture
def login(client):
    """Log a user in on the test client without a login form."""
    def _login(user):
        # requests share the test app context, so drop the cached user
        g.pop('_login_user', None)
        with client.session_transaction() as sess:
            sess['_user_id'] = str(user.id)
            sess['_fresh'] = True
    return _login
