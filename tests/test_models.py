from shelfpass import db
from shelfpass.models import User, Book, PeriodUsage, SubscriptionRequest, ACTION_READ, ACTION_DOWNLOAD


def test_user_defaults(make_user):
    user = make_user(email='fresh@test.com')

    assert str(user) == 'fresh@test.com'
    assert user.subscription_plan == 'none'
    assert user.subscription_status == 'none'
    assert user.subscription_end is None
    assert user.created_at is not None
    assert not user.is_admin


def test_password_hashing(regular_user):
    assert regular_user.password_hash != 'password'
    assert regular_user.check_password('password')
    assert not regular_user.check_password('wrong')


def test_usage_sets_split_by_action(regular_user, make_book):
    read, both = make_book(), make_book()
    db.session.add_all([
        PeriodUsage(user_id=regular_user.id, book_id=read.id, action=ACTION_READ),
        PeriodUsage(user_id=regular_user.id, book_id=both.id, action=ACTION_READ),
        PeriodUsage(user_id=regular_user.id, book_id=both.id, action=ACTION_DOWNLOAD),
    ])
    db.session.commit()

    assert regular_user.read_books_in_period == {read.id, both.id}
    assert regular_user.downloaded_books_in_period == {both.id}


def test_deleting_user_removes_usage_and_requests(regular_user, make_book):
    db.session.add_all([
        PeriodUsage(user_id=regular_user.id, book_id=make_book().id, action=ACTION_READ),
        SubscriptionRequest(user_id=regular_user.id, plan='basic'),
    ])
    db.session.commit()

    db.session.delete(regular_user)
    db.session.commit()

    assert User.query.count() == 0
    assert PeriodUsage.query.count() == 0
    assert SubscriptionRequest.query.count() == 0


def test_book_to_dict(make_book):
    book = make_book(title='Dune', author='Frank Herbert', tags=['sf'])
    data = book.to_dict()

    assert str(book) == 'Dune by Frank Herbert'
    assert data['title'] == 'Dune'
    assert data['tags'] == ['sf']
    assert data['view_count'] == 0
    assert data['download_count'] == 0
    assert 'pdf_path' not in data
    assert str(Book(title='Untitled')) == 'Untitled by Unknown'
