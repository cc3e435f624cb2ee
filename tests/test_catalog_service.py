from datetime import timedelta

import pytest

from shelfpass import db
from shelfpass.models import Book, PeriodUsage, ACTION_READ, ACTION_DOWNLOAD
from shelfpass.services import CatalogService, DuplicateBookError
from shelfpass.utils.time import utcnow


def test_add_book(app):
    book = CatalogService.add_book(
        title='  The Hobbit ',
        pdf_path='books/hobbit.pdf',
        author='J.R.R. Tolkien',
        category='',
        tags='fantasy, classic,, ',
    )

    assert book.id is not None
    assert book.title == 'The Hobbit'
    assert book.category is None
    assert book.tags == ['fantasy', 'classic']
    assert book.view_count == 0
    assert Book.query.count() == 1


def test_add_book_accepts_tag_list(app):
    book = CatalogService.add_book(title='Dune', pdf_path='dune.pdf', tags=['sf', ' desert '])
    assert book.tags == ['sf', 'desert']


@pytest.mark.parametrize('title, pdf_path', (('', 'x.pdf'), ('   ', 'x.pdf'), ('Dune', ''), (None, 'x.pdf')))
def test_add_book_requires_title_and_file(app, title, pdf_path):
    with pytest.raises(ValueError):
        CatalogService.add_book(title=title, pdf_path=pdf_path)
    assert Book.query.count() == 0


def test_duplicate_title_is_blocked_with_all_matches(make_book):
    first = make_book(title='The Hobbit')
    make_book(title='Dune')
    second = make_book(title='The Hobit')

    with pytest.raises(DuplicateBookError) as excinfo:
        CatalogService.add_book(title='the hobbit', pdf_path='books/other.pdf')

    matches = excinfo.value.matches
    assert [m.key for m in matches] == [first.id, second.id]
    assert [m.title for m in matches] == ['The Hobbit', 'The Hobit']
    assert Book.query.count() == 3


def test_dissimilar_title_is_added(make_book):
    make_book(title='The Hobbit')
    book = CatalogService.add_book(title='The Silmarillion', pdf_path='silmarillion.pdf')
    assert book.id is not None


def test_threshold_comes_from_config(app, make_book):
    make_book(title='night')
    app.config['DUPLICATE_TITLE_THRESHOLD'] = 0.2

    assert [m.title for m in CatalogService.find_duplicates('nacht')] == ['night']
    assert CatalogService.find_duplicates('nacht', threshold=0.5) == []


def test_record_access_bumps_counters(make_book):
    book = make_book()

    CatalogService.record_access(book, ACTION_READ)
    CatalogService.record_access(book, ACTION_READ)
    CatalogService.record_access(book, ACTION_DOWNLOAD)

    assert book.view_count == 2
    assert book.download_count == 1


def test_add_book_is_audited(app, caplog):
    with caplog.at_level('INFO', logger='audit'):
        book = CatalogService.add_book(title='Dune', pdf_path='dune.pdf', author='Frank Herbert')

    record = next(r for r in caplog.records if r.name == 'audit')
    assert record.action == 'BOOK_ADDED'
    assert record.subject_id == book.id
    assert record.details == {'title': 'Dune', 'author': 'Frank Herbert'}


def test_browse_filters_and_paginates(make_book):
    for n in range(14):
        make_book(title=f'Volume {n}', author='Anna Nowak', category='History',
                  upload_date=utcnow() - timedelta(days=n))
    make_book(title='Solaris', author='Stanislaw Lem', category='SF')

    page = CatalogService.browse(page=2, category='History')
    assert page.total == 14
    assert page.pages == 2
    assert [b.title for b in page.items] == ['Volume 12', 'Volume 13']

    assert [b.title for b in CatalogService.browse(search='solar').items] == ['Solaris']
    assert [b.title for b in CatalogService.browse(author='lem').items] == ['Solaris']
    assert CatalogService.browse(page=9).items == []


@pytest.mark.parametrize('sort, expected', (
    ('newest', ['Beta', 'Alpha', 'Gamma']),
    ('oldest', ['Gamma', 'Alpha', 'Beta']),
    ('title-asc', ['Alpha', 'Beta', 'Gamma']),
    ('title-desc', ['Gamma', 'Beta', 'Alpha']),
    ('author', ['Gamma', 'Beta', 'Alpha']),
    ('bogus', ['Beta', 'Alpha', 'Gamma']),
))
def test_browse_sorting(make_book, sort, expected):
    now = utcnow()
    make_book(title='Alpha', author='Zed', upload_date=now - timedelta(days=1))
    make_book(title='Beta', author='Mia', upload_date=now)
    make_book(title='Gamma', author='Ada', upload_date=now - timedelta(days=2))

    assert [b.title for b in CatalogService.browse(sort=sort).items] == expected


def test_search_treats_wildcards_literally(make_book):
    make_book(title='100% Cotton')
    make_book(title='1000 Cottages')

    assert [b.title for b in CatalogService.browse(search='100%').items] == ['100% Cotton']


def test_categories_authors_popular_and_recent(make_book):
    now = utcnow()
    old = make_book(title='Old', author='B', category='Poetry', view_count=9, upload_date=now - timedelta(days=3))
    make_book(title='New', author='A', category='Drama', view_count=1, upload_date=now)
    make_book(title='Loose', upload_date=now - timedelta(days=1))

    assert CatalogService.categories() == ['Drama', 'Poetry']
    assert CatalogService.authors() == ['A', 'B']
    assert CatalogService.popular(limit=1) == [old]
    assert [b.title for b in CatalogService.recent()] == ['New', 'Loose', 'Old']


def test_related_books_share_category_or_author(make_book):
    book = make_book(title='Dune', author='Frank Herbert', category='SF')
    same_author = make_book(title='Dune Messiah', author='Frank Herbert', category='Classics')
    same_category = make_book(title='Solaris', author='Stanislaw Lem', category='SF')
    make_book(title='Emma', author='Jane Austen', category='Romance')

    related = CatalogService.related_books(book)

    assert {b.id for b in related} == {same_author.id, same_category.id}
    assert CatalogService.related_books(make_book(title='Notes')) == []


def test_suggest_matches_prefixes(make_book):
    make_book(title='Foundation', author='Isaac Asimov', category='SF')
    make_book(title='The Found Object', author='Foster', category='Art')
    make_book(title='Fables', author='Aesop', category='Folklore')

    assert [b.title for b in CatalogService.suggest('fo')] == ['Fables', 'Foundation', 'The Found Object']
    assert [b.title for b in CatalogService.suggest('isa')] == ['Foundation']
    assert CatalogService.suggest('f') == []
    assert CatalogService.suggest('   ') == []
    assert len(CatalogService.suggest('fo', limit=1)) == 1


def test_update_book(make_book):
    book = make_book(title='Dune', tags=['sf'])

    updated = CatalogService.update_book(
        book.id, title=' Dune ', author='Frank Herbert', category='SF',
        tags='classic, desert', is_premium=True)

    assert updated is book
    assert book.title == 'Dune'
    assert book.author == 'Frank Herbert'
    assert book.tags == ['classic', 'desert']
    assert book.is_premium
    assert book.pdf_path.startswith('books/')


def test_update_book_blocks_rename_onto_similar_title(make_book):
    book = make_book(title='Emma')
    other = make_book(title='The Hobbit')

    with pytest.raises(DuplicateBookError) as excinfo:
        CatalogService.update_book(book.id, title='The Hobit')

    assert [m.key for m in excinfo.value.matches] == [other.id]
    assert book.title == 'Emma'


def test_update_book_validation(make_book):
    assert CatalogService.update_book(999, title='Dune') is None
    with pytest.raises(ValueError):
        CatalogService.update_book(make_book().id, title='  ')


def test_only_one_book_is_featured(make_book):
    first = make_book(title='Dune')
    second = make_book(title='Emma')

    CatalogService.update_book(first.id, title='Dune', featured=True, featured_tagline=' Spice! ')
    assert CatalogService.featured() == first
    assert first.featured_tagline == 'Spice!'

    third = CatalogService.add_book(title='Solaris', pdf_path='solaris.pdf', featured=True)
    CatalogService.update_book(second.id, title='Emma', featured=True)

    assert Book.query.filter_by(featured=True).all() == [second]
    assert not third.featured


def test_delete_books_removes_usage(make_book, subscriber):
    keep = make_book()
    gone = make_book()
    db.session.add(PeriodUsage(user_id=subscriber.id, book_id=gone.id, action=ACTION_READ))
    db.session.commit()

    assert CatalogService.delete_books([gone.id, 999, gone.id]) == [gone.id]

    assert Book.query.all() == [keep]
    assert PeriodUsage.query.count() == 0
    assert CatalogService.delete_books([999]) == []


def test_delete_books_is_audited(make_book, caplog):
    book = make_book(title='Dune')
    with caplog.at_level('INFO', logger='audit'):
        CatalogService.delete_books([book.id])

    record = next(r for r in caplog.records if r.name == 'audit')
    assert record.action == 'BOOK_DELETED'
    assert record.details == {'book_ids': [book.id], 'titles': ['Dune']}
