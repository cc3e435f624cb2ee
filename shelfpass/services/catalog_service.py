"""
Catalog browsing, ingestion and maintenance.

New and renamed titles pass a near-duplicate check against the whole
catalog. Listings are plain paginated queries; search is a substring match
on title, author and description, and suggestions are prefix matches.

Usage:
    try:
        book = CatalogService.add_book(title="The Hobbit", pdf_path="books/hobbit.pdf")
    except DuplicateBookError as e:
        print([m.title for m in e.matches])
"""

from typing import Iterable, List, Optional, Union
import logging

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from shelfpass import db
from shelfpass.models import Book, PeriodUsage, ACTION_READ, ACTION_DOWNLOAD
from shelfpass.services.similarity import find_similar_titles, SimilarTitle, DEFAULT_THRESHOLD
from shelfpass.utils.audit_log import log_action

logger = logging.getLogger(__name__)

CATALOG_PAGE_SIZE = 12
POPULAR_LIMIT = 6
RECENT_LIMIT = 10
RELATED_LIMIT = 6
SUGGEST_LIMIT = 8
SUGGEST_MIN_LENGTH = 2

CATALOG_SORTS = {
    'newest': Book.upload_date.desc(),
    'oldest': Book.upload_date.asc(),
    'title-asc': Book.title.asc(),
    'title-desc': Book.title.desc(),
    'author': Book.author.asc(),
}
DEFAULT_SORT = 'newest'


class DuplicateBookError(Exception):
    """Raised when a new title is too close to titles already in the catalog."""

    def __init__(self, title: str, matches: List[SimilarTitle]):
        self.title = title
        self.matches = matches
        super().__init__(f"'{title}' resembles {len(matches)} existing book(s)")


def _parse_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(',')
    return [t.strip() for t in tags if t and t.strip()]



def _clean(value: Optional[str]) -> Optional[str]:
    return (value or '').strip() or None


def _escape_like(text: str) -> str:
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _contains(column, text):
    return column.ilike(f"%{_escape_like(text)}%", escape='\\')


def _starts_with(column, text):
    return column.ilike(f"{_escape_like(text)}%", escape='\\')


class CatalogService:

    # ============================================================
    # BROWSING
    # ============================================================

    @staticmethod
    def browse(
        page: int = 1,
        search: Optional[str] = None,
        category: Optional[str] = None,
        author: Optional[str] = None,
        sort: Optional[str] = DEFAULT_SORT,
        per_page: int = CATALOG_PAGE_SIZE
    ):
        """
        One page of the catalog.

        ``search`` matches title, author or description, ``author`` matches
        part of the author name, both case-insensitively. ``category`` must
        match exactly. Unknown sort keys fall back to newest first.

        Returns:
            A Flask-SQLAlchemy pagination; pages past the end are empty
        """
        query = Book.query
        search = (search or '').strip()
        if search:
            query = query.filter(or_(
                _contains(Book.title, search),
                _contains(Book.author, search),
                _contains(Book.description, search),
            ))
        if category:
            query = query.filter(Book.category == category)
        author = (author or '').strip()
        if author:
            query = query.filter(_contains(Book.author, author))

        order = CATALOG_SORTS.get(sort, CATALOG_SORTS[DEFAULT_SORT])
        return query.order_by(order, Book.id).paginate(
            page=max(1, page), per_page=per_page, error_out=False)

    @staticmethod
    def categories() -> List[str]:
        rows = db.session.query(Book.category).filter(Book.category.isnot(None)) \
            .distinct().order_by(Book.category).all()
        return [category for (category,) in rows]

    @staticmethod
    def authors() -> List[str]:
        rows = db.session.query(Book.author).filter(Book.author.isnot(None)) \
            .distinct().order_by(Book.author).all()
        return [author for (author,) in rows]

    @staticmethod
    def popular(limit: int = POPULAR_LIMIT) -> List[Book]:
        return Book.query.order_by(Book.view_count.desc(), Book.id).limit(limit).all()

    @staticmethod
    def recent(limit: int = RECENT_LIMIT) -> List[Book]:
        return Book.query.order_by(Book.upload_date.desc(), Book.id.desc()).limit(limit).all()

    @staticmethod
    def featured() -> Optional[Book]:
        return Book.query.filter_by(featured=True).order_by(Book.upload_date.desc()).first()

    @staticmethod
    def related_books(book: Book, limit: int = RELATED_LIMIT) -> List[Book]:
        """Other books sharing the category or the author, most viewed first."""
        shared = []
        if book.category:
            shared.append(Book.category == book.category)
        if book.author:
            shared.append(Book.author == book.author)
        if not shared:
            return []
        return Book.query.filter(or_(*shared), Book.id != book.id) \
            .order_by(Book.view_count.desc(), Book.id).limit(limit).all()

    @staticmethod
    def suggest(text: Optional[str], limit: int = SUGGEST_LIMIT) -> List[Book]:
        """Books whose title, author or category starts with ``text``."""
        text = (text or '').strip()
        if len(text) < SUGGEST_MIN_LENGTH:
            return []
        return Book.query.filter(or_(
            _starts_with(Book.title, text),
            _starts_with(Book.author, text),
            _starts_with(Book.category, text),
        )).order_by(Book.title, Book.id).limit(limit).all()

    # ============================================================
    # INGESTION & MAINTENANCE
    # ============================================================

    @staticmethod
    def duplicate_threshold() -> float:
        if has_app_context():
            return current_app.config.get('DUPLICATE_TITLE_THRESHOLD', DEFAULT_THRESHOLD)
        return DEFAULT_THRESHOLD

    @staticmethod
    def find_duplicates(
        title: str,
        threshold: Optional[float] = None,
        exclude_id: Optional[int] = None
    ) -> List[SimilarTitle]:
        """Every existing book whose title scores above the threshold (keys are book ids)."""
        if threshold is None:
            threshold = CatalogService.duplicate_threshold()
        query = db.session.query(Book.id, Book.title)
        if exclude_id is not None:
            query = query.filter(Book.id != exclude_id)
        return find_similar_titles(title, query.all(), threshold)

    @staticmethod
    def _feature_only(book: Book) -> None:
        """A single book carries the featured banner."""
        Book.query.filter(Book.id != book.id, Book.featured.is_(True)) \
            .update({Book.featured: False}, synchronize_session=False)

    @staticmethod
    def _commit(what: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"CatalogService: failed to {what}")
            raise

    @staticmethod
    def add_book(
        title: str,
        pdf_path: str,
        author: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        tags: Union[str, Iterable[str], None] = None,
        is_premium: bool = False,
        thumbnail_path: Optional[str] = None,
        featured: bool = False,
        featured_tagline: Optional[str] = None
    ) -> Book:
        """
        Add a book unless a similar title already exists.

        Raises:
            ValueError: empty title or pdf path
            DuplicateBookError: lists all similar titles found
        """
        title = (title or '').strip()
        if not title or not pdf_path:
            raise ValueError("Book title and file path are required")

        matches = CatalogService.find_duplicates(title)
        if matches:
            logger.info(f"CatalogService: '{title}' blocked, similar to {[m.title for m in matches]}")
            raise DuplicateBookError(title, matches)

        book = Book(
            title=title,
            author=_clean(author),
            category=_clean(category),
            description=_clean(description),
            tags=_parse_tags(tags),
            is_premium=bool(is_premium),
            pdf_path=pdf_path,
            thumbnail_path=thumbnail_path,
            featured=bool(featured),
            featured_tagline=_clean(featured_tagline),
        )
        db.session.add(book)
        if book.featured:
            db.session.flush()
            CatalogService._feature_only(book)
        CatalogService._commit(f"add '{title}'")

        logger.info(f"CatalogService: Added book {book.id}: {book.title}")
        log_action('BOOK_ADDED', f"Book added: {book.title}", subject=book,
                   additional_info={'title': book.title, 'author': book.author})
        return book

    @staticmethod
    def update_book(
        book_id: int,
        title: str,
        author: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        tags: Union[str, Iterable[str], None] = None,
        is_premium: bool = False,
        featured: bool = False,
        featured_tagline: Optional[str] = None
    ) -> Optional[Book]:
        """
        Replace a book's metadata. The file paths and counters stay as they are.

        A renamed book is checked against every other title.

        Returns:
            The updated book, or None if it does not exist

        Raises:
            ValueError: empty title
            DuplicateBookError: the new title resembles another book
        """
        book = db.session.get(Book, book_id)
        if book is None:
            return None

        title = (title or '').strip()
        if not title:
            raise ValueError("Book title is required")
        if title != book.title:
            matches = CatalogService.find_duplicates(title, exclude_id=book.id)
            if matches:
                logger.info(f"CatalogService: rename of {book.id} to '{title}' blocked")
                raise DuplicateBookError(title, matches)

        book.title = title
        book.author = _clean(author)
        book.category = _clean(category)
        book.description = _clean(description)
        book.tags = _parse_tags(tags)
        book.is_premium = bool(is_premium)
        book.featured = bool(featured)
        book.featured_tagline = _clean(featured_tagline)
        if book.featured:
            CatalogService._feature_only(book)
        CatalogService._commit(f"update book {book_id}")

        logger.info(f"CatalogService: Updated book {book.id}: {book.title}")
        log_action('BOOK_UPDATED', f"Book updated: {book.title}", subject=book,
                   additional_info={'title': book.title, 'author': book.author})
        return book

    @staticmethod
    def delete_books(book_ids: Iterable[int]) -> List[int]:
        """
        Delete books together with their usage rows. Unknown ids are skipped.

        Returns:
            Ids that were actually deleted, in the order given
        """
        deleted = []
        titles = []
        for book_id in dict.fromkeys(book_ids):
            book = db.session.get(Book, book_id)
            if book is None:
                continue
            PeriodUsage.query.filter_by(book_id=book.id).delete(synchronize_session=False)
            db.session.delete(book)
            deleted.append(book_id)
            titles.append(book.title)
        if not deleted:
            return deleted

        CatalogService._commit(f"delete books {deleted}")
        logger.info(f"CatalogService: Deleted books {deleted}")
        log_action('BOOK_DELETED', f"{len(deleted)} book(s) deleted",
                   additional_info={'book_ids': deleted, 'titles': titles})
        return deleted

    @staticmethod
    def record_access(book: Book, action: str) -> None:
        """Bump the book's view or download counter after an authorized access."""
        column = {ACTION_READ: Book.view_count, ACTION_DOWNLOAD: Book.download_count}[action]
        Book.query.filter_by(id=book.id).update(
            {column: column + 1}, synchronize_session=False)
        db.session.commit()
        db.session.refresh(book)
