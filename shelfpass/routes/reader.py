import os
import re
from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import login_required, current_user
from werkzeug.utils import safe_join

from shelfpass import db
from shelfpass.models import Book, ACTION_READ, ACTION_DOWNLOAD
from shelfpass.services import CatalogService, EntitlementService, SubscriptionRequestService
from shelfpass.services.catalog_service import CATALOG_SORTS, DEFAULT_SORT
from shelfpass.services.plans import is_paid_plan
from shelfpass.utils.messages import BOOK_NOT_FOUND, BOOK_FILE_MISSING, REQUEST_INVALID_PLAN

bp = Blueprint("reader", __name__)

entitlements = EntitlementService()
subscription_requests = SubscriptionRequestService(entitlements)


def _denied(decision):
    return jsonify({
        'error': decision.message,
        'reason': decision.reason.value,
        'subscribe': True,
    }), 403


def _book_path(book):
    """Absolute path of the book's PDF inside UPLOAD_FOLDER, or None."""
    path = safe_join(current_app.config['UPLOAD_FOLDER'], book.pdf_path)
    if path is None or not os.path.isfile(path):
        return None
    return path


@bp.route("/")
def catalog():
    """Catalog page: filtered books plus the sidebar lists"""
    sort = request.args.get('sort', DEFAULT_SORT)
    if sort not in CATALOG_SORTS:
        sort = DEFAULT_SORT
    category = (request.args.get('category') or '').strip()

    pagination = CatalogService.browse(
        page=request.args.get('page', 1, type=int),
        search=request.args.get('search'),
        category=category,
        author=request.args.get('author'),
        sort=sort,
    )
    featured = CatalogService.featured()
    return jsonify({
        'books': [b.to_dict() for b in pagination.items],
        'page': pagination.page,
        'total_pages': pagination.pages,
        'total': pagination.total,
        'sort': sort,
        'categories': CatalogService.categories(),
        'authors': CatalogService.authors(),
        'popular': [b.to_dict() for b in CatalogService.popular()],
        'recent': [b.to_dict() for b in CatalogService.recent()],
        'featured': featured.to_dict() if featured else None,
    })


@bp.route("/book/<int:book_id>")
def book_detail(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return jsonify({'error': str(BOOK_NOT_FOUND)}), 404
    return jsonify({
        'book': book.to_dict(),
        'related': [b.to_dict() for b in CatalogService.related_books(book)],
    })


@bp.route("/api/suggest")
def suggest():
    books = CatalogService.suggest(request.args.get('q'))
    return jsonify([
        {'id': b.id, 'title': b.title, 'author': b.author, 'category': b.category}
        for b in books
    ])


@bp.route("/read/<int:book_id>")
@login_required
def read_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return jsonify({'error': str(BOOK_NOT_FOUND)}), 404

    decision = entitlements.check_and_consume(current_user.id, book.id, ACTION_READ)
    if not decision.allowed:
        return _denied(decision)

    CatalogService.record_access(book, ACTION_READ)
    return jsonify({'ok': True, 'book': book.to_dict()})


@bp.route("/download/<int:book_id>")
@login_required
def download_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return jsonify({'error': str(BOOK_NOT_FOUND)}), 404

    # Do not charge a download for a file we cannot serve
    path = _book_path(book)
    if path is None:
        current_app.logger.error(f"File for book {book.id} missing: {book.pdf_path}")
        return jsonify({'error': str(BOOK_FILE_MISSING)}), 404

    decision = entitlements.check_and_consume(current_user.id, book.id, ACTION_DOWNLOAD)
    if not decision.allowed:
        return _denied(decision)

    CatalogService.record_access(book, ACTION_DOWNLOAD)
    file_name = re.sub(r'[^a-z0-9]', '_', book.title, flags=re.IGNORECASE) + '.pdf'
    return send_file(path, as_attachment=True, download_name=file_name)


@bp.route("/subscribe-request", methods=["POST"])
@login_required
def subscribe_request():
    data = request.get_json(silent=True) or request.form.to_dict()
    plan = data.get('plan')
    if not is_paid_plan(plan):
        return jsonify({'error': str(REQUEST_INVALID_PLAN)}), 400

    req, created = subscription_requests.submit(current_user.id, plan, data.get('note'))
    if not created:
        return jsonify({'ok': True, 'pending': True, 'id': req.id})
    return jsonify({'ok': True, 'id': req.id}), 201


@bp.route("/me/subscription")
@login_required
def my_subscription():
    return jsonify(entitlements.usage_summary(current_user))
