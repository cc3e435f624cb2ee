"""
Admin API for subscriptions, subscription requests and catalog maintenance
"""
from flask import Blueprint, request, jsonify
from flask_login import login_required
from sqlalchemy import or_

from shelfpass.models import Book, User
from shelfpass.services import (
    CatalogService, DuplicateBookError, EntitlementService,
    SubscriptionRequestService, RequestOutcome
)
from shelfpass.services.plans import is_paid_plan
from shelfpass.utils.decorators import admin_required
from shelfpass.utils.messages import (
    BOOK_DELETED, BOOK_DUPLICATE, BOOK_NOT_FOUND, BOOK_NO_SELECTION, ERROR_INVALID_INPUT,
    REQUEST_ALREADY_PROCESSED, REQUEST_INVALID_ACTION, REQUEST_INVALID_PLAN, REQUEST_NO_IDS,
    REQUEST_NOT_FOUND, USER_NOT_FOUND
)

bp = Blueprint("admin", __name__, url_prefix="/admin")

entitlements = EntitlementService()
subscription_requests = SubscriptionRequestService(entitlements)

USER_SORT_FIELDS = {
    'created_at': User.created_at,
    'email': User.email,
    'name': User.name,
    'subscription_end': User.subscription_end,
}


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


def _error(message, status):
    return jsonify({'error': str(message)}), status


def _flag(data, key):
    return data.get(key) in (True, 'on', 'true', '1')


def _duplicate(error):
    listing = ', '.join(f'"{m.title}"' for m in error.matches)
    return jsonify({
        'error': str(BOOK_DUPLICATE) % {'titles': listing},
        'duplicates': [{'id': m.key, 'title': m.title, 'score': round(m.score, 3)} for m in error.matches],
    }), 409


def _user_row(user):
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'subscription_plan': user.subscription_plan,
        'subscription_status': user.subscription_status,
        'subscription_end': user.subscription_end.isoformat() if user.subscription_end else None,
        'created_at': user.created_at.isoformat() if user.created_at else None,
    }


# ============================================================
# SUBSCRIPTION REQUESTS
# ============================================================

@bp.route('/api/subscription-requests')
@login_required
@admin_required
def subscription_requests_list():
    status = request.args.get('status', 'pending')
    items = subscription_requests.list_requests(status)
    return jsonify([r.to_dict() for r in items])


@bp.route('/requests/<int:request_id>/approve', methods=['POST'])
@login_required
@admin_required
def request_approve(request_id):
    """Grant the requested plan for a full period and mark the request processed"""
    outcome = subscription_requests.approve(request_id)
    if outcome is RequestOutcome.NOT_FOUND:
        return _error(REQUEST_NOT_FOUND, 404)
    if outcome is RequestOutcome.USER_NOT_FOUND:
        return _error(USER_NOT_FOUND, 404)
    if outcome is RequestOutcome.ALREADY_PROCESSED:
        return _error(REQUEST_ALREADY_PROCESSED, 400)
    return jsonify({'ok': True})


@bp.route('/requests/<int:request_id>/mark-processed', methods=['POST'])
@login_required
@admin_required
def request_mark_processed(request_id):
    """Close a request without granting anything"""
    outcome = subscription_requests.dismiss(request_id)
    if outcome is RequestOutcome.NOT_FOUND:
        return _error(REQUEST_NOT_FOUND, 404)
    return jsonify({'ok': True})


# ============================================================
# USERS & SUBSCRIPTIONS
# ============================================================

@bp.route('/users')
@login_required
@admin_required
def users_list():
    """Users with search, sort and pagination"""
    page = max(1, request.args.get('page', 1, type=int))
    limit = min(50, max(1, request.args.get('limit', 10, type=int)))
    search = (request.args.get('search') or '').strip()
    sort_column = USER_SORT_FIELDS.get(request.args.get('sort'), User.created_at)
    order = sort_column.asc() if request.args.get('order', 'desc').lower() == 'asc' else sort_column.desc()

    query = User.query
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))

    pagination = query.order_by(order, User.id).paginate(page=page, per_page=limit, error_out=False)
    return jsonify({
        'items': [_user_row(u) for u in pagination.items],
        'total': pagination.total,
        'page': page,
        'limit': limit,
    })


@bp.route('/users/find')
@login_required
@admin_required
def users_find():
    """Look a user up by email for the subscriptions panel"""
    email = (request.args.get('email') or '').strip().lower()
    if not email:
        return _error(ERROR_INVALID_INPUT, 400)
    user = User.query.filter_by(email=email).first()
    if user is None:
        return _error(USER_NOT_FOUND, 404)
    return jsonify(entitlements.usage_summary(user))


@bp.route('/users/<int:user_id>/subscription', methods=['POST'])
@login_required
@admin_required
def user_grant(user_id):
    plan = _payload().get('plan')
    if not is_paid_plan(plan):
        return _error(REQUEST_INVALID_PLAN, 400)

    user = entitlements.grant(user_id, plan)
    if user is None:
        return _error(USER_NOT_FOUND, 404)
    return jsonify({'ok': True, 'user': {
        'id': user.id,
        'plan': user.subscription_plan,
        'end': user.subscription_end.isoformat(),
    }})


@bp.route('/users/<int:user_id>/subscription/cancel', methods=['POST'])
@login_required
@admin_required
def user_cancel(user_id):
    user = entitlements.cancel(user_id)
    if user is None:
        return _error(USER_NOT_FOUND, 404)
    return jsonify({'ok': True})


@bp.route('/users/bulk/subscription', methods=['POST'])
@login_required
@admin_required
def users_bulk_subscription():
    """Bulk grant/cancel. Unknown ids are reported back, the rest still apply."""
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    action = data.get('action')
    if not isinstance(ids, list) or not ids:
        return _error(REQUEST_NO_IDS, 400)
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return _error(ERROR_INVALID_INPUT, 400)

    if action == 'cancel':
        result = entitlements.bulk_cancel(ids)
    elif action == 'grant':
        plan = data.get('plan')
        if not is_paid_plan(plan):
            return _error(REQUEST_INVALID_PLAN, 400)
        result = entitlements.bulk_grant(ids, plan)
    else:
        return _error(REQUEST_INVALID_ACTION, 400)

    return jsonify({'ok': True, 'count': result.count, 'updated': result.updated, 'missing': result.missing})


# ============================================================
# CATALOG
# ============================================================

@bp.route('/books', methods=['POST'])
@login_required
@admin_required
def book_add():
    """Register an uploaded book; near-duplicate titles are rejected with 409"""
    data = _payload()
    try:
        book = CatalogService.add_book(
            title=data.get('title'),
            pdf_path=data.get('pdf_path'),
            author=data.get('author'),
            category=data.get('category'),
            description=data.get('description'),
            tags=data.get('tags'),
            is_premium=_flag(data, 'is_premium'),
            thumbnail_path=data.get('thumbnail_path'),
            featured=_flag(data, 'featured'),
            featured_tagline=data.get('featured_tagline'),
        )
    except DuplicateBookError as e:
        return _duplicate(e)
    except ValueError:
        return _error(ERROR_INVALID_INPUT, 400)

    return jsonify({'ok': True, 'book': book.to_dict()}), 201


@bp.route('/books')
@login_required
@admin_required
def books_list():
    books = Book.query.order_by(Book.upload_date.desc(), Book.id.desc()).all()
    return jsonify([b.to_dict() for b in books])


@bp.route('/books/<int:book_id>/edit', methods=['POST'])
@login_required
@admin_required
def book_edit(book_id):
    data = _payload()
    try:
        book = CatalogService.update_book(
            book_id,
            title=data.get('title'),
            author=data.get('author'),
            category=data.get('category'),
            description=data.get('description'),
            tags=data.get('tags'),
            is_premium=_flag(data, 'is_premium'),
            featured=_flag(data, 'featured'),
            featured_tagline=data.get('featured_tagline'),
        )
    except DuplicateBookError as e:
        return _duplicate(e)
    except ValueError:
        return _error(ERROR_INVALID_INPUT, 400)

    if book is None:
        return _error(BOOK_NOT_FOUND, 404)
    return jsonify({'ok': True, 'book': book.to_dict()})


@bp.route('/books/<int:book_id>', methods=['DELETE'])
@login_required
@admin_required
def book_delete(book_id):
    if not CatalogService.delete_books([book_id]):
        return _error(BOOK_NOT_FOUND, 404)
    return jsonify({'ok': True, 'message': str(BOOK_DELETED) % {'count': 1}})


@bp.route('/books/bulk-delete', methods=['POST'])
@login_required
@admin_required
def books_bulk_delete():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if not isinstance(ids, list) or not ids:
        return _error(BOOK_NO_SELECTION, 400)
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return _error(ERROR_INVALID_INPUT, 400)

    deleted = CatalogService.delete_books(ids)
    missing = [i for i in dict.fromkeys(ids) if i not in deleted]
    return jsonify({
        'ok': True,
        'count': len(deleted),
        'deleted': deleted,
        'missing': missing,
        'message': str(BOOK_DELETED) % {'count': len(deleted)},
    })
