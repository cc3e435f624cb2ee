from shelfpass.utils.decorators import admin_required
from shelfpass.utils.time import utcnow

__all__ = ['admin_required', 'utcnow']
