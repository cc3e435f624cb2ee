"""
Standardized user-facing messages.
Denial reasons and admin responses are returned to the caller for display.
"""

from flask_babel import lazy_gettext as _

# Generic
ERROR_INVALID_INPUT = _("Invalid input provided.")
ERROR_PERMISSION_DENIED = _("You do not have permission to perform this action.")
AUTH_LOGIN_REQUIRED = _("Please log in to access this page.")

# Entitlement denials
USER_NOT_FOUND = _("User not found.")
SUBSCRIPTION_INACTIVE = _("Subscription inactive or expired. Please contact admin to renew.")
NO_ACTIVE_PLAN = _("No active plan. Please subscribe.")
READ_LIMIT_REACHED = _("Read limit reached for this period.")
DOWNLOAD_LIMIT_REACHED = _("Download limit reached for this period.")

# Catalog
BOOK_NOT_FOUND = _("Book not found.")
BOOK_FILE_MISSING = _("Book file is not available.")
BOOK_NO_SELECTION = _("No books selected.")
BOOK_DELETED = _("%(count)s book(s) deleted.")
BOOK_DUPLICATE = _(
    "Possible duplicate detected! Similar book(s) already exist: %(titles)s. "
    "If this is a different book, please modify the title slightly and try again.")

# Subscription requests
REQUEST_NOT_FOUND = _("Subscription request not found.")
REQUEST_ALREADY_PROCESSED = _("Subscription request has already been processed.")
REQUEST_INVALID_PLAN = _("Please choose a valid plan.")
REQUEST_INVALID_ACTION = _("Unknown bulk action.")
REQUEST_NO_IDS = _("No user ids provided.")
