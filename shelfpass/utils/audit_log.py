"""
Audit logging for administrative and subscription operations.

Events go to the ``audit`` logger. When AUDIT_LOG_DIR is configured the logger
also writes one JSON object per line to a daily-rotated file.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from flask import request, has_request_context
from flask_login import current_user
from pythonjsonlogger import jsonlogger


audit_logger = logging.getLogger('audit')

SENSITIVE_KEYS = ('password', 'token', 'secret')


def init_audit_logging(app):
    """Attach the JSON file handler once per log directory."""
    log_dir = app.config.get('AUDIT_LOG_DIR')
    if not log_dir:
        return None

    os.makedirs(log_dir, exist_ok=True)
    filename = os.path.abspath(os.path.join(log_dir, 'audit.log'))
    for handler in audit_logger.handlers:
        if getattr(handler, 'baseFilename', None) == filename:
            return handler

    handler = TimedRotatingFileHandler(filename, when='midnight', backupCount=30,
                                       encoding='utf-8', utc=True)
    handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s'))
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    return handler


def _mask(additional_info):
    masked = {}
    for k, v in (additional_info or {}).items():
        if k.lower() in SENSITIVE_KEYS:
            masked[k] = '***'
        else:
            masked[k] = v
    return masked


def _build_log_record(action: str, subject=None, additional_info: dict = None):
    record = {
        'action': action,
        'actor_id': None,
        'ip': None,
        'subject_type': None,
        'subject_id': None,
        'details': _mask(additional_info),
    }

    if has_request_context():
        record['ip'] = request.remote_addr
        if current_user and getattr(current_user, 'is_authenticated', False):
            record['actor_id'] = current_user.id

    if subject is not None:
        record['subject_type'] = subject.__class__.__name__
        record['subject_id'] = getattr(subject, 'id', None)

    return record


def log_action(action: str, description: str, subject=None, additional_info: dict = None):
    """Write an audit event.

    Example: log_action('SUBSCRIPTION_GRANTED', 'Granted basic', subject=user, additional_info={'plan': 'basic'})
    """
    audit_logger.info(description, extra=_build_log_record(action, subject, additional_info))
