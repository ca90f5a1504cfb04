import logging

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from .models import ActivityLog, db

logger = logging.getLogger(__name__)


def record_activity(user_id, action, entity_type=None, entity_id=None, details=None):
    """Append an audit entry in its own commit.

    Advisory only: a failed write is logged and rolled back, never raised,
    so it cannot undo or fail the operation being audited. Call it after the
    caller's own changes are committed.
    """
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning('Failed to record activity %r for user %s', action, user_id, exc_info=True)
        return None
    return entry
