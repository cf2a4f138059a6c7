import logging

from flask import g, has_request_context, request

from ..extensions import db
from ..models import AuditLog

logger = logging.getLogger(__name__)


def record(action, entity_type=None, entity_id=None, details=None, user=None):
    """Add an audit row to the current session; it is committed with the caller's transaction."""
    if user is None and has_request_context():
        user = g.get("current_user")
    entry = AuditLog(
        user_id=user.id if user is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    logger.info("audit action=%s entity=%s:%s user=%s", action, entity_type, entity_id, entry.user_id)
    return entry
