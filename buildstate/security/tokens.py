"""
Selector/verifier tokens for password resets and email verification.

The selector is stored in clear and used for lookup; the verifier only travels in
the emailed link and is kept as a werkzeug password hash.
"""
import logging
import secrets
from datetime import datetime, timedelta
from functools import lru_cache

from werkzeug.security import check_password_hash, generate_password_hash

from ..constants import TokenPurpose
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import UserToken

logger = logging.getLogger(__name__)

LIFETIMES = {
    TokenPurpose.PASSWORD_RESET: timedelta(minutes=20),
    TokenPurpose.EMAIL_VERIFICATION: timedelta(hours=24),
}

_INVALID = {
    TokenPurpose.PASSWORD_RESET: ("Invalid or expired reset link", ErrorCodes.VAL_INVALID_REQUEST),
    TokenPurpose.EMAIL_VERIFICATION: ("Invalid or expired verification token", ErrorCodes.AUTH_INVALID_TOKEN),
}


@lru_cache(maxsize=1)
def _dummy_hash():
    # compared against when the selector is unknown so lookups take the same time
    return generate_password_hash(secrets.token_hex(32))


def issue(user, purpose, now=None):
    """Replace any outstanding `purpose` tokens of `user` with a fresh one.

    Returns (selector, verifier). The row joins the caller's transaction.
    """
    now = now or datetime.utcnow()
    UserToken.query.filter_by(user_id=user.id, purpose=purpose).delete()
    selector = secrets.token_hex(32)
    verifier = secrets.token_hex(32)
    db.session.add(UserToken(
        user_id=user.id,
        purpose=purpose,
        selector=selector,
        verifier_hash=generate_password_hash(verifier),
        expires_at=now + LIFETIMES[purpose],
    ))
    logger.info("Issued %s token for user %s", purpose.lower(), user.id)
    return selector, verifier


def check(selector, verifier, purpose, now=None):
    """Return the unused, unexpired token matching selector and verifier, else raise a 400."""
    message, code = _INVALID[purpose]
    record = None
    if selector:
        record = UserToken.query.filter_by(selector=selector, purpose=purpose).first()
    matches = check_password_hash(record.verifier_hash if record else _dummy_hash(), verifier or "")
    if record is None or not matches:
        raise ApiError(400, message, code)
    if record.used_at is not None:
        raise ApiError(400, "This link has already been used", code)
    if record.is_expired(now):
        raise ApiError(400, "This link has expired. Please request a new one.", code)
    return record


def consume(record, now=None):
    """Mark `record` used and drop the user's other tokens of the same purpose."""
    record.used_at = now or datetime.utcnow()
    UserToken.query.filter(
        UserToken.user_id == record.user_id,
        UserToken.purpose == record.purpose,
        UserToken.id != record.id,
    ).delete(synchronize_session=False)


def purge_expired(now=None):
    now = now or datetime.utcnow()
    removed = UserToken.query.filter(UserToken.expires_at < now).delete(synchronize_session=False)
    db.session.commit()
    logger.info("Expired user tokens removed: %s", removed)
    return {"removed": removed}
