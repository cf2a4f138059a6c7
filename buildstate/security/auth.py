import re
from datetime import datetime
from functools import wraps

from flask import g
from flask_jwt_extended import create_access_token, create_refresh_token, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from ..constants import Role, SubscriptionStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import User

SPECIAL_CHARS = r'[!@#$%^&*(),.?":{}|<>\-_=+\[\];\'/\\`~]'


def validate_password(password: str) -> tuple[bool, str]:
    """Validate password strength"""
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"
    if not re.search(r'[A-Z]', password):
        return False, "Password must contain at least one uppercase letter"
    if not re.search(r'[a-z]', password):
        return False, "Password must contain at least one lowercase letter"
    if not re.search(r'\d', password):
        return False, "Password must contain at least one number"
    if not re.search(SPECIAL_CHARS, password):
        return False, "Password must contain at least one special character"
    return True, "Password is valid"


def ensure_strong_password(password: str) -> None:
    ok, message = validate_password(password)
    if not ok:
        raise ApiError(400, message, ErrorCodes.VAL_PASSWORD_WEAK)


def issue_tokens(user: User) -> dict:
    # JWT identity must be a string; the role travels as an extra claim
    claims = {"role": user.role}
    return {
        "access_token": create_access_token(identity=str(user.id), additional_claims=claims),
        "refresh_token": create_refresh_token(identity=str(user.id), additional_claims=claims),
    }


def current_user_id():
    """User id from a valid bearer token on the current request, or None."""
    if "current_user" in g:
        return g.current_user.id
    try:
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError):
        return None
    return int(identity) if identity is not None else None


def current_user() -> User:
    return g.current_user


def _load_user(identity) -> User:
    try:
        user = db.session.get(User, int(identity))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise ApiError(401, "User not found", ErrorCodes.RES_USER_NOT_FOUND)
    if not user.is_active:
        raise ApiError(403, "Account is inactive", ErrorCodes.AUTH_ACCOUNT_INACTIVE)
    return user


def auth_required(fn):
    """Require a valid access token for an existing, active user; exposes it as `g.current_user`."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        g.current_user = _load_user(get_jwt_identity())
        return fn(*args, **kwargs)
    return wrapper


def require_role(*allowed_roles):
    """Decorator to require specific roles (implies auth_required)."""
    def decorator(f):
        @wraps(f)
        @auth_required
        def decorated_function(*args, **kwargs):
            if g.current_user.role not in allowed_roles:
                raise ApiError(
                    403,
                    f"This action requires one of the roles: {', '.join(allowed_roles)}",
                    ErrorCodes.ACC_ROLE_REQUIRED,
                )
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = require_role(Role.ADMIN)


def subscription_error(user: User, now=None):
    """Return an ApiError describing why `user` has no usable subscription, or None."""
    now = now or datetime.utcnow()
    if user.subscription_status == SubscriptionStatus.ACTIVE:
        return None
    if user.subscription_status == SubscriptionStatus.TRIAL:
        if user.trial_end_date and user.trial_end_date > now:
            return None
        return ApiError(
            403,
            "Your free trial has expired. Please subscribe to continue.",
            ErrorCodes.SUB_TRIAL_EXPIRED,
            {"trial_end_date": user.trial_end_date.isoformat() if user.trial_end_date else None},
        )
    return ApiError(
        403,
        "An active subscription is required for this action.",
        ErrorCodes.SUB_SUBSCRIPTION_REQUIRED,
        {"subscription_status": user.subscription_status},
    )


def require_active_subscription(fn):
    """Block property managers without an active plan or running trial. Must follow auth_required."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = g.current_user
        if user.role == Role.PROPERTY_MANAGER:
            error = subscription_error(user)
            if error is not None:
                raise error
        return fn(*args, **kwargs)
    return wrapper


def ensure_manager_subscription(prop) -> None:
    """Owners, tenants and technicians can only act while the property's manager is subscribed."""
    manager = prop.manager
    if manager is None or subscription_error(manager) is not None:
        raise ApiError(
            403,
            "The property manager's subscription is not active.",
            ErrorCodes.SUB_MANAGER_SUBSCRIPTION_REQUIRED,
        )
