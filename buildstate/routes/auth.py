import logging
import time
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, jwt_required

from ..constants import InviteStatus, Role, SubscriptionPlan, SubscriptionStatus, TokenPurpose, UnitStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Invite, PropertyOwner, Unit, UnitTenant, User
from ..schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    load,
)
from ..security.auth import (
    auth_required,
    current_user,
    ensure_strong_password,
    issue_tokens,
    _load_user,
)
from ..security import tokens
from ..security.rate_limit import ip_key, login_limiter, rate_limit, strict_limiter
from ..services import audit, cache
from ..services.notifications import send_email

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)


def _accept_invite(token, email):
    invite = Invite.query.filter_by(token=token).first()
    if invite is None:
        raise ApiError(404, "Invitation not found", ErrorCodes.RES_INVITE_NOT_FOUND)
    if invite.status != InviteStatus.PENDING:
        raise ApiError(400, "This invitation has already been used", ErrorCodes.BIZ_INVITE_ALREADY_ACCEPTED)
    if invite.is_expired():
        invite.status = InviteStatus.EXPIRED
        db.session.commit()
        raise ApiError(400, "This invitation has expired", ErrorCodes.BIZ_INVITE_EXPIRED)
    if invite.email.lower() != email.lower():
        raise ApiError(400, "Email does not match the invitation", ErrorCodes.VAL_INVALID_EMAIL)
    return invite


def _link_invited_user(invite, user):
    now = datetime.utcnow()
    if invite.role == Role.TENANT and invite.unit_id:
        unit = db.session.get(Unit, invite.unit_id)
        if unit is not None:
            db.session.add(UnitTenant(
                unit_id=unit.id,
                tenant_id=user.id,
                lease_start=now,
                lease_end=now + timedelta(days=365),
                monthly_rent=0,
                is_active=True,
            ))
            unit.status = UnitStatus.OCCUPIED
    elif invite.role == Role.OWNER and invite.property_id:
        db.session.add(PropertyOwner(property_id=invite.property_id, owner_id=user.id, ownership_percentage=100))
    invite.status = InviteStatus.ACCEPTED
    invite.accepted_at = now


def _link(path, selector, verifier):
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/{path}?selector={selector}&token={verifier}"


def _send_verification(user, selector, verifier):
    link = _link("verify-email", selector, verifier)
    send_email(
        user.email,
        "Verify your email - Buildstate",
        f"Hi {user.first_name},\n\nPlease confirm your email address by opening this link:\n\n{link}\n\n"
        "This link expires in 24 hours. If you did not create a Buildstate account you can ignore this email.",
    )


@bp.post("/auth/register")
@rate_limit(strict_limiter, ip_key)
def register():
    """Sign up. Direct signups are property managers on a trial; other roles need an invite."""
    data = load(RegisterRequest)
    ensure_strong_password(data.password)

    if User.query.filter(db.func.lower(User.email) == data.email).first():
        raise ApiError(400, "An account with this email already exists", ErrorCodes.BIZ_EMAIL_ALREADY_REGISTERED)

    invite = None
    role = Role.PROPERTY_MANAGER
    if data.invite_token:
        invite = _accept_invite(data.invite_token, data.email)
        role = invite.role
    elif data.role and data.role != Role.PROPERTY_MANAGER:
        raise ApiError(
            400,
            "Only property managers can sign up directly. Other roles require an invitation.",
            ErrorCodes.AUTH_INSUFFICIENT_PERMISSIONS,
        )

    user = User(
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        role=role,
    )
    user.set_password(data.password)
    if role == Role.PROPERTY_MANAGER:
        user.subscription_plan = SubscriptionPlan.FREE_TRIAL
        user.subscription_status = SubscriptionStatus.TRIAL
        user.trial_end_date = datetime.utcnow() + timedelta(days=current_app.config["TRIAL_PERIOD_DAYS"])
    else:
        # Invited users ride on their manager's subscription
        user.subscription_status = SubscriptionStatus.ACTIVE

    try:
        db.session.add(user)
        db.session.flush()
        if invite is not None:
            _link_invited_user(invite, user)
        audit.record("auth.register", "user", user.id, {"role": role}, user=user)
        selector, verifier = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _send_verification(user, selector, verifier)
    logger.info("Registered user %s as %s", user.id, role)
    return jsonify({"success": True, "user": user.serialize(), **issue_tokens(user)}), 201


@bp.post("/auth/login")
@rate_limit(login_limiter, ip_key)
def login():
    data = load(LoginRequest)
    user = User.query.filter(db.func.lower(User.email) == data.email).first()
    if user is None or not user.check_password(data.password):
        raise ApiError(401, "Invalid email or password", ErrorCodes.AUTH_INVALID_CREDENTIALS)
    if not user.is_active:
        raise ApiError(403, "Account is inactive", ErrorCodes.AUTH_ACCOUNT_INACTIVE)

    user.last_login_at = datetime.utcnow()
    audit.record("auth.login", "user", user.id, user=user)
    db.session.commit()
    return jsonify({"success": True, "user": user.serialize(), **issue_tokens(user)}), 200


@bp.post("/auth/refresh")
@jwt_required(refresh=True)
def refresh():
    user = _load_user(get_jwt_identity())
    token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
    return jsonify({"success": True, "access_token": token}), 200


@bp.get("/auth/me")
@auth_required
def me():
    return jsonify({"success": True, "user": current_user().serialize()}), 200


@bp.post("/auth/logout")
@auth_required
def logout():
    claims = get_jwt()
    ttl = max(1, int(claims["exp"] - time.time()))
    cache.set(f"revoked:{claims['jti']}", True, ttl)
    return jsonify({"success": True, "message": "Logged out"}), 200


@bp.post("/auth/change-password")
@auth_required
def change_password():
    data = load(ChangePasswordRequest)
    user = current_user()
    if not user.check_password(data.current_password):
        raise ApiError(400, "Current password is incorrect", ErrorCodes.AUTH_INVALID_CREDENTIALS)
    ensure_strong_password(data.new_password)
    user.set_password(data.new_password)
    audit.record("auth.change_password", "user", user.id)
    db.session.commit()
    return jsonify({"success": True, "message": "Password updated"}), 200


@bp.post("/auth/verify-email")
def verify_email():
    data = load(VerifyEmailRequest)
    record = tokens.check(data.selector, data.token, TokenPurpose.EMAIL_VERIFICATION)
    user = record.user
    user.email_verified = True
    tokens.consume(record)
    audit.record("auth.verify_email", "user", user.id, user=user)
    db.session.commit()
    return jsonify({"success": True, "message": "Email verified successfully", "user": user.serialize()}), 200


@bp.post("/auth/resend-verification")
@auth_required
@rate_limit(strict_limiter)
def resend_verification():
    user = current_user()
    if user.email_verified:
        raise ApiError(400, "Email already verified", ErrorCodes.VAL_VALIDATION_ERROR)
    selector, verifier = tokens.issue(user, TokenPurpose.EMAIL_VERIFICATION)
    db.session.commit()
    _send_verification(user, selector, verifier)
    return jsonify({"success": True, "message": "Verification email sent"}), 200


@bp.post("/auth/forgot-password")
@rate_limit(strict_limiter, ip_key)
def forgot_password():
    """Email a reset link. The response is the same whether or not the account exists."""
    data = load(ForgotPasswordRequest)
    user = User.query.filter(db.func.lower(User.email) == data.email).first()
    if user is not None and user.is_active:
        selector, verifier = tokens.issue(user, TokenPurpose.PASSWORD_RESET)
        audit.record("auth.forgot_password", "user", user.id, user=user)
        db.session.commit()
        link = _link("reset-password", selector, verifier)
        send_email(
            user.email,
            "Reset your Buildstate password",
            f"Hi {user.first_name},\n\nUse this link to choose a new password:\n\n{link}\n\n"
            "The link expires in 20 minutes and can be used once. "
            "If you did not ask for a reset you can ignore this email.",
        )
    else:
        logger.info("Password reset requested for unknown or inactive account")
    return jsonify({
        "success": True,
        "message": "If an account exists with this email, you will receive password reset instructions.",
    }), 200


@bp.get("/auth/reset-password/validate")
def validate_reset_token():
    selector = request.args.get("selector")
    token = request.args.get("token")
    if not selector or not token:
        raise ApiError(400, "Invalid reset link", ErrorCodes.VAL_INVALID_REQUEST)
    record = tokens.check(selector, token, TokenPurpose.PASSWORD_RESET)
    return jsonify({"success": True, "message": "Token is valid", "email": record.user.email}), 200


@bp.post("/auth/reset-password")
@rate_limit(strict_limiter, ip_key)
def reset_password():
    data = load(ResetPasswordRequest)
    record = tokens.check(data.selector, data.token, TokenPurpose.PASSWORD_RESET)
    ensure_strong_password(data.password)
    user = record.user
    user.set_password(data.password)
    tokens.consume(record)
    audit.record("auth.reset_password", "user", user.id, user=user)
    db.session.commit()
    logger.info("Password reset completed for user %s", user.id)
    return jsonify({
        "success": True,
        "message": "Password has been reset successfully. You can now log in with your new password.",
    }), 200
