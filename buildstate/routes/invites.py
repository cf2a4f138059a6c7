import logging
import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify

from ..constants import InviteStatus, Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Invite, Unit, User
from ..schemas import InviteCreate, load
from ..security.access import require_property_access
from ..security.auth import current_user, require_active_subscription, require_role
from ..services import audit
from ..services.notifications import send_email

logger = logging.getLogger(__name__)

bp = Blueprint("invites", __name__)

INVITE_TTL = timedelta(days=7)


@bp.post("/invites")
@require_role(Role.PROPERTY_MANAGER)
@require_active_subscription
def create_invite():
    data = load(InviteCreate)
    user = current_user()

    if User.query.filter(db.func.lower(User.email) == data.email).first():
        raise ApiError(400, "An account with this email already exists", ErrorCodes.BIZ_EMAIL_ALREADY_REGISTERED)

    property_id = data.property_id
    if data.unit_id is not None:
        unit = db.session.get(Unit, data.unit_id)
        if unit is None:
            raise ApiError(404, "Unit not found", ErrorCodes.RES_UNIT_NOT_FOUND)
        if property_id is not None and unit.property_id != property_id:
            raise ApiError(400, "Unit does not belong to the property", ErrorCodes.VAL_INVALID_INPUT)
        property_id = unit.property_id
    if property_id is not None:
        require_property_access(user, property_id, write=True)

    invite = Invite(
        token=secrets.token_urlsafe(32),
        email=data.email,
        role=data.role,
        invited_by_id=user.id,
        property_id=property_id,
        unit_id=data.unit_id,
        expires_at=datetime.utcnow() + INVITE_TTL,
    )
    db.session.add(invite)
    db.session.flush()
    audit.record("invite.create", "invite", invite.id, {"email": invite.email, "role": invite.role})
    db.session.commit()

    link = f"{current_app.config['FRONTEND_URL'].rstrip('/')}/register?invite={invite.token}"
    send_email(
        invite.email,
        f"{user.full_name} invited you to Buildstate",
        f"You have been invited to join Buildstate as {invite.role.lower()}.\n\n"
        f"Create your account here: {link}\n\nThis invitation expires in 7 days.",
    )
    logger.info("Invite %s sent to %s by user %s", invite.id, invite.email, user.id)
    return jsonify({"success": True, "invite": {**invite.serialize(), "token": invite.token}}), 201


@bp.get("/invites")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
def list_invites():
    user = current_user()
    query = Invite.query
    if user.role != Role.ADMIN:
        query = query.filter_by(invited_by_id=user.id)
    invites = query.order_by(Invite.created_at.desc()).all()
    return jsonify({"success": True, "invites": [i.serialize() for i in invites]}), 200


@bp.get("/invites/<string:token>")
def lookup_invite(token):
    invite = Invite.query.filter_by(token=token).first()
    if invite is None:
        raise ApiError(404, "Invitation not found", ErrorCodes.RES_INVITE_NOT_FOUND)
    status = invite.status
    if status == InviteStatus.PENDING and invite.is_expired():
        status = InviteStatus.EXPIRED
    return jsonify({
        "success": True,
        "invite": {
            "email": invite.email,
            "role": invite.role,
            "status": status,
            "expires_at": invite.serialize()["expires_at"],
            "invited_by": invite.invited_by.full_name if invite.invited_by else None,
        },
    }), 200


@bp.delete("/invites/<int:invite_id>")
@require_role(Role.PROPERTY_MANAGER, Role.ADMIN)
def cancel_invite(invite_id):
    user = current_user()
    invite = db.session.get(Invite, invite_id)
    if invite is None or (user.role != Role.ADMIN and invite.invited_by_id != user.id):
        raise ApiError(404, "Invitation not found", ErrorCodes.RES_INVITE_NOT_FOUND)
    if invite.status != InviteStatus.PENDING:
        raise ApiError(400, "Only pending invitations can be cancelled", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)
    invite.status = InviteStatus.CANCELLED
    audit.record("invite.cancel", "invite", invite.id)
    db.session.commit()
    return jsonify({"success": True, "message": "Invitation cancelled"}), 200
