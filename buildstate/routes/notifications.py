from datetime import datetime

from flask import Blueprint, jsonify

from ..constants import DigestFrequency
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Notification
from ..schemas import NotificationPreferencesUpdate, load
from ..security.auth import auth_required, current_user
from ..services.notifications import preferences_for
from . import flag, page_args

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@auth_required
def list_notifications():
    user = current_user()
    limit, offset = page_args()
    query = Notification.query.filter_by(user_id=user.id)
    if flag("unread"):
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    unread = Notification.query.filter_by(user_id=user.id, is_read=False).count()
    items = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset).all()
    return jsonify({
        "success": True,
        "total": total,
        "unread": unread,
        "notifications": [n.serialize() for n in items],
    }), 200


@bp.post("/notifications/<int:notification_id>/read")
@auth_required
def mark_read(notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=current_user().id).first()
    if notification is None:
        raise ApiError(404, "Notification not found", ErrorCodes.RES_NOT_FOUND)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.session.commit()
    return jsonify({"success": True, "notification": notification.serialize()}), 200


@bp.post("/notifications/read-all")
@auth_required
def mark_all_read():
    updated = Notification.query.filter_by(user_id=current_user().id, is_read=False).update(
        {"is_read": True, "read_at": datetime.utcnow()}
    )
    db.session.commit()
    return jsonify({"success": True, "updated": updated}), 200


@bp.get("/notification-preferences")
@auth_required
def get_preferences():
    prefs = preferences_for(current_user())
    db.session.commit()
    return jsonify({"success": True, "preferences": prefs.serialize()}), 200


@bp.patch("/notification-preferences")
@auth_required
def update_preferences():
    changes = load(NotificationPreferencesUpdate).model_dump(exclude_none=True)
    prefs = preferences_for(current_user())
    digest = changes.get("email_digest_frequency")
    if digest and digest != DigestFrequency.NONE and not changes.get("email_enabled", prefs.email_enabled):
        raise ApiError(400, "Email digest requires email notifications to be enabled", ErrorCodes.VAL_INVALID_INPUT)
    for field, value in changes.items():
        setattr(prefs, field, value)
    db.session.commit()
    return jsonify({"success": True, "preferences": prefs.serialize()}), 200


@bp.post("/notification-preferences/reset")
@auth_required
def reset_preferences():
    prefs = preferences_for(current_user())
    prefs.reset()
    db.session.commit()
    return jsonify({"success": True, "preferences": prefs.serialize()}), 200
