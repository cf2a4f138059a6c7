import logging
import smtplib

from flask import current_app
from flask_mail import Message

from ..extensions import db
from ..models import Notification, NotificationPreference

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str, html: str = None) -> bool:
    """
    Send email using Flask-Mail configuration.
    Falls back to logging if mail is not configured.
    """
    if not current_app.config.get("MAIL_SERVER") or current_app.config.get("MAIL_SUPPRESS_SEND"):
        logger.info("[EMAIL - NOT CONFIGURED] To: %s | Subject: %s | Body: %s", to_email, subject, body[:120])
        return False

    mail = current_app.extensions.get("mail")
    try:
        msg = Message(
            subject=subject,
            recipients=[to_email],
            body=body,
            html=html,
            sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
        )
        mail.send(msg)
        logger.info("[EMAIL - SENT] To: %s | Subject: %s", to_email, subject)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("[EMAIL - ERROR] Failed to send to %s: %s", to_email, e)
        return False


def preferences_for(user):
    """Stored preferences for `user`, created with defaults on first access. Caller commits."""
    prefs = NotificationPreference.query.filter_by(user_id=user.id).first()
    if prefs is None:
        prefs = NotificationPreference(user_id=user.id, **NotificationPreference.defaults())
        db.session.add(prefs)
    return prefs


def wants_email(user, type_):
    prefs = NotificationPreference.query.filter_by(user_id=user.id).first()
    if prefs is None:
        return True
    if not prefs.wants_email(type_):
        logger.info("Email for %s suppressed by preferences of user %s", type_, user.id)
        return False
    return True


def notify(user, type_, title, message, data=None, email=False, commit=False):
    """Store an in-app notification for `user`, optionally mirroring it by email.

    Notifications are best-effort; the caller's transaction decides whether the row persists
    unless `commit` is set.
    """
    if user is None:
        return None
    notification = Notification(user_id=user.id, type=type_, title=title, message=message, data=data or {})
    db.session.add(notification)
    if commit:
        db.session.commit()
    if email and user.email and wants_email(user, type_):
        send_email(user.email, title, message)
    return notification
