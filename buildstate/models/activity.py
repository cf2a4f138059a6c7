from datetime import datetime

from ..constants import DigestFrequency, NotificationType
from ..extensions import db
from ..utils import isoformat


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship('User')

    def serialize(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_email': self.user.email if self.user else None,
            'action': self.action,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'details': self.details,
            'ip_address': self.ip_address,
            'created_at': isoformat(self.created_at),
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False, default=NotificationType.SYSTEM)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def serialize(self):
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'data': self.data,
            'is_read': self.is_read,
            'read_at': isoformat(self.read_at),
            'created_at': isoformat(self.created_at),
        }


class PageView(db.Model):
    __tablename__ = 'page_views'

    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(1024), nullable=False, index=True)
    referrer = db.Column(db.String(1024), nullable=True)
    session_id = db.Column(db.String(128), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)


class NotificationPreference(db.Model):
    __tablename__ = 'notification_preferences'

    # per-event switches, all on by default
    EVENT_FIELDS = (
        'job_assigned',
        'job_status_changed',
        'job_completed',
        'inspection_scheduled',
        'inspection_completed',
        'service_request_created',
        'service_request_approved',
        'payment_failed',
        'payment_succeeded',
        'trial_expiring',
    )
    # notification types without an entry only follow email_enabled
    TYPE_FIELDS = {
        NotificationType.JOB_ASSIGNED: 'job_assigned',
        NotificationType.JOB_COMPLETED: 'job_completed',
        NotificationType.INSPECTION_SCHEDULED: 'inspection_scheduled',
        NotificationType.INSPECTION_REMINDER: 'inspection_scheduled',
        NotificationType.SERVICE_REQUEST_UPDATE: 'service_request_approved',
        NotificationType.SUBSCRIPTION_EXPIRING: 'trial_expiring',
        NotificationType.PAYMENT_DUE: 'payment_failed',
    }

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    email_enabled = db.Column(db.Boolean, nullable=False, default=True)
    push_enabled = db.Column(db.Boolean, nullable=False, default=True)
    job_assigned = db.Column(db.Boolean, nullable=False, default=True)
    job_status_changed = db.Column(db.Boolean, nullable=False, default=True)
    job_completed = db.Column(db.Boolean, nullable=False, default=True)
    inspection_scheduled = db.Column(db.Boolean, nullable=False, default=True)
    inspection_completed = db.Column(db.Boolean, nullable=False, default=True)
    service_request_created = db.Column(db.Boolean, nullable=False, default=True)
    service_request_approved = db.Column(db.Boolean, nullable=False, default=True)
    payment_failed = db.Column(db.Boolean, nullable=False, default=True)
    payment_succeeded = db.Column(db.Boolean, nullable=False, default=True)
    trial_expiring = db.Column(db.Boolean, nullable=False, default=True)
    email_digest_frequency = db.Column(db.String(20), nullable=False, default=DigestFrequency.DAILY)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def defaults(cls):
        return {
            'email_enabled': True,
            'push_enabled': True,
            **{field: True for field in cls.EVENT_FIELDS},
            'email_digest_frequency': DigestFrequency.DAILY,
        }

    def reset(self):
        for field, value in self.defaults().items():
            setattr(self, field, value)

    def wants_email(self, type_):
        if not self.email_enabled:
            return False
        field = self.TYPE_FIELDS.get(type_)
        return getattr(self, field) if field else True

    def __repr__(self):
        return f'<NotificationPreference user={self.user_id}>'

    def serialize(self):
        return {
            'user_id': self.user_id,
            **{field: getattr(self, field) for field in self.defaults()},
            'updated_at': isoformat(self.updated_at),
        }
