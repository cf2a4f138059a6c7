from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from ..constants import InviteStatus, Role, SubscriptionPlan, SubscriptionStatus
from ..extensions import db
from ..utils import isoformat


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    role = db.Column(db.String(30), nullable=False, default=Role.PROPERTY_MANAGER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    email_verified = db.Column(db.Boolean, nullable=False, default=False)

    # Subscription state lives on the paying user (property managers)
    subscription_plan = db.Column(db.String(30), nullable=False, default=SubscriptionPlan.FREE_TRIAL)
    subscription_status = db.Column(db.String(30), nullable=False, default=SubscriptionStatus.TRIAL)
    trial_end_date = db.Column(db.DateTime, nullable=True)
    subscription_start_date = db.Column(db.DateTime, nullable=True)
    subscription_end_date = db.Column(db.DateTime, nullable=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    trial_reminders_sent = db.Column(db.String(50), nullable=True)  # e.g. "7,3"

    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def trial_days_remaining(self, now=None):
        if self.subscription_status != SubscriptionStatus.TRIAL or not self.trial_end_date:
            return None
        delta = self.trial_end_date - (now or datetime.utcnow())
        return max(0, delta.days + (1 if delta.seconds else 0))

    def reminders_sent(self):
        return {int(x) for x in (self.trial_reminders_sent or "").split(",") if x.strip().isdigit()}

    def mark_reminder_sent(self, days):
        sent = self.reminders_sent() | {int(days)}
        self.trial_reminders_sent = ",".join(str(d) for d in sorted(sent, reverse=True))

    def __repr__(self):
        return f'<User {self.id}: {self.email} ({self.role})>'

    def serialize(self, include_subscription=True):
        data = {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'phone': self.phone,
            'role': self.role,
            'is_active': self.is_active,
            'email_verified': self.email_verified,
            'last_login_at': isoformat(self.last_login_at),
            'created_at': isoformat(self.created_at),
        }
        if include_subscription:
            data.update({
                'subscription_plan': self.subscription_plan,
                'subscription_status': self.subscription_status,
                'trial_end_date': isoformat(self.trial_end_date),
                'trial_days_remaining': self.trial_days_remaining(),
            })
        return data


class Invite(db.Model):
    __tablename__ = 'invites'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    role = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=InviteStatus.PENDING)
    invited_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id', ondelete='SET NULL'), nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id', ondelete='SET NULL'), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    invited_by = db.relationship('User', foreign_keys=[invited_by_id])

    def is_expired(self, now=None):
        return self.expires_at < (now or datetime.utcnow())

    def __repr__(self):
        return f'<Invite {self.id}: {self.email} as {self.role}>'

    def serialize(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'status': self.status,
            'property_id': self.property_id,
            'unit_id': self.unit_id,
            'invited_by': self.invited_by.full_name if self.invited_by else None,
            'expires_at': isoformat(self.expires_at),
            'accepted_at': isoformat(self.accepted_at),
            'created_at': isoformat(self.created_at),
        }


class UserToken(db.Model):
    """Single-use selector/verifier token; only a hash of the verifier is stored."""
    __tablename__ = 'user_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    purpose = db.Column(db.String(30), nullable=False)
    selector = db.Column(db.String(64), unique=True, nullable=False, index=True)
    verifier_hash = db.Column(db.String(255), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('tokens', lazy=True, cascade='all, delete-orphan'))

    def is_expired(self, now=None):
        return self.expires_at < (now or datetime.utcnow())

    def __repr__(self):
        return f'<UserToken {self.id}: {self.purpose} for user {self.user_id}>'
