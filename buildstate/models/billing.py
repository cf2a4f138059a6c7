from datetime import datetime

from ..constants import DiscountType, SubscriptionStatus
from ..extensions import db
from ..utils import isoformat, to_float


class Subscription(db.Model):
    """One row per paid subscription period started through Stripe; the user row carries the live state."""

    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    plan = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default='usd')
    stripe_subscription_id = db.Column(db.String(255), nullable=True, unique=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_codes.id', ondelete='SET NULL'), nullable=True)
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('subscriptions', lazy=True))

    def __repr__(self):
        return f'<Subscription {self.id}: user={self.user_id} {self.plan} {self.status}>'

    def serialize(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan': self.plan,
            'status': self.status,
            'amount': to_float(self.amount),
            'currency': self.currency,
            'current_period_start': isoformat(self.current_period_start),
            'current_period_end': isoformat(self.current_period_end),
            'cancelled_at': isoformat(self.cancelled_at),
            'created_at': isoformat(self.created_at),
        }


class PromoCode(db.Model):
    __tablename__ = 'promo_codes'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    discount_type = db.Column(db.String(20), nullable=False, default=DiscountType.PERCENTAGE)
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    max_uses = db.Column(db.Integer, nullable=True)
    current_uses = db.Column(db.Integer, nullable=False, default=0)
    valid_from = db.Column(db.DateTime, nullable=True)
    valid_until = db.Column(db.DateTime, nullable=True)
    applicable_plans = db.Column(db.String(255), nullable=True)  # comma separated, empty means all
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def plans(self):
        return [p.strip() for p in (self.applicable_plans or '').split(',') if p.strip()]

    def __repr__(self):
        return f'<PromoCode {self.code}>'

    def serialize(self):
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type,
            'discount_value': to_float(self.discount_value),
            'max_uses': self.max_uses,
            'current_uses': self.current_uses,
            'valid_from': isoformat(self.valid_from),
            'valid_until': isoformat(self.valid_until),
            'applicable_plans': self.plans,
            'is_active': self.is_active,
            'created_at': isoformat(self.created_at),
        }
