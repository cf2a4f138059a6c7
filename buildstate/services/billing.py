"""
Subscription plans, usage limits and the Stripe integration.

Every plan exposes the full feature set; plans differ only in usage limits.
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import stripe
from flask import current_app

from ..constants import DiscountType, Role, SubscriptionPlan, SubscriptionStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import Inspection, Job, Property, PromoCode, Subscription, UnitTenant, Unit, User, UploadedFile

logger = logging.getLogger(__name__)

UNLIMITED = None

PLAN_PRICES = {
    SubscriptionPlan.FREE_TRIAL: Decimal("0"),
    SubscriptionPlan.BASIC: Decimal("29"),
    SubscriptionPlan.PROFESSIONAL: Decimal("79"),
    SubscriptionPlan.ENTERPRISE: Decimal("149"),
}

PLAN_LIMITS = {
    SubscriptionPlan.FREE_TRIAL: {
        "properties": 10,
        "team_members": 5,
        "inspections_per_month": 25,
        "jobs_per_month": 50,
        "maintenance_plans_active": 5,
        "storage_gb": 5,
    },
    SubscriptionPlan.BASIC: {
        "properties": 10,
        "team_members": 30,
        "inspections_per_month": 25,
        "jobs_per_month": 50,
        "maintenance_plans_active": 5,
        "storage_gb": 10,
    },
    SubscriptionPlan.PROFESSIONAL: {
        "properties": 50,
        "team_members": 100,
        "inspections_per_month": 100,
        "jobs_per_month": 250,
        "maintenance_plans_active": 25,
        "storage_gb": 50,
    },
    SubscriptionPlan.ENTERPRISE: {
        "properties": UNLIMITED,
        "team_members": UNLIMITED,
        "inspections_per_month": UNLIMITED,
        "jobs_per_month": UNLIMITED,
        "maintenance_plans_active": UNLIMITED,
        "storage_gb": UNLIMITED,
    },
}

PLAN_NAMES = {
    SubscriptionPlan.FREE_TRIAL: "Free Trial",
    SubscriptionPlan.BASIC: "Basic",
    SubscriptionPlan.PROFESSIONAL: "Professional",
    SubscriptionPlan.ENTERPRISE: "Enterprise",
}


def plan_price(plan) -> Decimal:
    return PLAN_PRICES.get(plan, Decimal("0"))


def plan_limits(plan) -> dict:
    return PLAN_LIMITS.get(plan, PLAN_LIMITS[SubscriptionPlan.FREE_TRIAL])


def list_plans():
    return [
        {
            "id": plan,
            "name": PLAN_NAMES[plan],
            "price": float(PLAN_PRICES[plan]),
            "currency": "usd",
            "interval": "month",
            "limits": PLAN_LIMITS[plan],
        }
        for plan in SubscriptionPlan.ALL
    ]


def _month_start(now):
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def usage_for(manager: User, now=None) -> dict:
    now = now or datetime.utcnow()
    month_start = _month_start(now)
    property_ids = [p.id for p in Property.query.with_entities(Property.id).filter_by(manager_id=manager.id)]
    tenants = 0
    inspections = jobs = 0
    if property_ids:
        tenants = (
            db.session.query(db.func.count(db.distinct(UnitTenant.tenant_id)))
            .join(Unit, Unit.id == UnitTenant.unit_id)
            .filter(Unit.property_id.in_(property_ids), UnitTenant.is_active.is_(True))
            .scalar()
        )
        inspections = Inspection.query.filter(
            Inspection.property_id.in_(property_ids), Inspection.created_at >= month_start
        ).count()
        jobs = Job.query.filter(Job.property_id.in_(property_ids), Job.created_at >= month_start).count()
    storage_bytes = (
        db.session.query(db.func.coalesce(db.func.sum(UploadedFile.size), 0))
        .filter(UploadedFile.uploaded_by_id == manager.id)
        .scalar()
    )
    return {
        "properties": len(property_ids),
        "team_members": int(tenants or 0),
        "inspections_per_month": inspections,
        "jobs_per_month": jobs,
        "storage_gb": round(int(storage_bytes or 0) / (1024 ** 3), 3),
    }


def usage_report(manager: User):
    limits = plan_limits(manager.subscription_plan)
    usage = usage_for(manager)
    report = {}
    for key, used in usage.items():
        limit = limits.get(key)
        report[key] = {
            "used": used,
            "limit": limit,
            "percentage": round(used / limit * 100, 1) if limit else 0,
        }
    return report


def ensure_within_limit(manager: User, resource: str, used: int) -> None:
    limit = plan_limits(manager.subscription_plan).get(resource)
    if limit is not None and used >= limit:
        raise ApiError(
            403,
            f"Your {PLAN_NAMES.get(manager.subscription_plan, manager.subscription_plan)} plan allows "
            f"{limit} {resource.replace('_', ' ')}. Upgrade to add more.",
            ErrorCodes.SUB_USAGE_LIMIT_REACHED,
            {"resource": resource, "limit": limit, "used": used},
        )


# ---------------------------------------------------------------- promo codes
def _cents(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_promo_code(code: str, plan: str, now=None) -> dict:
    """Check a promo code against `plan`; returns pricing details or raises ApiError(400)."""
    now = now or datetime.utcnow()
    promo = PromoCode.query.filter(db.func.upper(PromoCode.code) == code.strip().upper()).first()
    if promo is None or not promo.is_active:
        raise ApiError(400, "Invalid promo code", ErrorCodes.VAL_INVALID_INPUT)
    if promo.valid_from and promo.valid_from > now:
        raise ApiError(400, "This promo code is not active yet", ErrorCodes.VAL_INVALID_INPUT)
    if promo.valid_until and promo.valid_until < now:
        raise ApiError(400, "This promo code has expired", ErrorCodes.VAL_INVALID_INPUT)
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise ApiError(400, "This promo code has reached its usage limit", ErrorCodes.VAL_INVALID_INPUT)
    if promo.plans and plan not in promo.plans:
        raise ApiError(400, f"This promo code is not valid for the {plan} plan", ErrorCodes.VAL_INVALID_INPUT)

    price = plan_price(plan)
    value = Decimal(str(promo.discount_value))
    if promo.discount_type == DiscountType.PERCENTAGE:
        discount = _cents(price * value / Decimal("100"))
    else:
        discount = _cents(min(value, price))
    return {
        "promo_code": promo,
        "code": promo.code,
        "discount_type": promo.discount_type,
        "discount_value": float(value),
        "original_price": float(price),
        "discount_amount": float(discount),
        "final_price": float(_cents(price - discount)),
    }


# ---------------------------------------------------------------- stripe
def init_stripe() -> None:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ApiError(503, "Payments are not configured", ErrorCodes.EXT_STRIPE_NOT_CONFIGURED)
    stripe.api_key = key


def price_id_for(plan):
    return current_app.config.get(f"STRIPE_PRICE_{plan}")


def plan_for_price(price_id, fallback=None):
    for plan in SubscriptionPlan.PAID:
        if price_id and price_id_for(plan) == price_id:
            return plan
    return fallback if fallback in SubscriptionPlan.PAID else SubscriptionPlan.BASIC


def create_checkout_session(user: User, plan: str, promo_code: str = None):
    init_stripe()
    price_id = price_id_for(plan)
    if not price_id:
        raise ApiError(400, f"Unknown plan or missing price id: {plan}", ErrorCodes.VAL_INVALID_REQUEST)

    frontend = current_app.config["FRONTEND_URL"].rstrip("/")
    params = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{frontend}/subscriptions?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{frontend}/subscriptions?canceled=true",
        "client_reference_id": str(user.id),
        "metadata": {"user_id": str(user.id), "plan": plan},
        "subscription_data": {"metadata": {"user_id": str(user.id), "plan": plan}},
    }
    if user.stripe_customer_id:
        params["customer"] = user.stripe_customer_id
    else:
        params["customer_email"] = user.email

    try:
        if promo_code:
            promo = validate_promo_code(promo_code, plan)
            params["metadata"]["promo_code"] = promo["code"]
            if promo["discount_type"] == DiscountType.PERCENTAGE:
                coupon = stripe.Coupon.create(percent_off=promo["discount_value"], duration="once")
            else:
                coupon = stripe.Coupon.create(
                    amount_off=int(round(promo["discount_amount"] * 100)), currency="usd", duration="once"
                )
            params["discounts"] = [{"coupon": coupon["id"]}]
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error("Stripe checkout failed for user %s: %s", user.id, e)
        raise ApiError(502, f"Stripe error: {e.user_message or str(e)}", ErrorCodes.EXT_STRIPE_ERROR)
    return {"session_id": session["id"], "url": session["url"]}


def construct_event(payload: bytes, signature: str):
    init_stripe()
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ApiError(503, "Webhook secret not configured", ErrorCodes.EXT_STRIPE_NOT_CONFIGURED)
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError):
        raise ApiError(400, "Invalid webhook signature", ErrorCodes.VAL_INVALID_REQUEST)


def _ts(value):
    return datetime.utcfromtimestamp(value) if value else None


STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIAL,
    "past_due": SubscriptionStatus.SUSPENDED,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "paused": SubscriptionStatus.SUSPENDED,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PENDING,
}


def app_status(stripe_status, fallback=SubscriptionStatus.PENDING):
    """Local subscription status for a Stripe subscription status."""
    return STRIPE_STATUS_MAP.get((stripe_status or "").lower(), fallback)


def _user_for(obj):
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("user_id") or obj.get("client_reference_id")
    user = db.session.get(User, int(user_id)) if user_id else None
    if user is None and obj.get("customer"):
        user = User.query.filter_by(stripe_customer_id=obj["customer"]).first()
    return user


def activate_subscription(user, plan, stripe_subscription_id=None, customer_id=None,
                          period_start=None, period_end=None, promo_code=None):
    now = datetime.utcnow()
    user.subscription_plan = plan
    user.subscription_status = SubscriptionStatus.ACTIVE
    user.subscription_start_date = user.subscription_start_date or now
    user.subscription_end_date = period_end
    user.trial_end_date = None
    if customer_id:
        user.stripe_customer_id = customer_id
    if stripe_subscription_id:
        user.stripe_subscription_id = stripe_subscription_id

    record = None
    if stripe_subscription_id:
        record = Subscription.query.filter_by(stripe_subscription_id=stripe_subscription_id).first()
    if record is None:
        record = Subscription(user_id=user.id, stripe_subscription_id=stripe_subscription_id)
        db.session.add(record)
    record.plan = plan
    record.status = SubscriptionStatus.ACTIVE
    record.amount = plan_price(plan)
    record.stripe_customer_id = customer_id
    record.current_period_start = period_start or now
    record.current_period_end = period_end

    if promo_code:
        promo = PromoCode.query.filter(db.func.upper(PromoCode.code) == promo_code.upper()).first()
        if promo:
            promo.current_uses = (promo.current_uses or 0) + 1
            record.promo_code_id = promo.id
    return record


def _set_status(obj, status, user=None):
    sub_id = obj.get("subscription") if obj.get("object") == "invoice" else obj.get("id")
    record = Subscription.query.filter_by(stripe_subscription_id=sub_id).first() if sub_id else None
    user = record.user if record else user or _user_for(obj)
    if user is None:
        logger.warning("Stripe event for unknown subscription %s", sub_id)
        return None
    user.subscription_status = status
    if record is not None:
        record.status = status
        if status == SubscriptionStatus.CANCELLED:
            record.cancelled_at = record.cancelled_at or datetime.utcnow()
    return user


def handle_event(event) -> str:
    """Apply a verified Stripe event to local state. Returns a short description of what was done."""
    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        user = _user_for(obj)
        if user is None:
            logger.warning("Checkout completed for unknown user: %s", obj.get("id"))
            return "ignored"
        metadata = obj.get("metadata") or {}
        plan = plan_for_price(None, metadata.get("plan"))
        activate_subscription(
            user,
            plan,
            stripe_subscription_id=obj.get("subscription"),
            customer_id=obj.get("customer"),
            promo_code=metadata.get("promo_code"),
        )
        db.session.commit()
        logger.info("Activated %s subscription for user %s", plan, user.id)
        return "activated"

    if event_type == "customer.subscription.updated":
        items = (obj.get("items") or {}).get("data") or []
        price_id = items[0]["price"]["id"] if items else None
        record = Subscription.query.filter_by(stripe_subscription_id=obj.get("id")).first()
        user = record.user if record else _user_for(obj)
        if user is None:
            return "ignored"
        plan = plan_for_price(price_id, (obj.get("metadata") or {}).get("plan") or user.subscription_plan)
        status = app_status(obj.get("status"), SubscriptionStatus.ACTIVE)
        # a subscription set to cancel at period end stays cancelled locally while Stripe reports it active
        if obj.get("cancel_at_period_end") or obj.get("canceled_at"):
            status = SubscriptionStatus.CANCELLED

        if status == SubscriptionStatus.ACTIVE:
            activate_subscription(
                user,
                plan,
                stripe_subscription_id=obj.get("id"),
                customer_id=obj.get("customer"),
                period_start=_ts(obj.get("current_period_start")),
                period_end=_ts(obj.get("current_period_end")),
            )
        else:
            _set_status(obj, status, user)
            if record is not None:
                record.current_period_end = _ts(obj.get("current_period_end")) or record.current_period_end
                if status == SubscriptionStatus.CANCELLED and obj.get("canceled_at"):
                    record.cancelled_at = _ts(obj["canceled_at"])
            if status == SubscriptionStatus.TRIAL:
                user.trial_end_date = _ts(obj.get("trial_end")) or user.trial_end_date
        db.session.commit()
        logger.info("Subscription %s updated: stripe=%s local=%s", obj.get("id"), obj.get("status"), status)
        return "updated"

    if event_type == "customer.subscription.deleted":
        _set_status(obj, SubscriptionStatus.CANCELLED)
        db.session.commit()
        return "cancelled"

    if event_type == "invoice.payment_failed":
        _set_status(obj, SubscriptionStatus.SUSPENDED)
        db.session.commit()
        return "suspended"

    if event_type == "invoice.payment_succeeded":
        user = _set_status(obj, SubscriptionStatus.ACTIVE)
        if user is not None:
            user.trial_end_date = None
        db.session.commit()
        return "renewed"

    return "ignored"


def cancel_subscription(user: User):
    if user.stripe_subscription_id:
        init_stripe()
        try:
            stripe.Subscription.modify(user.stripe_subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error("Stripe cancellation failed for user %s: %s", user.id, e)
            raise ApiError(502, f"Stripe error: {e.user_message or str(e)}", ErrorCodes.EXT_STRIPE_ERROR)

    now = datetime.utcnow()
    user.subscription_status = SubscriptionStatus.CANCELLED
    record = (
        Subscription.query.filter_by(user_id=user.id)
        .filter(Subscription.cancelled_at.is_(None))
        .order_by(Subscription.created_at.desc())
        .first()
    )
    if record is not None:
        record.status = SubscriptionStatus.CANCELLED
        record.cancelled_at = now
    db.session.commit()
    return user


def is_paying(user: User) -> bool:
    return (
        user.role == Role.PROPERTY_MANAGER
        and user.subscription_status == SubscriptionStatus.ACTIVE
        and user.subscription_plan in SubscriptionPlan.PAID
    )
