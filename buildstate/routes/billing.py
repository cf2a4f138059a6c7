import logging

from flask import Blueprint, jsonify, request

from ..constants import Role
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import PromoCode, Subscription
from ..schemas import CheckoutRequest, PromoCodeCreate, PromoCodeUpdate, PromoValidateRequest, load
from ..security.auth import admin_required, auth_required, current_user, require_role
from ..security.rate_limit import ip_key, public_limiter, rate_limit
from ..services import audit
from ..services import billing as billing_service
from . import page_args

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__)


# ---------------------------------------------------------------- subscriptions
@bp.get("/subscriptions/plans")
def plans():
    return jsonify({"success": True, "plans": billing_service.list_plans()}), 200


@bp.get("/subscriptions/current")
@auth_required
def current_subscription():
    user = current_user()
    latest = (
        Subscription.query.filter_by(user_id=user.id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    return jsonify({
        "success": True,
        "subscription": {
            "plan": user.subscription_plan,
            "plan_name": billing_service.PLAN_NAMES.get(user.subscription_plan),
            "status": user.subscription_status,
            "price": float(billing_service.plan_price(user.subscription_plan)),
            "trial_end_date": user.serialize()["trial_end_date"],
            "trial_days_remaining": user.trial_days_remaining(),
            "subscription_start_date": user.subscription_start_date.isoformat() if user.subscription_start_date else None,
            "subscription_end_date": user.subscription_end_date.isoformat() if user.subscription_end_date else None,
            "limits": billing_service.plan_limits(user.subscription_plan),
            "latest": latest.serialize() if latest else None,
        },
    }), 200


@bp.get("/subscriptions/usage")
@require_role(Role.PROPERTY_MANAGER)
def usage():
    user = current_user()
    return jsonify({
        "success": True,
        "plan": user.subscription_plan,
        "usage": billing_service.usage_report(user),
    }), 200


# ---------------------------------------------------------------- stripe
@bp.post("/billing/checkout")
@require_role(Role.PROPERTY_MANAGER)
def checkout():
    data = load(CheckoutRequest)
    session = billing_service.create_checkout_session(current_user(), data.plan, data.promo_code)
    return jsonify({"success": True, **session}), 200


@bp.post("/billing/webhook")
def webhook():
    """Stripe webhook receiver; the signature is verified before anything is applied"""
    event = billing_service.construct_event(request.get_data(), request.headers.get("Stripe-Signature", ""))
    result = billing_service.handle_event(event)
    logger.info("Stripe event %s: %s", event["type"], result)
    return jsonify({"received": True, "result": result}), 200


@bp.post("/billing/cancel")
@require_role(Role.PROPERTY_MANAGER)
def cancel():
    user = billing_service.cancel_subscription(current_user())
    audit.record("subscription.cancel", "user", user.id)
    db.session.commit()
    return jsonify({"success": True, "message": "Subscription cancelled", "user": user.serialize()}), 200


# ---------------------------------------------------------------- promo codes
@bp.post("/promo-codes/validate")
@rate_limit(public_limiter, ip_key)
def validate_promo():
    data = load(PromoValidateRequest)
    result = billing_service.validate_promo_code(data.code, data.plan)
    result.pop("promo_code")
    return jsonify({"success": True, "valid": True, **result}), 200


@bp.get("/promo-codes")
@admin_required
def list_promo_codes():
    limit, offset = page_args()
    query = PromoCode.query
    total = query.count()
    codes = query.order_by(PromoCode.created_at.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "promo_codes": [c.serialize() for c in codes]}), 200


@bp.post("/promo-codes")
@admin_required
def create_promo_code():
    data = load(PromoCodeCreate)
    if PromoCode.query.filter(db.func.upper(PromoCode.code) == data.code).first():
        raise ApiError(409, "A promo code with this code already exists", ErrorCodes.RES_ALREADY_EXISTS)

    fields = data.model_dump()
    fields["applicable_plans"] = ",".join(fields["applicable_plans"]) or None
    promo = PromoCode(**fields)
    db.session.add(promo)
    db.session.flush()
    audit.record("promo_code.create", "promo_code", promo.id, {"code": promo.code})
    db.session.commit()
    return jsonify({"success": True, "promo_code": promo.serialize()}), 201


def _get_promo(promo_id):
    promo = db.session.get(PromoCode, promo_id)
    if promo is None:
        raise ApiError(404, "Promo code not found", ErrorCodes.RES_NOT_FOUND)
    return promo


@bp.get("/promo-codes/<int:promo_id>")
@admin_required
def get_promo_code(promo_id):
    return jsonify({"success": True, "promo_code": _get_promo(promo_id).serialize()}), 200


@bp.patch("/promo-codes/<int:promo_id>")
@admin_required
def update_promo_code(promo_id):
    promo = _get_promo(promo_id)
    changes = load(PromoCodeUpdate).model_dump(exclude_unset=True)
    if "applicable_plans" in changes:
        changes["applicable_plans"] = ",".join(changes["applicable_plans"] or []) or None
    for field, value in changes.items():
        if value is None and field in ("discount_value", "is_active"):
            continue
        setattr(promo, field, value)
    audit.record("promo_code.update", "promo_code", promo.id, {"fields": sorted(changes)})
    db.session.commit()
    return jsonify({"success": True, "promo_code": promo.serialize()}), 200


@bp.delete("/promo-codes/<int:promo_id>")
@admin_required
def delete_promo_code(promo_id):
    promo = _get_promo(promo_id)
    Subscription.query.filter_by(promo_code_id=promo.id).update({"promo_code_id": None})
    audit.record("promo_code.delete", "promo_code", promo.id, {"code": promo.code})
    db.session.delete(promo)
    db.session.commit()
    return jsonify({"success": True, "message": "Promo code deleted"}), 200
