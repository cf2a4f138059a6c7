"""
Platform administration: metrics for the business, user management, audit trail
and manual triggers for scheduled housekeeping.
"""
import logging
import time
from datetime import datetime, timedelta

import psutil
from flask import Blueprint, jsonify, request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from ..constants import Role, SubscriptionPlan, SubscriptionStatus
from ..errors import ApiError, ErrorCodes
from ..extensions import db
from ..models import AuditLog, Inspection, Job, PageView, Property, Subscription, Unit, User
from ..schemas import AdminUserUpdate, PageViewRequest, load
from ..security.auth import admin_required, current_user, current_user_id
from ..security.access import search_filter
from ..security.rate_limit import public_limiter, rate_limit, session_or_ip_key
from ..services import analytics, audit, cache, housekeeping
from . import page_args

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__)

PERIODS = {"7d": 7, "30d": 30, "90d": 90}


def _period_days(default="30d"):
    period = request.args.get("period", default)
    if period not in PERIODS:
        logger.debug("Unknown analytics period %r, using 30d", period)
        period = "30d"
    return period, PERIODS[period]


def _viewed(what, **details):
    audit.record(f"admin.view_{what}", "admin", None, details or None)
    db.session.commit()


def _managers():
    return User.query.filter(User.role == Role.PROPERTY_MANAGER)


@bp.get("/admin/dashboard")
@admin_required
def dashboard():
    _viewed("dashboard")
    now = datetime.utcnow()
    last_30 = now - timedelta(days=30)
    prior_30 = now - timedelta(days=60)

    signups_current = User.query.filter(User.created_at >= last_30).count()
    signups_previous = User.query.filter(User.created_at >= prior_30, User.created_at < last_30).count()

    accounts = _managers().with_entities(User.subscription_plan, User.subscription_status).all()
    status_counts = dict(
        _managers().with_entities(User.subscription_status, func.count(User.id)).group_by(User.subscription_status).all()
    )
    revenue = analytics.mrr_breakdown(accounts)

    return jsonify({
        "success": True,
        "totals": {
            "users": User.query.count(),
            "active_users_30d": User.query.filter(User.last_login_at >= last_30).count(),
            "properties": Property.query.count(),
            "units": Unit.query.count(),
            "inspections": Inspection.query.count(),
            "jobs": Job.query.count(),
            "signups_7d": User.query.filter(User.created_at >= now - timedelta(days=7)).count(),
        },
        "growth": {
            "signups_last_30d": signups_current,
            "signups_previous_30d": signups_previous,
            "growth_rate": analytics.growth_rate(signups_current, signups_previous),
        },
        "subscriptions": {status: status_counts.get(status, 0) for status in SubscriptionStatus.ALL},
        "revenue": {"mrr": revenue["mrr"], "arr": revenue["arr"], "paying_customers": revenue["paying_customers"]},
    }), 200


@bp.get("/admin/analytics/users")
@admin_required
def user_analytics():
    period, days = _period_days()
    _viewed("user_analytics", period=period)
    now = datetime.utcnow()
    start = (now - timedelta(days=days - 1)).date()
    since = datetime.combine(start, datetime.min.time())

    signups = User.query.filter(User.created_at >= since).with_entities(User.created_at, User.role).all()
    active_by_role = dict(
        User.query.filter(User.last_login_at >= since)
        .with_entities(User.role, func.count(User.id))
        .group_by(User.role)
        .all()
    )
    top_managers = (
        db.session.query(User, func.count(Property.id).label("property_count"))
        .join(Property, Property.manager_id == User.id)
        .group_by(User.id)
        .order_by(func.count(Property.id).desc())
        .limit(10)
        .all()
    )

    return jsonify({
        "success": True,
        "period": period,
        "signups": analytics.daily_series_by(signups, start, days),
        "active_users_by_role": {role: active_by_role.get(role, 0) for role in Role.ALL},
        "top_property_managers": [
            {"id": u.id, "name": u.full_name, "email": u.email, "properties": count} for u, count in top_managers
        ],
    }), 200


@bp.get("/admin/analytics/subscriptions")
@admin_required
def subscription_analytics():
    _viewed("subscription_analytics")
    managers = _managers()
    by_plan = dict(managers.with_entities(User.subscription_plan, func.count(User.id)).group_by(User.subscription_plan).all())
    trial = managers.filter(User.subscription_status == SubscriptionStatus.TRIAL).count()
    converted = managers.filter(
        User.subscription_status == SubscriptionStatus.ACTIVE, User.subscription_plan.in_(SubscriptionPlan.PAID)
    ).count()
    return jsonify({
        "success": True,
        "distribution": {plan: by_plan.get(plan, 0) for plan in SubscriptionPlan.ALL},
        "trial_users": trial,
        "converted_users": converted,
        "conversion_rate": analytics.conversion_rate(trial, converted),
        "suspended": managers.filter(User.subscription_status == SubscriptionStatus.SUSPENDED).count(),
        "cancelled": managers.filter(User.subscription_status == SubscriptionStatus.CANCELLED).count(),
    }), 200


@bp.get("/admin/analytics/revenue")
@admin_required
def revenue_analytics():
    period, days = _period_days()
    _viewed("revenue_analytics", period=period)
    end = datetime.utcnow()
    start = end - timedelta(days=days)

    accounts = _managers().with_entities(User.subscription_plan, User.subscription_status).all()
    rows = Subscription.query.with_entities(
        Subscription.user_id, Subscription.plan, Subscription.created_at, Subscription.cancelled_at
    ).all()
    suspended = _managers().filter(User.subscription_status == SubscriptionStatus.SUSPENDED).count()

    return jsonify({
        "success": True,
        "period": period,
        "revenue": analytics.mrr_breakdown(accounts),
        "churn": analytics.churn_report(rows, start, end, suspended),
    }), 200


@bp.get("/admin/analytics/funnel")
@admin_required
def funnel_analytics():
    period, days = _period_days("90d")
    _viewed("funnel_analytics", period=period)
    since = datetime.utcnow() - timedelta(days=days)

    cohort = [uid for (uid,) in _managers().filter(User.created_at >= since).with_entities(User.id)]
    with_property = [uid for (uid,) in db.session.query(Property.manager_id).distinct()]
    with_unit = [
        uid for (uid,) in db.session.query(Property.manager_id).join(Unit, Unit.property_id == Property.id).distinct()
    ]
    with_work = {uid for (uid,) in db.session.query(Inspection.created_by_id).distinct()}
    with_work |= {uid for (uid,) in db.session.query(Job.created_by_id).distinct()}
    paying = [
        uid for (uid,) in _managers()
        .filter(User.subscription_status == SubscriptionStatus.ACTIVE, User.subscription_plan.in_(SubscriptionPlan.PAID))
        .with_entities(User.id)
    ]

    return jsonify({
        "success": True,
        "period": period,
        "funnel": analytics.signup_funnel(cohort, with_property, with_unit, with_work, paying),
    }), 200


@bp.get("/admin/analytics/retention")
@admin_required
def retention_analytics():
    months = max(1, min(request.args.get("months", 6, type=int), 12))
    _viewed("retention_analytics", months=months)
    now = datetime.utcnow()
    first = datetime(now.year, now.month, 1) - timedelta(days=31 * (months - 1))

    signups = User.query.filter(User.created_at >= first).with_entities(User.id, User.created_at).all()
    logins = (
        AuditLog.query.filter(AuditLog.action == "auth.login", AuditLog.created_at >= first)
        .with_entities(AuditLog.user_id, AuditLog.created_at)
        .all()
    )
    return jsonify({
        "success": True,
        "months": months,
        "cohorts": analytics.retention_cohorts(signups, logins, now, months),
    }), 200


@bp.get("/admin/traffic")
@admin_required
def traffic():
    period, days = _period_days()
    _viewed("traffic", period=period)
    since = datetime.utcnow() - timedelta(days=days)
    views = PageView.query.filter(PageView.created_at >= since).with_entities(
        PageView.path, PageView.referrer, PageView.session_id
    ).all()
    timestamps = [ts for (ts,) in PageView.query.filter(PageView.created_at >= since).with_entities(PageView.created_at)]
    start = (datetime.utcnow() - timedelta(days=days - 1)).date()
    return jsonify({
        "success": True,
        "period": period,
        **analytics.traffic_summary(views),
        "daily": analytics.daily_series(timestamps, start, days),
    }), 200


@bp.post("/analytics/pageview")
@rate_limit(public_limiter, session_or_ip_key)
def track_pageview():
    data = load(PageViewRequest)
    db.session.add(PageView(
        path=data.path,
        referrer=data.referrer,
        session_id=data.session_id,
        user_id=current_user_id(),
        ip_address=request.remote_addr,
        user_agent=(request.user_agent.string or "")[:512],
    ))
    db.session.commit()
    return jsonify({"success": True}), 201


@bp.get("/admin/health")
@admin_required
def system_health():
    """Database reachability plus uptime and memory of this worker process"""
    now = datetime.utcnow()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Admin health check database failure: %s", e)
        return jsonify({
            "success": False,
            "status": "unhealthy",
            "database": "disconnected",
            "timestamp": now.isoformat() + "Z",
            "error": str(e),
        }), 503

    process = psutil.Process()
    memory = process.memory_info()
    return jsonify({
        "success": True,
        "status": "healthy",
        "database": "connected",
        "timestamp": now.isoformat() + "Z",
        "uptime": round(time.time() - process.create_time(), 1),
        "memory": {"rss": memory.rss, "vms": memory.vms, "percent": round(process.memory_percent(), 2)},
    }), 200


# ---------------------------------------------------------------- users
@bp.get("/admin/users")
@admin_required
def list_users():
    _viewed("users")
    limit, offset = page_args()
    query = User.query
    for arg, column in (("role", User.role), ("subscription_status", User.subscription_status),
                        ("subscription_plan", User.subscription_plan)):
        value = request.args.get(arg)
        if value:
            query = query.filter(column == value)
    active = request.args.get("is_active")
    if active is not None:
        query = query.filter(User.is_active.is_(active.lower() in ("1", "true", "yes")))
    query = search_filter(query, User, (request.args.get("q") or "").strip(), "email", "first_name", "last_name")

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset).all()
    return jsonify({"success": True, "total": total, "users": [u.serialize() for u in users]}), 200


@bp.get("/admin/users/<int:user_id>")
@admin_required
def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise ApiError(404, "User not found", ErrorCodes.RES_USER_NOT_FOUND)
    _viewed("user", user_id=user.id)
    data = user.serialize()
    data["properties"] = Property.query.filter_by(manager_id=user.id).count()
    data["subscriptions"] = [s.serialize() for s in user.subscriptions]
    return jsonify({"success": True, "user": data}), 200


@bp.patch("/admin/users/<int:user_id>")
@admin_required
def update_user(user_id):
    admin = current_user()
    user = db.session.get(User, user_id)
    if user is None:
        raise ApiError(404, "User not found", ErrorCodes.RES_USER_NOT_FOUND)
    changes = {k: v for k, v in load(AdminUserUpdate).model_dump(exclude_unset=True).items() if v is not None}
    if user.id == admin.id and (changes.get("is_active") is False or changes.get("role", Role.ADMIN) != Role.ADMIN):
        raise ApiError(400, "You cannot deactivate or demote yourself", ErrorCodes.BIZ_OPERATION_NOT_ALLOWED)

    for field, value in changes.items():
        setattr(user, field, value)
    audit.record("admin.user_update", "user", user.id, {k: str(v) for k, v in changes.items()}, user=admin)
    db.session.commit()
    cache.invalidate_user(user.id)
    return jsonify({"success": True, "user": user.serialize()}), 200


@bp.get("/admin/audit-logs")
@admin_required
def audit_logs():
    limit, offset = page_args(default_limit=100, max_limit=500)
    query = AuditLog.query
    for arg, column in (("action", AuditLog.action), ("entity_type", AuditLog.entity_type)):
        value = request.args.get(arg)
        if value:
            query = query.filter(column == value)
    user_id = request.args.get("user_id", type=int)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    total = query.count()
    logs = [entry.serialize() for entry in
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset)]
    _viewed("audit_logs")
    return jsonify({"success": True, "total": total, "logs": logs}), 200


@bp.post("/admin/housekeeping/<string:task>")
@admin_required
def run_housekeeping(task):
    if task == "run-all":
        result = housekeeping.run_all()
    elif task in housekeeping.TASKS:
        result = housekeeping.TASKS[task]()
    else:
        raise ApiError(
            404,
            f"Unknown task {task}. Available: {', '.join([*housekeeping.TASKS, 'run-all'])}",
            ErrorCodes.ERR_NOT_FOUND,
        )
    audit.record("admin.housekeeping", "task", None, {"task": task, "result": result})
    db.session.commit()
    logger.info("Housekeeping %s triggered by admin %s: %s", task, current_user().id, result)
    return jsonify({"success": True, "task": task, "result": result}), 200
