"""
Business metrics reduced in application code from raw rows.

The admin routes fetch plain tuples from the database and hand them to these
functions; nothing here touches the session, so every metric can be checked
with hand-built rows.
"""
from __future__ import annotations

from collections import Counter, OrderedDict, defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from dateutil.relativedelta import relativedelta

from ..constants import SubscriptionPlan, SubscriptionStatus
from .billing import plan_price


def percentage(part, whole, digits=2):
    return round(part / whole * 100, digits) if whole else 0


def growth_rate(current: int, previous: int) -> float:
    """Period-over-period growth as a percentage, two decimals."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def conversion_rate(trial: int, converted: int) -> float:
    """Share of converted accounts among trial plus converted; 0 while nobody is on a trial."""
    if not trial:
        return 0
    return percentage(converted, trial + converted)


def mrr_breakdown(accounts: Iterable[tuple[str, str]]) -> dict:
    """MRR from (plan, status) pairs; only ACTIVE paid plans contribute.

    Returns {"mrr", "arr", "by_plan": {plan: {"subscribers", "mrr"}}, "paying_customers"}.
    """
    by_plan = OrderedDict((plan, {"subscribers": 0, "mrr": Decimal("0")}) for plan in SubscriptionPlan.PAID)
    for plan, status in accounts:
        if status != SubscriptionStatus.ACTIVE or plan not in by_plan:
            continue
        by_plan[plan]["subscribers"] += 1
        by_plan[plan]["mrr"] += plan_price(plan)
    mrr = sum((v["mrr"] for v in by_plan.values()), Decimal("0"))
    return {
        "mrr": float(mrr),
        "arr": float(mrr * 12),
        "paying_customers": sum(v["subscribers"] for v in by_plan.values()),
        "by_plan": {k: {"subscribers": v["subscribers"], "mrr": float(v["mrr"])} for k, v in by_plan.items()},
    }


def churn_report(
    subscriptions: Sequence[tuple[int, str, datetime, Optional[datetime]]],
    start: datetime,
    end: datetime,
    suspended: int = 0,
) -> dict:
    """Churn over [start, end) from subscription rows (user_id, plan, created_at, cancelled_at).

    A subscription is "active at start" when it was created before `start` and not
    cancelled before `start`. Reactivations are new subscriptions in the window from
    users who had an earlier cancelled subscription.
    """
    active_at_start = 0
    churned = 0
    churned_mrr = Decimal("0")
    new_subs = 0
    new_mrr = Decimal("0")
    reactivations = 0
    cancelled_before = defaultdict(list)

    for user_id, plan, created_at, cancelled_at in subscriptions:
        if cancelled_at is not None:
            cancelled_before[user_id].append(cancelled_at)

    for user_id, plan, created_at, cancelled_at in subscriptions:
        if created_at < start and (cancelled_at is None or cancelled_at >= start):
            active_at_start += 1
        if cancelled_at is not None and start <= cancelled_at < end:
            churned += 1
            churned_mrr += plan_price(plan)
        if start <= created_at < end:
            new_subs += 1
            new_mrr += plan_price(plan)
            if any(c <= created_at for c in cancelled_before[user_id]):
                reactivations += 1

    return {
        "period_start": start.isoformat(),
        "period_end": end.isoformat(),
        "active_at_start": active_at_start,
        "churned": churned,
        "churned_mrr": float(churned_mrr),
        "churn_rate": percentage(churned, active_at_start),
        "new_subscriptions": new_subs - reactivations,
        "new_mrr": float(new_mrr),
        "reactivations": reactivations,
        "net_mrr_change": float(new_mrr - churned_mrr),
        "suspended": suspended,
    }


def daily_series(timestamps: Iterable[datetime], start: date, days: int) -> list[dict]:
    """Zero-filled per-day counts for `days` days beginning at `start`."""
    counts = Counter(ts.date() for ts in timestamps)
    return [
        {"date": (start + timedelta(days=i)).isoformat(), "count": counts.get(start + timedelta(days=i), 0)}
        for i in range(days)
    ]


def daily_series_by(rows: Iterable[tuple[datetime, str]], start: date, days: int) -> list[dict]:
    """Like daily_series, broken down by a label (e.g. role) per day."""
    per_day = defaultdict(Counter)
    for ts, label in rows:
        per_day[ts.date()][label] += 1
    series = []
    for i in range(days):
        day = start + timedelta(days=i)
        bucket = per_day.get(day, Counter())
        series.append({"date": day.isoformat(), "total": sum(bucket.values()), **dict(bucket)})
    return series


FUNNEL_STEPS = (
    ("signed_up", "Signed up"),
    ("created_property", "Created a property"),
    ("added_unit", "Added a unit"),
    ("scheduled_work", "Scheduled an inspection or job"),
    ("converted_to_paid", "Converted to paid"),
)


def signup_funnel(
    signups: Iterable[int],
    with_property: Iterable[int],
    with_unit: Iterable[int],
    with_work: Iterable[int],
    paying: Iterable[int],
) -> list[dict]:
    """Activation funnel over a cohort of user ids.

    Each step only counts users who also completed every earlier step, so the
    funnel is monotonically non-increasing.
    """
    cohort = set(signups)
    stages = [cohort]
    for ids in (with_property, with_unit, with_work, paying):
        stages.append(stages[-1] & set(ids))

    funnel = []
    for i, ((key, label), users) in enumerate(zip(FUNNEL_STEPS, stages)):
        prev = len(stages[i - 1]) if i else len(users)
        funnel.append({
            "step": key,
            "label": label,
            "users": len(users),
            "conversion_from_previous": percentage(len(users), prev),
            "conversion_from_start": percentage(len(users), len(cohort)),
        })
    return funnel


def month_start(value: datetime) -> date:
    return date(value.year, value.month, 1)


def retention_cohorts(
    signups: Iterable[tuple[int, datetime]],
    activity: Iterable[tuple[int, datetime]],
    now: datetime,
    months: int = 6,
) -> list[dict]:
    """Monthly signup cohorts with the share of each cohort active in later months.

    `signups` are (user_id, created_at); `activity` are (user_id, timestamp) events such
    as logins. Month 0 is the signup month. Only the last `months` cohorts are returned,
    and offsets that lie in the future are omitted.
    """
    first_cohort = month_start(now) - relativedelta(months=months - 1)
    cohorts: dict[date, set[int]] = OrderedDict()
    for i in range(months):
        cohorts[first_cohort + relativedelta(months=i)] = set()

    user_cohort = {}
    for user_id, created_at in signups:
        key = month_start(created_at)
        if key in cohorts:
            cohorts[key].add(user_id)
            user_cohort[user_id] = key

    active: dict[tuple[date, int], set[int]] = defaultdict(set)
    for user_id, ts in activity:
        cohort = user_cohort.get(user_id)
        if cohort is None:
            continue
        event_month = month_start(ts)
        offset = (event_month.year - cohort.year) * 12 + (event_month.month - cohort.month)
        if offset >= 0:
            active[(cohort, offset)].add(user_id)

    current = month_start(now)
    result = []
    for cohort, users in cohorts.items():
        size = len(users)
        span = (current.year - cohort.year) * 12 + (current.month - cohort.month)
        retention = [
            {"month": offset, "active": len(active[(cohort, offset)]),
             "rate": percentage(len(active[(cohort, offset)]), size)}
            for offset in range(span + 1)
        ]
        result.append({"cohort": cohort.strftime("%Y-%m"), "users": size, "retention": retention})
    return result


def traffic_summary(views: Sequence[tuple[str, Optional[str], Optional[str]]], top: int = 10) -> dict:
    """Summarise page views given as (path, referrer, session_id) tuples."""
    paths = Counter(path for path, _, _ in views)
    referrers = Counter(ref for _, ref, _ in views if ref)
    sessions = {sid for _, _, sid in views if sid}
    return {
        "total_visits": len(views),
        "unique_sessions": len(sessions),
        "top_pages": [{"path": p, "views": c} for p, c in paths.most_common(top)],
        "top_referrers": [{"referrer": r, "visits": c} for r, c in referrers.most_common(top)],
    }
