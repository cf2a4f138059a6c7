"""
Scheduled housekeeping tasks.

Each task is idempotent so an external scheduler (cron, a platform scheduler,
or `flask housekeeping run-all`) can invoke it as often as it likes.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..constants import (
    InspectionStatus,
    JobPriority,
    JobStatus,
    MaintenanceFrequency,
    NotificationType,
    ServiceRequestStatus,
    SubscriptionStatus,
)
from ..extensions import db
from ..models import Inspection, Job, MaintenancePlan, Property, ServiceRequest, User
from ..security import tokens
from .notifications import notify, send_email

logger = logging.getLogger(__name__)

TRIAL_REMINDER_DAYS = (7, 3, 1)
SERVICE_REQUEST_ARCHIVE_AFTER = timedelta(days=30)

_FREQUENCY_STEPS = {
    MaintenanceFrequency.DAILY: relativedelta(days=1),
    MaintenanceFrequency.WEEKLY: relativedelta(days=7),
    MaintenanceFrequency.BIWEEKLY: relativedelta(days=14),
    MaintenanceFrequency.MONTHLY: relativedelta(months=1),
    MaintenanceFrequency.QUARTERLY: relativedelta(months=3),
    MaintenanceFrequency.SEMIANNUALLY: relativedelta(months=6),
    MaintenanceFrequency.ANNUALLY: relativedelta(years=1),
    "YEARLY": relativedelta(years=1),
}


def next_due_date(current, frequency):
    step = _FREQUENCY_STEPS.get((frequency or "").strip().upper())
    if step is None:
        logger.warning('Unknown frequency "%s", defaulting to monthly', frequency)
        step = relativedelta(months=1)
    return (current or datetime.utcnow()) + step


def process_overdue_inspections(now=None):
    """Notify assignees and send one digest per manager for inspections past their scheduled date.

    An inspection is only reported once; `overdue_notified_at` marks it.
    """
    now = now or datetime.utcnow()
    overdue = (
        Inspection.query.filter(
            Inspection.status == InspectionStatus.SCHEDULED,
            Inspection.scheduled_date < now,
            Inspection.overdue_notified_at.is_(None),
        )
        .order_by(Inspection.scheduled_date)
        .all()
    )
    per_manager = defaultdict(list)
    for inspection in overdue:
        title = "Inspection overdue"
        message = f"{inspection.title} at {inspection.property.name} was due {inspection.scheduled_date:%Y-%m-%d}."
        data = {"inspection_id": inspection.id, "property_id": inspection.property_id}
        if inspection.assigned_to is not None:
            notify(inspection.assigned_to, NotificationType.INSPECTION_REMINDER, title, message, data)
        manager = inspection.property.manager
        if manager is not None:
            notify(manager, NotificationType.INSPECTION_REMINDER, title, message, data)
            per_manager[manager].append(inspection)
        inspection.overdue_notified_at = now
    db.session.commit()

    for manager, items in per_manager.items():
        lines = [f"- {i.title} ({i.property.name}), due {i.scheduled_date:%Y-%m-%d}" for i in items]
        send_email(
            manager.email,
            f"{len(items)} overdue inspection{'s' if len(items) != 1 else ''}",
            "The following inspections are overdue:\n\n" + "\n".join(lines),
        )
    logger.info("Overdue inspections processed: %s across %s managers", len(overdue), len(per_manager))
    return {"overdue": len(overdue), "managers_notified": len(per_manager)}


def send_trial_reminders(now=None):
    """Remind trial users 7, 3 and 1 days before their trial ends; each mark is sent once."""
    now = now or datetime.utcnow()
    horizon = now + timedelta(days=max(TRIAL_REMINDER_DAYS) + 1)
    users = User.query.filter(
        User.subscription_status == SubscriptionStatus.TRIAL,
        User.trial_end_date.isnot(None),
        User.trial_end_date > now,
        User.trial_end_date <= horizon,
        User.is_active.is_(True),
    ).all()

    sent = 0
    for user in users:
        remaining = (user.trial_end_date - now).total_seconds() / 86400
        due = [d for d in TRIAL_REMINDER_DAYS if remaining <= d and d not in user.reminders_sent()]
        if not due:
            continue
        days = min(due)
        # A late run records earlier marks as sent and only sends the nearest one
        for d in due:
            user.mark_reminder_sent(d)
        message = (
            f"Your Buildstate trial ends in {days} day{'s' if days != 1 else ''}. "
            "Choose a plan to keep managing your properties without interruption."
        )
        notify(user, NotificationType.SUBSCRIPTION_EXPIRING, "Your trial is ending soon", message,
               {"days_remaining": days}, email=True)
        sent += 1
    db.session.commit()
    logger.info("Trial reminders sent: %s", sent)
    return {"reminders_sent": sent}


def expire_trials(now=None):
    now = now or datetime.utcnow()
    expired = User.query.filter(
        User.subscription_status == SubscriptionStatus.TRIAL,
        User.trial_end_date.isnot(None),
        User.trial_end_date <= now,
    ).all()
    for user in expired:
        user.subscription_status = SubscriptionStatus.SUSPENDED
        notify(user, NotificationType.SUBSCRIPTION_EXPIRING, "Your trial has ended",
               "Your free trial has ended. Subscribe to regain full access.", email=True)
    db.session.commit()
    logger.info("Trials expired: %s", len(expired))
    return {"expired": len(expired)}


def generate_maintenance_jobs(now=None):
    """Create one OPEN job per due plan occurrence and advance the plan's next due date."""
    now = now or datetime.utcnow()
    plans = (
        MaintenancePlan.query.join(Property, Property.id == MaintenancePlan.property_id)
        .filter(
            MaintenancePlan.is_active.is_(True),
            MaintenancePlan.auto_create_jobs.is_(True),
            MaintenancePlan.next_due_date <= now,
            Property.archived_at.is_(None),
        )
        .all()
    )
    created = 0
    for plan in plans:
        scheduled = plan.next_due_date
        existing = Job.query.filter_by(maintenance_plan_id=plan.id, scheduled_date=scheduled).first()
        if existing is None:
            db.session.add(Job(
                title=f"Maintenance: {plan.name}",
                description=plan.description or f"Scheduled maintenance task generated for {plan.name}",
                status=JobStatus.OPEN,
                priority=JobPriority.MEDIUM,
                property_id=plan.property_id,
                maintenance_plan_id=plan.id,
                scheduled_date=scheduled,
                created_by_id=plan.created_by_id,
            ))
            created += 1
        else:
            logger.info("Job %s already exists for plan %s on %s", existing.id, plan.id, scheduled)
        plan.next_due_date = next_due_date(scheduled, plan.frequency)
        plan.last_generated_at = now
    db.session.commit()
    logger.info("Maintenance jobs created: %s from %s due plans", created, len(plans))
    return {"plans_due": len(plans), "jobs_created": created}


def archive_service_requests(now=None):
    now = now or datetime.utcnow()
    cutoff = now - SERVICE_REQUEST_ARCHIVE_AFTER
    stale = ServiceRequest.query.filter(
        ServiceRequest.status.in_(ServiceRequestStatus.ARCHIVABLE),
        ServiceRequest.archived_at.is_(None),
        ServiceRequest.updated_at < cutoff,
    ).all()
    for request_ in stale:
        request_.archived_at = now
    db.session.commit()
    logger.info("Service requests archived: %s", len(stale))
    return {"archived": len(stale)}


TASKS = {
    "overdue-inspections": process_overdue_inspections,
    "trial-reminders": send_trial_reminders,
    "expire-trials": expire_trials,
    "maintenance-plans": generate_maintenance_jobs,
    "archive-service-requests": archive_service_requests,
    "expired-tokens": tokens.purge_expired,
}


def run_all(now=None):
    results = {}
    for name, task in TASKS.items():
        try:
            results[name] = task(now)
        except Exception:
            db.session.rollback()
            logger.exception("Housekeeping task %s failed", name)
            results[name] = {"error": True}
    return results
