from datetime import datetime, timedelta

from buildstate.cli import housekeeping_group, seed_admin
from buildstate.constants import (
    InspectionStatus,
    JobStatus,
    NotificationType,
    Role,
    ServiceRequestStatus,
    SubscriptionStatus,
    TokenPurpose,
)
from buildstate.extensions import db
from buildstate.models import Inspection, Job, MaintenancePlan, Notification, ServiceRequest, User, UserToken
from buildstate.security.tokens import issue as issue_token
from buildstate.services import housekeeping

NOW = datetime(2026, 6, 15, 9, 0)


def test_next_due_date():
    assert housekeeping.next_due_date(datetime(2026, 1, 31), "MONTHLY") == datetime(2026, 2, 28)
    assert housekeeping.next_due_date(datetime(2026, 1, 1), "biweekly") == datetime(2026, 1, 15)
    assert housekeeping.next_due_date(datetime(2026, 1, 1), "YEARLY") == datetime(2027, 1, 1)
    assert housekeeping.next_due_date(datetime(2026, 1, 1), "FORTNIGHTLY") == datetime(2026, 2, 1)


def test_overdue_inspections_are_reported_once(manager, technician, make_property):
    prop = make_property(manager)
    db.session.add_all([
        Inspection(property_id=prop.id, title="Late", type="ROUTINE", status=InspectionStatus.SCHEDULED,
                   scheduled_date=NOW - timedelta(days=2), assigned_to_id=technician.id, created_by_id=manager.id),
        Inspection(property_id=prop.id, title="Upcoming", type="ROUTINE", status=InspectionStatus.SCHEDULED,
                   scheduled_date=NOW + timedelta(days=2), created_by_id=manager.id),
    ])
    db.session.commit()

    assert housekeeping.process_overdue_inspections(NOW) == {"overdue": 1, "managers_notified": 1}
    assert Notification.query.filter_by(type=NotificationType.INSPECTION_REMINDER).count() == 2
    assert housekeeping.process_overdue_inspections(NOW) == {"overdue": 0, "managers_notified": 0}


def test_trial_reminders_send_nearest_mark_once(make_user):
    user = make_user(Role.PROPERTY_MANAGER, trial_end_date=NOW + timedelta(days=2, hours=12))

    assert housekeeping.send_trial_reminders(NOW) == {"reminders_sent": 1}
    assert user.reminders_sent() == {7, 3}
    note = Notification.query.filter_by(user_id=user.id).one()
    assert note.data == {"days_remaining": 3}

    assert housekeeping.send_trial_reminders(NOW) == {"reminders_sent": 0}
    assert housekeeping.send_trial_reminders(NOW + timedelta(days=2)) == {"reminders_sent": 1}
    assert user.reminders_sent() == {7, 3, 1}


def test_expire_trials(make_user):
    lapsed = make_user(Role.PROPERTY_MANAGER, trial_end_date=NOW - timedelta(minutes=1))
    running = make_user(Role.PROPERTY_MANAGER, trial_end_date=NOW + timedelta(days=5))

    assert housekeeping.expire_trials(NOW) == {"expired": 1}
    assert lapsed.subscription_status == SubscriptionStatus.SUSPENDED
    assert running.subscription_status == SubscriptionStatus.TRIAL


def test_maintenance_plans_generate_jobs_and_advance(manager, make_property):
    prop = make_property(manager)
    plan = MaintenancePlan(property_id=prop.id, name="Gutter clean", frequency="QUARTERLY",
                           next_due_date=datetime(2026, 6, 1), created_by_id=manager.id)
    paused = MaintenancePlan(property_id=prop.id, name="Paused", frequency="MONTHLY", is_active=False,
                             next_due_date=datetime(2026, 6, 1), created_by_id=manager.id)
    db.session.add_all([plan, paused])
    db.session.commit()

    assert housekeeping.generate_maintenance_jobs(NOW) == {"plans_due": 1, "jobs_created": 1}
    job = Job.query.filter_by(maintenance_plan_id=plan.id).one()
    assert job.title == "Maintenance: Gutter clean"
    assert job.status == JobStatus.OPEN
    assert job.scheduled_date == datetime(2026, 6, 1)
    assert plan.next_due_date == datetime(2026, 9, 1)
    assert plan.last_generated_at == NOW

    assert housekeeping.generate_maintenance_jobs(NOW) == {"plans_due": 0, "jobs_created": 0}


def test_archived_properties_do_not_generate_jobs(manager, make_property):
    prop = make_property(manager, archived_at=NOW)
    db.session.add(MaintenancePlan(property_id=prop.id, name="x", frequency="DAILY",
                                   next_due_date=NOW - timedelta(days=1), created_by_id=manager.id))
    db.session.commit()
    assert housekeeping.generate_maintenance_jobs(NOW)["jobs_created"] == 0


def test_archive_stale_finished_requests(tenant, property_with_people):
    def sr(status, age):
        return ServiceRequest(title=status, description="-", property_id=property_with_people.id,
                              requested_by_id=tenant.id, status=status, updated_at=NOW - age)

    db.session.add_all([
        sr(ServiceRequestStatus.COMPLETED, timedelta(days=31)),
        sr(ServiceRequestStatus.REJECTED, timedelta(days=5)),
        sr(ServiceRequestStatus.SUBMITTED, timedelta(days=90)),
    ])
    db.session.commit()

    assert housekeeping.archive_service_requests(NOW) == {"archived": 1}
    archived = ServiceRequest.query.filter(ServiceRequest.archived_at.isnot(None)).one()
    assert archived.status == ServiceRequestStatus.COMPLETED


def test_run_all_isolates_failures(app, monkeypatch):
    def broken(now=None):
        raise RuntimeError("boom")

    monkeypatch.setitem(housekeeping.TASKS, "expire-trials", broken)
    results = housekeeping.run_all(NOW)
    assert results["expire-trials"] == {"error": True}
    assert results["archive-service-requests"] == {"archived": 0}


def test_cli_runs_single_task(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["housekeeping", "expire-trials"])
    assert result.exit_code == 0
    assert 'expire-trials: {"expired": 0}' in result.output
    assert "run-all" in housekeeping_group.commands


def test_cli_seed_admin(app):
    runner = app.test_cli_runner()
    result = runner.invoke(seed_admin, ["--email", "Root@Example.com", "--password", "Adm1n!Pass"])
    assert result.exit_code == 0, result.output
    user = User.query.filter_by(email="root@example.com").one()
    assert user.role == Role.ADMIN
    assert user.check_password("Adm1n!Pass")

    weak = runner.invoke(seed_admin, ["--email", "root@example.com", "--password", "short"])
    assert weak.exit_code != 0


def test_purge_expired_tokens(manager):
    issue_token(manager, TokenPurpose.PASSWORD_RESET, now=NOW - timedelta(hours=1))
    issue_token(manager, TokenPurpose.EMAIL_VERIFICATION, now=NOW)
    db.session.commit()

    assert housekeeping.TASKS["expired-tokens"](NOW) == {"removed": 1}
    assert [t.purpose for t in UserToken.query.all()] == [TokenPurpose.EMAIL_VERIFICATION]
