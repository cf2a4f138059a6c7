import itertools
from datetime import datetime, timedelta

import pytest
from flask import g

from buildstate import create_app
from buildstate.config import TestingConfig
from buildstate.constants import Role, SubscriptionPlan, SubscriptionStatus
from buildstate.extensions import db
from buildstate.models import Property, PropertyOwner, Unit, UnitTenant, User
from buildstate.security.auth import issue_tokens
from buildstate.security.rate_limit import memory_store
from buildstate.services.cache import memory_cache
from buildstate.services.redis_client import reset_redis

PASSWORD = "Str0ng!Pass"


@pytest.fixture
def app(tmp_path):
    class Config(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / "uploads")

    memory_cache.clear()
    memory_store.clear()
    reset_redis()

    app = create_app(Config)

    @app.before_request
    def _fresh_request_user():
        # the test app context outlives individual requests
        g.pop("current_user", None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

    memory_cache.clear()
    memory_store.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role=Role.PROPERTY_MANAGER, **fields):
        n = next(counter)
        user = User(
            email=fields.pop("email", f"{role.lower()}{n}@example.com"),
            first_name=fields.pop("first_name", role.title().replace("_", " ")),
            last_name=fields.pop("last_name", str(n)),
            role=role,
        )
        if role == Role.PROPERTY_MANAGER:
            user.subscription_plan = SubscriptionPlan.FREE_TRIAL
            user.subscription_status = SubscriptionStatus.TRIAL
            user.trial_end_date = datetime.utcnow() + timedelta(days=14)
        else:
            user.subscription_status = SubscriptionStatus.ACTIVE
        user.set_password(fields.pop("password", PASSWORD))
        for key, value in fields.items():
            setattr(user, key, value)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {issue_tokens(user)['access_token']}"}

    return _headers


@pytest.fixture
def manager(make_user):
    return make_user(Role.PROPERTY_MANAGER, email="manager@example.com")


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, email="admin@example.com")


@pytest.fixture
def owner(make_user):
    return make_user(Role.OWNER, email="owner@example.com")


@pytest.fixture
def tenant(make_user):
    return make_user(Role.TENANT, email="tenant@example.com")


@pytest.fixture
def technician(make_user):
    return make_user(Role.TECHNICIAN, email="tech@example.com")


@pytest.fixture
def make_property(app):
    def _make(manager, units=("101",), **fields):
        prop = Property(
            name=fields.pop("name", "Harbour View"),
            address=fields.pop("address", "1 Quay Street"),
            city=fields.pop("city", "Auckland"),
            property_type=fields.pop("property_type", "RESIDENTIAL"),
            manager_id=manager.id,
            **fields,
        )
        db.session.add(prop)
        db.session.flush()
        for number in units:
            db.session.add(Unit(property_id=prop.id, unit_number=number))
        db.session.commit()
        return prop

    return _make


@pytest.fixture
def property_with_people(make_property, manager, owner, tenant):
    """A managed property with one owner and a tenant living in unit 101."""
    prop = make_property(manager, units=("101", "102"))
    db.session.add(PropertyOwner(property_id=prop.id, owner_id=owner.id, ownership_percentage=100))
    unit = Unit.query.filter_by(property_id=prop.id, unit_number="101").one()
    now = datetime.utcnow()
    db.session.add(UnitTenant(
        unit_id=unit.id, tenant_id=tenant.id, lease_start=now - timedelta(days=30),
        lease_end=now + timedelta(days=335), monthly_rent=1200, is_active=True,
    ))
    unit.status = "OCCUPIED"
    db.session.commit()
    return prop
