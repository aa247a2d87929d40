"""
Shared pytest fixtures.

Each test gets its own in-memory SQLite database with every table created,
so services can commit freely.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from entitlement_engine.db_base import Base
from entitlement_engine.models import Feature, FeatureOverride, Plan, PlanFeature, Subscription
from entitlement_engine.repository import EntitlementRepository

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return EntitlementRepository(db)


@pytest.fixture
def fixed_now():
    return lambda: NOW


# ============================================================================
# SEED HELPERS
# ============================================================================

def add_feature(db, key: str, **overrides) -> Feature:
    fields = {
        "key": key,
        "name": key.replace("_", " ").title(),
        "is_enabled": True,
        "environment": [],
        "is_plan_based": False,
        "rollout_type": "none",
        "rollout_value": None,
    }
    fields.update(overrides)
    row = Feature(**fields)
    db.add(row)
    db.commit()
    return row


def add_plan(db, key: str = "pro", **limits) -> Plan:
    row = Plan(key=key, name=key.title(), **limits)
    db.add(row)
    db.commit()
    return row


def subscribe(db, org_id: str, plan: Plan, status: str = "active", created_at=None) -> Subscription:
    row = Subscription(org_id=org_id, plan_id=plan.id, status=status, created_at=created_at or NOW)
    db.add(row)
    db.commit()
    return row


def add_plan_feature(db, plan: Plan, feature_key: str, enabled: bool = True, value=None) -> PlanFeature:
    row = PlanFeature(plan_id=plan.id, feature_key=feature_key, enabled=enabled, value=value)
    db.add(row)
    db.commit()
    return row


def add_override(db, org_id: str, feature_key: str, enabled: bool = True, **fields) -> FeatureOverride:
    row = FeatureOverride(org_id=org_id, feature_key=feature_key, enabled=enabled, **fields)
    db.add(row)
    db.commit()
    return row
