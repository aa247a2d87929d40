from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from conftest import NOW, FakeClock, add_feature, add_override
from entitlement_engine.admin import FeatureAdminService
from entitlement_engine.cache import FeatureCache
from entitlement_engine.engine import EntitlementEngine
from entitlement_engine.errors import ConflictError, FeatureNotFoundError, RolloutConfigError
from entitlement_engine.overrides import OverrideResolver
from entitlement_engine.schemas import FeatureCreate, FeatureUpdate


@pytest.fixture
def cache():
    return FeatureCache(ttl_seconds=300, clock=FakeClock())


@pytest.fixture
def admin(db, cache, fixed_now):
    return FeatureAdminService(db, cache=cache, now=fixed_now)


# ============================================================================
# SCHEMAS
# ============================================================================

def test_feature_create_normalizes_fields():
    data = FeatureCreate(
        key="  reports ",
        name=" Reports ",
        environment=["production", " staging", "production", ""],
        rollout_type="org_list",
        rollout_value={"orgIds": ["org-2", "org-1", "org-2"]},
    )

    assert data.key == "reports"
    assert data.name == "Reports"
    assert data.environment == ["production", "staging"]
    assert data.rollout_value == {"orgIds": ["org-1", "org-2"]}
    assert data.is_enabled is False


def test_feature_create_drops_payload_for_no_rollout():
    data = FeatureCreate(key="reports", name="Reports", rollout_type="none", rollout_value={"percentage": 5})
    assert data.rollout_value is None


@pytest.mark.parametrize(
    "rollout_type,rollout_value",
    [
        ("percentage", {"percentage": 101}),
        ("org_list", {"orgIds": "org-1"}),
        ("percentage", {"orgIds": ["org-1"]}),
        ("user_list", {}),
        ("boolean", None),
    ],
)
def test_feature_create_rejects_bad_rollout(rollout_type, rollout_value):
    with pytest.raises(ValidationError):
        FeatureCreate(key="reports", name="Reports", rollout_type=rollout_type, rollout_value=rollout_value)


def test_feature_create_rejects_blank_key():
    with pytest.raises(ValidationError):
        FeatureCreate(key="   ", name="Reports")


# ============================================================================
# FEATURES
# ============================================================================

def test_create_feature(admin, repo):
    row = admin.create_feature(FeatureCreate(key="reports", name="Reports", is_enabled=True, category="analytics"))

    assert row.key == "reports"
    definition = repo.get_feature("reports")
    assert definition.is_enabled is True
    assert definition.category == "analytics"
    assert definition.rollout is None


def test_create_duplicate_feature_conflicts(db, admin):
    add_feature(db, "reports")

    with pytest.raises(ConflictError) as exc:
        admin.create_feature(FeatureCreate(key="reports", name="Reports again"))

    assert exc.value.status_code == 409
    assert exc.value.details == {"feature_key": "reports"}


def test_create_feature_replaces_cached_not_found(db, repo, admin, cache):
    engine = EntitlementEngine(repo, environment="production", cache=cache)
    assert engine.is_feature_enabled("reports").reason == "Feature not found"

    admin.create_feature(FeatureCreate(key="reports", name="Reports", is_enabled=True))

    assert engine.is_feature_enabled("reports").enabled is True


def test_update_feature_applies_only_set_fields(db, repo, admin):
    add_feature(db, "reports", description="Old", category="analytics")

    admin.update_feature("reports", FeatureUpdate(description="New"))

    row = repo.get_feature_row("reports")
    assert row.description == "New"
    assert row.category == "analytics"
    assert row.is_enabled is True


def test_update_feature_invalidates_cache(db, repo, admin, cache):
    add_feature(db, "reports", is_enabled=True)
    engine = EntitlementEngine(repo, environment="production", cache=cache)
    assert engine.is_feature_enabled("reports").enabled is True

    admin.update_feature("reports", FeatureUpdate(is_enabled=False))

    assert engine.is_feature_enabled("reports").reason == "Feature globally disabled"


def test_update_rollout_is_canonicalized(db, repo, admin):
    add_feature(db, "pilot")

    admin.update_feature("pilot", FeatureUpdate(rollout_type="user_list", rollout_value={"userIds": ["u-2", "u-1"]}))

    row = repo.get_feature_row("pilot")
    assert row.rollout_type == "user_list"
    assert row.rollout_value == {"userIds": ["u-1", "u-2"]}


@pytest.mark.parametrize(
    "changes",
    [
        {"rollout_value": {"percentage": 500}},
        # stored {"percentage": 10} does not fit an org allow-list
        {"rollout_type": "org_list"},
        {"rollout_value": {"orgIds": ["org-1"]}},
    ],
)
def test_update_rollout_type_mismatch_raises(db, repo, admin, changes):
    add_feature(db, "gradual", rollout_type="percentage", rollout_value={"percentage": 10})

    with pytest.raises(RolloutConfigError):
        admin.update_feature("gradual", FeatureUpdate(**changes))

    row = repo.get_feature_row("gradual")
    assert row.rollout_type == "percentage"
    assert row.rollout_value == {"percentage": 10}


@pytest.mark.parametrize(
    "field_name",
    ["name", "is_enabled", "environment", "is_plan_based", "requires_admin", "rollout_type"],
)
def test_feature_update_rejects_null_for_required_columns(field_name):
    with pytest.raises(ValidationError):
        FeatureUpdate(**{field_name: None})


def test_feature_update_allows_null_for_nullable_columns(db, repo, admin):
    add_feature(db, "reports", description="Old", category="analytics")

    admin.update_feature("reports", FeatureUpdate(description=None, category=None))

    row = repo.get_feature_row("reports")
    assert row.description is None
    assert row.category is None


def test_feature_update_strips_name():
    assert FeatureUpdate(name="  Reports ").name == "Reports"
    with pytest.raises(ValidationError):
        FeatureUpdate(name="   ")


def test_update_unknown_feature(admin):
    with pytest.raises(FeatureNotFoundError) as exc:
        admin.update_feature("nope", FeatureUpdate(is_enabled=True))
    assert exc.value.to_dict()["error"] == "FEATURE_NOT_FOUND"


def test_list_features_by_category(db, admin):
    add_feature(db, "b_reports", category="analytics")
    add_feature(db, "a_dashboards", category="analytics")
    add_feature(db, "slack", category="integrations")

    assert [f.key for f in admin.list_features("analytics")] == ["a_dashboards", "b_reports"]
    assert [f.key for f in admin.list_features()] == ["a_dashboards", "b_reports", "slack"]


# ============================================================================
# OVERRIDES
# ============================================================================

def test_create_override(db, repo, admin):
    add_feature(db, "reports")

    admin.create_override(
        "org-1", "reports", True, reason="Pilot customer", expires_at=NOW + timedelta(days=14)
    )

    decision = OverrideResolver(repo, now=lambda: NOW).resolve("org-1", "reports")
    assert decision.enabled is True
    assert decision.reason == "Pilot customer"


def test_create_override_for_unknown_feature(admin):
    with pytest.raises(FeatureNotFoundError):
        admin.create_override("org-1", "nope", True)


def test_create_override_with_past_expiry(db, admin):
    add_feature(db, "reports")
    with pytest.raises(ValueError):
        admin.create_override("org-1", "reports", True, expires_at=NOW - timedelta(minutes=1))


def test_create_override_treats_naive_expiry_as_utc(db, admin):
    add_feature(db, "reports")
    with pytest.raises(ValueError):
        admin.create_override("org-1", "reports", True, expires_at=datetime(2026, 3, 15, 11, 0))


def test_create_override_requires_org(db, admin):
    add_feature(db, "reports")
    with pytest.raises(ValueError):
        admin.create_override("  ", "reports", True)


def test_create_duplicate_override_conflicts(db, admin):
    add_feature(db, "reports")
    admin.create_override("org-1", "reports", True)

    with pytest.raises(ConflictError):
        admin.create_override("org-1", "reports", False)


def test_create_override_replaces_expired_one(db, repo, admin):
    add_feature(db, "reports")
    add_override(db, "org-1", "reports", enabled=True, expires_at=NOW - timedelta(days=1))

    admin.create_override("org-1", "reports", False, reason="Abuse")

    overrides = repo.list_overrides("org-1")
    assert len(overrides) == 1
    assert overrides[0].enabled is False
    assert overrides[0].expires_at is None


def test_remove_override(db, admin):
    add_feature(db, "reports")
    add_override(db, "org-1", "reports", enabled=True)

    assert admin.remove_override("org-1", "reports") is True
    assert admin.remove_override("org-1", "reports") is False
    assert admin.list_overrides("org-1") == []


def test_list_overrides_is_per_org(db, admin):
    add_feature(db, "reports")
    add_feature(db, "exports")
    add_override(db, "org-1", "reports", enabled=True)
    add_override(db, "org-1", "exports", enabled=False)
    add_override(db, "org-2", "reports", enabled=True)

    assert [o.feature_key for o in admin.list_overrides("org-1")] == ["exports", "reports"]
