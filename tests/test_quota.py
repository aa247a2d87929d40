from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, add_plan, subscribe
from entitlement_engine.decisions import QuotaResult
from entitlement_engine.errors import QuotaExceededError
from entitlement_engine.models import Integration, OrgMember, StandupInstance, Team
from entitlement_engine.quota import NO_PLAN_RESULT, QuotaCalculator, QuotaType, is_exceeded


def _members(db, org_id, count, status="active"):
    for i in range(count):
        db.add(OrgMember(org_id=org_id, user_id=f"{org_id}-user-{i}-{status}", status=status))
    db.commit()


def _team(db, org_id, name="Core"):
    team = Team(org_id=org_id, name=name)
    db.add(team)
    db.commit()
    return team


def _standups(db, team, *target_dates):
    for target_date in target_dates:
        db.add(StandupInstance(team_id=team.id, target_date=target_date))
    db.commit()


@pytest.fixture
def calculator(repo, fixed_now):
    return QuotaCalculator(repo, now=fixed_now)


def test_is_exceeded_boundaries():
    assert is_exceeded(5, 5) is True
    assert is_exceeded(4, 5) is False
    assert is_exceeded(0, 0) is True
    assert is_exceeded(10_000, None) is False


def test_no_active_plan_exhausts_quota(calculator):
    for quota_type in QuotaType:
        assert calculator.check_quota("org-1", quota_type) == QuotaResult(current=0, limit=0, exceeded=True)


def test_member_limit_reached_is_exceeded(db, calculator):
    subscribe(db, "org-1", add_plan(db, "starter", member_limit=3))
    _members(db, "org-1", 3)

    assert calculator.check_quota("org-1", QuotaType.MEMBERS) == QuotaResult(current=3, limit=3, exceeded=True)


def test_member_one_below_limit_is_not_exceeded(db, calculator):
    subscribe(db, "org-1", add_plan(db, "starter", member_limit=3))
    _members(db, "org-1", 2)
    _members(db, "org-1", 4, status="invited")
    _members(db, "org-2", 5)

    assert calculator.check_quota("org-1", QuotaType.MEMBERS) == QuotaResult(current=2, limit=3, exceeded=False)


def test_null_limit_is_never_exceeded(db, calculator):
    subscribe(db, "org-1", add_plan(db, "enterprise"))
    _members(db, "org-1", 50)

    result = calculator.check_quota("org-1", QuotaType.MEMBERS)

    assert result.limit is None
    assert result.exceeded is False
    assert result.current == 50


def test_team_and_integration_counts(db, calculator):
    subscribe(db, "org-1", add_plan(db, "pro", team_limit=5, integration_limit=1))
    _team(db, "org-1", "A")
    _team(db, "org-1", "B")
    _team(db, "org-2", "Other")
    db.add(Integration(org_id="org-1", platform="slack"))
    db.commit()

    assert calculator.check_quota("org-1", QuotaType.TEAMS) == QuotaResult(current=2, limit=5, exceeded=False)
    assert calculator.check_quota("org-1", "integrations") == QuotaResult(current=1, limit=1, exceeded=True)


def test_standups_count_current_month_up_to_now(db, calculator):
    subscribe(db, "org-1", add_plan(db, "pro", standup_limit=100))
    team = _team(db, "org-1")
    other_team = _team(db, "org-2")
    _standups(
        db,
        team,
        datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc),
        NOW,
        # previous month and later this month are outside the window
        datetime(2026, 2, 28, 23, 59, tzinfo=timezone.utc),
        NOW + timedelta(days=2),
    )
    _standups(db, other_team, datetime(2026, 3, 5, tzinfo=timezone.utc))

    assert calculator.check_quota("org-1", QuotaType.STANDUPS).current == 3


def test_storage_uses_provider(db, repo, fixed_now):
    subscribe(db, "org-1", add_plan(db, "pro", storage_limit=1024))
    calculator = QuotaCalculator(repo, storage_usage=lambda org_id: 2048, now=fixed_now)

    assert calculator.check_quota("org-1", QuotaType.STORAGE) == QuotaResult(current=2048, limit=1024, exceeded=True)


def test_storage_defaults_to_zero(db, calculator):
    subscribe(db, "org-1", add_plan(db, "pro", storage_limit=1024))
    assert calculator.check_quota("org-1", QuotaType.STORAGE).current == 0


def test_unknown_quota_type_raises(calculator):
    with pytest.raises(ValueError):
        calculator.check_quota("org-1", "seats")


def test_enforce_raises_quota_exceeded(db, calculator):
    subscribe(db, "org-1", add_plan(db, "starter", team_limit=1))
    _team(db, "org-1")

    with pytest.raises(QuotaExceededError) as exc:
        calculator.enforce("org-1", QuotaType.TEAMS)

    assert exc.value.status_code == 403
    assert exc.value.to_dict() == {
        "error": "QUOTA_EXCEEDED",
        "message": "teams limit reached (1/1). Upgrade your plan to add more.",
        "details": {"quota_type": "teams", "current": 1, "limit": 1, "upgrade_required": True},
    }


def test_enforce_returns_result_when_allowed(db, calculator):
    subscribe(db, "org-1", add_plan(db, "starter", team_limit=2))
    _team(db, "org-1")

    assert calculator.enforce("org-1", "teams") == QuotaResult(current=1, limit=2, exceeded=False)


def test_usage_summary_flags_near_limit(db, repo, fixed_now):
    subscribe(db, "org-1", add_plan(db, "pro", member_limit=10, team_limit=10, integration_limit=2))
    _members(db, "org-1", 8)
    _team(db, "org-1")
    db.add(Integration(org_id="org-1"))
    db.add(Integration(org_id="org-1"))
    db.commit()

    summary = QuotaCalculator(repo, now=fixed_now, near_limit_percent=80).usage_summary("org-1")

    assert set(summary) == set(QuotaType)
    assert summary[QuotaType.MEMBERS].near_limit is True
    assert summary[QuotaType.MEMBERS].exceeded is False
    assert summary[QuotaType.TEAMS].near_limit is False
    assert summary[QuotaType.INTEGRATIONS].exceeded is True
    assert summary[QuotaType.INTEGRATIONS].near_limit is False
    assert summary[QuotaType.STANDUPS].to_dict() == {
        "quota_type": "standups",
        "current": 0,
        "limit": None,
        "exceeded": False,
        "near_limit": False,
    }


def test_usage_summary_without_plan(calculator):
    summary = calculator.usage_summary("org-1")
    assert all(item.exceeded and item.limit == 0 for item in summary.values())
    assert NO_PLAN_RESULT.exceeded is True
