"""
Plan quota checks.

Compares current usage of a countable resource against the limit on the
organization's active plan.

Rules:
- No active plan means no allowance: current=0, limit=0, exceeded=True.
- A NULL plan limit means unlimited and is never exceeded.
- Reaching the limit counts as exceeded, so the check blocks the next
  creation rather than the one after it.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from entitlement_engine.clock import Clock, start_of_month, utc_now
from entitlement_engine.config import DEFAULT_NEAR_LIMIT_PERCENT
from entitlement_engine.decisions import QuotaResult
from entitlement_engine.errors import QuotaExceededError
from entitlement_engine.models import Plan
from entitlement_engine.repository import EntitlementRepository

logger = logging.getLogger(__name__)

StorageUsageProvider = Callable[[str], int]


class QuotaType(str, Enum):
    MEMBERS = "members"
    TEAMS = "teams"
    STANDUPS = "standups"
    STORAGE = "storage"
    INTEGRATIONS = "integrations"


PLAN_LIMIT_FIELDS: Dict[QuotaType, str] = {
    QuotaType.MEMBERS: "member_limit",
    QuotaType.TEAMS: "team_limit",
    QuotaType.STANDUPS: "standup_limit",
    QuotaType.STORAGE: "storage_limit",
    QuotaType.INTEGRATIONS: "integration_limit",
}

NO_PLAN_RESULT = QuotaResult(current=0, limit=0, exceeded=True)


@dataclass(frozen=True)
class UsageSummary:
    quota_type: QuotaType
    current: int
    limit: Optional[int]
    exceeded: bool
    near_limit: bool

    def to_dict(self) -> dict:
        return {
            "quota_type": self.quota_type.value,
            "current": self.current,
            "limit": self.limit,
            "exceeded": self.exceeded,
            "near_limit": self.near_limit,
        }


def _no_storage_tracking(org_id: str) -> int:
    return 0


def is_exceeded(current: int, limit: Optional[int]) -> bool:
    return limit is not None and current >= limit


class QuotaCalculator:
    def __init__(
        self,
        repository: EntitlementRepository,
        *,
        storage_usage: Optional[StorageUsageProvider] = None,
        now: Clock = utc_now,
        near_limit_percent: int = DEFAULT_NEAR_LIMIT_PERCENT,
    ):
        self._repo = repository
        self._storage_usage = storage_usage or _no_storage_tracking
        self._now = now
        self._near_limit_percent = near_limit_percent

    def check_quota(self, org_id: str, quota_type: Union[QuotaType, str]) -> QuotaResult:
        quota_type = QuotaType(quota_type)
        plan = self._repo.get_active_plan(org_id)
        if plan is None:
            logger.debug(
                "No active plan, quota exhausted",
                extra={"org_id": org_id, "quota_type": quota_type.value},
            )
            return NO_PLAN_RESULT
        return self._check(org_id, quota_type, plan)

    def enforce(self, org_id: str, quota_type: Union[QuotaType, str]) -> QuotaResult:
        """Return the quota result, raising QuotaExceededError when exceeded."""
        quota_type = QuotaType(quota_type)
        result = self.check_quota(org_id, quota_type)
        if result.exceeded:
            logger.warning(
                "Action blocked by plan limits",
                extra={
                    "org_id": org_id,
                    "quota_type": quota_type.value,
                    "current": result.current,
                    "limit": result.limit,
                },
            )
            raise QuotaExceededError(
                org_id=org_id,
                quota_type=quota_type.value,
                current=result.current,
                limit=result.limit,
            )
        return result

    def usage_summary(self, org_id: str) -> Dict[QuotaType, UsageSummary]:
        """Usage for every quota type, flagging limits that are nearly reached."""
        plan = self._repo.get_active_plan(org_id)
        summary: Dict[QuotaType, UsageSummary] = {}
        for quota_type in QuotaType:
            result = NO_PLAN_RESULT if plan is None else self._check(org_id, quota_type, plan)
            summary[quota_type] = UsageSummary(
                quota_type=quota_type,
                current=result.current,
                limit=result.limit,
                exceeded=result.exceeded,
                near_limit=self._is_near_limit(result),
            )
        return summary

    def _check(self, org_id: str, quota_type: QuotaType, plan: Plan) -> QuotaResult:
        current = self._current_usage(org_id, quota_type)
        limit = getattr(plan, PLAN_LIMIT_FIELDS[quota_type])
        return QuotaResult(current=current, limit=limit, exceeded=is_exceeded(current, limit))

    def _current_usage(self, org_id: str, quota_type: QuotaType) -> int:
        if quota_type is QuotaType.MEMBERS:
            return self._repo.count_active_members(org_id)
        if quota_type is QuotaType.TEAMS:
            return self._repo.count_teams(org_id)
        if quota_type is QuotaType.STANDUPS:
            now = self._now()
            return self._repo.count_standups(org_id, start_of_month(now), now)
        if quota_type is QuotaType.INTEGRATIONS:
            return self._repo.count_integrations(org_id)
        return int(self._storage_usage(org_id))

    def _is_near_limit(self, result: QuotaResult) -> bool:
        if result.exceeded or not result.limit:
            return False
        return result.current * 100 >= result.limit * self._near_limit_percent
