"""
Plan-level feature entitlements.

Resolves a feature through the organization's active subscription plan.
A PlanFeature row with enabled=False is a decision, not a default: it stops
evaluation before rollout rules are consulted.
"""

import logging
from typing import Optional

from entitlement_engine.decisions import PlanDecision
from entitlement_engine.repository import EntitlementRepository

logger = logging.getLogger(__name__)


class PlanEntitlementResolver:
    def __init__(self, repository: EntitlementRepository):
        self._repo = repository

    def resolve(self, org_id: str, feature_key: str) -> Optional[PlanDecision]:
        """
        Plan decision for the feature, or None when the plan says nothing.

        None is returned both when the org has no active plan and when the
        plan has no row for this feature.
        """
        plan = self._repo.get_active_plan(org_id)
        if plan is None:
            logger.debug(
                "No active plan for org",
                extra={"org_id": org_id, "feature_key": feature_key},
            )
            return None

        plan_feature = self._repo.get_plan_feature(plan.id, feature_key)
        if plan_feature is None:
            return None

        return PlanDecision(enabled=bool(plan_feature.enabled), value=plan_feature.value)
