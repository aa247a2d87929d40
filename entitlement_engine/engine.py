"""
Entitlement evaluation: feature → kill switch → environment → override → plan → rollout.

The precedence order is data (EntitlementEngine.PIPELINE): each named stage
either returns a decision or None, and the first decision wins. When every
stage passes, the feature is enabled.

Evaluation fails closed. Any error raised by a collaborator is logged and
turned into a disabled result; is_feature_enabled never raises.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple, Union

from entitlement_engine.cache import FeatureCache
from entitlement_engine.decisions import EvaluationResult, FeatureDefinition, QuotaResult
from entitlement_engine.overrides import OverrideResolver
from entitlement_engine.plans import PlanEntitlementResolver
from entitlement_engine.quota import QuotaCalculator, QuotaType
from entitlement_engine.repository import EntitlementRepository
from entitlement_engine.rollout import evaluate_rollout

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Feature not found"
REASON_GLOBALLY_DISABLED = "Feature globally disabled"
REASON_EVALUATION_ERROR = "Error checking feature"

FAIL_CLOSED_ERROR_CODE = "FEATURE_EVALUATION_FAILED_FAIL_CLOSED"

FailureSink = Callable[[str, dict], None]


@dataclass
class EvaluationContext:
    """State carried through the stages of one evaluation."""

    feature_key: str
    org_id: Optional[str] = None
    user_id: Optional[str] = None
    feature: Optional[FeatureDefinition] = None


Stage = Callable[[EvaluationContext], Optional[EvaluationResult]]


class EntitlementEngine:
    """Single entry point for feature checks and quota checks."""

    PIPELINE: Tuple[str, ...] = (
        "feature_exists",
        "global_switch",
        "environment",
        "organization_scope",
        "override",
        "plan",
        "rollout",
    )

    def __init__(
        self,
        repository: EntitlementRepository,
        *,
        environment: str,
        cache: Optional[FeatureCache] = None,
        override_resolver: Optional[OverrideResolver] = None,
        plan_resolver: Optional[PlanEntitlementResolver] = None,
        quota_calculator: Optional[QuotaCalculator] = None,
        failure_sink: Optional[FailureSink] = None,
    ) -> None:
        if not str(environment).strip():
            raise ValueError("environment is required")
        self.environment = str(environment).strip()
        self._repo = repository
        self.cache = cache or FeatureCache()
        self._overrides = override_resolver or OverrideResolver(repository)
        self._plans = plan_resolver or PlanEntitlementResolver(repository)
        self._quota = quota_calculator or QuotaCalculator(repository)
        self._failure_sink = failure_sink or (lambda code, payload: None)

    def stages(self) -> List[Tuple[str, Stage]]:
        """The pipeline as (name, callable) pairs, in precedence order."""
        return [(name, getattr(self, f"_stage_{name}")) for name in self.PIPELINE]

    def is_feature_enabled(
        self,
        feature_key: str,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EvaluationResult:
        ctx = EvaluationContext(feature_key=feature_key, org_id=org_id or None, user_id=user_id or None)
        stage_name = None
        try:
            for stage_name, stage in self.stages():
                decision = stage(ctx)
                if decision is not None:
                    return decision
            return EvaluationResult(enabled=True, source="global")
        except Exception as e:
            logger.exception(
                "Feature evaluation failed",
                extra={"feature_key": feature_key, "org_id": org_id, "stage": stage_name},
            )
            self._report_failure(ctx, stage_name, e)
            return EvaluationResult(enabled=False, source="global", reason=REASON_EVALUATION_ERROR)

    def get_enabled_features(self, org_id: str) -> Set[str]:
        """Keys of all globally enabled features that evaluate to enabled for the org."""
        try:
            feature_keys = self._repo.list_enabled_feature_keys()
        except Exception as e:
            logger.exception("Listing enabled features failed", extra={"org_id": org_id})
            self._report_failure(EvaluationContext(feature_key="*", org_id=org_id), "list_features", e)
            return set()

        return {key for key in feature_keys if self.is_feature_enabled(key, org_id).enabled}

    def check_quota(self, org_id: str, quota_type: Union[QuotaType, str]) -> QuotaResult:
        return self._quota.check_quota(org_id, quota_type)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stage_feature_exists(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        ctx.feature = self.cache.get(ctx.feature_key, loader=self._repo.get_feature)
        if ctx.feature is None:
            logger.warning("Feature not found", extra={"feature_key": ctx.feature_key})
            return EvaluationResult(enabled=False, source="global", reason=REASON_NOT_FOUND)
        return None

    def _stage_global_switch(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        if not ctx.feature.is_enabled:
            return EvaluationResult(enabled=False, source="global", reason=REASON_GLOBALLY_DISABLED)
        return None

    def _stage_environment(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        if not ctx.feature.is_available_in(self.environment):
            return EvaluationResult(
                enabled=False,
                source="environment",
                reason=f"Not available in {self.environment} environment",
            )
        return None

    def _stage_organization_scope(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        # org-scoped rules cannot apply without an org
        if ctx.org_id is None:
            return EvaluationResult(enabled=True, source="global")
        return None

    def _stage_override(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        decision = self._overrides.resolve(ctx.org_id, ctx.feature_key)
        if decision is None:
            return None
        return EvaluationResult(
            enabled=decision.enabled,
            source="override",
            value=decision.value,
            reason=decision.reason,
        )

    def _stage_plan(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        if not ctx.feature.is_plan_based:
            return None
        decision = self._plans.resolve(ctx.org_id, ctx.feature_key)
        if decision is None:
            return None
        return EvaluationResult(enabled=decision.enabled, source="plan", value=decision.value)

    def _stage_rollout(self, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        outcome = evaluate_rollout(ctx.feature.rollout, ctx.org_id, ctx.user_id)
        if outcome is None:
            return None
        return EvaluationResult(enabled=outcome, source="rollout")

    def _report_failure(self, ctx: EvaluationContext, stage: Optional[str], error: Exception) -> None:
        payload = {
            "feature_key": ctx.feature_key,
            "org_id": ctx.org_id,
            "stage": stage,
            "error": str(error),
            "error_code": FAIL_CLOSED_ERROR_CODE,
        }
        try:
            self._failure_sink(FAIL_CLOSED_ERROR_CODE, payload)
        except Exception:
            logger.warning("Failure sink raised", extra=payload, exc_info=True)
