"""
Feature and entitlement resolution engine.

This package provides:
- EntitlementEngine: ordered feature evaluation pipeline, fail-closed
- FeatureCache: short-TTL read-through cache for feature definitions
- OverrideResolver: per-org overrides with lazy expiry cleanup
- PlanEntitlementResolver: plan-level feature grants
- Rollout evaluation: percentage, org allow-list, user allow-list
- QuotaCalculator: plan limit checks for members, teams, standups, storage, integrations
- FeatureAdminService: feature and override administration
- require_feature / require_quota: FastAPI access guard dependencies
"""

from entitlement_engine.admin import FeatureAdminService
from entitlement_engine.cache import FeatureCache
from entitlement_engine.config import EngineSettings
from entitlement_engine.database import build_engine, create_session_factory, get_feature_cache
from entitlement_engine.decisions import (
    EvaluationResult,
    FeatureDefinition,
    OverrideDecision,
    PlanDecision,
    QuotaResult,
)
from entitlement_engine.engine import EntitlementEngine
from entitlement_engine.errors import (
    ConflictError,
    EntitlementError,
    FeatureNotFoundError,
    QuotaExceededError,
    RolloutConfigError,
)
from entitlement_engine.guard import require_feature, require_quota
from entitlement_engine.overrides import OverrideResolver
from entitlement_engine.plans import PlanEntitlementResolver
from entitlement_engine.quota import QuotaCalculator, QuotaType, UsageSummary
from entitlement_engine.repository import EntitlementRepository
from entitlement_engine.rollout import (
    OrgListRollout,
    PercentageRollout,
    UserListRollout,
    evaluate_rollout,
    parse_rollout,
    string_hash,
)
from entitlement_engine.schemas import FeatureCreate, FeatureUpdate

__all__ = [
    # Engine
    "EntitlementEngine",
    "EngineSettings",
    "build_engine",
    "create_session_factory",
    "get_feature_cache",
    # Components
    "FeatureCache",
    "OverrideResolver",
    "PlanEntitlementResolver",
    "QuotaCalculator",
    "QuotaType",
    "UsageSummary",
    "EntitlementRepository",
    # Rollout
    "PercentageRollout",
    "OrgListRollout",
    "UserListRollout",
    "evaluate_rollout",
    "parse_rollout",
    "string_hash",
    # Results
    "EvaluationResult",
    "FeatureDefinition",
    "OverrideDecision",
    "PlanDecision",
    "QuotaResult",
    # Admin
    "FeatureAdminService",
    "FeatureCreate",
    "FeatureUpdate",
    # Guard
    "require_feature",
    "require_quota",
    # Errors
    "EntitlementError",
    "ConflictError",
    "FeatureNotFoundError",
    "QuotaExceededError",
    "RolloutConfigError",
]
