"""
Access guard dependencies.

FastAPI dependencies that evaluate a feature or a quota once per request
and block the route when the answer is no. The engine itself never raises
on evaluation; denials are turned into HTTP errors here.

Applications provide the engine by overriding get_engine. build_engine runs
once per request but reuses the process-wide FeatureCache:

    def engine_for_request(db: Session = Depends(get_db)):
        return build_engine(db, settings)

    app.dependency_overrides[get_engine] = engine_for_request
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from entitlement_engine.decisions import EvaluationResult, QuotaResult
from entitlement_engine.engine import EntitlementEngine
from entitlement_engine.errors import QuotaExceededError
from entitlement_engine.quota import QuotaType

logger = logging.getLogger(__name__)

ORG_ID_HEADER = "X-Org-Id"
USER_ID_HEADER = "X-User-Id"


@dataclass(frozen=True)
class RequestIdentity:
    org_id: Optional[str] = None
    user_id: Optional[str] = None


def get_request_identity(request: Request) -> RequestIdentity:
    """Org and user ids as set by the upstream auth layer."""
    org_id = (request.headers.get(ORG_ID_HEADER) or "").strip() or None
    user_id = (request.headers.get(USER_ID_HEADER) or "").strip() or None
    return RequestIdentity(org_id=org_id, user_id=user_id)


def get_engine() -> EntitlementEngine:
    raise NotImplementedError("Override get_engine with app.dependency_overrides")


def require_feature(feature_key: str) -> Callable:
    """
    Dependency factory that blocks the route unless the feature is enabled.

    Use on a route: Depends(require_feature("advanced_analytics"))
    Raises 402 when the org's plan disables the feature, 403 otherwise.
    """

    def check_feature(
        identity: RequestIdentity = Depends(get_request_identity),
        engine: EntitlementEngine = Depends(get_engine),
    ) -> EvaluationResult:
        result = engine.is_feature_enabled(feature_key, identity.org_id, identity.user_id)
        if result.enabled:
            return result

        logger.warning(
            "Feature access denied",
            extra={
                "org_id": identity.org_id,
                "user_id": identity.user_id,
                "feature_key": feature_key,
                "source": result.source,
                "reason": result.reason,
            },
        )
        status_code = (
            status.HTTP_402_PAYMENT_REQUIRED
            if result.source == "plan"
            else status.HTTP_403_FORBIDDEN
        )
        raise HTTPException(
            status_code=status_code,
            detail={"error": "FEATURE_DISABLED", "feature_key": feature_key, **result.to_dict()},
        )

    return check_feature


def require_quota(quota_type: Union[QuotaType, str]) -> Callable:
    """
    Dependency factory that blocks resource creation once the plan limit is reached.

    Use on a create route: Depends(require_quota(QuotaType.TEAMS))
    """
    quota_type = QuotaType(quota_type)

    def check_quota(
        identity: RequestIdentity = Depends(get_request_identity),
        engine: EntitlementEngine = Depends(get_engine),
    ) -> QuotaResult:
        if identity.org_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "ORG_REQUIRED", "message": "Organization is required"},
            )

        try:
            result = engine.check_quota(identity.org_id, quota_type)
        except SQLAlchemyError as e:
            logger.error(
                "Quota check failed",
                extra={"org_id": identity.org_id, "quota_type": quota_type.value, "error": str(e)},
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"error": "QUOTA_CHECK_UNAVAILABLE", "message": "Quota check unavailable"},
            ) from e

        if result.exceeded:
            error = QuotaExceededError(
                org_id=identity.org_id,
                quota_type=quota_type.value,
                current=result.current,
                limit=result.limit,
            )
            logger.warning(
                "Quota exceeded",
                extra={
                    "org_id": identity.org_id,
                    "quota_type": quota_type.value,
                    "current": result.current,
                    "limit": result.limit,
                },
            )
            raise HTTPException(status_code=error.status_code, detail=error.to_dict())
        return result

    return check_quota
