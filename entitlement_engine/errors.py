"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- FeatureNotFoundError: admin operation on an unknown feature key
- ConflictError: duplicate feature or override key
- RolloutConfigError: malformed rollout payload
- QuotaExceededError: plan limit reached on an enforced quota

Evaluation itself never raises these to callers: the engine converts
collaborator failures into a disabled result.
"""

from typing import Any, Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    error_code = "ENTITLEMENT_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class FeatureNotFoundError(EntitlementError):
    """Raised when an administrative operation targets an unknown feature."""

    error_code = "FEATURE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, feature_key: str):
        self.feature_key = feature_key
        super().__init__(
            f"Feature with key '{feature_key}' not found",
            details={"feature_key": feature_key},
        )


class ConflictError(EntitlementError):
    """Raised when creating a feature or override whose key already exists."""

    error_code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class RolloutConfigError(EntitlementError):
    """Raised when a rollout payload does not match its rollout type."""

    error_code = "INVALID_ROLLOUT_CONFIG"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, rollout_type: Optional[str] = None):
        self.rollout_type = rollout_type
        details = {"rollout_type": rollout_type} if rollout_type is not None else None
        super().__init__(message, details=details)


class QuotaExceededError(EntitlementError):
    """Raised by quota enforcement when current usage has reached the plan limit."""

    error_code = "QUOTA_EXCEEDED"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, org_id: str, quota_type: str, current: int, limit: Optional[int]):
        self.org_id = org_id
        self.quota_type = quota_type
        self.current = current
        self.limit = limit
        super().__init__(
            f"{quota_type} limit reached ({current}/{limit}). Upgrade your plan to add more.",
            details={
                "quota_type": quota_type,
                "current": current,
                "limit": limit,
                "upgrade_required": True,
            },
        )
