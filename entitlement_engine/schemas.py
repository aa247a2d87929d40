"""
Pydantic schemas for feature administration.

Rollout payloads are checked against their rollout type here, so malformed
configurations are rejected before they reach storage.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from entitlement_engine.errors import RolloutConfigError
from entitlement_engine.rollout import parse_rollout

RolloutTypeField = Literal["none", "percentage", "org_list", "user_list"]


def _clean_environments(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    return sorted({env.strip() for env in value if env and env.strip()})


def _canonical_rollout_value(rollout_type: Optional[str], rollout_value: Optional[Dict[str, Any]]):
    try:
        rollout = parse_rollout(rollout_type, rollout_value)
    except RolloutConfigError as e:
        raise ValueError(e.message) from e
    if rollout is None:
        return None
    return rollout.to_value()


class FeatureCreate(BaseModel):
    """Request to define a new feature."""
    key: str = Field(..., min_length=1, max_length=255, description="Immutable feature key")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_enabled: bool = False
    environment: List[str] = Field(default_factory=list, description="Empty = all environments")
    category: Optional[str] = None
    is_plan_based: bool = False
    requires_admin: bool = False
    rollout_type: RolloutTypeField = "none"
    rollout_value: Optional[Dict[str, Any]] = None

    @field_validator("key", "name")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, value: List[str]) -> List[str]:
        return _clean_environments(value)

    @model_validator(mode="after")
    def _validate_rollout(self) -> "FeatureCreate":
        self.rollout_value = _canonical_rollout_value(self.rollout_type, self.rollout_value)
        return self


class FeatureUpdate(BaseModel):
    """
    Partial update of a feature definition.

    Only fields explicitly set are applied. The key is immutable and cannot
    be changed. Columns that cannot be NULL may be omitted but not set to
    null. Rollout type/value consistency is checked by the admin service
    once the update is merged with the stored definition.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_enabled: Optional[bool] = None
    environment: Optional[List[str]] = None
    category: Optional[str] = None
    is_plan_based: Optional[bool] = None
    requires_admin: Optional[bool] = None
    rollout_type: Optional[RolloutTypeField] = None
    rollout_value: Optional[Dict[str, Any]] = None

    @field_validator(
        "name",
        "is_enabled",
        "environment",
        "is_plan_based",
        "requires_admin",
        "rollout_type",
    )
    @classmethod
    def _reject_null(cls, value):
        if value is None:
            raise ValueError("must not be null")
        return value

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, value: List[str]) -> List[str]:
        return _clean_environments(value)
