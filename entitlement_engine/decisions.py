from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Literal, Optional

from entitlement_engine.rollout import Rollout, parse_rollout

EvaluationSource = Literal["global", "environment", "override", "plan", "rollout"]


@dataclass(frozen=True)
class FeatureDefinition:
    """Read-only snapshot of a Feature row, safe to cache across sessions."""

    key: str
    name: str
    is_enabled: bool
    environment: FrozenSet[str] = field(default_factory=frozenset)
    description: Optional[str] = None
    category: Optional[str] = None
    is_plan_based: bool = False
    requires_admin: bool = False
    rollout_type: str = "none"
    rollout: Optional[Rollout] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "environment", frozenset(self.environment or ()))

    @classmethod
    def from_row(cls, row) -> "FeatureDefinition":
        return cls(
            key=row.key,
            name=row.name,
            description=row.description,
            is_enabled=bool(row.is_enabled),
            environment=frozenset(row.environment or ()),
            category=row.category,
            is_plan_based=bool(row.is_plan_based),
            requires_admin=bool(row.requires_admin),
            rollout_type=row.rollout_type or "none",
            rollout=parse_rollout(row.rollout_type, row.rollout_value),
        )

    def is_available_in(self, environment: str) -> bool:
        return not self.environment or environment in self.environment


@dataclass(frozen=True)
class OverrideDecision:
    enabled: bool
    value: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PlanDecision:
    enabled: bool
    value: Optional[str] = None


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of a single feature evaluation."""

    enabled: bool
    source: EvaluationSource
    value: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        payload: dict = {"enabled": self.enabled, "source": self.source}
        if self.value is not None:
            payload["value"] = self.value
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class QuotaResult:
    current: int
    limit: Optional[int]
    exceeded: bool

    def to_dict(self) -> dict:
        return {"current": self.current, "limit": self.limit, "exceeded": self.exceeded}
