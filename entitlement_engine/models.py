"""
Database models for features, overrides, plans and plan usage.

Feature definitions and plan entitlements are read-only from the engine's
point of view. The only row the engine deletes on its own is an expired
FeatureOverride.

The usage tables (members, teams, standups, integrations) belong to other
parts of the product; they are modelled here with just the columns the quota
calculator counts on.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from entitlement_engine.db_base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Feature(Base):
    """A named capability with a global kill switch and optional rollout."""

    __tablename__ = "features"

    key = Column(
        String(255),
        primary_key=True,
        comment="Stable feature identifier (immutable)"
    )

    name = Column(String(255), nullable=False)

    description = Column(Text, nullable=True)

    is_enabled = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Global kill switch"
    )

    environment = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Deployment environments where the feature is permitted; empty = all"
    )

    category = Column(String(100), nullable=True, index=True)

    is_plan_based = Column(Boolean, nullable=False, default=False)

    requires_admin = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Enforced by callers, not by the engine"
    )

    rollout_type = Column(
        String(50),
        nullable=False,
        default="none",
        comment="none | percentage | org_list | user_list"
    )

    rollout_value = Column(
        JSON,
        nullable=True,
        comment="Payload matching rollout_type"
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<Feature("
            f"key={self.key}, "
            f"is_enabled={self.is_enabled}, "
            f"rollout_type={self.rollout_type}"
            f")>"
        )


class FeatureOverride(Base):
    """Organization-scoped exception that bypasses plan and rollout logic."""

    __tablename__ = "feature_overrides"

    id = Column(String(255), primary_key=True, default=_uuid)

    org_id = Column(String(255), nullable=False, index=True)

    feature_key = Column(
        String(255),
        ForeignKey("features.key"),
        nullable=False,
        index=True,
    )

    enabled = Column(Boolean, nullable=False)

    value = Column(Text, nullable=True)

    reason = Column(Text, nullable=True)

    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Override is ignored and lazily deleted after this instant"
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("org_id", "feature_key", name="uq_feature_override_org_feature"),
    )

    def __repr__(self) -> str:
        return (
            f"<FeatureOverride("
            f"org_id={self.org_id}, "
            f"feature_key={self.feature_key}, "
            f"enabled={self.enabled}, "
            f"expires_at={self.expires_at}"
            f")>"
        )


class Plan(Base):
    """Subscription tier. NULL limits mean unlimited."""

    __tablename__ = "plans"

    id = Column(String(255), primary_key=True, default=_uuid)

    key = Column(String(100), nullable=False, unique=True)

    name = Column(String(255), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)

    member_limit = Column(Integer, nullable=True)
    team_limit = Column(Integer, nullable=True)
    standup_limit = Column(Integer, nullable=True, comment="Standups per calendar month")
    storage_limit = Column(Integer, nullable=True)
    integration_limit = Column(Integer, nullable=True)


class PlanFeature(Base):
    """Plan-level entitlement for a single feature."""

    __tablename__ = "plan_features"

    id = Column(String(255), primary_key=True, default=_uuid)

    plan_id = Column(String(255), ForeignKey("plans.id"), nullable=False)

    feature_key = Column(String(255), ForeignKey("features.key"), nullable=False, index=True)

    enabled = Column(Boolean, nullable=False, default=True)

    value = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("plan_id", "feature_key", name="uq_plan_feature_plan_feature"),
    )


class Subscription(Base):
    """Links an organization to a plan."""

    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True, default=_uuid)

    org_id = Column(String(255), nullable=False, index=True)

    plan_id = Column(String(255), ForeignKey("plans.id"), nullable=False, index=True)

    status = Column(String(50), nullable=False, default="active")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_subscription_org_status", "org_id", "status"),
    )


class OrgMember(Base):
    __tablename__ = "org_members"

    id = Column(String(255), primary_key=True, default=_uuid)
    org_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default="active")


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(255), primary_key=True, default=_uuid)
    org_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")


class StandupInstance(Base):
    __tablename__ = "standup_instances"

    id = Column(String(255), primary_key=True, default=_uuid)
    team_id = Column(String(255), ForeignKey("teams.id"), nullable=False, index=True)
    target_date = Column(DateTime(timezone=True), nullable=False, index=True)


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String(255), primary_key=True, default=_uuid)
    org_id = Column(String(255), nullable=False, index=True)
    platform = Column(String(50), nullable=False, default="slack")
