"""
Data access for features, overrides, plans and usage counts.

All queries run on the SQLAlchemy session handed in by the caller. The
repository flushes on add; commit() is only called by the owning service.
Work done on a read path goes through begin_savepoint() so it never commits
or rolls back the caller's transaction.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, SessionTransaction

from entitlement_engine.decisions import FeatureDefinition
from entitlement_engine.models import (
    Feature,
    FeatureOverride,
    Integration,
    OrgMember,
    Plan,
    PlanFeature,
    StandupInstance,
    Subscription,
    Team,
)


ACTIVE_SUBSCRIPTION_STATUS = "active"
ACTIVE_MEMBER_STATUS = "active"


class EntitlementRepository:
    """Query layer over a single SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def get_feature(self, feature_key: str) -> Optional[FeatureDefinition]:
        row = self.get_feature_row(feature_key)
        if row is None:
            return None
        return FeatureDefinition.from_row(row)

    def get_feature_row(self, feature_key: str) -> Optional[Feature]:
        stmt = select(Feature).where(Feature.key == feature_key)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_enabled_feature_keys(self) -> List[str]:
        stmt = select(Feature.key).where(Feature.is_enabled.is_(True)).order_by(Feature.key)
        return list(self.session.execute(stmt).scalars())

    def list_features(self, category: Optional[str] = None) -> List[Feature]:
        stmt = select(Feature)
        if category:
            stmt = stmt.where(Feature.category == category)
        stmt = stmt.order_by(Feature.key)
        return list(self.session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def get_override(self, org_id: str, feature_key: str) -> Optional[FeatureOverride]:
        stmt = select(FeatureOverride).where(
            FeatureOverride.org_id == org_id,
            FeatureOverride.feature_key == feature_key,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_overrides(self, org_id: str) -> List[FeatureOverride]:
        stmt = (
            select(FeatureOverride)
            .where(FeatureOverride.org_id == org_id)
            .order_by(FeatureOverride.feature_key)
        )
        return list(self.session.execute(stmt).scalars())

    def list_expired_overrides(self, now: datetime) -> List[FeatureOverride]:
        stmt = (
            select(FeatureOverride)
            .where(
                FeatureOverride.expires_at.is_not(None),
                FeatureOverride.expires_at < now,
            )
            .order_by(FeatureOverride.org_id, FeatureOverride.feature_key)
        )
        return list(self.session.execute(stmt).scalars())

    def delete_override_if_expired(self, org_id: str, feature_key: str, now: datetime) -> int:
        """
        Conditionally delete one override if it expired before `now`.

        Returns the number of rows removed. Zero means another caller got there
        first (or the override was renewed) and is not an error.
        """
        stmt = (
            delete(FeatureOverride)
            .where(
                FeatureOverride.org_id == org_id,
                FeatureOverride.feature_key == feature_key,
                FeatureOverride.expires_at.is_not(None),
                FeatureOverride.expires_at < now,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return result.rowcount or 0

    def delete_override(self, org_id: str, feature_key: str) -> bool:
        stmt = (
            delete(FeatureOverride)
            .where(
                FeatureOverride.org_id == org_id,
                FeatureOverride.feature_key == feature_key,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def get_active_plan(self, org_id: str) -> Optional[Plan]:
        """Plan of the org's most recent active subscription, if any."""
        stmt = (
            select(Plan)
            .join(Subscription, Subscription.plan_id == Plan.id)
            .where(
                Subscription.org_id == org_id,
                Subscription.status == ACTIVE_SUBSCRIPTION_STATUS,
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_plan_feature(self, plan_id: str, feature_key: str) -> Optional[PlanFeature]:
        stmt = select(PlanFeature).where(
            PlanFeature.plan_id == plan_id,
            PlanFeature.feature_key == feature_key,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Usage counts
    # ------------------------------------------------------------------

    def count_active_members(self, org_id: str) -> int:
        stmt = select(func.count(OrgMember.id)).where(
            OrgMember.org_id == org_id,
            OrgMember.status == ACTIVE_MEMBER_STATUS,
        )
        return int(self.session.execute(stmt).scalar_one())

    def count_teams(self, org_id: str) -> int:
        stmt = select(func.count(Team.id)).where(Team.org_id == org_id)
        return int(self.session.execute(stmt).scalar_one())

    def count_standups(self, org_id: str, start: datetime, end: datetime) -> int:
        """Standup instances of the org's teams with start <= target_date <= end."""
        stmt = (
            select(func.count(StandupInstance.id))
            .join(Team, Team.id == StandupInstance.team_id)
            .where(
                Team.org_id == org_id,
                StandupInstance.target_date >= start,
                StandupInstance.target_date <= end,
            )
        )
        return int(self.session.execute(stmt).scalar_one())

    def count_integrations(self, org_id: str) -> int:
        stmt = select(func.count(Integration.id)).where(Integration.org_id == org_id)
        return int(self.session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def add(self, obj) -> None:
        self.session.add(obj)
        self.session.flush()

    def begin_savepoint(self) -> SessionTransaction:
        return self.session.begin_nested()

    def flush(self) -> None:
        self.session.flush()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
