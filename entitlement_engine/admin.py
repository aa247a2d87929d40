"""
Administrative operations on features and overrides.

Creating a key that already exists is a ConflictError, never an overwrite.
Every write that changes a feature definition invalidates its cache entry,
including creation, since a "not found" marker may be cached for the key.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entitlement_engine.cache import FeatureCache
from entitlement_engine.clock import Clock, as_utc, utc_now
from entitlement_engine.errors import ConflictError, FeatureNotFoundError
from entitlement_engine.models import Feature, FeatureOverride
from entitlement_engine.overrides import OverrideResolver, is_expired
from entitlement_engine.repository import EntitlementRepository
from entitlement_engine.rollout import parse_rollout
from entitlement_engine.schemas import FeatureCreate, FeatureUpdate

logger = logging.getLogger(__name__)


class FeatureAdminService:
    """Create, update and list features; manage per-org overrides."""

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[FeatureCache] = None,
        now: Clock = utc_now,
    ):
        self.session = session
        self._repo = EntitlementRepository(session)
        self._cache = cache
        self._now = now

    def _invalidate(self, feature_key: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(feature_key)

    def _get_feature_or_raise(self, feature_key: str) -> Feature:
        row = self._repo.get_feature_row(feature_key)
        if row is None:
            raise FeatureNotFoundError(feature_key)
        return row

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def create_feature(self, data: FeatureCreate) -> Feature:
        if self._repo.get_feature_row(data.key) is not None:
            raise ConflictError(
                f"Feature with key '{data.key}' already exists",
                details={"feature_key": data.key},
            )

        row = Feature(**data.model_dump())
        try:
            self._repo.add(row)
        except IntegrityError as e:
            self._repo.rollback()
            raise ConflictError(
                f"Feature with key '{data.key}' already exists",
                details={"feature_key": data.key},
            ) from e
        self._repo.commit()
        self._invalidate(data.key)

        logger.info(
            "Feature created",
            extra={"feature_key": data.key, "rollout_type": data.rollout_type},
        )
        return row

    def update_feature(self, feature_key: str, data: FeatureUpdate) -> Feature:
        row = self._get_feature_or_raise(feature_key)
        changes = data.model_dump(exclude_unset=True)

        if "rollout_type" in changes or "rollout_value" in changes:
            rollout_type = changes.get("rollout_type", row.rollout_type)
            rollout_value = changes.get("rollout_value", row.rollout_value)
            # raises RolloutConfigError on a mismatched payload
            rollout = parse_rollout(rollout_type, rollout_value)
            changes["rollout_type"] = rollout_type
            changes["rollout_value"] = rollout.to_value() if rollout is not None else rollout_value

        for field_name, value in changes.items():
            setattr(row, field_name, value)

        self._repo.flush()
        self._repo.commit()
        self._invalidate(feature_key)

        logger.info(
            "Feature updated",
            extra={"feature_key": feature_key, "fields": sorted(changes)},
        )
        return row

    def list_features(self, category: Optional[str] = None) -> List[Feature]:
        return self._repo.list_features(category)

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def create_override(
        self,
        org_id: str,
        feature_key: str,
        enabled: bool,
        *,
        value: Optional[str] = None,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> FeatureOverride:
        """Create an override. Raises if one already exists or expiry is in the past."""
        org_id = str(org_id).strip()
        feature_key = str(feature_key).strip()
        if not org_id:
            raise ValueError("org_id is required")
        if not feature_key:
            raise ValueError("feature_key is required")

        now = self._now()
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= now:
                raise ValueError("Override expiry must be in the future")

        self._get_feature_or_raise(feature_key)

        existing = self._repo.get_override(org_id, feature_key)
        if existing is not None:
            if is_expired(existing.expires_at, now):
                # an expired override counts as absent
                OverrideResolver(self._repo, now=self._now).delete_if_expired(org_id, feature_key, now=now)
            else:
                raise ConflictError(
                    f"Override for feature '{feature_key}' already exists for org '{org_id}'",
                    details={"org_id": org_id, "feature_key": feature_key},
                )

        row = FeatureOverride(
            org_id=org_id,
            feature_key=feature_key,
            enabled=bool(enabled),
            value=value,
            reason=reason,
            expires_at=expires_at,
        )
        try:
            self._repo.add(row)
        except IntegrityError as e:
            self._repo.rollback()
            raise ConflictError(
                f"Override for feature '{feature_key}' already exists for org '{org_id}'",
                details={"org_id": org_id, "feature_key": feature_key},
            ) from e
        self._repo.commit()

        logger.info(
            "Feature override created",
            extra={
                "org_id": org_id,
                "feature_key": feature_key,
                "enabled": bool(enabled),
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return row

    def remove_override(self, org_id: str, feature_key: str) -> bool:
        deleted = self._repo.delete_override(org_id, feature_key)
        if deleted:
            self._repo.commit()
            logger.info(
                "Feature override removed",
                extra={"org_id": org_id, "feature_key": feature_key},
            )
        return deleted

    def list_overrides(self, org_id: str) -> List[FeatureOverride]:
        return self._repo.list_overrides(org_id)
