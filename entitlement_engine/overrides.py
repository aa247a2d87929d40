"""
Per-organization feature overrides.

An override is authoritative for its (org_id, feature_key) pair and beats
plan and rollout decisions. Overrides with an expiry in the past are treated
as absent and deleted the first time they are observed; the sweep in
remove_expired() (run by workers/override_cleanup_job.py) catches the ones
nobody asks about.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from entitlement_engine.clock import Clock, as_utc, utc_now
from entitlement_engine.decisions import OverrideDecision
from entitlement_engine.repository import EntitlementRepository

logger = logging.getLogger(__name__)


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    """True iff the override has an expiry strictly before `now`."""
    if expires_at is None:
        return False
    return as_utc(expires_at) < as_utc(now)


class OverrideResolver:
    def __init__(self, repository: EntitlementRepository, *, now: Clock = utc_now):
        self._repo = repository
        self._now = now

    def resolve(self, org_id: str, feature_key: str) -> Optional[OverrideDecision]:
        """Active override decision for the pair, or None when there is none."""
        row = self._repo.get_override(org_id, feature_key)
        if row is None:
            return None

        now = self._now()
        if is_expired(row.expires_at, now):
            self.delete_if_expired(org_id, feature_key, now=now)
            return None

        return OverrideDecision(
            enabled=bool(row.enabled),
            value=row.value,
            reason=row.reason,
        )

    def delete_if_expired(self, org_id: str, feature_key: str, now: Optional[datetime] = None) -> bool:
        """
        Delete the override only if it is still expired at `now`.

        Idempotent: when a concurrent caller already removed it, nothing is
        deleted and False is returned. The delete runs in a SAVEPOINT on the
        caller's session and is persisted when the caller's transaction
        commits; the caller's own pending work is neither committed nor
        discarded here. Cleanup is best-effort; a store error rolls back the
        savepoint only and is logged, so the read path still answers.
        """
        now = now or self._now()
        savepoint = self._repo.begin_savepoint()
        try:
            removed = self._repo.delete_override_if_expired(org_id, feature_key, now)
            savepoint.commit()
        except SQLAlchemyError as e:
            savepoint.rollback()
            logger.warning(
                "Expired override cleanup failed",
                extra={"org_id": org_id, "feature_key": feature_key, "error": str(e)},
            )
            return False

        if removed:
            logger.info(
                "Expired feature override removed",
                extra={"org_id": org_id, "feature_key": feature_key},
            )
        return bool(removed)

    def remove_expired(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        """
        Delete every override that expired before `now`.

        Returns the (org_id, feature_key) pairs actually removed by this call.
        """
        now = now or self._now()
        removed: List[Tuple[str, str]] = []
        for row in self._repo.list_expired_overrides(now):
            org_id, feature_key, expires_at = row.org_id, row.feature_key, row.expires_at
            if self._repo.delete_override_if_expired(org_id, feature_key, now):
                removed.append((org_id, feature_key))
                logger.info(
                    "Expired feature override removed",
                    extra={
                        "org_id": org_id,
                        "feature_key": feature_key,
                        "expires_at": as_utc(expires_at).isoformat(),
                    },
                )
        if removed:
            self._repo.commit()
        return removed
