"""
Background sweep for expired feature overrides.

Overrides are also removed lazily on read; this job removes the ones for
orgs that never ask about the feature again.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from entitlement_engine.clock import utc_now
from entitlement_engine.config import EngineSettings
from entitlement_engine.database import create_session_factory
from entitlement_engine.overrides import OverrideResolver
from entitlement_engine.repository import EntitlementRepository

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    started_at: str
    completed_at: Optional[str] = None
    removed_overrides: int = 0
    errors: int = 0


def _default_session_factory() -> Callable[[], Session]:
    settings = EngineSettings.from_env()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required for the override cleanup job")
    return create_session_factory(settings.database_url)


def run_override_cleanup_cycle(
    session_factory: Optional[Callable[[], Session]] = None,
    *,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """Delete all overrides that expired before `now` in one transaction."""
    factory = session_factory or _default_session_factory()
    stats = CleanupStats(started_at=utc_now().isoformat())

    session = factory()
    try:
        removed = OverrideResolver(EntitlementRepository(session)).remove_expired(now=now)
        stats.removed_overrides = len(removed)
    except Exception:
        logger.exception("Override cleanup cycle failed")
        session.rollback()
        stats.errors += 1
    finally:
        session.close()

    stats.completed_at = utc_now().isoformat()
    logger.info(
        "Override cleanup cycle completed",
        extra={"removed_overrides": stats.removed_overrides, "errors": stats.errors},
    )
    return stats


def run_forever(interval_seconds: int = 60) -> None:
    session_factory = _default_session_factory()
    while True:
        run_override_cleanup_cycle(session_factory)
        time.sleep(interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_forever()
