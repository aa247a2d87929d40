"""
Session and engine wiring.

One FeatureCache is shared per process; repositories and resolvers are built
per session (usually per request).
"""

from threading import Lock
from typing import Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from entitlement_engine.cache import FeatureCache
from entitlement_engine.config import EngineSettings
from entitlement_engine.engine import EntitlementEngine, FailureSink
from entitlement_engine.overrides import OverrideResolver
from entitlement_engine.plans import PlanEntitlementResolver
from entitlement_engine.quota import QuotaCalculator, StorageUsageProvider
from entitlement_engine.repository import EntitlementRepository


def create_session_factory(database_url: str, **engine_kwargs) -> Callable[[], Session]:
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    return sessionmaker(autoflush=False, bind=engine)


def create_feature_cache(settings: EngineSettings) -> FeatureCache:
    return FeatureCache(
        ttl_seconds=settings.feature_cache_ttl_seconds,
        redis_url=settings.redis_url,
    )


# Process-wide feature cache, built on first use
_feature_cache: Optional[FeatureCache] = None
_feature_cache_lock = Lock()


def get_feature_cache(settings: EngineSettings) -> FeatureCache:
    """
    Get or create the shared FeatureCache.

    Settings are only read by the first call; later calls return the same
    instance so cached definitions survive across requests.
    """
    global _feature_cache
    with _feature_cache_lock:
        if _feature_cache is None:
            _feature_cache = create_feature_cache(settings)
        return _feature_cache


def build_engine(
    session: Session,
    settings: EngineSettings,
    *,
    cache: Optional[FeatureCache] = None,
    storage_usage: Optional[StorageUsageProvider] = None,
    failure_sink: Optional[FailureSink] = None,
) -> EntitlementEngine:
    """
    Compose an EntitlementEngine around a session.

    Without an explicit cache the process-wide one from get_feature_cache is used.
    """
    repository = EntitlementRepository(session)
    return EntitlementEngine(
        repository,
        environment=settings.environment,
        cache=cache or get_feature_cache(settings),
        override_resolver=OverrideResolver(repository),
        plan_resolver=PlanEntitlementResolver(repository),
        quota_calculator=QuotaCalculator(
            repository,
            storage_usage=storage_usage,
            near_limit_percent=settings.near_limit_percent,
        ),
        failure_sink=failure_sink,
    )
