"""
Engine configuration.

Values are read from the environment once at process start and passed into
constructors. Nothing in the engine reads these at evaluation time.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_ENVIRONMENT = "development"

# Feature definitions change rarely; a kill switch does not need faster propagation.
DEFAULT_FEATURE_CACHE_TTL_SECONDS = 300

# Usage at or above this share of a finite limit is reported as near the limit.
DEFAULT_NEAR_LIMIT_PERCENT = 80


@dataclass(frozen=True)
class EngineSettings:
    environment: str = DEFAULT_ENVIRONMENT
    feature_cache_ttl_seconds: int = DEFAULT_FEATURE_CACHE_TTL_SECONDS
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    near_limit_percent: int = DEFAULT_NEAR_LIMIT_PERCENT

    def __post_init__(self) -> None:
        environment = str(self.environment).strip()
        if not environment:
            raise ValueError("environment is required")
        if self.feature_cache_ttl_seconds < 0:
            raise ValueError("feature_cache_ttl_seconds must be >= 0")
        if not 0 < self.near_limit_percent <= 100:
            raise ValueError("near_limit_percent must be between 1 and 100")
        object.__setattr__(self, "environment", environment)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ENTITLEMENTS_* environment variables."""
        environment = (
            os.getenv("ENTITLEMENTS_ENVIRONMENT")
            or os.getenv("APP_ENV")
            or DEFAULT_ENVIRONMENT
        )
        return cls(
            environment=environment,
            feature_cache_ttl_seconds=int(
                os.getenv("FEATURE_CACHE_TTL_SECONDS", str(DEFAULT_FEATURE_CACHE_TTL_SECONDS))
            ),
            redis_url=os.getenv("REDIS_URL") or None,
            database_url=os.getenv("DATABASE_URL") or None,
            near_limit_percent=int(
                os.getenv("QUOTA_NEAR_LIMIT_PERCENT", str(DEFAULT_NEAR_LIMIT_PERCENT))
            ),
        )
