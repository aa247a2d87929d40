"""
Read-through cache for feature definitions.

Keyed by feature key only (definitions are not org-specific). A lookup that
finds no feature is cached too, as a not-found marker. Loader failures are
never cached: the exception goes straight back to the caller.

Backed by Redis when a URL is configured, in-process memory otherwise.
"""

from __future__ import annotations

import json
import logging
import time
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

import redis

from entitlement_engine.config import DEFAULT_FEATURE_CACHE_TTL_SECONDS
from entitlement_engine.decisions import FeatureDefinition
from entitlement_engine.rollout import parse_rollout

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1
CACHE_KEY_PREFIX = "features:v1:"

FeatureLoader = Callable[[str], Optional[FeatureDefinition]]

_MISSING = object()


class FeatureCache:
    """TTL cache in front of feature-definition lookups."""

    def __init__(
        self,
        loader: Optional[FeatureLoader] = None,
        *,
        ttl_seconds: int = DEFAULT_FEATURE_CACHE_TTL_SECONDS,
        redis_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = RLock()
        # feature_key -> (expires_at, definition or None for "not found")
        self._mem: Dict[str, Tuple[float, Optional[FeatureDefinition]]] = {}
        self._redis = None

        if redis_url:
            try:
                client = redis.from_url(redis_url, decode_responses=True)
                client.ping()
                self._redis = client
            except (redis.RedisError, ValueError) as e:
                logger.warning("Redis unavailable, using in-memory feature cache: %s", e)

    @staticmethod
    def _key(feature_key: str) -> str:
        return f"{CACHE_KEY_PREFIX}{feature_key}"

    def get(self, feature_key: str, loader: Optional[FeatureLoader] = None) -> Optional[FeatureDefinition]:
        """
        Return the feature definition, loading it on a miss.

        `loader` overrides the constructor loader for this call, so a shared
        cache can sit in front of a per-request repository.
        """
        cached = self._read(feature_key)
        if cached is not _MISSING:
            return cached

        load = loader or self._loader
        if load is None:
            raise ValueError("FeatureCache.get requires a loader")

        definition = load(feature_key)
        self._write(feature_key, definition)
        return definition

    def invalidate(self, feature_key: str) -> None:
        with self._lock:
            self._mem.pop(feature_key, None)
        if self._redis is not None:
            try:
                self._redis.delete(self._key(feature_key))
            except redis.RedisError as e:
                logger.warning("Feature cache delete failed: %s", e, extra={"feature_key": feature_key})

    def clear(self) -> None:
        """Drop in-process entries. Redis entries expire on their own TTL."""
        with self._lock:
            self._mem.clear()

    def _read(self, feature_key: str):
        if self._ttl_seconds <= 0:
            return _MISSING

        if self._redis is not None:
            try:
                raw = self._redis.get(self._key(feature_key))
            except redis.RedisError as e:
                logger.warning("Feature cache get failed: %s", e, extra={"feature_key": feature_key})
                return _MISSING
            if not raw:
                return _MISSING
            try:
                return _decode_definition(json.loads(raw))
            except (ValueError, KeyError) as e:
                logger.warning("Discarding unreadable feature cache entry: %s", e, extra={"feature_key": feature_key})
                return _MISSING

        with self._lock:
            entry = self._mem.get(feature_key)
            if entry is None:
                return _MISSING
            expires_at, definition = entry
            if self._clock() >= expires_at:
                self._mem.pop(feature_key, None)
                return _MISSING
            return definition

    def _write(self, feature_key: str, definition: Optional[FeatureDefinition]) -> None:
        if self._ttl_seconds <= 0:
            return

        if self._redis is not None:
            try:
                self._redis.setex(
                    self._key(feature_key),
                    self._ttl_seconds,
                    json.dumps(_encode_definition(definition)),
                )
            except redis.RedisError as e:
                logger.warning("Feature cache set failed: %s", e, extra={"feature_key": feature_key})
            return

        with self._lock:
            now = self._clock()
            # drop entries nobody read again after they expired
            expired = [key for key, (expires_at, _) in self._mem.items() if now >= expires_at]
            for key in expired:
                del self._mem[key]
            self._mem[feature_key] = (now + self._ttl_seconds, definition)


def _encode_definition(definition: Optional[FeatureDefinition]) -> dict:
    if definition is None:
        return {"schema_version": CACHE_SCHEMA_VERSION, "found": False}
    return {
        "schema_version": CACHE_SCHEMA_VERSION,
        "found": True,
        "key": definition.key,
        "name": definition.name,
        "description": definition.description,
        "is_enabled": definition.is_enabled,
        "environment": sorted(definition.environment),
        "category": definition.category,
        "is_plan_based": definition.is_plan_based,
        "requires_admin": definition.requires_admin,
        "rollout_type": definition.rollout_type,
        "rollout_value": definition.rollout.to_value() if definition.rollout is not None else None,
    }


def _decode_definition(raw: dict) -> Optional[FeatureDefinition]:
    if int(raw.get("schema_version", 0)) != CACHE_SCHEMA_VERSION:
        raise ValueError("Unsupported feature cache schema version")
    if not raw.get("found"):
        return None
    return FeatureDefinition(
        key=raw["key"],
        name=raw["name"],
        description=raw.get("description"),
        is_enabled=bool(raw["is_enabled"]),
        environment=frozenset(raw.get("environment") or ()),
        category=raw.get("category"),
        is_plan_based=bool(raw.get("is_plan_based", False)),
        requires_admin=bool(raw.get("requires_admin", False)),
        rollout_type=raw.get("rollout_type") or "none",
        rollout=parse_rollout(raw.get("rollout_type"), raw.get("rollout_value")),
    )
