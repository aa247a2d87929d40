"""
Rollout strategies: percentage, org allow-list and user allow-list.

Everything here is pure. A rollout configuration is parsed once, at the
storage boundary, into one of the Rollout variants; evaluation then matches
on the variant type.

evaluate_rollout returns None ("no opinion") when there is no rollout, so
the engine can fall through to its default. The one exception is a user
allow-list evaluated without a user id, which is an explicit False.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, Literal, Mapping, Optional, Union

from entitlement_engine.errors import RolloutConfigError

RolloutType = Literal["none", "percentage", "org_list", "user_list"]

ROLLOUT_TYPES: FrozenSet[str] = frozenset({"none", "percentage", "org_list", "user_list"})

_PAYLOAD_FIELDS = {
    "percentage": "percentage",
    "org_list": "orgIds",
    "user_list": "userIds",
}

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


@dataclass(frozen=True)
class PercentageRollout:
    percentage: int

    def __post_init__(self) -> None:
        if isinstance(self.percentage, bool) or not isinstance(self.percentage, int):
            raise RolloutConfigError("percentage must be an integer", rollout_type="percentage")
        if not 0 <= self.percentage <= 100:
            raise RolloutConfigError("percentage must be between 0 and 100", rollout_type="percentage")

    @property
    def rollout_type(self) -> str:
        return "percentage"

    def to_value(self) -> dict:
        return {"percentage": self.percentage}


@dataclass(frozen=True)
class OrgListRollout:
    org_ids: FrozenSet[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "org_ids", _normalize_ids(self.org_ids, "org_list", "orgIds"))

    @property
    def rollout_type(self) -> str:
        return "org_list"

    def to_value(self) -> dict:
        return {"orgIds": sorted(self.org_ids)}


@dataclass(frozen=True)
class UserListRollout:
    user_ids: FrozenSet[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_ids", _normalize_ids(self.user_ids, "user_list", "userIds"))

    @property
    def rollout_type(self) -> str:
        return "user_list"

    def to_value(self) -> dict:
        return {"userIds": sorted(self.user_ids)}


Rollout = Union[PercentageRollout, OrgListRollout, UserListRollout]


def _normalize_ids(ids: Any, rollout_type: str, field_name: str) -> FrozenSet[str]:
    if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
        raise RolloutConfigError(f"{field_name} must be a list of strings", rollout_type=rollout_type)
    normalized = set()
    for item in ids:
        if not isinstance(item, str):
            raise RolloutConfigError(f"{field_name} must be a list of strings", rollout_type=rollout_type)
        if item.strip():
            normalized.add(item.strip())
    return frozenset(normalized)


def parse_rollout(rollout_type: Optional[str], rollout_value: Optional[Mapping[str, Any]]) -> Optional[Rollout]:
    """
    Build a typed rollout from the stored (type, payload) pair.

    Returns None for "none", for unrecognized types and when no payload is
    stored. Raises RolloutConfigError when the payload does not match the
    type, including a payload that lacks the type's field.
    """
    if rollout_type not in ("percentage", "org_list", "user_list") or rollout_value is None:
        return None
    if not isinstance(rollout_value, Mapping):
        raise RolloutConfigError("rollout_value must be an object", rollout_type=rollout_type)

    field_name = _PAYLOAD_FIELDS[rollout_type]
    if field_name not in rollout_value:
        raise RolloutConfigError(
            f"{rollout_type} rollout requires '{field_name}'",
            rollout_type=rollout_type,
        )

    if rollout_type == "percentage":
        return PercentageRollout(percentage=rollout_value[field_name])
    if rollout_type == "org_list":
        return OrgListRollout(org_ids=rollout_value[field_name])
    return UserListRollout(user_ids=rollout_value[field_name])


def string_hash(value: str) -> int:
    """
    Deterministic 32-bit polynomial rolling hash (h = h * 31 + unit).

    Iterates over UTF-16 code units and wraps to a signed 32-bit integer on
    every step; the absolute value is returned. The result is stable across
    processes, unlike the built-in hash(). Lone surrogates hash as their own
    code unit.
    """
    h = 0
    data = value.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & _INT32_MASK
    if h & _INT32_SIGN:
        h -= 1 << 32
    return abs(h)


def rollout_bucket(org_id: str) -> int:
    """Stable 0..99 bucket for an organization."""
    return string_hash(org_id) % 100


def evaluate_rollout(
    rollout: Optional[Rollout],
    org_id: str,
    user_id: Optional[str] = None,
) -> Optional[bool]:
    if rollout is None:
        return None
    if isinstance(rollout, PercentageRollout):
        return rollout_bucket(org_id) < rollout.percentage
    if isinstance(rollout, OrgListRollout):
        return org_id in rollout.org_ids
    if isinstance(rollout, UserListRollout):
        # no identity means the user cannot be on the list
        if not user_id:
            return False
        return user_id in rollout.user_ids
    return None
