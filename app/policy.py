from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from database import get_active_policy, upsert_policy
from duty_codes import DUTY_CODES, FIRST_SHIFT, REST, SECOND_SHIFT, normalize_code
from policy_defaults import BASELINE_POLICY, CYCLE_PATTERN, baseline_policy


ROTATION_FIXED = "fixed"
ROTATION_IRREGULAR = "irregular"


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict."""
    if conn is None:
        return _normalize_policy({})
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _normalize_policy(policy: Dict) -> Dict:
    """Fill missing keys from the baseline so stored payloads stay usable after upgrades."""
    if not isinstance(policy, dict):
        policy = {}
    normalized = _deep_update(BASELINE_POLICY, policy)
    # Group payloads replace the baseline wholesale when present.
    if isinstance(policy.get("groups"), dict) and policy["groups"]:
        normalized["groups"] = copy.deepcopy(policy["groups"])
    groups: Dict[str, Dict[str, Any]] = {}
    for name, cfg in (normalized.get("groups") or {}).items():
        label = str(name or "").strip().upper()
        if not label or not isinstance(cfg, dict):
            continue
        rotation = str(cfg.get("rotation") or ROTATION_FIXED).strip().lower()
        if rotation not in {ROTATION_FIXED, ROTATION_IRREGULAR}:
            rotation = ROTATION_FIXED
        try:
            offset = int(cfg.get("phase_offset", 0) or 0)
        except (TypeError, ValueError):
            offset = 0
        groups[label] = {**cfg, "rotation": rotation, "phase_offset": offset}
    normalized["groups"] = groups
    pattern = [normalize_code(code) for code in normalized.get("cycle_pattern") or []]
    if not pattern or any(code not in DUTY_CODES for code in pattern):
        pattern = list(CYCLE_PATTERN)
    normalized["cycle_pattern"] = pattern
    irregular = normalized.setdefault("irregular", {})
    irregular["group"] = str(irregular.get("group") or "").strip().upper()
    return normalized


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return baseline_policy()


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once so the engine can run end-to-end."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        payload = build_default_policy()
        name = payload.get("name", "Baseline Rotation")
        params = {key: value for key, value in payload.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")


def _parse_anchor(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except (TypeError, ValueError):
        return datetime.date.fromisoformat(BASELINE_POLICY["fallback_anchor_date"])


@dataclass(frozen=True)
class EngineConfig:
    """Immutable rotation settings handed to the planning engine."""

    fallback_anchor: datetime.date
    cycle_pattern: Tuple[str, ...]
    phase_offsets: Mapping[str, int]
    irregular_group: Optional[str]
    irregular_codes: Tuple[str, str] = (FIRST_SHIFT, SECOND_SHIFT)
    weekday_labels: Tuple[str, ...] = ("Lun", "Mar", "Mer", "Jeu", "Ven", "Sam", "Dim")
    month_names: Tuple[str, ...] = ()
    unrecognized_group_code: str = REST

    @property
    def fixed_groups(self) -> List[str]:
        return sorted(self.phase_offsets)

    @property
    def cycle_length(self) -> int:
        return len(self.cycle_pattern)

    def is_fixed_group(self, group: Optional[str]) -> bool:
        return (group or "").strip().upper() in self.phase_offsets

    def is_irregular_group(self, group: Optional[str]) -> bool:
        label = (group or "").strip().upper()
        return bool(label) and label == self.irregular_group

    def phase_offset(self, group: Optional[str]) -> int:
        return self.phase_offsets.get((group or "").strip().upper(), 0)

    @classmethod
    def from_policy(cls, policy: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        normalized = _normalize_policy(policy or {})
        offsets: Dict[str, int] = {}
        irregular_group = normalized["irregular"].get("group") or None
        for name, cfg in normalized["groups"].items():
            if cfg.get("rotation") == ROTATION_IRREGULAR:
                irregular_group = irregular_group or name
                continue
            offsets[name] = cfg.get("phase_offset", 0)
        if irregular_group:
            offsets.pop(irregular_group, None)
        irregular_cfg = normalized["irregular"]
        first = normalize_code(irregular_cfg.get("first_code")) or FIRST_SHIFT
        second = normalize_code(irregular_cfg.get("second_code")) or SECOND_SHIFT
        return cls(
            fallback_anchor=_parse_anchor(normalized.get("fallback_anchor_date")),
            cycle_pattern=tuple(normalized["cycle_pattern"]),
            phase_offsets=dict(offsets),
            irregular_group=irregular_group,
            irregular_codes=(first, second),
            weekday_labels=tuple(normalized.get("weekday_labels") or BASELINE_POLICY["weekday_labels"]),
            month_names=tuple(normalized.get("month_names") or BASELINE_POLICY["month_names"]),
        )


def load_engine_config(conn) -> EngineConfig:
    return EngineConfig.from_policy(load_active_policy(conn))
