from __future__ import annotations

import copy
from typing import Any, Dict, List


def _group_config(
    *,
    offset: int = 0,
    rotation: str = "fixed",
    label: str = "",
) -> Dict[str, Any]:
    return {
        "rotation": rotation,
        "phase_offset": max(0, int(offset)),
        "label": label,
    }


FALLBACK_ANCHOR_DATE = "2025-11-01"

# Eight slots: two days on each operational shift, then two rest days.
CYCLE_PATTERN: List[str] = ["1", "1", "2", "2", "3", "3", "R", "R"]

GROUPS: Dict[str, Dict[str, Any]] = {
    "A": _group_config(offset=0, label="Groupe A"),
    "B": _group_config(offset=2, label="Groupe B"),
    "C": _group_config(offset=4, label="Groupe C"),
    "D": _group_config(offset=6, label="Groupe D"),
    "E": _group_config(rotation="irregular", label="Groupe E (5/7)"),
}

IRREGULAR_GROUP: Dict[str, Any] = {
    "group": "E",
    "first_code": "1",
    "second_code": "2",
}

WEEKDAY_LABELS: List[str] = ["Lun", "Mar", "Mer", "Jeu", "Ven", "Sam", "Dim"]

MONTH_NAMES: List[str] = [
    "Janvier",
    "Février",
    "Mars",
    "Avril",
    "Mai",
    "Juin",
    "Juillet",
    "Août",
    "Septembre",
    "Octobre",
    "Novembre",
    "Décembre",
]

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Baseline Rotation",
    "fallback_anchor_date": FALLBACK_ANCHOR_DATE,
    "cycle_pattern": CYCLE_PATTERN,
    "groups": GROUPS,
    "irregular": IRREGULAR_GROUP,
    "weekday_labels": WEEKDAY_LABELS,
    "month_names": MONTH_NAMES,
}


def baseline_policy() -> Dict[str, Any]:
    return copy.deepcopy(BASELINE_POLICY)
