from __future__ import annotations

from typing import Dict, Iterable, List, Optional


FIRST_SHIFT = "1"
SECOND_SHIFT = "2"
THIRD_SHIFT = "3"
REST = "R"
LEAVE = "C"
SICK = "M"
ABSENCE = "A"
UNASSIGNED = "-"

DUTY_CODES: Dict[str, Dict[str, str]] = {
    FIRST_SHIFT: {"label": "Shift 1 (matin)", "category": "operational", "color": "#1c4641"},
    SECOND_SHIFT: {"label": "Shift 2 (après-midi)", "category": "operational", "color": "#2f3a4f"},
    THIRD_SHIFT: {"label": "Shift 3 (nuit)", "category": "operational", "color": "#4a1f43"},
    REST: {"label": "Repos", "category": "rest", "color": "#313c57"},
    LEAVE: {"label": "Congé", "category": "absence", "color": "#4a3a1f"},
    SICK: {"label": "Maladie", "category": "absence", "color": "#5a2a2a"},
    ABSENCE: {"label": "Absence", "category": "absence", "color": "#5a4a2a"},
    UNASSIGNED: {"label": "Non affecté", "category": "unassigned", "color": "#2f2f2f"},
}

OPERATIONAL_CODES = (FIRST_SHIFT, SECOND_SHIFT, THIRD_SHIFT)
ABSENCE_CODES = (LEAVE, SICK, ABSENCE)

ORIGIN_THEORETICAL = "THEORETICAL"
ORIGIN_MANUAL = "MANUAL"
ORIGIN_SWAP = "SWAP"
ORIGIN_ABSENCE = "ABSENCE"
SHIFT_ORIGINS = {ORIGIN_THEORETICAL, ORIGIN_MANUAL, ORIGIN_SWAP, ORIGIN_ABSENCE}


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def is_known_code(code: Optional[str]) -> bool:
    return normalize_code(code) in DUTY_CODES


def is_operational(code: Optional[str]) -> bool:
    return normalize_code(code) in OPERATIONAL_CODES


def is_absence(code: Optional[str]) -> bool:
    """Leave, sick and absence days lock the record against manual edits."""
    return normalize_code(code) in ABSENCE_CODES


def code_label(code: Optional[str]) -> str:
    entry = DUTY_CODES.get(normalize_code(code))
    return entry["label"] if entry else "Inconnu"


def palette_for_code(code: Optional[str]) -> str:
    entry = DUTY_CODES.get(normalize_code(code))
    return entry["color"] if entry else DUTY_CODES[UNASSIGNED]["color"]


def empty_tally() -> Dict[str, int]:
    return {code: 0 for code in DUTY_CODES}


def defined_codes() -> List[str]:
    return list(DUTY_CODES.keys())


def grouped_codes(codes: Iterable[str]) -> Dict[str, List[str]]:
    mapping: Dict[str, List[str]] = {}
    for code in codes:
        normalized = normalize_code(code)
        entry = DUTY_CODES.get(normalized)
        if not entry:
            continue
        bucket = mapping.setdefault(entry["category"], [])
        if normalized not in bucket:
            bucket.append(normalized)
    return mapping


def normalize_origin(origin: Optional[str]) -> str:
    normalized = (origin or ORIGIN_THEORETICAL).strip().upper()
    if normalized not in SHIFT_ORIGINS:
        raise ValueError(f"Unsupported shift origin '{origin}'.")
    return normalized
