from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from database import find_leave_conflicts, get_agent, get_shift_record
from duty_codes import ABSENCE_CODES, OPERATIONAL_CODES, is_absence, is_known_code, normalize_code


def _issue(issue_type: str, message: str, *, severity: str = "error", **extra: Any) -> Dict[str, Any]:
    payload = {"type": issue_type, "severity": severity, "message": message}
    payload.update(extra)
    return payload


def _report(issues: List[Dict[str, Any]], warnings: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ok": not issues, "issues": issues, "warnings": warnings}
    payload.update(extra)
    return payload


def validate_leave_request(
    session,
    agent_code: str,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    agent_session=None,
) -> Dict[str, Any]:
    """Return findings for a leave request before it is stored."""
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    code = (agent_code or "").strip().upper()
    agent = get_agent(agent_session or session, code)
    if agent is None:
        issues.append(_issue("unknown_agent", f"Agent {code} was not found."))
    elif not agent.is_active:
        warnings.append(_issue("inactive_agent", f"Agent {code} is inactive.", severity="warning"))
    if start_date > end_date:
        issues.append(_issue("date_order", "Leave start date must not be after its end date."))
    else:
        for conflict in find_leave_conflicts(session, code, start_date, end_date):
            issues.append(
                _issue(
                    "leave_conflict",
                    f"Overlaps leave request #{conflict.id} "
                    f"({conflict.start_date.isoformat()} -> {conflict.end_date.isoformat()}).",
                    leave_id=conflict.id,
                )
            )
    return _report(issues, warnings, agent_code=code)


def validate_manual_shift(
    session,
    agent_code: str,
    date_value: datetime.date,
    duty_code: str,
    *,
    agent_session=None,
) -> Dict[str, Any]:
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    code = (agent_code or "").strip().upper()
    if get_agent(agent_session or session, code) is None:
        issues.append(_issue("unknown_agent", f"Agent {code} was not found."))
    if not is_known_code(duty_code):
        issues.append(_issue("unknown_code", f"Unknown duty code '{duty_code}'."))
    record = get_shift_record(session, code, date_value)
    if record is not None and is_absence(record.duty_code):
        issues.append(
            _issue(
                "locked_day",
                f"{code} is recorded as '{record.duty_code}' on {date_value.isoformat()}; "
                "leave, sick and absence days cannot be edited.",
            )
        )
    return _report(issues, warnings, agent_code=code, date=date_value.isoformat())


def validate_absence_code(absence_code: str) -> Dict[str, Any]:
    issues: List[Dict[str, Any]] = []
    if normalize_code(absence_code) not in ABSENCE_CODES:
        allowed = ", ".join(ABSENCE_CODES)
        issues.append(_issue("invalid_absence", f"'{absence_code}' is not one of {allowed}."))
    return _report(issues, [])


def validate_month_coverage(
    planning_by_group: Mapping[str, Iterable[Any]],
    *,
    required_codes: Sequence[str] = OPERATIONAL_CODES,
    groups: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """Warn about days on which no listed group covers one of the operational shifts.

    ``planning_by_group`` maps a group to its GroupPlanningEntry list as
    returned by the engine.
    """
    selected = {g.strip().upper() for g in groups} if groups is not None else None
    covered: Dict[datetime.date, set] = defaultdict(set)
    for group, entries in planning_by_group.items():
        if selected is not None and group.strip().upper() not in selected:
            continue
        for entry in entries:
            for day in entry.planning:
                covered[day.date].add(normalize_code(day.duty_code))
    warnings: List[Dict[str, Any]] = []
    for day in sorted(covered):
        missing = [code for code in required_codes if code not in covered[day]]
        if missing:
            warnings.append(
                _issue(
                    "coverage_gap",
                    f"No agent on shift {', '.join(missing)} on {day.isoformat()}.",
                    severity="warning",
                    date=day.isoformat(),
                    missing=missing,
                )
            )
    return _report([], warnings, days_checked=len(covered))
