from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from duty_codes import UNASSIGNED, empty_tally, is_operational, normalize_code

from .models import GroupStatisticsSummary, PlanningDay, StatisticsSummary


def tally_month(planning: Sequence[PlanningDay], *, holiday_bonus: bool) -> StatisticsSummary:
    """Reduce one generated month into counts and the operational total.

    Worked holidays count twice toward ``operational_total`` only when
    ``holiday_bonus`` is set, which is the case for fixed-rotation groups.
    """
    counts = empty_tally()
    holiday_days_worked = 0
    total_days_worked = 0
    for day in planning:
        code = normalize_code(day.duty_code)
        if code not in counts:
            code = UNASSIGNED
        counts[code] += 1
        if is_operational(code):
            total_days_worked += 1
            if day.is_holiday:
                holiday_days_worked += 1
    operational_total = total_days_worked
    if holiday_bonus:
        operational_total += holiday_days_worked
    return StatisticsSummary(
        counts=counts,
        holiday_days_worked=holiday_days_worked,
        total_days_worked=total_days_worked,
        operational_total=operational_total,
        total_days=len(planning),
    )


def merge_group_stats(group: str, summaries: Iterable[tuple[str, StatisticsSummary]]) -> GroupStatisticsSummary:
    result = GroupStatisticsSummary(group=group)
    for agent_code, summary in summaries:
        for code, count in summary.counts.items():
            result.counts[code] = result.counts.get(code, 0) + count
        result.operational_total += summary.operational_total
        result.member_count += 1
        result.members.append(agent_code)
    result.members.sort()
    return result


def tally_records(records: Iterable[Mapping[str, Any]]) -> StatisticsSummary:
    """Count stored shift records as they are, manual edits and absences included.

    Stored rows carry no holiday flag, so nothing is doubled here.
    """
    counts = empty_tally()
    total_days = 0
    for record in records:
        total_days += 1
        code = normalize_code(record.get("duty_code"))
        if code in counts:
            counts[code] += 1
    worked = sum(counts[code] for code in counts if is_operational(code))
    return StatisticsSummary(
        counts=counts,
        total_days_worked=worked,
        operational_total=worked,
        total_days=total_days,
    )
