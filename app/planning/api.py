from __future__ import annotations

import asyncio
import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from database import (
    AgentSessionLocal,
    PolicySessionLocal,
    SessionLocal,
    get_agent_records,
    list_agents_by_group,
    record_audit_log,
)
from policy import EngineConfig, load_engine_config
from validation import validate_month_coverage

from .collaborators import SqlAgentDirectory, SqlHolidayCalendar, SqlShiftStore
from .engine import PlanningEngine
from .models import GroupPlanningEntry, GroupStatisticsSummary, StatisticsSummary
from .stats import merge_group_stats, tally_records


def build_engine(
    session_factory: Callable = SessionLocal,
    *,
    agent_session_factory: Callable = AgentSessionLocal,
    policy_session_factory: Optional[Callable] = PolicySessionLocal,
    config: Optional[EngineConfig] = None,
) -> PlanningEngine:
    if config is None:
        config = load_engine_config(policy_session_factory)
    return PlanningEngine(
        SqlAgentDirectory(agent_session_factory),
        SqlHolidayCalendar(session_factory),
        SqlShiftStore(session_factory),
        config=config,
    )


def generate_group_planning(
    session_factory: Callable,
    group: str,
    month: int,
    year: int,
    actor: str,
    *,
    agent_session_factory: Callable = AgentSessionLocal,
    engine: Optional[PlanningEngine] = None,
) -> Dict[str, Any]:
    """Generate and persist a group's theoretical month, then audit the run."""
    if not group:
        raise ValueError("group is required.")
    engine = engine or build_engine(session_factory, agent_session_factory=agent_session_factory)
    entries = asyncio.run(engine.generate_group_month(group, month, year))
    summary = {
        "group": group.strip().upper(),
        "month": month,
        "year": year,
        "label": engine.month_label(month, year),
        "agents": [entry.to_dict() for entry in entries],
        "records_written": sum(len(entry.planning) for entry in entries),
    }
    with session_factory() as session:
        record_audit_log(
            session,
            actor or "system",
            "PLANNING_GENERATE",
            target_type="Group",
            target_id=summary["group"],
            payload={"month": month, "year": year, "records_written": summary["records_written"]},
        )
    logger.info(f"[planning] {actor or 'system'} generated {summary['label']} for group {summary['group']}")
    return summary


def agent_month_report(
    session_factory: Callable,
    agent_code: str,
    month: int,
    year: int,
    *,
    agent_session_factory: Callable = AgentSessionLocal,
    engine: Optional[PlanningEngine] = None,
) -> Dict[str, Any]:
    engine = engine or build_engine(session_factory, agent_session_factory=agent_session_factory)

    async def _collect():
        planning = await engine.generate_month(agent_code, month, year)
        stats = await engine.compute_agent_stats(agent_code, month, year)
        return planning, stats

    planning, stats = asyncio.run(_collect())
    return {
        "agent_code": (agent_code or "").strip().upper(),
        "label": engine.month_label(month, year),
        "planning": [day.to_dict() for day in planning],
        "stats": stats.to_dict(),
    }


def group_stats_report(
    session_factory: Callable,
    group: str,
    month: int,
    year: int,
    *,
    agent_session_factory: Callable = AgentSessionLocal,
    engine: Optional[PlanningEngine] = None,
) -> Dict[str, Any]:
    engine = engine or build_engine(session_factory, agent_session_factory=agent_session_factory)
    summary = asyncio.run(engine.compute_group_stats(group, month, year))
    payload = summary.to_dict()
    payload["label"] = engine.month_label(month, year)
    return payload


def leave_days(
    session_factory: Callable,
    agent_code: str,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    agent_session_factory: Callable = AgentSessionLocal,
    engine: Optional[PlanningEngine] = None,
) -> List[Dict[str, Any]]:
    engine = engine or build_engine(session_factory, agent_session_factory=agent_session_factory)
    return [day.to_dict() for day in asyncio.run(engine.expand_leave(agent_code, start_date, end_date))]


def default_groups(config: EngineConfig) -> List[str]:
    groups = list(config.fixed_groups)
    if config.irregular_group:
        groups.append(config.irregular_group)
    return groups


async def plan_groups(
    engine: PlanningEngine, groups: Iterable[str], month: int, year: int
) -> Dict[str, List[GroupPlanningEntry]]:
    """Generate several groups' months side by side without writing any record."""
    labels = [group.strip().upper() for group in groups if group and group.strip()]
    results = await asyncio.gather(
        *(engine.generate_group_month(label, month, year, persist=False) for label in labels)
    )
    return dict(zip(labels, results))


def coverage_payload(
    engine: PlanningEngine, planning: Dict[str, List[GroupPlanningEntry]], month: int, year: int
) -> Dict[str, Any]:
    report = validate_month_coverage(planning)
    report.update({"month": month, "year": year, "label": engine.month_label(month, year), "groups": list(planning)})
    return report


def month_coverage_report(
    session_factory: Callable,
    month: int,
    year: int,
    *,
    groups: Optional[Iterable[str]] = None,
    agent_session_factory: Callable = AgentSessionLocal,
    engine: Optional[PlanningEngine] = None,
) -> Dict[str, Any]:
    engine = engine or build_engine(session_factory, agent_session_factory=agent_session_factory)
    selected = list(groups) if groups else default_groups(engine.config)
    planning = asyncio.run(plan_groups(engine, selected, month, year))
    return coverage_payload(engine, planning, month, year)


def recorded_agent_stats(session, agent_code: str, month: int, year: int) -> StatisticsSummary:
    """Statistics over what is stored for the agent, not over the theoretical rotation."""
    return tally_records(get_agent_records(session, agent_code, month, year))


def recorded_group_stats(session, agent_session, group: str, month: int, year: int) -> GroupStatisticsSummary:
    label = (group or "").strip().upper()
    members = list_agents_by_group(agent_session, label)
    return merge_group_stats(
        label,
        ((member.code, recorded_agent_stats(session, member.code, month, year)) for member in members),
    )
