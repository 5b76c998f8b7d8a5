from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

from loguru import logger

from duty_codes import (
    LEAVE,
    ORIGIN_MANUAL,
    ORIGIN_THEORETICAL,
    REST,
    UNASSIGNED,
    is_absence,
    is_known_code,
    normalize_code,
)
from policy import EngineConfig

from .dates import days_between, is_saturday, is_sunday, iter_days, month_days, parse_date, weekday_label
from .models import (
    LEAVE_PERIOD,
    LEAVE_SUNDAY,
    AgentDirectory,
    AgentProfile,
    GroupPlanningEntry,
    GroupStatisticsSummary,
    HolidayCalendar,
    LeaveDay,
    PlanningDay,
    ShiftStore,
    StatisticsSummary,
)
from .rotation import cyclic_duty_code, irregular_duty_code, roster_ranking
from .stats import merge_group_stats, tally_month


class PlanningParameterError(ValueError):
    """Raised when a caller passes an out-of-range month or similar."""


class UnknownAgentError(LookupError):
    pass


class ShiftLockedError(ValueError):
    """Leave, sick and absence records cannot be overwritten by hand."""


def _validate_month(month: Any) -> int:
    if isinstance(month, bool) or not isinstance(month, int) or month < 1 or month > 12:
        raise PlanningParameterError("Month must be between 1 and 12.")
    return month


class PlanningEngine:
    def __init__(
        self,
        directory: AgentDirectory,
        holidays: HolidayCalendar,
        store: Optional[ShiftStore] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.directory = directory
        self.holidays = holidays
        self.store = store
        self.config = config or EngineConfig.from_policy()

    # ------------------------------------------------------------------
    # Daily resolution

    async def irregular_roster(self) -> List[str]:
        """Ranked codes of every irregular-group member, active or not."""
        if not self.config.irregular_group:
            return []
        members = await self.directory.list_by_group(self.config.irregular_group)
        return roster_ranking(member.code for member in members)

    async def resolve_irregular(
        self,
        day: Any,
        agent_code: str,
        roster: Optional[Sequence[str]] = None,
    ) -> str:
        if roster is None:
            roster = await self.irregular_roster()
        return irregular_duty_code(parse_date(day), agent_code, roster, self.config.irregular_codes)

    async def resolve_shift(self, agent_code: str, day: Any) -> str:
        try:
            agent = await self.directory.get_agent(agent_code)
        except Exception:  # noqa: BLE001
            logger.exception(f"Agent lookup failed for {agent_code} on {day}")
            return UNASSIGNED
        return await self.resolve_shift_for(agent, day)

    async def resolve_shift_for(
        self,
        agent: Optional[AgentProfile],
        day: Any,
        roster: Optional[Sequence[str]] = None,
    ) -> str:
        try:
            if agent is None or not agent.active:
                return UNASSIGNED
            current = parse_date(day)
            if agent.exit_date and current >= agent.exit_date:
                return UNASSIGNED
            entry = agent.entry_date or self.config.fallback_anchor
            if current < entry:
                return UNASSIGNED
            if self.config.is_irregular_group(agent.group):
                return await self.resolve_irregular(current, agent.code, roster=roster)
            if self.config.is_fixed_group(agent.group):
                return cyclic_duty_code(
                    days_between(entry, current),
                    self.config.phase_offset(agent.group),
                    self.config.cycle_pattern,
                )
            return self.config.unrecognized_group_code
        except Exception:  # noqa: BLE001
            code = agent.code if agent else "?"
            logger.exception(f"Shift resolution failed for {code} on {day}")
            return UNASSIGNED

    # ------------------------------------------------------------------
    # Month generation

    async def generate_month(self, agent_code: str, month: int, year: int) -> List[PlanningDay]:
        """Return one PlanningDay per calendar day, or an empty list if anything failed."""
        _validate_month(month)
        try:
            agent = await self.directory.get_agent(agent_code)
            days = month_days(month, year)
            holiday_flags = await asyncio.gather(*(self.holidays.is_holiday(day) for day in days))
            roster = None
            if agent is not None and agent.active and self.config.is_irregular_group(agent.group):
                roster = await self.irregular_roster()
            planning: List[PlanningDay] = []
            for day, holiday in zip(days, holiday_flags):
                duty_code = await self.resolve_shift_for(agent, day, roster=roster)
                planning.append(
                    PlanningDay(
                        day=day.day,
                        date=day,
                        weekday=weekday_label(day, self.config.weekday_labels),
                        duty_code=duty_code,
                        is_holiday=bool(holiday),
                        is_sunday=is_sunday(day),
                        is_saturday=is_saturday(day),
                    )
                )
            return planning
        except Exception:  # noqa: BLE001
            logger.exception(f"Month generation failed for {agent_code} ({month}/{year})")
            return []

    async def _generate_and_persist(
        self, agent: AgentProfile, month: int, year: int, persist: bool = True
    ) -> Optional[GroupPlanningEntry]:
        planning = await self.generate_month(agent.code, month, year)
        if not planning:
            logger.warning(f"No planning produced for {agent.code} ({month}/{year}); dropping from batch")
            return None
        if persist and self.store is not None:
            await asyncio.gather(
                *(self.store.upsert(agent.code, day.date, day.duty_code, ORIGIN_THEORETICAL) for day in planning)
            )
        return GroupPlanningEntry(agent=agent, planning=tuple(planning))

    async def generate_group_month(
        self, group: str, month: int, year: int, *, persist: bool = True
    ) -> List[GroupPlanningEntry]:
        """Generate every active member's month.

        Each day is written through to the shift store unless ``persist`` is false.
        """
        _validate_month(month)
        label = (group or "").strip().upper()
        try:
            members = await self.directory.list_by_group(label)
        except Exception:  # noqa: BLE001
            logger.exception(f"Could not list members of group {label}")
            return []
        active = [member for member in members if member.active]
        results = await asyncio.gather(
            *(self._generate_and_persist(member, month, year, persist) for member in active),
            return_exceptions=True,
        )
        entries: List[GroupPlanningEntry] = []
        for member, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(f"Group planning failed for {member.code} in {label}")
                continue
            if result is not None:
                entries.append(result)
        logger.info(f"Generated {len(entries)}/{len(active)} plannings for group {label} ({month}/{year})")
        return entries

    # ------------------------------------------------------------------
    # Statistics

    async def compute_agent_stats(self, agent_code: str, month: int, year: int) -> StatisticsSummary:
        planning = await self.generate_month(agent_code, month, year)
        try:
            agent = await self.directory.get_agent(agent_code)
        except Exception:  # noqa: BLE001
            logger.exception(f"Agent lookup failed while computing stats for {agent_code}")
            agent = None
        holiday_bonus = agent is not None and self.config.is_fixed_group(agent.group)
        return tally_month(planning, holiday_bonus=holiday_bonus)

    async def compute_group_stats(self, group: str, month: int, year: int) -> GroupStatisticsSummary:
        _validate_month(month)
        label = (group or "").strip().upper()
        try:
            members = await self.directory.list_by_group(label)
        except Exception:  # noqa: BLE001
            logger.exception(f"Could not list members of group {label}")
            return GroupStatisticsSummary(group=label)
        active = [member for member in members if member.active]
        results = await asyncio.gather(
            *(self.compute_agent_stats(member.code, month, year) for member in active),
            return_exceptions=True,
        )
        summaries = []
        for member, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(f"Stats failed for {member.code} in {label}")
                continue
            if result.total_days == 0:
                logger.warning(f"Empty month for {member.code} in {label}; excluded from group stats")
                continue
            summaries.append((member.code, result))
        return merge_group_stats(label, summaries)

    async def group_operational_total(self, group: str, month: int, year: int) -> int:
        try:
            summary = await self.compute_group_stats(group, month, year)
        except PlanningParameterError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception(f"Operational total failed for group {group}")
            return 0
        return summary.operational_total

    # ------------------------------------------------------------------
    # Leave

    async def expand_leave(self, agent_code: str, start_date: Any, end_date: Any) -> List[LeaveDay]:
        """Expand a leave request into per-day records; Sundays inside the period rest instead."""
        try:
            days = list(iter_days(start_date, end_date))
            holiday_flags = await asyncio.gather(*(self.holidays.is_holiday(day) for day in days))
        except Exception:  # noqa: BLE001
            logger.exception(f"Leave expansion failed for {agent_code} ({start_date} -> {end_date})")
            return []
        expanded: List[LeaveDay] = []
        for day, holiday in zip(days, holiday_flags):
            if is_sunday(day):
                expanded.append(LeaveDay(day, REST, LEAVE_SUNDAY, bool(holiday)))
            else:
                expanded.append(LeaveDay(day, LEAVE, LEAVE_PERIOD, bool(holiday)))
        return expanded

    # ------------------------------------------------------------------
    # Manual edits

    async def can_modify_shift(self, agent_code: str, day: Any) -> bool:
        if self.store is None:
            return True
        try:
            current = await self.store.get_code(agent_code, parse_date(day))
        except Exception:  # noqa: BLE001
            logger.exception(f"Could not read shift record for {agent_code} on {day}")
            return False
        if current is None:
            return True
        return not is_absence(current)

    async def apply_manual_shift(self, agent_code: str, day: Any, duty_code: str) -> str:
        code = normalize_code(duty_code)
        if not is_known_code(code):
            raise PlanningParameterError(f"Unknown duty code '{duty_code}'.")
        if self.store is None:
            raise RuntimeError("No shift store configured for manual edits.")
        agent = await self.directory.get_agent(agent_code)
        if agent is None:
            raise UnknownAgentError(f"Agent {agent_code} was not found.")
        current_day = parse_date(day)
        if not await self.can_modify_shift(agent.code, current_day):
            raise ShiftLockedError(f"Shift for {agent.code} on {current_day.isoformat()} is locked.")
        await self.store.upsert(agent.code, current_day, code, ORIGIN_MANUAL)
        return code

    def month_label(self, month: int, year: int) -> str:
        names = self.config.month_names
        if 1 <= month <= len(names):
            return f"{names[month - 1]} {year}"
        return str(year)
