from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from duty_codes import empty_tally


LEAVE_SUNDAY = "LEAVE_SUNDAY"
LEAVE_PERIOD = "LEAVE_PERIOD"


@dataclass(frozen=True)
class AgentProfile:
    """Read-only view of an agent as the engine needs it."""

    code: str
    group: str
    entry_date: Optional[datetime.date] = None
    exit_date: Optional[datetime.date] = None
    active: bool = True

    @classmethod
    def from_record(cls, record: Any) -> "AgentProfile":
        status = getattr(record, "status", "active")
        return cls(
            code=(getattr(record, "code", "") or "").strip().upper(),
            group=(getattr(record, "group", "") or "").strip().upper(),
            entry_date=getattr(record, "entry_date", None),
            exit_date=getattr(record, "exit_date", None),
            active=(status or "").strip().lower() == "active",
        )


@dataclass(frozen=True)
class PlanningDay:
    day: int
    date: datetime.date
    weekday: str
    duty_code: str
    is_holiday: bool
    is_sunday: bool
    is_saturday: bool

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["date"] = self.date.isoformat()
        return payload


@dataclass(frozen=True)
class GroupPlanningEntry:
    agent: AgentProfile
    planning: Sequence[PlanningDay]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": {
                "code": self.agent.code,
                "group": self.agent.group,
                "entry_date": self.agent.entry_date.isoformat() if self.agent.entry_date else None,
                "exit_date": self.agent.exit_date.isoformat() if self.agent.exit_date else None,
            },
            "planning": [day.to_dict() for day in self.planning],
        }


@dataclass
class StatisticsSummary:
    counts: Dict[str, int] = field(default_factory=empty_tally)
    holiday_days_worked: int = 0
    total_days_worked: int = 0
    operational_total: int = 0
    total_days: int = 0

    @property
    def rest_days(self) -> int:
        return self.counts.get("R", 0)

    @property
    def leave_days(self) -> int:
        return self.counts.get("C", 0)

    @property
    def sick_days(self) -> int:
        return self.counts.get("M", 0)

    @property
    def absence_days(self) -> int:
        return self.counts.get("A", 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "holiday_days_worked": self.holiday_days_worked,
            "total_days_worked": self.total_days_worked,
            "operational_total": self.operational_total,
            "total_days": self.total_days,
            "rest_days": self.rest_days,
            "leave_days": self.leave_days,
            "sick_days": self.sick_days,
            "absence_days": self.absence_days,
        }


@dataclass
class GroupStatisticsSummary:
    group: str
    counts: Dict[str, int] = field(default_factory=empty_tally)
    operational_total: int = 0
    member_count: int = 0
    members: List[str] = field(default_factory=list)

    @property
    def average_per_agent(self) -> float:
        if self.member_count <= 0:
            return 0.0
        return self.operational_total / self.member_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "counts": dict(self.counts),
            "operational_total": self.operational_total,
            "member_count": self.member_count,
            "members": list(self.members),
            "average_per_agent": round(self.average_per_agent, 2),
        }


@dataclass(frozen=True)
class LeaveDay:
    date: datetime.date
    duty_code: str
    classification: str
    is_holiday: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "duty_code": self.duty_code,
            "classification": self.classification,
            "is_holiday": self.is_holiday,
        }


class AgentDirectory(Protocol):
    async def get_agent(self, code: str) -> Optional[AgentProfile]: ...

    async def list_by_group(self, group: str) -> List[AgentProfile]: ...

    async def list_active(self) -> List[AgentProfile]: ...


class HolidayCalendar(Protocol):
    async def is_holiday(self, day: datetime.date) -> bool: ...


class ShiftStore(Protocol):
    async def upsert(self, agent_code: str, day: datetime.date, duty_code: str, origin: str) -> None: ...

    async def get_code(self, agent_code: str, day: datetime.date) -> Optional[str]: ...
