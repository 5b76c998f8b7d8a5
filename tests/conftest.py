from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import AgentBase, Base, PolicyBase  # noqa: E402
import database as db  # noqa: E402
from planning.engine import PlanningEngine  # noqa: E402
from planning.models import AgentProfile  # noqa: E402
from policy import EngineConfig  # noqa: E402

ENTRY = datetime.date(2025, 11, 1)


class FakeDirectory:
    def __init__(self, agents: Iterable[AgentProfile], failing: Iterable[str] = ()) -> None:
        self.agents: Dict[str, AgentProfile] = {agent.code: agent for agent in agents}
        self.failing = {code.upper() for code in failing}

    async def get_agent(self, code: str) -> Optional[AgentProfile]:
        key = (code or "").strip().upper()
        if key in self.failing:
            raise ConnectionError(f"directory unreachable for {key}")
        return self.agents.get(key)

    async def list_by_group(self, group: str) -> List[AgentProfile]:
        label = (group or "").strip().upper()
        return [agent for agent in self.agents.values() if agent.group == label]

    async def list_active(self) -> List[AgentProfile]:
        return [agent for agent in self.agents.values() if agent.active]


class FakeHolidays:
    def __init__(self, days: Iterable[datetime.date] = (), broken: bool = False) -> None:
        self.days = set(days)
        self.broken = broken

    async def is_holiday(self, day: datetime.date) -> bool:
        if self.broken:
            raise ConnectionError("holiday calendar unreachable")
        return day in self.days


class FakeStore:
    def __init__(self) -> None:
        self.records: Dict[Tuple[str, datetime.date], Tuple[str, str]] = {}

    async def upsert(self, agent_code: str, day: datetime.date, duty_code: str, origin: str) -> None:
        self.records[(agent_code, day)] = (duty_code, origin)

    async def get_code(self, agent_code: str, day: datetime.date) -> Optional[str]:
        record = self.records.get((agent_code, day))
        return record[0] if record else None


def agent(code: str, group: str, entry: Optional[datetime.date] = ENTRY, **kwargs) -> AgentProfile:
    return AgentProfile(code=code, group=group, entry_date=entry, **kwargs)


@pytest.fixture
def make_engine():
    def _factory(agents=(), holidays=(), store=None, failing=(), broken_calendar=False, config=None):
        return PlanningEngine(
            FakeDirectory(agents, failing=failing),
            FakeHolidays(holidays, broken=broken_calendar),
            store,
            config=config or EngineConfig.from_policy(),
        )

    return _factory


def sqlite_session_factory(directory, *bases):
    """File-backed SQLite so the threaded SQL adapters each get their own connection."""
    path = Path(directory) / f"{bases[0].__name__.lower()}.db"
    engine = create_engine(
        f"sqlite:///{path.as_posix()}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    for base in bases:
        base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, expire_on_commit=False, future=True)


@pytest.fixture
def sql_sessions(monkeypatch, tmp_path):
    """Separate roster, agent and policy databases in a temporary directory."""
    roster_engine, roster_factory = sqlite_session_factory(tmp_path, Base)
    agent_engine, agent_factory = sqlite_session_factory(tmp_path, AgentBase)
    policy_engine, policy_factory = sqlite_session_factory(tmp_path, PolicyBase)
    monkeypatch.setattr(db, "policy_engine", policy_engine)
    monkeypatch.setattr(db, "PolicySessionLocal", policy_factory)
    yield roster_factory, agent_factory, policy_factory
    for engine in (roster_engine, agent_engine, policy_engine):
        engine.dispose()
