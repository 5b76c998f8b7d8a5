"""SQLAlchemy-backed implementations of the engine's collaborators.

Each adapter runs its blocking SQLAlchemy work in a worker thread through
``asyncio.to_thread`` and opens a short-lived session per call, so the
engine's fan-out overlaps the lookups and never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import datetime
import threading
from typing import Callable, List, Optional

from database import (
    get_agent,
    get_shift_record,
    is_holiday,
    list_active_agents,
    list_agents_by_group,
    upsert_shift_record,
)

from .models import AgentProfile

# SQLite takes one writer at a time; shift writes queue here instead of on the file lock.
_WRITE_LOCK = threading.Lock()


class SqlAgentDirectory:
    def __init__(self, session_factory: Callable) -> None:
        self.session_factory = session_factory

    def _fetch_agent(self, code: str) -> Optional[AgentProfile]:
        with self.session_factory() as session:
            record = get_agent(session, code)
            return AgentProfile.from_record(record) if record else None

    def _fetch_group(self, group: str) -> List[AgentProfile]:
        with self.session_factory() as session:
            return [AgentProfile.from_record(record) for record in list_agents_by_group(session, group)]

    def _fetch_active(self) -> List[AgentProfile]:
        with self.session_factory() as session:
            return [AgentProfile.from_record(record) for record in list_active_agents(session)]

    async def get_agent(self, code: str) -> Optional[AgentProfile]:
        return await asyncio.to_thread(self._fetch_agent, code)

    async def list_by_group(self, group: str) -> List[AgentProfile]:
        return await asyncio.to_thread(self._fetch_group, group)

    async def list_active(self) -> List[AgentProfile]:
        return await asyncio.to_thread(self._fetch_active)


class SqlHolidayCalendar:
    def __init__(self, session_factory: Callable) -> None:
        self.session_factory = session_factory

    def _lookup(self, day: datetime.date) -> bool:
        with self.session_factory() as session:
            return is_holiday(session, day)

    async def is_holiday(self, day: datetime.date) -> bool:
        return await asyncio.to_thread(self._lookup, day)


class SqlShiftStore:
    def __init__(self, session_factory: Callable) -> None:
        self.session_factory = session_factory

    def _write(self, agent_code: str, day: datetime.date, duty_code: str, origin: str) -> None:
        with _WRITE_LOCK, self.session_factory() as session:
            upsert_shift_record(session, agent_code, day, duty_code, origin)

    def _read(self, agent_code: str, day: datetime.date) -> Optional[str]:
        with self.session_factory() as session:
            record = get_shift_record(session, agent_code, day)
            return record.duty_code if record else None

    async def upsert(self, agent_code: str, day: datetime.date, duty_code: str, origin: str) -> None:
        await asyncio.to_thread(self._write, agent_code, day, duty_code, origin)

    async def get_code(self, agent_code: str, day: datetime.date) -> Optional[str]:
        return await asyncio.to_thread(self._read, agent_code, day)
