from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from duty_codes import (
    ABSENCE_CODES,
    ORIGIN_ABSENCE,
    ORIGIN_SWAP,
    is_known_code,
    normalize_code,
    normalize_origin,
)


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
AGENT_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'agents.db').as_posix()}"
ROSTER_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'roster.db').as_posix()}"
POLICY_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'policy.db').as_posix()}"
AGENT_STATUS_CHOICES = {"active", "inactive"}
LEAVE_STATUS_CHOICES = {"pending", "approved", "rejected"}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _coerce_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.date.fromisoformat(value.strip()[:10])
    raise TypeError("Expected a date, datetime or ISO date string.")


def _month_bounds(month: int, year: int) -> tuple[datetime.date, datetime.date]:
    if month < 1 or month > 12:
        raise ValueError("Month must be between 1 and 12.")
    first = datetime.date(year, month, 1)
    if month == 12:
        next_first = datetime.date(year + 1, 1, 1)
    else:
        next_first = datetime.date(year, month + 1, 1)
    return first, next_first - datetime.timedelta(days=1)


class AgentBase(DeclarativeBase):
    """Standalone metadata for the agent directory living in agents.db."""

    pass


class PolicyBase(DeclarativeBase):
    """Standalone metadata for policy tables living in policy.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for holidays, shift records and leave living in roster.db."""

    pass


class Agent(AgentBase):
    __tablename__ = "agents"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    first_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    group: Mapped[str] = mapped_column("group_code", String(8), nullable=False)
    entry_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    exit_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def is_active(self) -> bool:
        return (self.status or "").strip().lower() == "active"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.last_name, self.first_name) if part).strip()


class Holiday(Base):
    __tablename__ = "holidays"

    date: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ShiftRecord(Base):
    __tablename__ = "shift_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_code: Mapped[str] = mapped_column(String(20), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    duty_code: Mapped[str] = mapped_column(String(2), nullable=False)
    origin: Mapped[str] = mapped_column(String(16), nullable=False, default="THEORETICAL")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (UniqueConstraint("agent_code", "date", name="uq_shift_record_agent_date"),)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_code: Mapped[str] = mapped_column(String(20), nullable=False)
    leave_type: Mapped[str] = mapped_column(String(40), nullable=False, default="annual")
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Policy(PolicyBase):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_policies_name"),
    )

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="ShiftRecord")
    target_id: Mapped[str | None] = mapped_column(String(60), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


agent_engine = create_engine(
    AGENT_DATABASE_URL,
    echo=False,
    future=True,
)
roster_engine = create_engine(
    ROSTER_DATABASE_URL,
    echo=False,
    future=True,
)
policy_engine = create_engine(
    POLICY_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=roster_engine, expire_on_commit=False, future=True)
AgentSessionLocal = sessionmaker(bind=agent_engine, expire_on_commit=False, future=True)
PolicySessionLocal = sessionmaker(bind=policy_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    AgentBase.metadata.create_all(agent_engine)
    Base.metadata.create_all(roster_engine)
    PolicyBase.metadata.create_all(policy_engine)


def _coerce_policy_session(session):
    """Return (policy_session, should_close) ensuring policy data stays in its own database."""
    PolicyBase.metadata.create_all(policy_engine)
    if session is None:
        return PolicySessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is not policy_engine and bind in {roster_engine, agent_engine}:
        return PolicySessionLocal(), True
    return session, False


# ---------------------------------------------------------------------------
# Agents


def add_agent(
    session,
    code: str,
    group: str,
    *,
    last_name: str = "",
    first_name: str = "",
    entry_date: Any = None,
    exit_date: Any = None,
    status: str = "active",
) -> Agent:
    normalized_code = (code or "").strip().upper()
    if not normalized_code:
        raise ValueError("Agent code is required.")
    normalized_group = (group or "").strip().upper()
    if not normalized_group:
        raise ValueError("Agent group is required.")
    normalized_status = (status or "active").strip().lower()
    if normalized_status not in AGENT_STATUS_CHOICES:
        raise ValueError(f"Unsupported agent status '{status}'.")
    agent = session.get(Agent, normalized_code)
    if agent is None:
        agent = Agent(code=normalized_code)
        session.add(agent)
    agent.group = normalized_group
    agent.last_name = last_name or ""
    agent.first_name = first_name or ""
    agent.entry_date = _coerce_date(entry_date) if entry_date else datetime.date.today()
    agent.exit_date = _coerce_date(exit_date) if exit_date else None
    agent.status = normalized_status
    session.commit()
    session.refresh(agent)
    return agent


def get_agent(session, code: str) -> Optional[Agent]:
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    return session.get(Agent, normalized)


def list_agents(session, only_active: bool = False) -> List[Agent]:
    stmt = select(Agent)
    if only_active:
        stmt = stmt.where(Agent.status == "active")
    stmt = stmt.order_by(Agent.code.asc())
    return list(session.scalars(stmt))


def list_agents_by_group(session, group: str) -> List[Agent]:
    stmt = select(Agent).where(Agent.group == (group or "").strip().upper()).order_by(Agent.code.asc())
    return list(session.scalars(stmt))


def list_active_agents(session) -> List[Agent]:
    return list_agents(session, only_active=True)


def update_agent(session, code: str, updates: Dict[str, Any]) -> Agent:
    agent = get_agent(session, code)
    if agent is None:
        raise ValueError(f"Agent {code} was not found.")
    for key, value in (updates or {}).items():
        if key in {"entry_date", "exit_date"}:
            setattr(agent, key, _coerce_date(value) if value else None)
        elif key == "group":
            agent.group = (value or "").strip().upper()
        elif key == "status":
            normalized = (value or "").strip().lower()
            if normalized not in AGENT_STATUS_CHOICES:
                raise ValueError(f"Unsupported agent status '{value}'.")
            agent.status = normalized
        elif key in {"last_name", "first_name"}:
            setattr(agent, key, value or "")
    session.commit()
    session.refresh(agent)
    return agent


def deactivate_agent(session, code: str, exit_date: Any = None) -> Agent:
    """Agents are never deleted; leaving sets the exit date and flips the status."""
    return update_agent(
        session,
        code,
        {"exit_date": exit_date or datetime.date.today(), "status": "inactive"},
    )


# ---------------------------------------------------------------------------
# Holidays


def add_holiday(session, date_value: Any, name: str = "") -> Holiday:
    day = _coerce_date(date_value)
    holiday = session.get(Holiday, day)
    if holiday is None:
        holiday = Holiday(date=day, year=day.year)
        session.add(holiday)
    holiday.name = name or ""
    session.commit()
    session.refresh(holiday)
    return holiday


def list_holidays(session, year: Optional[int] = None) -> List[Holiday]:
    stmt = select(Holiday)
    if year is not None:
        stmt = stmt.where(Holiday.year == int(year))
    return list(session.scalars(stmt.order_by(Holiday.date.asc())))


def delete_holiday(session, date_value: Any) -> None:
    holiday = session.get(Holiday, _coerce_date(date_value))
    if not holiday:
        return
    session.delete(holiday)
    session.commit()


def is_holiday(session, date_value: Any) -> bool:
    return session.get(Holiday, _coerce_date(date_value)) is not None


# ---------------------------------------------------------------------------
# Shift records


def _record_to_dict(record: ShiftRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "agent_code": record.agent_code,
        "date": record.date,
        "duty_code": record.duty_code,
        "origin": record.origin,
        "updated_at": record.updated_at,
    }


def get_shift_record(session, agent_code: str, date_value: Any) -> Optional[ShiftRecord]:
    stmt = select(ShiftRecord).where(
        ShiftRecord.agent_code == (agent_code or "").strip().upper(),
        ShiftRecord.date == _coerce_date(date_value),
    )
    return session.scalars(stmt).first()


def upsert_shift_record(
    session,
    agent_code: str,
    date_value: Any,
    duty_code: str,
    origin: str = "THEORETICAL",
) -> ShiftRecord:
    """Last-writer-wins write keyed on (agent, date)."""
    code = normalize_code(duty_code)
    if not is_known_code(code):
        raise ValueError(f"Unknown duty code '{duty_code}'.")
    normalized_origin = normalize_origin(origin)
    record = get_shift_record(session, agent_code, date_value)
    if record is None:
        record = ShiftRecord(agent_code=(agent_code or "").strip().upper(), date=_coerce_date(date_value))
        session.add(record)
    record.duty_code = code
    record.origin = normalized_origin
    session.commit()
    session.refresh(record)
    return record


def get_agent_records(session, agent_code: str, month: int, year: int) -> List[Dict[str, Any]]:
    first, last = _month_bounds(month, year)
    stmt = (
        select(ShiftRecord)
        .where(
            ShiftRecord.agent_code == (agent_code or "").strip().upper(),
            ShiftRecord.date >= first,
            ShiftRecord.date <= last,
        )
        .order_by(ShiftRecord.date.asc())
    )
    return [_record_to_dict(record) for record in session.scalars(stmt)]


def get_month_records(session, month: int, year: int) -> List[Dict[str, Any]]:
    first, last = _month_bounds(month, year)
    stmt = (
        select(ShiftRecord)
        .where(ShiftRecord.date >= first, ShiftRecord.date <= last)
        .order_by(ShiftRecord.date.asc(), ShiftRecord.agent_code.asc())
    )
    return [_record_to_dict(record) for record in session.scalars(stmt)]


def swap_shifts(session, agent_code_a: str, agent_code_b: str, date_value: Any) -> bool:
    """Exchange the recorded duty codes of two agents on one day."""
    record_a = get_shift_record(session, agent_code_a, date_value)
    record_b = get_shift_record(session, agent_code_b, date_value)
    if record_a is None or record_b is None:
        return False
    code_a, code_b = record_a.duty_code, record_b.duty_code
    record_a.duty_code, record_a.origin = code_b, ORIGIN_SWAP
    record_b.duty_code, record_b.origin = code_a, ORIGIN_SWAP
    session.commit()
    return True


def record_absence(session, agent_code: str, date_value: Any, absence_code: str) -> ShiftRecord:
    code = normalize_code(absence_code)
    if code not in ABSENCE_CODES:
        raise ValueError(f"'{absence_code}' is not a leave, sick or absence code.")
    return upsert_shift_record(session, agent_code, date_value, code, ORIGIN_ABSENCE)


# ---------------------------------------------------------------------------
# Leave requests


def request_leave(
    session,
    agent_code: str,
    start_date: Any,
    end_date: Any,
    *,
    leave_type: str = "annual",
    reason: str = "",
) -> LeaveRequest:
    start = _coerce_date(start_date)
    end = _coerce_date(end_date)
    if start > end:
        raise ValueError("Leave start date must not be after its end date.")
    leave = LeaveRequest(
        agent_code=(agent_code or "").strip().upper(),
        leave_type=leave_type or "annual",
        start_date=start,
        end_date=end,
        reason=reason or "",
        status="pending",
    )
    session.add(leave)
    session.commit()
    session.refresh(leave)
    return leave


def find_leave_conflicts(session, agent_code: str, start_date: Any, end_date: Any) -> List[LeaveRequest]:
    start = _coerce_date(start_date)
    end = _coerce_date(end_date)
    stmt = (
        select(LeaveRequest)
        .where(
            LeaveRequest.agent_code == (agent_code or "").strip().upper(),
            LeaveRequest.status != "rejected",
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        .order_by(LeaveRequest.start_date.asc())
    )
    return list(session.scalars(stmt))


def list_leave_for_month(session, month: int, year: int) -> List[LeaveRequest]:
    first, last = _month_bounds(month, year)
    stmt = (
        select(LeaveRequest)
        .where(LeaveRequest.start_date >= first, LeaveRequest.start_date <= last)
        .order_by(LeaveRequest.start_date.asc())
    )
    return list(session.scalars(stmt))


def set_leave_status(session, leave_id: int, status: str) -> LeaveRequest:
    normalized = (status or "").strip().lower()
    if normalized not in LEAVE_STATUS_CHOICES:
        raise ValueError(f"Unsupported leave status '{status}'.")
    leave = session.get(LeaveRequest, leave_id)
    if not leave:
        raise ValueError(f"Leave request with id {leave_id} was not found.")
    leave.status = normalized
    session.commit()
    session.refresh(leave)
    return leave


# ---------------------------------------------------------------------------
# Policies


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        existing: Optional[Policy] = policy_session.execute(
            select(Policy).where(Policy.name == name)
        ).scalars().first()
        payload = params_dict if isinstance(params_dict, dict) else {}
        if existing:
            existing.paramsJSON = json.dumps(payload)
            existing.lastEditedBy = edited_by
            existing.lastEditedAt = _utcnow()
            policy_session.commit()
            policy_session.refresh(existing)
            return existing
        policy = Policy(
            name=name,
            paramsJSON=json.dumps(payload),
            lastEditedBy=edited_by,
            lastEditedAt=_utcnow(),
        )
        policy_session.add(policy)
        policy_session.commit()
        policy_session.refresh(policy)
        return policy
    finally:
        if close_session:
            policy_session.close()


def get_active_policy(session) -> Optional[Policy]:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
        return policy_session.scalars(stmt).first()
    finally:
        if close_session:
            policy_session.close()


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "ShiftRecord",
    target_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log


def serialize_agent(agent: Agent) -> Dict[str, Any]:
    return {
        "code": agent.code,
        "name": agent.full_name,
        "group": agent.group,
        "entry_date": agent.entry_date,
        "exit_date": agent.exit_date,
        "status": agent.status,
    }


def serialize_agents(agents: Iterable[Agent]) -> List[Dict[str, Any]]:
    return [serialize_agent(agent) for agent in agents]
