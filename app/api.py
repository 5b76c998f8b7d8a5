"""FastAPI wrapper on the duty roster database and the planning engine.

Reads go through the engine, which recomputes the theoretical rotation;
writes go through the database helpers and are recorded in the audit log.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

# Ensure flat absolute imports (e.g., "import database") resolve when served by uvicorn.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    AgentSessionLocal,
    PolicySessionLocal,
    SessionLocal,
    get_active_policy,
    get_agent,
    get_agent_records,
    get_month_records,
    init_database,
    list_agents,
    list_agents_by_group,
    list_leave_for_month,
    record_absence,
    record_audit_log,
    request_leave,
    serialize_agents,
    swap_shifts,
)
from duty_codes import code_label, defined_codes, grouped_codes, palette_for_code  # noqa: E402
from logger import setup_logger  # noqa: E402
from planning.api import (  # noqa: E402
    build_engine,
    coverage_payload,
    default_groups,
    plan_groups,
    recorded_agent_stats,
    recorded_group_stats,
)
from planning.engine import PlanningEngine, PlanningParameterError, ShiftLockedError, UnknownAgentError  # noqa: E402
from policy import ensure_default_policy  # noqa: E402
from validation import validate_absence_code, validate_leave_request, validate_manual_shift  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logger()
    init_database()
    ensure_default_policy(PolicySessionLocal)
    logger.info("Duty roster API ready")
    yield


app = FastAPI(title="Duty Roster API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_agent_db():
    db = AgentSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_policy_db():
    db = PolicySessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_engine() -> PlanningEngine:
    return build_engine(SessionLocal, agent_session_factory=AgentSessionLocal)


def _parse_date(value: Any, field: str = "date") -> datetime.date:
    try:
        return datetime.date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


def _month_and_year(month: Optional[int], year: Optional[int]) -> tuple[int, int]:
    today = datetime.date.today()
    return (month if month is not None else today.month), (year if year is not None else today.year)


def _audit(db: Session, actor: str, action: str, target: Optional[str], payload: Optional[Dict[str, Any]] = None) -> None:
    record_audit_log(db, user_id=actor, action=action, target_type="API", target_id=target, payload=payload)


def _text(payload: Optional[Dict[str, Any]], field: str) -> str:
    value = (payload or {}).get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{field} must be a string")
    return value.strip()


def _agent_code(payload: Optional[Dict[str, Any]], field: str = "agent_code") -> str:
    return _text(payload, field).upper()


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return _text(payload, "actor") or "api"


def _body_int(payload: Dict[str, Any], field: str) -> Optional[int]:
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise HTTPException(status_code=400, detail=f"{field} must be an integer")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/duty-codes")
def duty_codes() -> JSONResponse:
    codes = defined_codes()
    payload = {
        "codes": [{"code": code, "label": code_label(code), "color": palette_for_code(code)} for code in codes],
        "categories": grouped_codes(codes),
    }
    return JSONResponse(content=payload)


@app.get("/api/v1/agents")
def agents(
    group: Optional[str] = Query(None),
    only_active: bool = Query(False),
    agent_db=Depends(get_agent_db),
) -> JSONResponse:
    if group:
        records = [agent for agent in list_agents_by_group(agent_db, group) if agent.is_active or not only_active]
    else:
        records = list_agents(agent_db, only_active=only_active)
    return JSONResponse(content=jsonable_encoder({"agents": serialize_agents(records)}))


@app.get("/api/v1/agents/{code}/shift/{day}")
async def agent_shift(code: str, day: str, engine: PlanningEngine = Depends(get_engine)) -> JSONResponse:
    current = _parse_date(day)
    duty_code = await engine.resolve_shift(code, current)
    return JSONResponse(
        content={"agent_code": code.strip().upper(), "date": current.isoformat(), "duty_code": duty_code}
    )


@app.get("/api/v1/agents/{code}/planning")
async def agent_planning(
    code: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        planning = await engine.generate_month(code, month, year)
    except PlanningParameterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = {
        "agent_code": code.strip().upper(),
        "label": engine.month_label(month, year),
        "planning": [day.to_dict() for day in planning],
    }
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/agents/{code}/stats")
async def agent_stats(
    code: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        summary = await engine.compute_agent_stats(code, month, year)
    except PlanningParameterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = summary.to_dict()
    payload.update({"agent_code": code.strip().upper(), "label": engine.month_label(month, year)})
    return JSONResponse(content=jsonable_encoder(payload))


@app.post("/api/v1/groups/{group}/planning")
async def group_planning(
    group: str,
    payload: Dict[str, Any] | None = None,
    db=Depends(get_db),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    body = payload or {}
    actor = _actor(body)
    month, year = _month_and_year(_body_int(body, "month"), _body_int(body, "year"))
    try:
        entries = await engine.generate_group_month(group, month, year)
    except PlanningParameterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    result = {
        "group": group.strip().upper(),
        "label": engine.month_label(month, year),
        "agents": [entry.to_dict() for entry in entries],
        "records_written": sum(len(entry.planning) for entry in entries) if engine.store is not None else 0,
    }
    await asyncio.to_thread(
        _audit,
        db,
        actor=actor,
        action="PLANNING_GENERATE",
        target=result["group"],
        payload={"month": month, "year": year, "records_written": result["records_written"]},
    )
    return JSONResponse(content=jsonable_encoder(result))


@app.get("/api/v1/groups/{group}/stats")
async def group_stats(
    group: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        summary = await engine.compute_group_stats(group, month, year)
    except PlanningParameterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = summary.to_dict()
    payload["label"] = engine.month_label(month, year)
    return JSONResponse(content=jsonable_encoder(payload))


@app.post("/api/v1/leave/expand")
async def leave_expand(payload: Dict[str, Any], engine: PlanningEngine = Depends(get_engine)) -> JSONResponse:
    code = _agent_code(payload)
    start = _parse_date(payload.get("start_date"), "start_date")
    end = _parse_date(payload.get("end_date"), "end_date")
    days = await engine.expand_leave(code, start, end)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "agent_code": code,
                "days": [
                    {
                        "date": day.date.isoformat(),
                        "duty_code": day.duty_code,
                        "classification": day.classification,
                        "is_holiday": day.is_holiday,
                    }
                    for day in days
                ],
            }
        )
    )


@app.get("/api/v1/leave")
def leave_for_month(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        requests = list_leave_for_month(db, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = [
        {
            "id": leave.id,
            "agent_code": leave.agent_code,
            "leave_type": leave.leave_type,
            "start_date": leave.start_date,
            "end_date": leave.end_date,
            "status": leave.status,
        }
        for leave in requests
    ]
    return JSONResponse(content=jsonable_encoder({"month": month, "year": year, "leave": payload}))


@app.post("/api/v1/leave")
def create_leave(payload: Dict[str, Any], db=Depends(get_db), agent_db=Depends(get_agent_db)) -> JSONResponse:
    code = _agent_code(payload)
    actor = _actor(payload)
    leave_type = _text(payload, "leave_type") or "annual"
    reason = _text(payload, "reason")
    start = _parse_date(payload.get("start_date"), "start_date")
    end = _parse_date(payload.get("end_date"), "end_date")
    report = validate_leave_request(db, code, start, end, agent_session=agent_db)
    if not report["ok"]:
        status = 404 if any(issue["type"] == "unknown_agent" for issue in report["issues"]) else 400
        raise HTTPException(status_code=status, detail=report["issues"])
    leave = request_leave(
        db,
        code,
        start,
        end,
        leave_type=leave_type,
        reason=reason,
    )
    _audit(db, actor=actor, action="LEAVE_REQUEST", target=str(leave.id), payload={"agent_code": code})
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder(
            {
                "id": leave.id,
                "agent_code": leave.agent_code,
                "leave_type": leave.leave_type,
                "start_date": leave.start_date,
                "end_date": leave.end_date,
                "status": leave.status,
                "warnings": report["warnings"],
            }
        ),
    )


@app.post("/api/v1/shifts/manual")
async def manual_shift(
    payload: Dict[str, Any],
    db=Depends(get_db),
    agent_db=Depends(get_agent_db),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    code = _agent_code(payload)
    actor = _actor(payload)
    requested = _text(payload, "duty_code")
    current = _parse_date(payload.get("date"))
    report = await asyncio.to_thread(validate_manual_shift, db, code, current, requested, agent_session=agent_db)
    if not report["ok"]:
        kinds = {issue["type"] for issue in report["issues"]}
        status = 404 if "unknown_agent" in kinds else 409 if "locked_day" in kinds else 400
        raise HTTPException(status_code=status, detail=report["issues"])
    try:
        duty_code = await engine.apply_manual_shift(code, current, requested)
    except UnknownAgentError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ShiftLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await asyncio.to_thread(
        _audit,
        db,
        actor=actor,
        action="SHIFT_MANUAL",
        target=code,
        payload={"date": current.isoformat(), "duty_code": duty_code},
    )
    return JSONResponse(content={"agent_code": code, "date": current.isoformat(), "duty_code": duty_code})


@app.post("/api/v1/shifts/swap")
def swap_shift(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    first = _agent_code(payload, "agent_code_a")
    second = _agent_code(payload, "agent_code_b")
    actor = _actor(payload)
    if not first or not second:
        raise HTTPException(status_code=400, detail="agent_code_a and agent_code_b are required")
    current = _parse_date(payload.get("date"))
    if not swap_shifts(db, first, second, current):
        raise HTTPException(status_code=404, detail="Both agents need a stored shift on that date")
    _audit(
        db,
        actor=actor,
        action="SHIFT_SWAP",
        target=f"{first}<->{second}",
        payload={"date": current.isoformat()},
    )
    return JSONResponse(content={"swapped": True, "date": current.isoformat(), "agents": [first, second]})


@app.post("/api/v1/shifts/absence")
def absence_shift(payload: Dict[str, Any], db=Depends(get_db), agent_db=Depends(get_agent_db)) -> JSONResponse:
    code = _agent_code(payload)
    actor = _actor(payload)
    current = _parse_date(payload.get("date"))
    absence_code = _text(payload, "duty_code")
    report = validate_absence_code(absence_code)
    if not report["ok"]:
        raise HTTPException(status_code=400, detail=report["issues"])
    if get_agent(agent_db, code) is None:
        raise HTTPException(status_code=404, detail=f"Agent {code} was not found.")
    record = record_absence(db, code, current, absence_code)
    _audit(
        db,
        actor=actor,
        action="SHIFT_ABSENCE",
        target=code,
        payload={"date": current.isoformat(), "duty_code": record.duty_code},
    )
    return JSONResponse(
        content={
            "agent_code": record.agent_code,
            "date": record.date.isoformat(),
            "duty_code": record.duty_code,
            "origin": record.origin,
        }
    )


@app.get("/api/v1/agents/{code}/records")
def agent_records(
    code: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        records = get_agent_records(db, code, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = {"agent_code": code.strip().upper(), "month": month, "year": year, "records": records}
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/agents/{code}/records/stats")
def agent_recorded_stats(
    code: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        summary = recorded_agent_stats(db, code, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = summary.to_dict()
    payload.update({"agent_code": code.strip().upper(), "month": month, "year": year})
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/groups/{group}/records/stats")
def group_recorded_stats(
    group: str,
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    db=Depends(get_db),
    agent_db=Depends(get_agent_db),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        summary = recorded_group_stats(db, agent_db, group, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = summary.to_dict()
    payload.update({"month": month, "year": year})
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/records")
def month_records(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    month, year = _month_and_year(month, year)
    try:
        records = get_month_records(db, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"month": month, "year": year, "records": records}))


@app.get("/api/v1/planning/validate")
async def validate_planning(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    group: Optional[List[str]] = Query(None),
    engine: PlanningEngine = Depends(get_engine),
) -> JSONResponse:
    """Check shift coverage of a theoretical month across groups; nothing is written."""
    month, year = _month_and_year(month, year)
    groups = group or default_groups(engine.config)
    try:
        planning = await plan_groups(engine, groups, month, year)
    except PlanningParameterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(coverage_payload(engine, planning, month, year)))


@app.get("/api/v1/policy/active")
def active_policy(policy_db=Depends(get_policy_db)) -> JSONResponse:
    policy = get_active_policy(policy_db)
    if not policy:
        raise HTTPException(status_code=404, detail="No active policy found")
    payload = {
        "id": policy.id,
        "name": policy.name,
        "params": policy.params_dict(),
        "lastEditedBy": policy.lastEditedBy,
        "lastEditedAt": policy.lastEditedAt.isoformat() if policy.lastEditedAt else None,
    }
    return JSONResponse(content=jsonable_encoder(payload))
