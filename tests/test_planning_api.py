from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import AuditLog, add_agent, add_holiday, get_month_records  # noqa: E402
from planning.api import (  # noqa: E402
    agent_month_report,
    build_engine,
    generate_group_planning,
    group_stats_report,
    leave_days,
    month_coverage_report,
    recorded_agent_stats,
    recorded_group_stats,
)
from policy import EngineConfig  # noqa: E402


@pytest.fixture
def seeded(sql_sessions):
    roster_factory, agent_factory, _ = sql_sessions
    with agent_factory() as session:
        add_agent(session, "B01", "B", entry_date="2025-11-01")
        add_agent(session, "B02", "B", entry_date="2025-11-01")
        add_agent(session, "E01", "E", entry_date="2025-11-01")
    with roster_factory() as session:
        add_holiday(session, "2025-11-11", "Armistice")
    engine = build_engine(roster_factory, agent_session_factory=agent_factory, config=EngineConfig.from_policy())
    return roster_factory, agent_factory, engine


def test_generate_group_planning_persists_and_audits(seeded):
    roster_factory, agent_factory, engine = seeded
    summary = generate_group_planning(roster_factory, "b", 11, 2025, "planner", engine=engine)
    assert summary["group"] == "B"
    assert summary["label"] == "Novembre 2025"
    assert summary["records_written"] == 60
    assert [entry["agent"]["code"] for entry in summary["agents"]] == ["B01", "B02"]
    with roster_factory() as session:
        assert len(get_month_records(session, 11, 2025)) == 60
        log = session.query(AuditLog).one()
    assert log.action == "PLANNING_GENERATE"
    assert json.loads(log.payloadJSON)["records_written"] == 60


def test_generate_group_planning_requires_group(seeded):
    roster_factory, _, engine = seeded
    with pytest.raises(ValueError):
        generate_group_planning(roster_factory, "", 11, 2025, "planner", engine=engine)


def test_agent_month_report(seeded):
    roster_factory, _, engine = seeded
    report = agent_month_report(roster_factory, "b01", 11, 2025, engine=engine)
    assert report["agent_code"] == "B01"
    assert report["planning"][0] == {
        "day": 1,
        "date": "2025-11-01",
        "weekday": "Sam",
        "duty_code": "2",
        "is_holiday": False,
        "is_sunday": False,
        "is_saturday": True,
    }
    assert report["stats"]["total_days"] == 30


def test_group_stats_report(seeded):
    roster_factory, _, engine = seeded
    payload = group_stats_report(roster_factory, "E", 11, 2025, engine=engine)
    assert payload["member_count"] == 1
    assert payload["operational_total"] == 20
    assert payload["label"] == "Novembre 2025"


def test_leave_days(seeded):
    roster_factory, _, engine = seeded
    days = leave_days(roster_factory, "B01", "2025-11-09", "2025-11-11", engine=engine)
    assert [day["duty_code"] for day in days] == ["R", "C", "C"]
    assert days[-1]["is_holiday"] is True


def test_month_coverage_report_does_not_persist(seeded):
    roster_factory, _, engine = seeded
    report = month_coverage_report(roster_factory, 11, 2025, groups=["b", "e"], engine=engine)
    assert report["groups"] == ["B", "E"]
    assert report["days_checked"] == 30
    assert report["ok"] is True
    assert all(warning["type"] == "coverage_gap" for warning in report["warnings"])
    with roster_factory() as session:
        assert get_month_records(session, 11, 2025) == []


def test_recorded_stats_follow_stored_records(seeded):
    roster_factory, agent_factory, engine = seeded
    generate_group_planning(roster_factory, "B", 11, 2025, "planner", engine=engine)
    with roster_factory() as session, agent_factory() as agent_session:
        single = recorded_agent_stats(session, "B01", 11, 2025)
        group = recorded_group_stats(session, agent_session, "b", 11, 2025)
        untouched = recorded_group_stats(session, agent_session, "E", 11, 2025)
    assert single.total_days == 30
    assert single.operational_total == 22
    assert (group.group, group.member_count, group.operational_total) == ("B", 2, 44)
    assert (untouched.member_count, untouched.operational_total) == (1, 0)
