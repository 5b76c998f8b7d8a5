from __future__ import annotations

import asyncio
import datetime
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from conftest import sqlite_session_factory  # noqa: E402
from database import (  # noqa: E402
    AgentBase,
    AuditLog,
    Base,
    add_agent,
    add_holiday,
    deactivate_agent,
    delete_holiday,
    find_leave_conflicts,
    get_agent_records,
    get_month_records,
    get_shift_record,
    is_holiday,
    list_agents_by_group,
    list_holidays,
    record_absence,
    record_audit_log,
    request_leave,
    set_leave_status,
    swap_shifts,
    update_agent,
    upsert_shift_record,
)
from planning.collaborators import SqlAgentDirectory, SqlHolidayCalendar, SqlShiftStore  # noqa: E402
from planning.engine import PlanningEngine  # noqa: E402
from policy import EngineConfig  # noqa: E402

DAY = datetime.date(2025, 11, 3)


class SlowHolidayCalendar(SqlHolidayCalendar):
    """Records how many lookups are in flight at once."""

    def __init__(self, session_factory, delay: float = 0.02) -> None:
        super().__init__(session_factory)
        self.delay = delay
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0

    def _lookup(self, day: datetime.date) -> bool:
        with self.lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            time.sleep(self.delay)
            return super()._lookup(day)
        finally:
            with self.lock:
                self.running -= 1


class RosterDatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        workdir = tempfile.TemporaryDirectory()
        self.addCleanup(workdir.cleanup)
        self.roster_engine, self.session_factory = sqlite_session_factory(workdir.name, Base)
        self.agent_engine, self.agent_session_factory = sqlite_session_factory(workdir.name, AgentBase)
        self.session = self.session_factory()
        self.agent_session = self.agent_session_factory()

    def tearDown(self) -> None:
        self.session.close()
        self.agent_session.close()
        self.roster_engine.dispose()
        self.agent_engine.dispose()

    def test_add_agent_normalizes_and_deactivates(self) -> None:
        created = add_agent(self.agent_session, " a01 ", "a", last_name="Martin", entry_date="2025-11-01")
        self.assertEqual(created.code, "A01")
        self.assertEqual(created.group, "A")
        self.assertTrue(created.is_active)
        add_agent(self.agent_session, "A02", "A", entry_date=datetime.date(2025, 11, 1))
        add_agent(self.agent_session, "B01", "B")
        self.assertEqual([agent.code for agent in list_agents_by_group(self.agent_session, "a")], ["A01", "A02"])
        renamed = update_agent(self.agent_session, "A02", {"group": "b", "first_name": "Hugo"})
        self.assertEqual((renamed.group, renamed.first_name), ("B", "Hugo"))
        left = deactivate_agent(self.agent_session, "A02", "2025-12-01")
        self.assertFalse(left.is_active)
        self.assertEqual(left.exit_date, datetime.date(2025, 12, 1))
        with self.assertRaises(ValueError):
            add_agent(self.agent_session, "C01", "C", status="retired")

    def test_holidays(self) -> None:
        add_holiday(self.session, "2025-11-11", "Armistice")
        add_holiday(self.session, datetime.date(2026, 1, 1), "Jour de l'an")
        self.assertTrue(is_holiday(self.session, datetime.date(2025, 11, 11)))
        self.assertFalse(is_holiday(self.session, datetime.date(2025, 11, 12)))
        self.assertEqual(len(list_holidays(self.session, 2025)), 1)
        delete_holiday(self.session, "2025-11-11")
        self.assertFalse(is_holiday(self.session, datetime.date(2025, 11, 11)))

    def test_upsert_is_last_writer_wins(self) -> None:
        upsert_shift_record(self.session, "a01", DAY, "1")
        upsert_shift_record(self.session, "A01", DAY, "3", "MANUAL")
        record = get_shift_record(self.session, "A01", DAY)
        self.assertEqual((record.duty_code, record.origin), ("3", "MANUAL"))
        self.assertEqual(len(get_month_records(self.session, 11, 2025)), 1)
        with self.assertRaises(ValueError):
            upsert_shift_record(self.session, "A01", DAY, "9")
        with self.assertRaises(ValueError):
            upsert_shift_record(self.session, "A01", DAY, "1", "GUESS")

    def test_swap_shifts_exchanges_codes(self) -> None:
        upsert_shift_record(self.session, "A01", DAY, "1")
        upsert_shift_record(self.session, "B01", DAY, "2")
        self.assertTrue(swap_shifts(self.session, "A01", "B01", DAY))
        first = get_shift_record(self.session, "A01", DAY)
        second = get_shift_record(self.session, "B01", DAY)
        self.assertEqual((first.duty_code, first.origin), ("2", "SWAP"))
        self.assertEqual((second.duty_code, second.origin), ("1", "SWAP"))
        self.assertFalse(swap_shifts(self.session, "A01", "C01", DAY))

    def test_record_absence_only_accepts_absence_codes(self) -> None:
        record = record_absence(self.session, "A01", DAY, "m")
        self.assertEqual((record.duty_code, record.origin), ("M", "ABSENCE"))
        with self.assertRaises(ValueError):
            record_absence(self.session, "A01", DAY, "1")

    def test_leave_conflicts_ignore_rejected_requests(self) -> None:
        first = request_leave(self.session, "A01", "2025-12-01", "2025-12-05")
        self.assertEqual(first.status, "pending")
        self.assertEqual(len(find_leave_conflicts(self.session, "A01", "2025-12-05", "2025-12-08")), 1)
        self.assertEqual(find_leave_conflicts(self.session, "A01", "2025-12-06", "2025-12-08"), [])
        self.assertEqual(find_leave_conflicts(self.session, "B01", "2025-12-01", "2025-12-05"), [])
        set_leave_status(self.session, first.id, "rejected")
        self.assertEqual(find_leave_conflicts(self.session, "A01", "2025-12-01", "2025-12-05"), [])
        with self.assertRaises(ValueError):
            request_leave(self.session, "A01", "2025-12-09", "2025-12-08")

    def test_audit_log_serializes_payload(self) -> None:
        record_audit_log(self.session, "tests", "SHIFT_MANUAL", target_id="A01", payload={"date": DAY})
        log = self.session.query(AuditLog).one()
        self.assertIn("2025-11-03", log.payloadJSON)

    def test_sql_collaborators_drive_engine(self) -> None:
        add_agent(self.agent_session, "A01", "A", entry_date="2025-11-01")
        add_agent(self.agent_session, "A02", "A", entry_date="2025-11-01", status="inactive")
        add_holiday(self.session, "2025-11-11", "Armistice")
        engine = PlanningEngine(
            SqlAgentDirectory(self.agent_session_factory),
            SqlHolidayCalendar(self.session_factory),
            SqlShiftStore(self.session_factory),
            config=EngineConfig.from_policy(),
        )
        entries = asyncio.run(engine.generate_group_month("A", 11, 2025))
        self.assertEqual([entry.agent.code for entry in entries], ["A01"])
        with self.session_factory() as session:
            records = get_agent_records(session, "A01", 11, 2025)
        self.assertEqual(len(records), 30)
        self.assertEqual({record["origin"] for record in records}, {"THEORETICAL"})
        self.assertEqual(records[0]["duty_code"], "1")
        self.assertTrue(entries[0].planning[10].is_holiday)

    def test_month_generation_overlaps_holiday_lookups(self) -> None:
        add_agent(self.agent_session, "A01", "A", entry_date="2025-11-01")
        add_holiday(self.session, "2025-11-11", "Armistice")
        calendar = SlowHolidayCalendar(self.session_factory)
        engine = PlanningEngine(SqlAgentDirectory(self.agent_session_factory), calendar, config=EngineConfig.from_policy())
        planning = asyncio.run(engine.generate_month("A01", 11, 2025))
        self.assertEqual([day.day for day in planning], list(range(1, 31)))
        self.assertTrue(planning[10].is_holiday)
        self.assertGreater(calendar.peak, 1)

    def test_shift_store_keeps_every_concurrent_write(self) -> None:
        store = SqlShiftStore(self.session_factory)
        days = [datetime.date(2025, 11, day) for day in range(1, 31)]

        async def _write_month():
            await asyncio.gather(*(store.upsert("A01", day, "1", "THEORETICAL") for day in days))
            await asyncio.gather(*(store.upsert("A01", day, "R", "MANUAL") for day in days[:5]))
            return await store.get_code("A01", days[0])

        self.assertEqual(asyncio.run(_write_month()), "R")
        with self.session_factory() as session:
            records = get_agent_records(session, "A01", 11, 2025)
        self.assertEqual(len(records), 30)
        self.assertEqual([record["origin"] for record in records[:6]], ["MANUAL"] * 5 + ["THEORETICAL"])

    def test_upsert_commits_for_other_sessions(self) -> None:
        upsert_shift_record(self.session, "A01", DAY, "2")
        with self.session_factory() as other:
            self.assertEqual(get_shift_record(other, "A01", DAY).duty_code, "2")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
