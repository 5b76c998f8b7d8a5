from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    AgentSessionLocal,
    PolicySessionLocal,
    SessionLocal,
    add_agent,
    add_holiday,
    get_agent,
    init_database,
)
from policy import ensure_default_policy  # noqa: E402


DEFAULT_ENTRY_DATE = datetime.date(2025, 11, 1)

AGENTS: List[Dict] = [
    {"code": "A01", "group": "A", "last_name": "Martin", "first_name": "Claire"},
    {"code": "A02", "group": "A", "last_name": "Bernard", "first_name": "Hugo"},
    {"code": "B01", "group": "B", "last_name": "Thomas", "first_name": "Inès"},
    {"code": "B02", "group": "B", "last_name": "Petit", "first_name": "Louis"},
    {"code": "C01", "group": "C", "last_name": "Robert", "first_name": "Emma"},
    {"code": "C02", "group": "C", "last_name": "Richard", "first_name": "Noah"},
    {"code": "D01", "group": "D", "last_name": "Durand", "first_name": "Léa"},
    {"code": "D02", "group": "D", "last_name": "Dubois", "first_name": "Jules"},
    {"code": "E01", "group": "E", "last_name": "Moreau", "first_name": "Chloé"},
    {"code": "E02", "group": "E", "last_name": "Laurent", "first_name": "Adam"},
    {"code": "E03", "group": "E", "last_name": "Simon", "first_name": "Zoé", "entry_date": "2026-01-05"},
]


def holidays_for(year: int) -> Dict[datetime.date, str]:
    """Fixed-date public holidays; moveable feasts are added by hand."""
    return {
        datetime.date(year, 1, 1): "Jour de l'an",
        datetime.date(year, 5, 1): "Fête du travail",
        datetime.date(year, 5, 8): "Victoire 1945",
        datetime.date(year, 7, 14): "Fête nationale",
        datetime.date(year, 8, 15): "Assomption",
        datetime.date(year, 11, 1): "Toussaint",
        datetime.date(year, 11, 11): "Armistice",
        datetime.date(year, 12, 25): "Noël",
    }


def seed_agents() -> int:
    created = 0
    with AgentSessionLocal() as session:
        for entry in AGENTS:
            if get_agent(session, entry["code"]):
                print(f"[seed] {entry['code']} already present, skipping")
                continue
            add_agent(
                session,
                entry["code"],
                entry["group"],
                last_name=entry["last_name"],
                first_name=entry["first_name"],
                entry_date=entry.get("entry_date") or DEFAULT_ENTRY_DATE,
            )
            created += 1
    return created


def seed_holidays(years: List[int]) -> int:
    count = 0
    with SessionLocal() as session:
        for year in years:
            for day, name in holidays_for(year).items():
                add_holiday(session, day, name)
                count += 1
    return count


def main() -> None:
    init_database()
    ensure_default_policy(PolicySessionLocal)
    this_year = datetime.date.today().year
    agents = seed_agents()
    holidays = seed_holidays([this_year, this_year + 1])
    print(f"[seed] Added {agents} agents and {holidays} holidays.")


if __name__ == "__main__":
    main()
