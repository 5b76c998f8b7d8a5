from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path
from typing import List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    AgentSessionLocal,
    PolicySessionLocal,
    SessionLocal,
    get_month_records,
    init_database,
)
from logger import setup_logger  # noqa: E402
from planning.api import (  # noqa: E402
    agent_month_report,
    build_engine,
    default_groups,
    generate_group_planning,
    group_stats_report,
    month_coverage_report,
)
from policy import ensure_default_policy  # noqa: E402


def _parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    today = datetime.date.today()
    parser = argparse.ArgumentParser(description="Generate and summarise a month of the duty roster.")
    parser.add_argument("--group", action="append", dest="groups", help="Group to generate (repeatable).")
    parser.add_argument("--month", type=int, default=today.month)
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--actor", default="workflow-smoke")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logger(script="workflow_smoke")
    init_database()
    ensure_default_policy(PolicySessionLocal)
    engine = build_engine(SessionLocal, agent_session_factory=AgentSessionLocal)
    groups = [group.strip().upper() for group in (args.groups or default_groups(engine.config))]

    for group in groups:
        summary = generate_group_planning(
            SessionLocal,
            group,
            args.month,
            args.year,
            args.actor,
            agent_session_factory=AgentSessionLocal,
            engine=engine,
        )
        print(f"[workflow] {summary['label']} group {group}: {len(summary['agents'])} agents, "
              f"{summary['records_written']} records")
        for entry in summary["agents"]:
            report = agent_month_report(SessionLocal, entry["agent"]["code"], args.month, args.year, engine=engine)
            stats = report["stats"]
            codes = "".join(day["duty_code"] for day in report["planning"])
            print(f"[workflow]   {report['agent_code']:<6} {codes}  worked={stats['total_days_worked']} "
                  f"operational={stats['operational_total']}")
        totals = group_stats_report(SessionLocal, group, args.month, args.year, engine=engine)
        print(f"[workflow]   group operational total={totals['operational_total']} "
              f"average={totals['average_per_agent']:.1f}")

    coverage = month_coverage_report(SessionLocal, args.month, args.year, groups=groups, engine=engine)
    print(f"[workflow] coverage over {coverage['days_checked']} days: {len(coverage['warnings'])} gaps")
    for warning in coverage["warnings"][:10]:
        print(f"[workflow]   {warning['message']}")

    with SessionLocal() as session:
        stored = get_month_records(session, args.month, args.year)
    print(f"[workflow] {len(stored)} shift records stored for {args.month:02d}/{args.year}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
