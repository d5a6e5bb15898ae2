#!/usr/bin/env python3
"""Ledger and rental consistency checks for the tool library."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from tool_library.models.library_models import Member, Rental, Tool
from tool_library.services.availability_service import find_conflicts
from tool_library.services.ledger_service import member_transactions, project_balance
from tool_library.services.rental_rules import to_money


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True)


def run_balance_checks(db: Session) -> list[CheckResult]:
    results: list[CheckResult] = []
    for member in db.execute(select(Member).order_by(Member.MemberID)).scalars().all():
        ledger_debt = project_balance(member_transactions(db, member.MemberID))
        cached_debt = to_money(member.TotalDebt)
        results.append(
            CheckResult(
                f"member:{member.MemberID}:debt",
                ledger_debt == cached_debt,
                f"cached={cached_debt} ledger={ledger_debt}",
            )
        )
    return results


def run_tool_checks(db: Session) -> list[CheckResult]:
    results: list[CheckResult] = []
    for tool in db.execute(select(Tool).order_by(Tool.ToolID)).scalars().all():
        rentals = db.execute(select(Rental).where(Rental.ToolID == tool.ToolID)).scalars().all()
        active = [rental for rental in rentals if rental.Status == "active"]
        if tool.Status == "rented":
            results.append(
                CheckResult(
                    f"tool:{tool.ToolID}:occupancy",
                    len(active) == 1,
                    f"active_rentals={len(active)}",
                )
            )

        overlapping = 0
        open_rentals = [rental for rental in rentals if rental.Status in {"pending", "active"}]
        for index, rental in enumerate(open_rentals):
            later = open_rentals[index + 1:]
            overlapping += len(find_conflicts(tool.ToolID, rental.StartDate, rental.EndDate, later))
        results.append(
            CheckResult(
                f"tool:{tool.ToolID}:overlaps",
                overlapping == 0,
                f"count={overlapping}",
            )
        )
    return results


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Tool library ledger and rental checks")
    parser.add_argument("--db-url", default=os.environ.get("TOOL_LIBRARY_DB_URL", ""))
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("TOOL_LIBRARY_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    engine = _get_engine(db_url)
    with Session(engine) as db:
        balance_results = run_balance_checks(db)
        tool_results = run_tool_checks(db)

    _print_results("Member Balances", balance_results)
    _print_results("Tool Occupancy", tool_results)
    failures = [row for row in balance_results + tool_results if not row.ok]
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
