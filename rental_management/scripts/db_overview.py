#!/usr/bin/env python3
"""Database overview and integrity checks for the rental ledger."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))


EXPECTED_TABLES = [
    "Dealers",
    "Customers",
    "Machines",
    "Vehicles",
    "Rentals",
    "PaymentRecords",
    "Alerts",
    "AuditLogs",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Customers": ["CustomerID", "DealerID", "Name", "TotalRentals", "TotalOutstandingDue", "IsActive"],
    "Machines": ["MachineID", "DealerID", "Status", "CurrentRentalID", "ExpectedReturnDate", "IsActive"],
    "Vehicles": ["VehicleID", "DealerID", "VehicleNumber", "Status", "CurrentRentalID", "ExpectedReturnDate", "IsActive"],
    "Rentals": ["RentalID", "RentalNumber", "DealerID", "CustomerID", "MachineID", "VehicleID", "Status", "ReturnCondition"],
    "PaymentRecords": ["PaymentID", "DealerID", "CustomerID", "RentalID", "AmountPaid", "OutstandingDue", "PaymentMethod"],
}

# Equipment tables and the Rentals column pointing back at them.
EQUIPMENT_TABLES = {
    "Machines": ("MachineID", "MachineID"),
    "Vehicles": ("VehicleID", "VehicleID"),
}

# A customer's balance is the OutstandingDue of the newest ledger entry of each rental.
CUSTOMER_BALANCE_SQL = """
    SELECT COALESCE(SUM(p.OutstandingDue), 0)
    FROM PaymentRecords p
    WHERE p.CustomerID = {customer}.CustomerID
      AND p.DealerID = {customer}.DealerID
      AND p.PaymentID = (
        SELECT MAX(q.PaymentID)
        FROM PaymentRecords q
        WHERE q.RentalID = p.RentalID AND q.DealerID = p.DealerID
      )
"""


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _execute(engine: Engine, sql: str, params: dict | None = None) -> int:
    with engine.begin() as conn:
        return conn.execute(text(sql), params or {}).rowcount


def _table_exists(engine: Engine, table_name: str) -> bool:
    return inspect(engine).has_table(table_name)


def _column_names(engine: Engine, table_name: str) -> set[str]:
    return {str(column["name"]) for column in inspect(engine).get_columns(table_name)}


def _count_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    results: list[CheckResult] = []
    for table in EXPECTED_TABLES:
        exists = _table_exists(engine, table)
        results.append(CheckResult(f"table:{table}", exists, "present" if exists else "missing"))
    return results


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if not _table_exists(engine, table):
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = _column_names(engine, table)
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _run_integrity_checks(engine: Engine) -> list[CheckResult]:
    checks: list[CheckResult] = []
    if not all(_table_exists(engine, table) for table in EXPECTED_COLUMNS):
        checks.append(CheckResult("integrity", False, "schema incomplete"))
        return checks

    for table, (key, rental_column) in EQUIPMENT_TABLES.items():
        label = table.lower()
        checks.append(
            _count_check(
                engine,
                f"{label}:rented_without_active_rental",
                f"""
                SELECT COUNT(*)
                FROM {table} e
                LEFT JOIN Rentals r ON r.RentalID = e.CurrentRentalID
                WHERE e.Status = 'rented'
                  AND (r.RentalID IS NULL OR r.Status <> 'active' OR r.{rental_column} <> e.{key})
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                f"{label}:rental_link_without_rented_status",
                f"SELECT COUNT(*) FROM {table} WHERE CurrentRentalID IS NOT NULL AND Status <> 'rented'",
            )
        )
        checks.append(
            _count_check(
                engine,
                f"{label}:active_rental_not_linked",
                f"""
                SELECT COUNT(*)
                FROM Rentals r
                JOIN {table} e ON e.{key} = r.{rental_column}
                WHERE r.Status = 'active'
                  AND (e.CurrentRentalID IS NULL OR e.CurrentRentalID <> r.RentalID)
                """,
            )
        )

    checks.append(
        _count_check(
            engine,
            "rentals:equipment_reference",
            """
            SELECT COUNT(*)
            FROM Rentals
            WHERE (MachineID IS NULL AND VehicleID IS NULL)
               OR (MachineID IS NOT NULL AND VehicleID IS NOT NULL)
            """,
        )
    )
    checks.append(
        _count_check(
            engine,
            "customers:cached_outstanding_mismatch",
            f"""
            SELECT COUNT(*)
            FROM Customers c
            WHERE c.TotalOutstandingDue <> ({CUSTOMER_BALANCE_SQL.format(customer="c")})
            """,
        )
    )
    checks.append(
        _count_check(
            engine,
            "payments:rental_customer_mismatch",
            """
            SELECT COUNT(*)
            FROM PaymentRecords p
            JOIN Rentals r ON r.RentalID = p.RentalID
            WHERE r.CustomerID <> p.CustomerID OR r.DealerID <> p.DealerID
            """,
        )
    )
    return checks


def _repair(engine: Engine) -> None:
    _print_section("Repair")
    for table, (key, rental_column) in EQUIPMENT_TABLES.items():
        released = _execute(
            engine,
            f"""
            UPDATE {table}
            SET Status = 'available', CurrentRentalID = NULL, ExpectedReturnDate = NULL
            WHERE Status = 'rented'
              AND NOT EXISTS (
                SELECT 1 FROM Rentals r
                WHERE r.RentalID = {table}.CurrentRentalID
                  AND r.Status = 'active'
                  AND r.{rental_column} = {table}.{key}
              )
            """,
        )
        print(f"{table}: released {released} stale rented rows")
        unlinked = _execute(
            engine,
            f"UPDATE {table} SET CurrentRentalID = NULL WHERE CurrentRentalID IS NOT NULL AND Status <> 'rented'",
        )
        print(f"{table}: cleared {unlinked} dangling rental links")

    recalculated = _execute(
        engine,
        f"""
        UPDATE Customers
        SET TotalOutstandingDue = ({CUSTOMER_BALANCE_SQL.format(customer="Customers")})
        """,
    )
    print(f"Customers: recalculated {recalculated} outstanding totals")


def _init_schema(engine: Engine) -> None:
    import models.rental_models  # noqa: F401
    from db.base import Base

    Base.metadata.create_all(bind=engine)
    print("Schema created.")


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    for table in EXPECTED_TABLES:
        if not _table_exists(engine, table):
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rental management DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--init", action="store_true", help="create missing tables before checking")
    parser.add_argument("--repair", action="store_true", help="release stale equipment and recompute cached totals")
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    if args.init:
        _init_schema(engine)

    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    integrity = _run_integrity_checks(engine)
    _print_results("Integrity Checks", integrity)

    if args.repair:
        _repair(engine)
        integrity = _run_integrity_checks(engine)
        _print_results("Integrity Checks (after repair)", integrity)

    _print_row_counts(engine)
    return 0 if all(row.ok for row in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
