#!/usr/bin/env python3
"""Database overview and integrity checks for the rental inventory service."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "RentalCustomers",
    "RentalProducts",
    "Products",
    "Accessories",
    "InventoryUnits",
    "UnitAccessories",
    "UnitHistory",
    "Rentals",
    "RentalLineItems",
    "RentalLineAccessories",
    "RentalSoldItems",
    "Bills",
    "BillItems",
    "BillPayments",
    "PaymentAccounts",
    "SequenceCounters",
    "Notifications",
    "AuditLogs",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "InventoryUnits": [
        "UnitID",
        "RentalProductID",
        "UniqueIdentifier",
        "Status",
        "Condition",
        "IsArchived",
        "HourlyRent",
        "DailyRent",
        "MonthlyRent",
    ],
    "Rentals": ["RentalID", "RentalNumber", "CustomerID", "Status", "OutTime", "ReturnTime", "BillID"],
    "RentalLineItems": ["LineID", "RentalID", "UnitID", "RentAtTime", "RentType", "ReturnCondition", "DamageCost"],
    "Bills": [
        "BillID",
        "BillNumber",
        "SystemCalculatedAmount",
        "CustomizedAmount",
        "TotalAmount",
        "PaidAmount",
        "DueAmount",
        "PaymentStatus",
    ],
    "PaymentAccounts": ["AccountID", "Name", "OpeningBalance", "CurrentBalance", "Status"],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
}

INTEGRITY_QUERIES: dict[str, tuple[list[str], str]] = {
    "units:rented_without_active_rental": (
        ["InventoryUnits", "RentalLineItems", "Rentals"],
        """
        SELECT COUNT(*)
        FROM InventoryUnits u
        WHERE u.Status = 'rented'
          AND NOT EXISTS (
              SELECT 1
              FROM RentalLineItems li
              JOIN Rentals r ON r.RentalID = li.RentalID
              WHERE li.UnitID = u.UnitID AND r.Status IN ('active', 'overdue')
          )
        """,
    ),
    "units:on_multiple_active_rentals": (
        ["RentalLineItems", "Rentals"],
        """
        SELECT COUNT(*)
        FROM (
            SELECT li.UnitID
            FROM RentalLineItems li
            JOIN Rentals r ON r.RentalID = li.RentalID
            WHERE r.Status IN ('active', 'overdue')
            GROUP BY li.UnitID
            HAVING COUNT(*) > 1
        ) d
        """,
    ),
    "bills:total_not_paid_plus_due": (
        ["Bills"],
        """
        SELECT COUNT(*)
        FROM Bills
        WHERE ABS(COALESCE(TotalAmount, 0) - (COALESCE(PaidAmount, 0) + COALESCE(DueAmount, 0))) > 0.01
        """,
    ),
    "rentalproducts:stale_quantity_counters": (
        ["RentalProducts", "InventoryUnits"],
        """
        SELECT COUNT(*)
        FROM RentalProducts p
        WHERE COALESCE(p.TotalQuantity, 0) <> (
                  SELECT COUNT(*) FROM InventoryUnits u
                  WHERE u.RentalProductID = p.RentalProductID AND COALESCE(u.IsArchived, 0) = 0
              )
           OR COALESCE(p.AvailableQuantity, 0) <> (
                  SELECT COUNT(*) FROM InventoryUnits u
                  WHERE u.RentalProductID = p.RentalProductID
                    AND COALESCE(u.IsArchived, 0) = 0
                    AND u.Status = 'available'
              )
        """,
    ),
}


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


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _table_names(engine: Engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def _column_names(engine: Engine, table_name: str) -> set[str]:
    return {str(column["name"]) for column in inspect(engine).get_columns(table_name)}


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
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


def run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    checks: list[CheckResult] = []
    for name, (tables, sql) in INTEGRITY_QUERIES.items():
        missing = [table for table in tables if table not in present]
        if missing:
            checks.append(CheckResult(name, False, f"tables missing={','.join(missing)}"))
            continue
        count = int(_scalar(engine, sql) or 0)
        checks.append(CheckResult(name, count == 0, f"count={count}"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = _table_names(engine)
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    present = _table_names(engine)

    if "Rentals" in present:
        with engine.connect() as conn:
            rows = conn.execute(
                text("SELECT RentalID, RentalNumber, CustomerID, Status, OutTime FROM Rentals ORDER BY RentalID DESC"),
            ).fetchmany(sample_size)
        print("Rentals (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "AuditLogs" in present:
        with engine.connect() as conn:
            rows = conn.execute(
                text("SELECT AuditID, EntityType, Action, UserID, CreatedAt FROM AuditLogs ORDER BY AuditID DESC"),
            ).fetchmany(sample_size)
        print("AuditLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Rental inventory DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

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

    integrity = run_integrity_checks(engine)
    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    _print_results("Integrity Checks", integrity)
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0 if all(check.ok for check in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
