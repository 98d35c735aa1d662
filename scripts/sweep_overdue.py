#!/usr/bin/env python3
"""
Mark invoices past their due date as overdue.

Meant to be run by an external scheduler at least once a day.  Sweeps the
given businesses (or every business with invoices) as of a date (default:
today, UTC) and prints the number of invoices transitioned per business.

Usage:
  python3 scripts/sweep_overdue.py --database-url sqlite:///ledger.db
  python3 scripts/sweep_overdue.py --business-id <uuid> --as-of 2024-03-31

Uses LEDGER_DATABASE_URL if --database-url is not given.
"""

import argparse
import os
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Transition past-due invoices to overdue")
    p.add_argument(
        "--database-url",
        default=os.environ.get("LEDGER_DATABASE_URL"),
        help="SQLAlchemy database URL (default: LEDGER_DATABASE_URL)",
    )
    p.add_argument(
        "--business-id",
        action="append",
        type=UUID,
        default=[],
        help="Business to sweep; repeat for several (default: every business with invoices)",
    )
    p.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Sweep date, YYYY-MM-DD (default: today, UTC)",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Ledger YAML configuration (default: packaged defaults)",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not args.database_url:
        print("ERROR: no database URL (use --database-url or LEDGER_DATABASE_URL)", file=sys.stderr)
        return 2

    from sqlalchemy import select

    from ledger_config import get_active_config
    from ledger_kernel.db.engine import init_engine_from_url, reset_engine, session_scope
    from ledger_kernel.models.invoice import InvoiceModel
    from ledger_kernel.services.ledger_service import LedgerService

    init_engine_from_url(args.database_url)
    try:
        with session_scope() as session:
            businesses = args.business_id
            if not businesses:
                businesses = list(
                    session.execute(select(InvoiceModel.business_id).distinct()).scalars()
                )
                session.rollback()

            ledger = LedgerService(session, config=get_active_config(args.config))
            total = 0
            for business_id in businesses:
                count = ledger.update_overdue_invoices(business_id, args.as_of)
                total += count
                print(f"{business_id}: {count} invoice(s) marked overdue")
            print(f"Total: {total}")
    finally:
        reset_engine()
    return 0


if __name__ == "__main__":
    sys.exit(main())
