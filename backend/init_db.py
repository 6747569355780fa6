#!/usr/bin/env python3
# backend/init_db.py
"""
Database initialization script.

Creates every table and, with --seed-accounts, a starter set of accounts
so credit-card and investment account types are known to the ledger.

This script can be run from any directory:
    python backend/init_db.py
    cd backend && python init_db.py --seed-accounts
"""
import sys
from pathlib import Path

# Add the backend directory to Python path so 'ledger_core' is importable
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy import select

from ledger_core.database import SessionLocal, engine
from ledger_core.models import Account, AccountType, Base

STARTER_ACCOUNTS = [
    ("Cash", AccountType.CASH, "USD"),
    ("Bank", AccountType.BANK, "USD"),
    ("Credit Card", AccountType.CREDIT_CARD, "USD"),
    ("Exchange", AccountType.EXCHANGE, None),
    ("Investments", AccountType.INVESTMENT, None),
]


def init_db() -> None:
    """Create all database tables defined in models."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")


def seed_accounts() -> None:
    """Insert the starter accounts that do not exist yet."""
    db = SessionLocal()
    try:
        existing = set(db.scalars(select(Account.name)).all())
        added = 0
        for name, account_type, currency in STARTER_ACCOUNTS:
            if name in existing:
                continue
            db.add(Account(name=name, type=account_type, currency=currency))
            added += 1
        db.commit()
        print(f"Seeded {added} accounts ({len(existing)} already present)")
    finally:
        db.close()


if __name__ == "__main__":
    init_db()
    if "--seed-accounts" in sys.argv[1:]:
        seed_accounts()
