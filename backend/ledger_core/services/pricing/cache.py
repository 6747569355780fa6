# backend/ledger_core/services/pricing/cache.py
"""
Price cache over the asset_prices table.

The table is keyed by (symbol, currency, date) with at most one row per
key. Writes are upserts on that natural key, so replaying a day never
creates a duplicate. Callers own the transaction: put() executes but
does not commit.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_core.models import AssetPrice
from ledger_core.services.pricing.base import DailyPrice
from ledger_core.utils.sql import upsert_insert

logger = logging.getLogger(__name__)


class PriceCache:
    """Read/write access to cached daily prices."""

    def get(self, db: Session, symbol: str, currency: str, day: date) -> AssetPrice | None:
        """Exact-day lookup."""
        return db.scalar(
            select(AssetPrice).where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date == day,
            )
        )

    def find_on_or_before(
            self,
            db: Session,
            symbol: str,
            currency: str,
            day: date,
            max_days_back: int,
    ) -> AssetPrice | None:
        """Most recent row in [day - max_days_back, day]."""
        return db.scalar(
            select(AssetPrice)
            .where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date <= day,
                AssetPrice.date >= day - timedelta(days=max_days_back),
            )
            .order_by(AssetPrice.date.desc())
            .limit(1)
        )

    def latest(self, db: Session, symbol: str, currency: str) -> AssetPrice | None:
        return db.scalar(
            select(AssetPrice)
            .where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
            )
            .order_by(AssetPrice.date.desc())
            .limit(1)
        )

    def put(self, db: Session, price: DailyPrice) -> None:
        """
        Insert or update the row for (symbol, currency, date).

        The caller commits.
        """
        stmt = upsert_insert(db, AssetPrice).values(
            symbol=price.symbol.upper(),
            currency=price.currency.upper(),
            date=price.date,
            price=price.price,
            source=price.source,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "currency", "date"],
            set_={
                "price": stmt.excluded.price,
                "source": stmt.excluded.source,
            },
        )
        db.execute(stmt)
        logger.debug(f"Cached {price.symbol}/{price.currency} {price.date} = {price.price} ({price.source})")

    def count(self, db: Session, symbol: str, currency: str, start: date, end: date) -> int:
        """Number of cached days in [start, end]."""
        rows = db.scalars(
            select(AssetPrice.id).where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date >= start,
                AssetPrice.date <= end,
            )
        ).all()
        return len(rows)
