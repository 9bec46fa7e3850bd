"""
Database-backed price lookup.

A refKey can have several price rows with consecutive validity windows.
For a pricing date d the entry with valid_from <= d < valid_to (valid_to
open when null) and the latest valid_from wins.
"""

from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models
from .engine.errors import PriceNotFound
from .engine.pricing import PriceQuote

OPEN_VALID_FROM = date(2000, 1, 1)


def _quote(row: models.PriceItem) -> PriceQuote:
    return PriceQuote(
        unit_price=float(row.price),
        unit=row.unit,
        title=row.title,
        valid_from=row.valid_from,
        valid_to=row.valid_to,
    )


class DbPriceLookup:
    """Price lookup for one pricing date. Results (and misses) are cached per instance."""

    def __init__(self, db: Session, pricing_date: Optional[date] = None):
        self.db = db
        self.pricing_date = pricing_date or date.today()
        self._cache: Dict[str, Optional[PriceQuote]] = {}

    def _valid_rows(self):
        d = self.pricing_date
        return self.db.query(models.PriceItem).filter(
            models.PriceItem.valid_from <= d,
            or_(models.PriceItem.valid_to.is_(None), models.PriceItem.valid_to > d),
        )

    def prefetch(self, ref_keys: Iterable[str]) -> None:
        """Load all given refKeys with one query."""
        wanted = [k for k in set(ref_keys) if k not in self._cache]
        if not wanted:
            return
        rows = self._valid_rows().filter(models.PriceItem.ref_key.in_(wanted)).all()
        best: Dict[str, models.PriceItem] = {}
        for row in rows:
            current = best.get(row.ref_key)
            if current is None or row.valid_from > current.valid_from:
                best[row.ref_key] = row
        for key in wanted:
            self._cache[key] = _quote(best[key]) if key in best else None

    def lookup_price(self, ref_key: str) -> PriceQuote:
        if ref_key not in self._cache:
            row = (
                self._valid_rows()
                .filter(models.PriceItem.ref_key == ref_key)
                .order_by(models.PriceItem.valid_from.desc())
                .first()
            )
            self._cache[ref_key] = _quote(row) if row else None
        quote = self._cache[ref_key]
        if quote is None:
            raise PriceNotFound(ref_key)
        return quote


def list_prices(db: Session, ref_key: Optional[str] = None) -> List[models.PriceItem]:
    query = db.query(models.PriceItem)
    if ref_key:
        query = query.filter(models.PriceItem.ref_key == ref_key)
    return query.order_by(models.PriceItem.ref_key, models.PriceItem.valid_from).all()


def upsert_price(
    db: Session,
    ref_key: str,
    price: float,
    title: Optional[str] = None,
    type: Optional[str] = None,
    unit: Optional[str] = None,
    valid_from: Optional[date] = None,
    valid_to: Optional[date] = None,
    note: Optional[str] = None,
) -> models.PriceItem:
    """Insert or update the price row identified by (ref_key, valid_from)."""
    if not ref_key:
        raise ValueError("refKey must not be empty")
    if price is None or price < 0:
        raise ValueError(f"Price for {ref_key} must be >= 0")
    valid_from = valid_from or OPEN_VALID_FROM
    if valid_to is not None and valid_to <= valid_from:
        raise ValueError(f"validTo ({valid_to}) must be after validFrom ({valid_from})")

    row = db.query(models.PriceItem).filter(
        models.PriceItem.ref_key == ref_key,
        models.PriceItem.valid_from == valid_from,
    ).first()
    if not row:
        row = models.PriceItem(ref_key=ref_key, valid_from=valid_from)
        db.add(row)
    row.price = price
    row.title = title
    row.type = type
    row.unit = unit
    row.valid_to = valid_to
    row.note = note
    db.commit()
    db.refresh(row)
    return row
