from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import price_store, schemas
from ..database import get_db
from ..seed_catalog import DEFAULT_PRICES, seed_prices

router = APIRouter(prefix="/prices", tags=["prices"])


@router.get("/seed")
def seed(db: Session = Depends(get_db)):
    """Seed default prices. Safe to run multiple times, skips existing refKeys."""
    seeded = seed_prices(db)
    return {"ok": True, "seeded": seeded, "available": len(DEFAULT_PRICES)}


@router.get("/", response_model=List[schemas.PriceItem])
def list_prices(ref_key: Optional[str] = None, db: Session = Depends(get_db)):
    return price_store.list_prices(db, ref_key)


@router.put("/{ref_key}", response_model=schemas.PriceItem)
def upsert_price(ref_key: str, update: schemas.PriceItemUpdate, db: Session = Depends(get_db)):
    """Create or update the price row for (refKey, validFrom)."""
    try:
        return price_store.upsert_price(db, ref_key, **update.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
