from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from .. import catalog_store, schemas
from ..database import get_db
from ..engine.calculation import Selection, calculate, json_number
from ..engine.errors import CostbookError, StructuralNotFound
from ..engine.expression import compile_formula, require_finite
from ..engine.params import numeric_context
from ..engine.suggest import order_variants, suggest
from ..price_store import DbPriceLookup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])


def _http_error(exc: Exception) -> HTTPException:
    """Structural not-found -> 404, everything else the caller got wrong -> 400."""
    if isinstance(exc, StructuralNotFound):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, CostbookError):
        return HTTPException(status_code=400, detail=exc.to_dict())
    return HTTPException(status_code=400, detail=str(exc))


# --- Templates ---

@router.get("/templates", response_model=List[schemas.Template])
def list_templates(
    category: Optional[str] = None,
    q: Optional[str] = None,
    take: int = 200,
    db: Session = Depends(get_db),
):
    """List templates, optionally by category and a key/title/description search."""
    return catalog_store.list_templates(db, category, q=q, take=take)


@router.post("/templates", response_model=schemas.Template)
def upsert_template(body: schemas.TemplateUpsert, db: Session = Depends(get_db)):
    """Create or update a template by key. A components list replaces all components."""
    try:
        return catalog_store.upsert_template(db, **body.model_dump())
    except (CostbookError, ValueError) as exc:
        raise _http_error(exc)


@router.get("/templates/{key}", response_model=schemas.Template)
def get_template(key: str, db: Session = Depends(get_db)):
    try:
        return catalog_store.get_template_row(db, key)
    except StructuralNotFound as exc:
        raise _http_error(exc)


@router.delete("/templates/{key}")
def delete_template(key: str, db: Session = Depends(get_db)):
    try:
        catalog_store.delete_template(db, key)
    except StructuralNotFound as exc:
        raise _http_error(exc)
    return {"ok": True, "deleted": key}


# --- Variants ---

@router.get("/templates/{key}/variants", response_model=List[schemas.Variant])
def list_variants(key: str, enabled_only: bool = False, db: Session = Depends(get_db)):
    """Stored variants, default first (virtual when none is stored), then by changed keys."""
    try:
        template = catalog_store.get_template(db, key)
        rows = catalog_store.list_variants(db, key, enabled_only=enabled_only)
    except StructuralNotFound as exc:
        raise _http_error(exc)
    return order_variants(template, [catalog_store.to_variant(r, key) for r in rows])


@router.post("/templates/{key}/variants/regenerate", response_model=schemas.RegenerateResult)
def regenerate_variants(
    key: str,
    body: Optional[schemas.RegenerateRequest] = None,
    db: Session = Depends(get_db),
):
    """Replace all variants of a template with a freshly generated set."""
    body = body or schemas.RegenerateRequest()
    try:
        row, specs = catalog_store.regenerate_variants(db, key, strategy=body.strategy, limit=body.limit)
    except (CostbookError, ValueError) as exc:
        raise _http_error(exc)
    return schemas.RegenerateResult(
        template_key=key,
        strategy=body.strategy,
        generation=row.generation,
        count=len(specs),
        keys=[s.key for s in specs],
    )


def _template_summary(template) -> dict:
    return {
        "key": template.key,
        "title": template.title,
        "unit": template.unit,
        "category": template.category,
        "defaultParams": template.defaults,
        "tags": list(template.tags),
    }


def _suggest_dict(result) -> dict:
    return {
        "best": result["best"].to_dict() if result["best"] else None,
        "alternatives": [a.to_dict() for a in result["alternatives"]],
    }


@router.post("/templates/{key}/suggest")
def suggest_variant(key: str, body: schemas.SuggestRequest, db: Session = Depends(get_db)):
    """Rank the enabled variants of a template against a parameter context."""
    try:
        template = catalog_store.get_template(db, key)
        rows = catalog_store.list_variants(db, key, enabled_only=True)
    except StructuralNotFound as exc:
        raise _http_error(exc)
    variants = [catalog_store.to_variant(r, key) for r in rows]
    result = suggest(template, variants, body.context, take=body.take)
    return {"template": _template_summary(template), **_suggest_dict(result)}


# --- Calculation ---

def _priced(db: Session, template, selection: Selection, qty: float, pricing_date) -> dict:
    prices = DbPriceLookup(db, pricing_date)
    prices.prefetch(c.ref_key for c in template.components)
    result = calculate(template, selection, qty, prices).to_dict()
    result["pricingDate"] = prices.pricing_date.isoformat()
    return result


@router.post("/calc")
def calc(body: schemas.CalcRequest, db: Session = Depends(get_db)):
    """Price a template (optionally a stored variant plus overrides) for a quantity."""
    try:
        template = catalog_store.get_template(db, body.template_key)
        selection = Selection(overrides=body.params)
        if body.variant_key:
            selection.variant = catalog_store.get_variant(
                db, body.template_key, body.variant_key, include_disabled=body.include_disabled,
            )
        return _priced(db, template, selection, body.qty, body.pricing_date)
    except (CostbookError, ValueError) as exc:
        raise _http_error(exc)


@router.post("/calc-suggest")
def calc_suggest(body: schemas.CalcSuggestRequest, db: Session = Depends(get_db)):
    """Pick the best variant for a context and price it in one call."""
    try:
        template = catalog_store.get_template(db, body.template_key)
        rows = catalog_store.list_variants(db, body.template_key, enabled_only=True)
        variants = [catalog_store.to_variant(r, body.template_key) for r in rows]
        result = suggest(template, variants, body.context, take=body.take)
        best = result["best"]
        selection = Selection()
        if not best.virtual:
            selection.variant = next(v for v in variants if v.key == best.key)
        breakdown = _priced(db, template, selection, body.qty, body.pricing_date)
    except (CostbookError, ValueError) as exc:
        raise _http_error(exc)
    return {"suggest": _suggest_dict(result), "breakdown": breakdown}


@router.post("/formula/evaluate")
def evaluate_formula(body: schemas.FormulaRequest):
    """Check and evaluate a single formula against ad-hoc parameters."""
    try:
        compiled = compile_formula(body.formula)
        value = compiled.evaluate(numeric_context(body.params))
        if body.strict:
            require_finite(value, body.formula)
    except CostbookError as exc:
        raise _http_error(exc)
    return {
        "formula": body.formula,
        "identifiers": list(compiled.identifiers),
        "value": json_number(value, 12),
    }


@router.get("/stats")
def stats(db: Session = Depends(get_db)):
    return catalog_store.stats(db)
