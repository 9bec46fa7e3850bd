"""
Catalog persistence.

Upsert-by-key for templates, replace-all for components and variants.
Variant regeneration runs as one transaction per template (delete, insert,
commit once) behind a per-template lock, so concurrent regenerations of
the same template in this process never interleave.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import models
from .engine.catalog import CatalogSnapshot, Component, Template, Variant
from .engine.errors import TemplateNotFound, VariantNotFound
from .engine.expression import compile_formula
from .engine.generator import STRATEGY_AXES, VariantSpec, check_axes, generate_variants

logger = logging.getLogger(__name__)

MAX_TEMPLATE_PAGE = 1000

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def template_lock(template_key: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(template_key)
        if lock is None:
            lock = _locks[template_key] = threading.Lock()
        return lock


# --- Row <-> engine conversion ---

def to_component(row: models.RecipeComponent) -> Component:
    return Component(
        type=row.type,
        ref_key=row.ref_key,
        qty_formula=row.qty_formula,
        mandatory=bool(row.mandatory),
        risk_factor=row.risk_factor if row.risk_factor is not None else 1.0,
        sort=row.sort or 0,
        note=row.note,
    )


def to_template(row: models.RecipeTemplate) -> Template:
    return Template(
        key=row.key,
        unit=row.unit,
        category=row.category or "",
        title=row.title or "",
        default_params=dict(row.default_params or {}),
        components=tuple(to_component(c) for c in row.components),
        axes=dict(row.axes or {}),
        description=row.description,
        tags=tuple(row.tags or ()),
    )


def to_variant(row: models.RecipeVariant, template_key: str) -> Variant:
    return Variant(
        key=row.key,
        template_key=template_key,
        params=dict(row.params or {}),
        unit=row.unit,
        enabled=bool(row.enabled),
        generation=row.generation or 0,
    )


# --- Templates ---

def get_template_row(db: Session, key: str) -> models.RecipeTemplate:
    row = db.query(models.RecipeTemplate).filter(models.RecipeTemplate.key == key).first()
    if not row:
        raise TemplateNotFound(key)
    return row


def get_template(db: Session, key: str) -> Template:
    return to_template(get_template_row(db, key))


def list_templates(
    db: Session,
    category: Optional[str] = None,
    q: Optional[str] = None,
    take: int = 200,
) -> List[models.RecipeTemplate]:
    """Templates by key; `q` searches key, title and description case-insensitively."""
    query = db.query(models.RecipeTemplate)
    if category:
        query = query.filter(models.RecipeTemplate.category == category)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(
            models.RecipeTemplate.key.ilike(pattern),
            models.RecipeTemplate.title.ilike(pattern),
            models.RecipeTemplate.description.ilike(pattern),
        ))
    take = min(MAX_TEMPLATE_PAGE, max(1, take))
    return query.order_by(models.RecipeTemplate.key).limit(take).all()


def _validate(key: str, unit: str, default_params, axes, components) -> None:
    """Build the engine objects once so bad input fails before anything is written."""
    parsed = [Component(**c) for c in components or []]
    Template(key=key, unit=unit, default_params=default_params or {}, components=parsed, axes=axes or {})
    for component in parsed:
        compile_formula(component.qty_formula)
    if axes:
        check_axes(axes)


def _component_rows(components: Iterable[Mapping[str, Any]]) -> List[models.RecipeComponent]:
    rows = []
    for c in components:
        component = Component(**c)
        rows.append(models.RecipeComponent(
            type=component.type.value,
            ref_key=component.ref_key,
            qty_formula=component.qty_formula,
            mandatory=component.mandatory,
            risk_factor=component.risk_factor,
            sort=component.sort,
            note=component.note,
        ))
    return rows


def upsert_template(
    db: Session,
    key: str,
    unit: str,
    title: str = "",
    category: str = "",
    description: Optional[str] = None,
    default_params: Optional[Dict[str, Any]] = None,
    axes: Optional[Dict[str, List[Any]]] = None,
    tags: Optional[List[str]] = None,
    components: Optional[Sequence[Mapping[str, Any]]] = None,
) -> models.RecipeTemplate:
    """
    Create or update a template by key.

    components=None leaves the stored components alone; any list (even an
    empty one) replaces them completely. Formulas and axes are validated
    first: FormulaSyntaxError, ArityError, VariantExplosionError and
    ValueError propagate and nothing is written.
    """
    _validate(key, unit, default_params, axes, components)

    row = db.query(models.RecipeTemplate).filter(models.RecipeTemplate.key == key).first()
    created = row is None
    if created:
        row = models.RecipeTemplate(key=key)
        db.add(row)

    row.unit = unit
    row.title = title or ""
    row.category = category or ""
    row.description = description
    row.default_params = dict(default_params or {})
    row.axes = dict(axes or {})
    row.tags = list(tags or [])

    if components is not None:
        row.components = _component_rows(components)

    db.commit()
    db.refresh(row)
    logger.info("%s template %s", "Created" if created else "Updated", key)
    return row


def replace_components(db: Session, key: str, components: Sequence[Mapping[str, Any]]) -> models.RecipeTemplate:
    """Swap the whole component list of a template."""
    row = get_template_row(db, key)
    _validate(key, row.unit, row.default_params, None, components)
    row.components = _component_rows(components)
    db.commit()
    db.refresh(row)
    return row


def delete_template(db: Session, key: str) -> None:
    row = get_template_row(db, key)
    db.delete(row)
    db.commit()
    logger.info("Deleted template %s", key)


# --- Variants ---

def list_variants(db: Session, template_key: str, enabled_only: bool = False) -> List[models.RecipeVariant]:
    row = get_template_row(db, template_key)
    query = db.query(models.RecipeVariant).filter(models.RecipeVariant.template_id == row.id)
    if enabled_only:
        query = query.filter(models.RecipeVariant.enabled == True)  # noqa: E712
    return query.order_by(models.RecipeVariant.id).all()


def get_variant(db: Session, template_key: str, variant_key: str, include_disabled: bool = False) -> Variant:
    row = get_template_row(db, template_key)
    variant = db.query(models.RecipeVariant).filter(
        models.RecipeVariant.template_id == row.id,
        models.RecipeVariant.key == variant_key,
    ).first()
    if not variant or (not variant.enabled and not include_disabled):
        raise VariantNotFound(template_key, variant_key)
    return to_variant(variant, template_key)


def replace_variants(db: Session, template_key: str, specs: Sequence[VariantSpec]) -> models.RecipeTemplate:
    """
    Atomically replace every stored variant of a template.

    Either the full new set is committed and the generation counter bumped,
    or the previous set stays untouched.
    """
    with template_lock(template_key):
        return _replace_variants_locked(db, template_key, specs)


def _replace_variants_locked(db: Session, template_key: str, specs: Sequence[VariantSpec]) -> models.RecipeTemplate:
    row = get_template_row(db, template_key)
    try:
        db.query(models.RecipeVariant).filter(
            models.RecipeVariant.template_id == row.id
        ).delete(synchronize_session=False)
        row.generation = (row.generation or 0) + 1
        for spec in specs:
            db.add(models.RecipeVariant(
                template_id=row.id,
                key=spec.key,
                unit=spec.unit,
                params=spec.params,
                label=spec.label,
                enabled=spec.enabled,
                generation=row.generation,
            ))
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("Variant replacement for %s rolled back", template_key)
        raise
    db.refresh(row)
    logger.info("Stored %d variants for %s (generation %d)", len(specs), template_key, row.generation)
    return row


def regenerate_variants(
    db: Session,
    template_key: str,
    strategy: str = STRATEGY_AXES,
    limit: Optional[int] = None,
):
    """Generate the full variant set for a template and store it. Returns (row, specs)."""
    with template_lock(template_key):
        template = get_template(db, template_key)
        specs = generate_variants(template, strategy=strategy, limit=limit)
        row = _replace_variants_locked(db, template_key, specs)
    return row, specs


# --- Batch reads ---

def snapshot(db: Session, keys: Optional[Iterable[str]] = None) -> CatalogSnapshot:
    """Consistent in-memory copy of templates and their variants."""
    query = db.query(models.RecipeTemplate)
    if keys is not None:
        query = query.filter(models.RecipeTemplate.key.in_(list(keys)))
    snap = CatalogSnapshot()
    for row in query.order_by(models.RecipeTemplate.key).all():
        snap.add(to_template(row), [to_variant(v, row.key) for v in row.variants])
    return snap


def stats(db: Session) -> Dict[str, Any]:
    by_category = dict(
        db.query(models.RecipeTemplate.category, func.count(models.RecipeTemplate.id))
        .group_by(models.RecipeTemplate.category)
        .all()
    )
    return {
        "templates": db.query(models.RecipeTemplate).count(),
        "components": db.query(models.RecipeComponent).count(),
        "variants": db.query(models.RecipeVariant).count(),
        "enabledVariants": db.query(models.RecipeVariant).filter(models.RecipeVariant.enabled == True).count(),  # noqa: E712
        "prices": db.query(models.PriceItem).count(),
        "byCategory": by_category,
    }
