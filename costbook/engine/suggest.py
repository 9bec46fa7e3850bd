"""
Variant suggestion: rank stored variants against a caller's context.

Each context key contributes a partial score in [0, 1], weighted per key:

    numbers   1 - |a - b| / max(|a| + |b|, 1)
    bools     exact match
    strings   case-insensitive match
    missing   0.35 (variant lacks the key)
    mismatch  0.6  (both present, different types)

The score is the weighted mean. The template defaults take part as a
virtual candidate unless a stored variant already has the same key.

order_variants() annotates a plain listing the same way (label, changed
keys, default flag) without scoring.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .catalog import Template, Variant
from .generator import variant_label
from .identity import changed_keys, same_params, variant_key
from .params import merge_params, strip_meta

WEIGHTS: Dict[str, float] = {
    "dn_mm": 3,
    "depth_m": 3,
    "width_m": 2,
    "soilClass": 2,
    "pressureBar": 2,
    "fittings_per_10m": 1.5,
    "restricted": 2,
    "groundwater": 2,
    "length": 0.5,
    "distance_km": 1,
    "disposalClass": 1.5,
    "thickness_m": 1,
    "deck_cm": 1,
    "trag_cm": 1,
    "bedding_cm": 1,
    "bedding": 0.5,
}
DEFAULT_WEIGHT = 1.0
MISSING_PARTIAL = 0.35
MISMATCH_PARTIAL = 0.6

_MISSING = object()


@dataclass
class ScoredVariant:
    key: str
    unit: str
    params: Dict[str, Any]
    label: str
    changed_keys: List[str]
    score: float
    details: List[Dict[str, Any]] = field(default_factory=list)
    virtual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "unit": self.unit,
            "params": self.params,
            "label": self.label,
            "changedKeys": self.changed_keys,
            "score": self.score,
            "details": self.details,
            "virtual": self.virtual,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _partial(expected: Any, actual: Any) -> float:
    if _is_number(expected) and _is_number(actual):
        denom = max(1e-6, abs(expected) + abs(actual), 1)
        return 1 - min(1, abs(expected - actual) / denom)
    if isinstance(expected, bool) and isinstance(actual, bool):
        return 1.0 if expected == actual else 0.0
    if isinstance(expected, str) and isinstance(actual, str):
        return 1.0 if expected.lower() == actual.lower() else 0.0
    return MISSING_PARTIAL if actual is _MISSING else MISMATCH_PARTIAL


def score_variant(params: Mapping[str, Any], context: Mapping[str, Any]):
    """Return (score, details) of one parameter set against a context."""
    p = strip_meta(params)
    w_sum = 0.0
    s_sum = 0.0
    details = []
    for key, expected in strip_meta(context).items():
        weight = WEIGHTS.get(key, DEFAULT_WEIGHT)
        partial = _partial(expected, p.get(key, _MISSING))
        w_sum += weight
        s_sum += partial * weight
        details.append({"key": key, "weight": weight, "partial": round(partial, 4)})
    score = s_sum / w_sum if w_sum > 0 else 0.0
    return round(score, 6), details


def suggest(
    template: Template,
    variants: Sequence[Variant],
    context: Optional[Mapping[str, Any]] = None,
    take: int = 5,
) -> Dict[str, Any]:
    """
    Best match plus up to `take` alternatives.

    Ordering: score desc, then fewer changed keys, then key.
    """
    context = context or {}
    defaults = template.defaults
    stored_keys = {v.key for v in variants}

    candidates = []
    default_key = variant_key(template.key, defaults)
    if default_key not in stored_keys:
        candidates.append((default_key, template.unit, {}, True))
    for v in variants:
        candidates.append((v.key, v.unit_for(template), strip_meta(v.params), False))

    scored = []
    for key, unit, own_params, virtual in candidates:
        merged = merge_params(defaults, own_params)
        score, details = score_variant(merged, context)
        scored.append(ScoredVariant(
            key=key,
            unit=unit,
            params=merged,
            label=variant_label(merged),
            changed_keys=changed_keys(defaults, merged),
            score=score,
            details=details,
            virtual=virtual,
        ))

    scored.sort(key=lambda s: (-s.score, len(s.changed_keys), s.key))
    best = scored[0] if scored else None
    return {
        "best": best,
        "alternatives": scored[1:1 + max(0, take)],
    }


# ============================================================
# Variant listing
# ============================================================

@dataclass
class VariantEntry:
    key: str
    unit: str
    params: Dict[str, Any]
    label: str
    changed_keys: List[str]
    is_default: bool
    enabled: bool = True
    generation: int = 0
    virtual: bool = False


def order_variants(template: Template, variants: Sequence[Variant]) -> List[VariantEntry]:
    """
    Variants annotated for display: default first, then fewer changed keys,
    then key.

    When no listed variant equals the defaults, a virtual default entry
    (keyed like the stored one would be) leads the list.
    """
    defaults = template.defaults
    entries = []
    for v in variants:
        merged = merge_params(defaults, v.params)
        entries.append(VariantEntry(
            key=v.key,
            unit=v.unit_for(template),
            params=merged,
            label=variant_label(merged),
            changed_keys=changed_keys(defaults, merged),
            is_default=same_params(defaults, merged),
            enabled=v.enabled,
            generation=v.generation,
        ))

    if not any(e.is_default for e in entries):
        entries.append(VariantEntry(
            key=variant_key(template.key, defaults),
            unit=template.unit,
            params=dict(defaults),
            label=variant_label(defaults),
            changed_keys=[],
            is_default=True,
            virtual=True,
        ))

    entries.sort(key=lambda e: (not e.is_default, len(e.changed_keys), e.key))
    return entries
