"""
Variant generator.

Two strategies produce the concrete parameter sets stored for a template:

  axes:  cartesian product of the template's enumerated axis values,
         each merged onto the defaults. No axes -> exactly one variant
         (the unmodified defaults).
  smart: templates without axes get a handful of useful neighbours of
         the defaults (one-at-a-time low/high, then a small 2-D grid),
         capped per template. Templates with axes still use their axes.

Both go through variant identity; duplicate keys collapse to one entry.
Axis domains are small curated lists, and the product size is checked
before anything is materialized.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config import settings
from .catalog import Template
from .errors import VariantExplosionError
from .identity import assign_keys, canonicalize, changed_keys
from .params import strip_meta

logger = logging.getLogger(__name__)

STRATEGY_AXES = "axes"
STRATEGY_SMART = "smart"
STRATEGIES = (STRATEGY_AXES, STRATEGY_SMART)


class CartesianProduct:
    """
    Lazy, finite, restartable product over an ordered list of value lists.

    Every iteration starts over; len() is the product of the axis sizes and
    is known without materializing a single tuple.
    """

    def __init__(self, *axes: Sequence[Any]):
        self.axes: Tuple[Tuple[Any, ...], ...] = tuple(tuple(a) for a in axes)

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        return itertools.product(*self.axes)

    def __len__(self) -> int:
        return math.prod(len(a) for a in self.axes)

    def __repr__(self) -> str:
        return f"CartesianProduct(sizes={[len(a) for a in self.axes]})"


def cartesian(*axes: Sequence[Any]) -> CartesianProduct:
    return CartesianProduct(*axes)


@dataclass
class VariantSpec:
    key: str
    params: Dict[str, Any]
    unit: Optional[str] = None
    enabled: bool = True
    label: str = ""
    changed_keys: List[str] = field(default_factory=list)


def check_axes(axes: Mapping[str, Sequence[Any]], limit: Optional[int] = None) -> int:
    """Validate axis domains and return the variant count they produce."""
    limit = limit if limit is not None else settings.MAX_VARIANTS_PER_TEMPLATE
    for name, values in axes.items():
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise VariantExplosionError(
                f"Axis {name!r} must be an enumerated list of values",
                {"axis": name},
            )
        if len(values) == 0:
            raise VariantExplosionError(f"Axis {name!r} has no values", {"axis": name})
    total = math.prod(len(v) for v in axes.values())
    if total > limit:
        raise VariantExplosionError(
            f"Axes produce {total} variants, limit is {limit}",
            {"sizes": {k: len(v) for k, v in axes.items()}, "total": total, "limit": limit},
        )
    return total


def expand_axes(
    defaults: Mapping[str, Any],
    axes: Mapping[str, Sequence[Any]],
    limit: Optional[int] = None,
) -> Iterator[Dict[str, Any]]:
    """
    Defaults merged with every combination of axis values, lazily.

    The axes are checked on call, not on first iteration.
    """
    check_axes(axes, limit)
    base = strip_meta(defaults)
    names = list(axes.keys())
    product = cartesian(*(axes[n] for n in names))
    return ({**base, **dict(zip(names, combo))} for combo in product)


# ============================================================
# Smart exploration around defaults
# ============================================================

SOIL_CLASSES = ["BK2", "BK3", "BK4", "BK5", "BK6"]
DISPOSAL_CLASSES = ["DK0", "DKI", "DKII", "Z1.1", "Z2"]
MATERIAL_TYPES = ["AUSHUB", "FROSTSCHUTZ", "KIES_SAND"]
COMMON_DN = [32, 40, 50, 63, 90, 110, 160, 200, 250, 300, 400]

KNOWN_DOMAINS: Dict[str, List[Any]] = {
    "soilClass": SOIL_CLASSES,
    "disposalClass": DISPOSAL_CLASSES,
    "materialType": MATERIAL_TYPES,
    "depth_m": [0.8, 1.2, 1.6],
    "width_m": [0.4, 0.6, 0.8],
    "thickness_m": [0.08, 0.1],
    "deck_cm": [3, 4, 5],
    "trag_cm": [8, 10, 14],
    "bedding_cm": [3, 4, 5],
    "pressureBar": [10, 16],
    "fittings_per_10m": [0.5, 1, 2],
    "distance_km": [0, 10, 25],
}


def _numeric_neighbours(value: float, step: float) -> List[float]:
    out = []
    for v in (value - step, value, value + step):
        v = round(v, 4)
        if v not in out:
            out.append(v)
    return out


def suggested_values(key: str, defaults: Mapping[str, Any]) -> Optional[List[Any]]:
    """Curated value domain for one parameter, or None when nothing sensible applies."""
    dv = defaults.get(key)
    if isinstance(dv, bool):
        return [False, True]
    if key in KNOWN_DOMAINS:
        return list(KNOWN_DOMAINS[key])
    if key == "dn_mm":
        if isinstance(dv, (int, float)):
            near = [x for x in COMMON_DN if abs(x - dv) <= 80]
            values = [dv] + [x for x in near if x != dv]
            return values[:5]
        return COMMON_DN[:5]
    if isinstance(dv, (int, float)):
        if abs(dv) >= 10:
            step = max(1, round(abs(dv) * 0.2))
        else:
            step = max(0.05, abs(dv) * 0.2)
        return _numeric_neighbours(dv, step)
    return None


def smart_variants(defaults: Mapping[str, Any], cap: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    A few useful parameter sets around the defaults, default first.

    Order: defaults, then per dimension its first and last value (one at a
    time), then the 2-D grid over the first two dimensions. Deduplicated on
    canonical form and cut at `cap`.
    """
    cap = cap if cap is not None else settings.SMART_VARIANTS_CAP
    base = strip_meta(defaults)
    if cap < 1:
        return []

    dims: List[Tuple[str, List[Any]]] = []
    for key in base:
        values = suggested_values(key, base)
        if not values:
            continue
        limited = values[:3]
        dv = base[key]
        if not any(canonicalize(v) == canonicalize(dv) for v in limited):
            limited = ([dv] + limited)[:3]
        dims.append((key, limited))

    candidates: List[Dict[str, Any]] = [dict(base)]

    for key, values in dims:
        for value in (values[0], values[-1]):
            if canonicalize(value) != canonicalize(base[key]):
                candidates.append({**base, key: value})

    if len(dims) >= 2:
        (k1, v1s), (k2, v2s) = dims[0], dims[1]
        for v1, v2 in cartesian(v1s, v2s):
            candidates.append({**base, k1: v1, k2: v2})

    out: List[Dict[str, Any]] = []
    seen = set()
    for params in candidates:
        canonical = canonicalize(params)
        if canonical in seen:
            continue
        seen.add(canonical)
        out.append(params)
        if len(out) >= cap:
            break
    return out


# ============================================================
# Labels
# ============================================================

def _fmt(value: float, decimals: int) -> str:
    return f"{float(value):.{decimals}f}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def variant_label(params: Mapping[str, Any]) -> str:
    """Compact human-readable label, e.g. "DN110 / 16 bar / 1.20m / BK3 / GW"."""
    p = strip_meta(params)
    parts: List[str] = []

    if _is_number(p.get("dn_mm")):
        parts.append(f"DN{p['dn_mm']:g}")
    if _is_number(p.get("pressureBar")):
        parts.append(f"{p['pressureBar']:g} bar")
    if _is_number(p.get("depth_m")):
        parts.append(f"{_fmt(p['depth_m'], 2)}m")
    if _is_number(p.get("width_m")):
        parts.append(f"B {_fmt(p['width_m'], 2)}m")
    if _is_number(p.get("thickness_m")):
        parts.append(f"t {_fmt(p['thickness_m'], 2)}m")
    if _is_number(p.get("area")):
        parts.append(f"{_fmt(p['area'], 0)} m²")
    if _is_number(p.get("length")):
        parts.append(f"{_fmt(p['length'], 0)} m")

    for key in ("soilClass", "materialType", "disposalClass"):
        if isinstance(p.get(key), str):
            parts.append(p[key])
    if _is_number(p.get("distance_km")):
        parts.append(f"{p['distance_km']:g} km")

    if _is_number(p.get("deck_cm")):
        parts.append(f"Deck {p['deck_cm']:g}cm")
    if _is_number(p.get("trag_cm")):
        parts.append(f"Trag {p['trag_cm']:g}cm")
    if _is_number(p.get("bedding_cm")):
        parts.append(f"Bett {p['bedding_cm']:g}cm")

    flags = {
        "restricted": ("beengt", "normal"),
        "groundwater": ("GW", "kein GW"),
        "bedding": ("Bettung", "ohne Bettung"),
        "shutoffValve": ("mit Schieber", "ohne Schieber"),
    }
    for key, (on, off) in flags.items():
        if isinstance(p.get(key), bool):
            parts.append(on if p[key] else off)

    return " / ".join(parts) if parts else "Variant"


# ============================================================
# Entry point
# ============================================================

def generate_variants(
    template: Template,
    strategy: str = STRATEGY_AXES,
    limit: Optional[int] = None,
    smart_cap: Optional[int] = None,
) -> List[VariantSpec]:
    """
    Build the complete, keyed replacement set for one template.

    Pure function of the template: identical inputs give identical keys
    in identical order, so regeneration is idempotent.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy: {strategy!r}. Available: {list(STRATEGIES)}")

    defaults = template.defaults
    if template.axes:
        param_sets = expand_axes(defaults, template.axes, limit)
    elif strategy == STRATEGY_SMART:
        param_sets = smart_variants(defaults, smart_cap)
    else:
        param_sets = [dict(defaults)]

    keyed = assign_keys(template.key, param_sets)
    specs = [
        VariantSpec(
            key=key,
            params=params,
            unit=template.unit,
            label=variant_label(params),
            changed_keys=changed_keys(defaults, params),
        )
        for key, params in keyed.items()
    ]
    logger.debug("Generated %d variants for %s (%s)", len(specs), template.key, strategy)
    return specs
