"""
Parameter values and their coercion into the formula evaluator.

Stored parameter maps hold plain JSON scalars: numbers, booleans and
strings. Keys starting with "_" carry metadata (labels, hints) and never
take part in identity, diffing, scoring or evaluation.

Coercion rules at the evaluation boundary:
  - int / float      -> float
  - bool             -> 1.0 / 0.0
  - numeric string   -> float ("2,5" and "2.5" both accepted)
  - anything else    -> not bound (a formula using it fails as unknown)
"""

import re
from typing import Any, Dict, Iterable, Mapping, Optional, Union

ParameterValue = Union[float, int, bool, str]

META_PREFIX = "_"

_NUMERIC_RE = re.compile(r"^[+-]?(\d+([.,]\d*)?|[.,]\d+)$")


def is_meta_key(key: str) -> bool:
    return str(key).startswith(META_PREFIX)


def strip_meta(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a copy without metadata keys. Non-mappings give an empty dict."""
    if not isinstance(params, Mapping):
        return {}
    return {k: v for k, v in params.items() if not is_meta_key(k)}


def merge_params(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Layer parameter maps left to right; later layers win. Meta keys dropped."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        merged.update(strip_meta(layer))
    return merged


def coerce_number(value: Any) -> Optional[float]:
    """Coerce a scalar parameter to a float, or None if it has no numeric reading."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            # ints beyond float range
            return float("inf") if value > 0 else float("-inf")
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_RE.match(text):
            return float(text.replace(",", "."))
    return None


def numeric_context(params: Mapping[str, Any]) -> Dict[str, float]:
    """
    Build the evaluator binding: upper-cased names -> floats.

    Identifiers are case-insensitive, so "Length" and "LENGTH" share a slot;
    the later key in iteration order wins.
    """
    context: Dict[str, float] = {}
    for key, value in params.items():
        if is_meta_key(key):
            continue
        number = coerce_number(value)
        if number is None:
            continue
        context[str(key).upper()] = number
    return context


def bind_aliases(context: Dict[str, float], aliases: Iterable[str], value: float) -> Dict[str, float]:
    """Bind every alias name to the same value, overriding same-named parameters."""
    bound = dict(context)
    for alias in aliases:
        bound[alias.upper()] = float(value)
    return bound
