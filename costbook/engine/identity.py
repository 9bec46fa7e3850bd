"""
Variant identity: canonical parameter serialization and content-hash keys.

    variant_key(t, p) = t + "|" + sha1(t + "|" + canonicalize(p))[:12]

The canonical form plus the template key is the real identity; the short
hash is an index. assign_keys() falls back to comparing canonical forms so
a hash collision is reported instead of silently merging two variants.
"""

import hashlib
import json
import math
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import settings
from .errors import VariantKeyCollision
from .params import strip_meta

KEY_SEPARATOR = "|"
MIN_HASH_LENGTH = 8
MAX_HASH_LENGTH = 40  # full SHA-1 hex digest


def _normalize(value: Any, path: Tuple[int, ...]) -> Any:
    if isinstance(value, Mapping):
        if id(value) in path:
            return None
        inner = path + (id(value),)
        return {str(k): _normalize(value[k], inner) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        if id(value) in path:
            return None
        inner = path + (id(value),)
        return [_normalize(v, inner) for v in value]
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        # 1.0 and 1 are the same JSON number
        return int(value)
    return value


def canonicalize(params: Any) -> str:
    """
    Deterministic serialization: keys sorted at every nesting level, list
    order preserved, cyclic references collapsed to null.
    """
    return json.dumps(
        _normalize(params if params is not None else {}, ()),
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
    )


def short_hash(text: str, length: Optional[int] = None) -> str:
    length = length if length is not None else settings.VARIANT_HASH_LENGTH
    if not MIN_HASH_LENGTH <= length <= MAX_HASH_LENGTH:
        raise ValueError(
            f"Hash length must be between {MIN_HASH_LENGTH} and {MAX_HASH_LENGTH}, got {length}"
        )
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def variant_key(template_key: str, params: Optional[Mapping[str, Any]], length: Optional[int] = None) -> str:
    """Stable key for (template, parameter set). Metadata keys are ignored."""
    canonical = canonicalize(strip_meta(params or {}))
    digest = short_hash(template_key + KEY_SEPARATOR + canonical, length)
    return f"{template_key}{KEY_SEPARATOR}{digest}"


def split_variant_key(key: str) -> Tuple[str, str]:
    """Split "TEMPLATE|hash" into its parts. Template keys may not contain '|'."""
    template_key, sep, digest = key.rpartition(KEY_SEPARATOR)
    if not sep or not template_key:
        raise ValueError(f"Not a variant key: {key!r}")
    return template_key, digest


def same_params(a: Optional[Mapping[str, Any]], b: Optional[Mapping[str, Any]]) -> bool:
    return canonicalize(strip_meta(a or {})) == canonicalize(strip_meta(b or {}))


def changed_keys(defaults: Optional[Mapping[str, Any]], params: Optional[Mapping[str, Any]]) -> List[str]:
    """Sorted non-meta keys whose canonical value differs between the two maps."""
    base = strip_meta(defaults or {})
    other = strip_meta(params or {})
    out = []
    for key in set(base) | set(other):
        if canonicalize(base.get(key)) != canonicalize(other.get(key)):
            out.append(key)
    return sorted(out)


def assign_keys(
    template_key: str,
    param_sets: Iterable[Mapping[str, Any]],
    length: Optional[int] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Key every parameter set, collapsing duplicates (first occurrence wins,
    order preserved). Raises VariantKeyCollision when two different
    canonical forms share a short key.
    """
    keyed: Dict[str, Dict[str, Any]] = {}
    canonical_by_key: Dict[str, str] = {}
    for params in param_sets:
        clean = strip_meta(params)
        canonical = canonicalize(clean)
        key = variant_key(template_key, clean, length)
        seen = canonical_by_key.get(key)
        if seen is None:
            canonical_by_key[key] = canonical
            keyed[key] = dict(params)
        elif seen != canonical:
            raise VariantKeyCollision(
                f"Variant key collision for {key}",
                {"key": key, "existing": seen, "incoming": canonical},
            )
    return keyed
