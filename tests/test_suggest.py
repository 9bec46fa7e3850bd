"""
Variant suggestion tests.

Tests:
1-5. Partial scores (numbers, bools, strings, missing, mismatched types)
6-7. Weighted mean
8-11. Ranking (best match, virtual default, tie-breaking, take)
12-14. Listing order (virtual default, stored default, changed keys)
"""

import pytest

from costbook.engine.catalog import Template, Variant
from costbook.engine.generator import generate_variants
from costbook.engine.identity import variant_key
from costbook.engine.suggest import order_variants, score_variant, suggest


def _pipe_template():
    return Template(
        key="PIPE",
        unit="m",
        default_params={"dn_mm": 63, "pressureBar": 16},
        axes={"dn_mm": [63, 110], "pressureBar": [10, 16]},
    )


def _stored(template):
    return [
        Variant(key=s.key, template_key=template.key, params=s.params, unit=s.unit)
        for s in generate_variants(template)
    ]


# ============================================================
# 1-5. Partial scores
# ============================================================

def test_exact_number_scores_one():
    score, details = score_variant({"dn_mm": 110}, {"dn_mm": 110})
    assert score == 1.0
    assert details == [{"key": "dn_mm", "weight": 3, "partial": 1.0}]


def test_number_distance_normalized():
    score, _ = score_variant({"x": 1}, {"x": 3})
    assert score == pytest.approx(0.5)


def test_bool_and_string_matches():
    assert score_variant({"restricted": True}, {"restricted": False})[0] == 0.0
    assert score_variant({"soilClass": "bk3"}, {"soilClass": "BK3"})[0] == 1.0


def test_missing_key_scores_035():
    assert score_variant({}, {"x": 1})[0] == pytest.approx(0.35)


def test_type_mismatch_scores_06():
    assert score_variant({"x": "1"}, {"x": 1})[0] == pytest.approx(0.6)
    assert score_variant({"x": True}, {"x": 1})[0] == pytest.approx(0.6)


# ============================================================
# 6-7. Weighted mean
# ============================================================

def test_weighted_mean():
    score, _ = score_variant(
        {"dn_mm": 110, "soilClass": "BK3"},
        {"dn_mm": 110, "soilClass": "BK4"},
    )
    assert score == pytest.approx(3 / 5)


def test_empty_context_scores_zero():
    assert score_variant({"a": 1}, {})[0] == 0.0
    assert score_variant({"a": 1}, {"_meta": 1})[0] == 0.0


# ============================================================
# 8-11. Ranking
# ============================================================

def test_best_match_wins():
    template = _pipe_template()
    result = suggest(template, _stored(template), {"dn_mm": 110, "pressureBar": 10})
    best = result["best"]
    assert best.params == {"dn_mm": 110, "pressureBar": 10}
    assert best.score == 1.0
    assert best.virtual is False
    assert best.changed_keys == ["dn_mm", "pressureBar"]


def test_virtual_default_only_when_not_stored():
    template = _pipe_template()
    stored = _stored(template)
    keys = [c.key for c in [suggest(template, stored, {}, take=10)["best"]]
            + suggest(template, stored, {}, take=10)["alternatives"]]
    assert len(keys) == 4
    assert len(set(keys)) == 4

    result = suggest(template, [], {"dn_mm": 110})
    assert result["best"].virtual is True
    assert result["best"].changed_keys == []
    assert result["alternatives"] == []


def test_ties_prefer_fewer_changed_keys():
    template = _pipe_template()
    result = suggest(template, _stored(template), {}, take=10)
    assert result["best"].changed_keys == []
    counts = [len(a.changed_keys) for a in result["alternatives"]]
    assert counts == sorted(counts)


def test_take_limits_alternatives():
    template = _pipe_template()
    result = suggest(template, _stored(template), {"dn_mm": 63}, take=1)
    assert len(result["alternatives"]) == 1
    assert suggest(template, _stored(template), {}, take=0)["alternatives"] == []


# ============================================================
# 12-14. Listing order
# ============================================================

def test_listing_adds_virtual_default():
    template = Template(
        key="PIPE",
        unit="m",
        default_params={"dn_mm": 90, "pressureBar": 16},
        axes={"dn_mm": [63, 110], "pressureBar": [10, 16]},
    )
    entries = order_variants(template, _stored(template))
    assert len(entries) == 5
    first = entries[0]
    assert first.virtual is True
    assert first.is_default is True
    assert first.params == {"dn_mm": 90, "pressureBar": 16}
    assert first.key == variant_key("PIPE", {"dn_mm": 90, "pressureBar": 16})
    assert sum(e.is_default for e in entries) == 1


def test_listing_stored_default_leads():
    template = _pipe_template()
    entries = order_variants(template, list(reversed(_stored(template))))
    assert len(entries) == 4
    assert entries[0].is_default is True
    assert entries[0].virtual is False
    assert entries[0].params == {"dn_mm": 63, "pressureBar": 16}
    assert entries[0].label == "DN63 / 16 bar"
    assert not any(e.virtual for e in entries)


def test_listing_orders_by_changed_keys_then_key():
    template = _pipe_template()
    entries = order_variants(template, _stored(template))
    assert [len(e.changed_keys) for e in entries] == [0, 1, 1, 2]
    assert entries[1].key < entries[2].key
    assert entries[3].changed_keys == ["dn_mm", "pressureBar"]

    meta = Variant(key="PIPE|meta", template_key="PIPE", params={"dn_mm": 63, "_label": "x"})
    assert order_variants(template, [meta])[0].is_default is True
