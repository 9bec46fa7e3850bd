"""
HTTP API tests: templates, variants, suggestion, calculation, prices.

Tests:
1-6.   Template endpoints (health, camelCase round trip, validation, 404, delete, search)
7-11.  Variant regeneration and listing order
12-17. Calculation (priced lines, missing price, non-finite, errors, pricing date)
18-21. Suggestion, suggest-and-price
22-24. Formula evaluation
25-27. Prices and stats
"""

from conftest import TRENCH_AXES


def _create(client, payload):
    resp = client.post("/api/recipes/templates", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _price(client, ref_key, price, **extra):
    resp = client.put(f"/api/prices/{ref_key}", json={"price": price, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _trench_prices(client):
    _price(client, "LABOR:A", 50.0, unit="h")
    _price(client, "MACHINE:B", 80.0, unit="h")
    _price(client, "MATERIAL:C", 2.0, unit="m2")


# ============================================================
# 1-6. Templates
# ============================================================

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_create_template_camel_case(client, trench_payload):
    data = _create(client, trench_payload)
    assert data["key"] == "TRENCH"
    assert data["defaultParams"]["depth_m"] == 1.0
    assert data["generation"] == 0
    assert [c["refKey"] for c in data["components"]] == ["LABOR:A", "MACHINE:B", "MATERIAL:C"]
    assert data["components"][2]["riskFactor"] == 1.1

    resp = client.get("/api/recipes/templates/TRENCH")
    assert resp.status_code == 200
    assert resp.json()["axes"] == TRENCH_AXES

    listed = client.get("/api/recipes/templates", params={"category": "TIEFBAU/GRABEN"}).json()
    assert [t["key"] for t in listed] == ["TRENCH"]
    assert client.get("/api/recipes/templates", params={"category": "KANAL"}).json() == []


def test_invalid_template_rejected(client, trench_payload):
    bad_formula = dict(trench_payload, components=[
        {"type": "labor", "refKey": "LABOR:A", "qtyFormula": "length * (2"},
    ])
    resp = client.post("/api/recipes/templates", json=bad_formula)
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "FORMULA_SYNTAX"

    too_many = dict(trench_payload, axes={"a": list(range(40)), "b": list(range(40))})
    resp = client.post("/api/recipes/templates", json=too_many)
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "VARIANT_EXPLOSION"

    bad_type = dict(trench_payload, components=[
        {"type": "crane", "refKey": "X", "qtyFormula": "1"},
    ])
    assert client.post("/api/recipes/templates", json=bad_type).status_code == 400
    assert client.get("/api/recipes/templates/TRENCH").status_code == 404


def test_update_keeps_components_when_omitted(client, trench_payload):
    _create(client, trench_payload)
    payload = {k: v for k, v in trench_payload.items() if k != "components"}
    payload["title"] = "Graben neu"
    data = _create(client, payload)
    assert data["title"] == "Graben neu"
    assert len(data["components"]) == 3


def test_delete_template(client, trench_payload):
    _create(client, trench_payload)
    resp = client.delete("/api/recipes/templates/TRENCH")
    assert resp.json() == {"ok": True, "deleted": "TRENCH"}
    assert client.delete("/api/recipes/templates/TRENCH").status_code == 404


def test_search_templates(client, trench_payload):
    _create(client, trench_payload)
    _create(client, {
        "key": "PIPE",
        "title": "Rohr verlegen",
        "unit": "m",
        "description": "Druckrohr im Graben",
        "components": [{"type": "labor", "refKey": "LABOR:A", "qtyFormula": "qty"}],
    })
    _create(client, {
        "key": "CURB",
        "title": "Bordstein",
        "unit": "m",
        "components": [{"type": "labor", "refKey": "LABOR:A", "qtyFormula": "qty"}],
    })
    found = client.get("/api/recipes/templates", params={"q": "graben"}).json()
    assert [t["key"] for t in found] == ["PIPE", "TRENCH"]
    found = client.get("/api/recipes/templates", params={"q": "pip"}).json()
    assert [t["key"] for t in found] == ["PIPE"]
    limited = client.get("/api/recipes/templates", params={"take": 2}).json()
    assert [t["key"] for t in limited] == ["CURB", "PIPE"]
    assert len(client.get("/api/recipes/templates", params={"take": 0}).json()) == 1


# ============================================================
# 7-11. Variants
# ============================================================

def test_regenerate_variants(client, trench_payload):
    _create(client, trench_payload)
    resp = client.post("/api/recipes/templates/TRENCH/variants/regenerate")
    assert resp.status_code == 200
    data = resp.json()
    assert data["templateKey"] == "TRENCH"
    assert data["count"] == 150
    assert data["generation"] == 1

    again = client.post("/api/recipes/templates/TRENCH/variants/regenerate", json={}).json()
    assert again["generation"] == 2
    assert again["keys"] == data["keys"]


def test_list_variants(client, trench_payload):
    _create(client, trench_payload)
    client.post("/api/recipes/templates/TRENCH/variants/regenerate")
    variants = client.get("/api/recipes/templates/TRENCH/variants").json()
    # stored axes never hit depth 1.0, so the defaults lead as a virtual entry
    assert len(variants) == 151
    assert all(v["key"].startswith("TRENCH|") for v in variants)
    first = variants[0]
    assert first["isDefault"] is True
    assert first["virtual"] is True
    assert first["changedKeys"] == []
    assert first["params"] == trench_payload["defaultParams"]
    assert first["label"]
    rest = variants[1:]
    assert not any(v["isDefault"] or v["virtual"] for v in rest)
    counts = [len(v["changedKeys"]) for v in rest]
    assert counts == sorted(counts)
    assert rest[0]["changedKeys"] == ["depth_m", "restricted"]
    assert client.get("/api/recipes/templates/NOPE/variants").status_code == 404


def test_list_variants_stored_default_first(client):
    _create(client, {
        "key": "PLAIN",
        "unit": "m",
        "defaultParams": {"depth_m": 1.2},
        "axes": {"depth_m": [0.8, 1.2, 1.6]},
        "components": [{"type": "labor", "refKey": "LABOR:A", "qtyFormula": "qty"}],
    })
    client.post("/api/recipes/templates/PLAIN/variants/regenerate")
    variants = client.get("/api/recipes/templates/PLAIN/variants").json()
    assert len(variants) == 3
    assert variants[0]["params"] == {"depth_m": 1.2}
    assert variants[0]["isDefault"] is True
    assert variants[0]["virtual"] is False
    assert [v["changedKeys"] for v in variants[1:]] == [["depth_m"], ["depth_m"]]
    assert variants[1]["key"] < variants[2]["key"]


def test_regenerate_rejects_bad_requests(client, trench_payload):
    _create(client, trench_payload)
    resp = client.post("/api/recipes/templates/TRENCH/variants/regenerate", json={"limit": 10})
    assert resp.status_code == 400
    assert resp.json()["detail"]["details"]["total"] == 150
    resp = client.post("/api/recipes/templates/TRENCH/variants/regenerate", json={"strategy": "random"})
    assert resp.status_code == 400
    assert client.post("/api/recipes/templates/NOPE/variants/regenerate").status_code == 404


def test_smart_strategy(client):
    _create(client, {
        "key": "PLAIN",
        "unit": "m",
        "defaultParams": {"depth_m": 1.2, "restricted": False},
        "components": [{"type": "labor", "refKey": "LABOR:A", "qtyFormula": "qty"}],
    })
    resp = client.post("/api/recipes/templates/PLAIN/variants/regenerate", json={"strategy": "smart"})
    assert resp.json()["count"] == 6
    plain = client.post("/api/recipes/templates/PLAIN/variants/regenerate").json()
    assert plain["count"] == 1


# ============================================================
# 12-17. Calculation
# ============================================================

def test_calc_priced_breakdown(client, trench_payload):
    _create(client, trench_payload)
    _trench_prices(client)
    resp = client.post("/api/recipes/calc", json={"templateKey": "TRENCH", "qty": 180})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert [l["refKey"] for l in data["lines"]] == ["LABOR:A", "MACHINE:B", "MATERIAL:C"]
    assert [l["extendedCost"] for l in data["lines"]] == [500.0, 1440.0, 198.0]
    assert data["totalsByType"] == {"labor": 500.0, "machine": 1440.0, "material": 198.0}
    assert data["grandTotal"] == 2138.0
    assert data["currency"] == "EUR"
    assert data["lines"][0]["unit"] == "h"


def test_calc_missing_price(client, trench_payload):
    _create(client, trench_payload)
    _price(client, "LABOR:A", 50.0)
    data = client.post("/api/recipes/calc", json={"templateKey": "TRENCH", "qty": 180}).json()
    assert data["lines"][0]["priced"] is True
    assert data["lines"][1]["priced"] is False
    assert data["lines"][1]["status"] == "unpriced"
    assert data["lines"][1]["resolvedQty"] == 18
    assert data["missingPrices"] == ["MACHINE:B", "MATERIAL:C"]
    assert data["grandTotal"] == 500.0


def test_calc_with_variant_and_overrides(client, trench_payload):
    _create(client, trench_payload)
    _trench_prices(client)
    keys = client.post("/api/recipes/templates/TRENCH/variants/regenerate").json()["keys"]
    variants = client.get("/api/recipes/templates/TRENCH/variants").json()
    deep = next(v for v in variants if v["params"]["depth_m"] == 1.6)
    assert deep["key"] in keys

    data = client.post("/api/recipes/calc", json={
        "templateKey": "TRENCH",
        "variantKey": deep["key"],
        "qty": 10,
        "params": {"width_m": 2.0},
    }).json()
    assert data["params"]["depth_m"] == 1.6
    assert data["params"]["width_m"] == 2.0
    assert data["variant"]["key"] == deep["key"]
    assert data["lines"][1]["resolvedQty"] == 1.6
    assert data["lines"][2]["resolvedQty"] == 20


def test_calc_non_finite_line(client):
    _create(client, {
        "key": "BROKEN",
        "unit": "m",
        "components": [
            {"type": "labor", "refKey": "LABOR:A", "qtyFormula": "qty / 0"},
            {"type": "material", "refKey": "MATERIAL:C", "qtyFormula": "qty", "sort": 1},
        ],
    })
    _price(client, "LABOR:A", 50.0)
    _price(client, "MATERIAL:C", 2.0)
    resp = client.post("/api/recipes/calc", json={"templateKey": "BROKEN", "qty": 5})
    assert resp.status_code == 200
    data = resp.json()
    assert data["lines"][0]["status"] == "non_finite"
    assert data["lines"][0]["resolvedQty"] == "Infinity"
    assert data["grandTotal"] == 10.0


def test_calc_errors(client, trench_payload):
    assert client.post("/api/recipes/calc", json={"templateKey": "NOPE", "qty": 1}).status_code == 404
    _create(client, trench_payload)
    resp = client.post("/api/recipes/calc", json={"templateKey": "TRENCH", "variantKey": "TRENCH|x", "qty": 1})
    assert resp.status_code == 404
    resp = client.post("/api/recipes/calc", json={"templateKey": "TRENCH", "qty": -1})
    assert resp.status_code == 400


def test_calc_pricing_date(client, trench_payload):
    _create(client, trench_payload)
    _price(client, "LABOR:A", 40.0, validFrom="2024-01-01", validTo="2025-01-01")
    _price(client, "LABOR:A", 50.0, validFrom="2025-01-01")
    old = client.post("/api/recipes/calc", json={
        "templateKey": "TRENCH", "qty": 18, "pricingDate": "2024-06-30",
    }).json()
    new = client.post("/api/recipes/calc", json={
        "templateKey": "TRENCH", "qty": 18, "pricingDate": "2025-06-30",
    }).json()
    assert old["pricingDate"] == "2024-06-30"
    assert old["lines"][0]["unitPrice"] == 40.0
    assert new["lines"][0]["unitPrice"] == 50.0


# ============================================================
# 18-21. Suggestion
# ============================================================

def test_suggest_best_variant(client, trench_payload):
    _create(client, trench_payload)
    client.post("/api/recipes/templates/TRENCH/variants/regenerate")
    context = {"soilClass": "BK3", "depth_m": 1.2, "width_m": 0.6, "restricted": True}
    resp = client.post("/api/recipes/templates/TRENCH/suggest", json={"context": context, "take": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["template"]["key"] == "TRENCH"
    best = data["best"]
    assert best["score"] == 1.0
    assert best["virtual"] is False
    for key, value in context.items():
        assert best["params"][key] == value
    assert len(data["alternatives"]) == 3
    assert all(a["score"] <= best["score"] for a in data["alternatives"])


def test_suggest_without_variants_offers_defaults(client, trench_payload):
    _create(client, trench_payload)
    data = client.post("/api/recipes/templates/TRENCH/suggest", json={"context": {}}).json()
    assert data["best"]["virtual"] is True
    assert data["best"]["params"] == trench_payload["defaultParams"]
    assert client.post("/api/recipes/templates/NOPE/suggest", json={}).status_code == 404


def test_calc_suggest_prices_best_variant(client, trench_payload):
    _create(client, trench_payload)
    _trench_prices(client)
    client.post("/api/recipes/templates/TRENCH/variants/regenerate")
    context = {"soilClass": "BK3", "depth_m": 1.6, "width_m": 0.6, "restricted": True}
    resp = client.post("/api/recipes/calc-suggest", json={
        "templateKey": "TRENCH", "qty": 18, "context": context, "take": 2,
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()
    best = data["suggest"]["best"]
    assert best["score"] == 1.0
    assert len(data["suggest"]["alternatives"]) == 2
    breakdown = data["breakdown"]
    assert breakdown["variant"]["key"] == best["key"]
    assert breakdown["params"]["depth_m"] == 1.6
    assert breakdown["params"]["soilClass"] == "BK3"
    assert breakdown["input"]["qty"] == 18
    assert breakdown["lines"][0]["extendedCost"] == 50.0
    assert breakdown["pricingDate"]


def test_calc_suggest_defaults_and_errors(client, trench_payload):
    _create(client, trench_payload)
    _trench_prices(client)
    data = client.post("/api/recipes/calc-suggest", json={"templateKey": "TRENCH", "qty": 18}).json()
    assert data["suggest"]["best"]["virtual"] is True
    assert data["breakdown"]["variant"] is None
    assert data["breakdown"]["params"] == trench_payload["defaultParams"]
    assert data["breakdown"]["grandTotal"] == 213.8

    resp = client.post("/api/recipes/calc-suggest", json={"templateKey": "NOPE", "qty": 1})
    assert resp.status_code == 404
    resp = client.post("/api/recipes/calc-suggest", json={"templateKey": "TRENCH", "qty": -1})
    assert resp.status_code == 400


# ============================================================
# 22-24. Formula evaluation
# ============================================================

def test_evaluate_formula(client):
    resp = client.post("/api/recipes/formula/evaluate", json={
        "formula": "=length * 2,5 + ROUND(1.25, 1)",
        "params": {"length": 10},
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["value"] == 26.3
    assert [name.upper() for name in data["identifiers"]] == ["LENGTH"]


def test_evaluate_non_finite(client):
    resp = client.post("/api/recipes/formula/evaluate", json={"formula": "1 / 0"})
    assert resp.json()["value"] == "Infinity"
    resp = client.post("/api/recipes/formula/evaluate", json={"formula": "1 / 0", "strict": True})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "NON_FINITE_RESULT"


def test_evaluate_errors(client):
    resp = client.post("/api/recipes/formula/evaluate", json={"formula": "2 +"})
    assert resp.json()["detail"]["code"] == "FORMULA_SYNTAX"
    resp = client.post("/api/recipes/formula/evaluate", json={"formula": "depth * 2"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "UNKNOWN_IDENTIFIER"


# ============================================================
# 25-27. Prices and stats
# ============================================================

def test_price_upsert_and_list(client):
    _price(client, "LABOR:A", 50.0, title="Facharbeiter", type="labor", unit="h")
    data = _price(client, "LABOR:A", 55.0, unit="h")
    assert data["refKey"] == "LABOR:A"
    assert data["price"] == 55.0
    assert data["validFrom"] == "2000-01-01"

    listed = client.get("/api/prices/").json()
    assert len(listed) == 1
    resp = client.put("/api/prices/LABOR:A", json={"price": 1, "validFrom": "2025-01-01", "validTo": "2024-01-01"})
    assert resp.status_code == 400
    assert client.put("/api/prices/LABOR:A", json={"price": -1}).status_code == 422


def test_seed_prices_idempotent(client):
    first = client.get("/api/prices/seed").json()
    assert first["seeded"] == first["available"]
    assert first["seeded"] > 0
    assert client.get("/api/prices/seed").json()["seeded"] == 0


def test_stats(client, trench_payload):
    _create(client, trench_payload)
    client.post("/api/recipes/templates/TRENCH/variants/regenerate")
    _price(client, "LABOR:A", 50.0)
    stats = client.get("/api/recipes/stats").json()
    assert stats["templates"] == 1
    assert stats["components"] == 3
    assert stats["variants"] == 150
    assert stats["prices"] == 1
