"""
Default catalog: civil-works templates and a starter price list.

Formulas read parameters case-insensitively and the requested quantity
through its aliases (qty, length, area, volume). Boolean parameters count
as 1/0, so "(1 + RESTRICTED*0.25)" adds 25 % in confined trenches.
String parameters such as soilClass identify a variant but are not
readable inside formulas.
"""

import logging
from datetime import date

from sqlalchemy.orm import Session

from . import models
from .catalog_store import regenerate_variants, upsert_template
from .price_store import upsert_price

logger = logging.getLogger(__name__)

PRICE_LIST_START = date(2024, 1, 1)

# Unit prices in EUR, net. Update via PUT /api/prices/{ref_key}
DEFAULT_PRICES = {
    # Labor (h)
    "LABOR:FACHARBEITER": {"price": 58.00, "unit": "h", "type": "labor", "title": "Facharbeiter"},
    "LABOR:HELFER": {"price": 42.00, "unit": "h", "type": "labor", "title": "Helfer"},
    "LABOR:ROHRLEGER": {"price": 55.00, "unit": "h", "type": "labor", "title": "Rohrleger"},
    "LABOR:KANALBAUER": {"price": 56.00, "unit": "h", "type": "labor", "title": "Kanalbauer"},
    "LABOR:STRASSENBAUER": {"price": 54.00, "unit": "h", "type": "labor", "title": "Straßenbauer"},
    # Machines (h)
    "MACHINE:BAGGER_8_14T": {"price": 85.00, "unit": "h", "type": "machine", "title": "Bagger 8-14 t"},
    "MACHINE:MINIBAGGER_2_5T": {"price": 48.00, "unit": "h", "type": "machine", "title": "Minibagger 2,5 t"},
    "MACHINE:RUETTELPLATTE": {"price": 14.00, "unit": "h", "type": "machine", "title": "Rüttelplatte"},
    "MACHINE:LKW_3ACH": {"price": 95.00, "unit": "h", "type": "machine", "title": "LKW 3-Achser"},
    "MACHINE:WALZE": {"price": 62.00, "unit": "h", "type": "machine", "title": "Walze"},
    # Materials
    "MATERIAL:ABDECKFOLIE": {"price": 1.20, "unit": "m2", "type": "material", "title": "Abdeckfolie"},
    "MATERIAL:FROSTSCHUTZ_0_32": {"price": 28.00, "unit": "m3", "type": "material", "title": "Frostschutz 0/32"},
    "MATERIAL:PEHD_ROHR": {"price": 6.80, "unit": "m", "type": "material", "title": "PE-HD Rohr"},
    "MATERIAL:FORMTEIL": {"price": 24.00, "unit": "Stk", "type": "material", "title": "Formteil PE-HD"},
    "MATERIAL:PVC_KANALROHR": {"price": 18.50, "unit": "m", "type": "material", "title": "PVC Kanalrohr"},
    "MATERIAL:BETTUNG_SAND": {"price": 32.00, "unit": "m3", "type": "material", "title": "Bettungssand"},
    "MATERIAL:SCHIEBER": {"price": 145.00, "unit": "Stk", "type": "material", "title": "Absperrschieber"},
    "MATERIAL:SCHACHTRING": {"price": 210.00, "unit": "Stk", "type": "material", "title": "Schachtring DN1000"},
    # Surfaces (t)
    "SURFACE:ASPHALT_DECK": {"price": 120.00, "unit": "t", "type": "surface", "title": "Asphaltdeckschicht"},
    "SURFACE:ASPHALT_TRAG": {"price": 95.00, "unit": "t", "type": "surface", "title": "Asphalttragschicht"},
    # Disposal (m3)
    "DISPOSAL:KIPPE": {"price": 38.00, "unit": "m3", "type": "disposal", "title": "Deponie/Kippe"},
    # Other
    "OTHER:KLEINMATERIAL": {"price": 12.50, "unit": "psch", "type": "other", "title": "Kleinmaterial"},
}

SOIL_CLASSES = ["BK2", "BK3", "BK4", "BK5", "BK6"]

DEFAULT_TEMPLATES = [
    # --- Tiefbau / Graben ---
    {
        "key": "TB_GRABEN_AUSHUB_STANDARD",
        "title": "Graben ausheben (Standard)",
        "category": "TIEFBAU/GRABEN",
        "unit": "m",
        "tags": ["graben", "aushub", "tiefbau"],
        "default_params": {
            "depth_m": 1.2, "width_m": 0.6, "soilClass": "BK4",
            "restricted": False, "groundwater": False,
            "_hint": "Tiefe und Breite in m",
        },
        # 5 x 3 x 5 x 2 x 2 = 150 variants
        "axes": {
            "soilClass": SOIL_CLASSES,
            "depth_m": [0.8, 1.2, 1.6],
            "width_m": [0.4, 0.5, 0.6, 0.8, 1.0],
            "restricted": [False, True],
            "groundwater": [False, True],
        },
        "components": [
            {"type": "labor", "ref_key": "LABOR:FACHARBEITER",
             "qty_formula": "length * (DEPTH_M*0.10 + RESTRICTED*0.05 + GROUNDWATER*0.06)", "sort": 10},
            {"type": "machine", "ref_key": "MACHINE:BAGGER_8_14T",
             "qty_formula": "length * DEPTH_M * 0.06 * (1 + RESTRICTED*0.25)", "sort": 20},
            {"type": "disposal", "ref_key": "DISPOSAL:KIPPE",
             "qty_formula": "length * DEPTH_M * WIDTH_M * 1,25", "sort": 30, "risk_factor": 1.05,
             "note": "Auflockerungsfaktor 1,25"},
            {"type": "material", "ref_key": "MATERIAL:ABDECKFOLIE",
             "qty_formula": "length * RESTRICTED * 2", "mandatory": False, "sort": 40},
        ],
    },
    {
        "key": "TB_GRABEN_AUSHUB_HANDARBEIT",
        "title": "Graben ausheben (Handarbeit)",
        "category": "TIEFBAU/GRABEN",
        "unit": "m",
        "tags": ["handarbeit", "aushub"],
        "default_params": {"depth_m": 1.0, "width_m": 0.4, "soilClass": "BK4", "restricted": True},
        "components": [
            {"type": "labor", "ref_key": "LABOR:FACHARBEITER", "qty_formula": "length * DEPTH_M * 0.35", "sort": 10},
            {"type": "labor", "ref_key": "LABOR:HELFER", "qty_formula": "length * DEPTH_M * 0.25", "sort": 15},
        ],
    },
    {
        "key": "TB_WIEDERVERFUELLUNG_FROSTSCHUTZ",
        "title": "Wiederverfüllung mit Frostschutz",
        "category": "TIEFBAU/VERFUELLUNG",
        "unit": "m",
        "tags": ["frostschutz", "verdichten"],
        "default_params": {"width_m": 0.6, "thickness_m": 0.3, "heavyCompaction": False},
        "components": [
            {"type": "material", "ref_key": "MATERIAL:FROSTSCHUTZ_0_32",
             "qty_formula": "length * WIDTH_M * THICKNESS_M", "sort": 10, "risk_factor": 1.1},
            {"type": "labor", "ref_key": "LABOR:FACHARBEITER",
             "qty_formula": "length * (0.08 + HEAVYCOMPACTION*0.05)", "sort": 20},
            {"type": "machine", "ref_key": "MACHINE:RUETTELPLATTE",
             "qty_formula": "length * (0.12 + HEAVYCOMPACTION*0.08)", "sort": 30},
        ],
    },
    {
        "key": "TB_ENTSORGUNG_AUSHUB",
        "title": "Aushub entsorgen (inkl. Transport)",
        "category": "TIEFBAU/ENTSORGUNG",
        "unit": "m3",
        "tags": ["entsorgung", "transport"],
        "default_params": {"disposalClass": "DKII", "distance_km": 10},
        "axes": {
            "disposalClass": ["DK0", "DKI", "DKII", "Z1.1", "Z2"],
            "distance_km": [0, 10, 25],
        },
        "components": [
            {"type": "machine", "ref_key": "MACHINE:LKW_3ACH",
             "qty_formula": "volume * (0.20 + DISTANCE_KM*0.01) / 8", "sort": 10},
            {"type": "disposal", "ref_key": "DISPOSAL:KIPPE", "qty_formula": "volume", "sort": 20},
        ],
    },
    {
        "key": "TB_SCHACHT_RUND",
        "title": "Rundschacht herstellen",
        "category": "TIEFBAU/SCHACHT",
        "unit": "Stk",
        "tags": ["schacht", "kanal"],
        "default_params": {"radius_m": 0.5, "depth_m": 2.0},
        "components": [
            {"type": "machine", "ref_key": "MACHINE:BAGGER_8_14T",
             "qty_formula": "qty * PI * (RADIUS_M + 0,3)^2 * DEPTH_M * 0.15", "sort": 10},
            {"type": "material", "ref_key": "MATERIAL:SCHACHTRING",
             "qty_formula": "qty * CEIL(DEPTH_M / 0.5)", "sort": 20},
            {"type": "labor", "ref_key": "LABOR:KANALBAUER", "qty_formula": "qty * (4 + DEPTH_M*1.5)", "sort": 30},
        ],
    },
    # --- Wasser ---
    {
        "key": "WASSER_ROHR_PEHD_VERLEGEN",
        "title": "PE-HD Rohr verlegen (Wasser)",
        "category": "WASSER/ROHR",
        "unit": "m",
        "tags": ["pehd", "wasser", "dn"],
        "default_params": {"dn_mm": 63, "pressureBar": 16, "fittings_per_10m": 1},
        "axes": {
            "dn_mm": [32, 40, 50, 63, 90, 110],
            "pressureBar": [10, 16],
        },
        "components": [
            {"type": "labor", "ref_key": "LABOR:ROHRLEGER", "qty_formula": "length * (0.08 + DN_MM/2000)", "sort": 10},
            {"type": "machine", "ref_key": "MACHINE:MINIBAGGER_2_5T", "qty_formula": "length * 0.05", "sort": 20},
            {"type": "material", "ref_key": "MATERIAL:PEHD_ROHR", "qty_formula": "length * 1.02", "sort": 30,
             "note": "2 % Verschnitt"},
            {"type": "material", "ref_key": "MATERIAL:FORMTEIL",
             "qty_formula": "ROUND(length * FITTINGS_PER_10M / 10, 0)", "mandatory": False, "sort": 40},
        ],
    },
    {
        "key": "WASSER_HAUSANSCHLUSS",
        "title": "Hausanschluss Wasser",
        "category": "WASSER/ANSCHLUSS",
        "unit": "Stk",
        "tags": ["hausanschluss", "wasser"],
        "default_params": {"shutoffValve": True, "fittings": 3},
        "components": [
            {"type": "labor", "ref_key": "LABOR:ROHRLEGER", "qty_formula": "qty * 3.5", "sort": 10},
            {"type": "material", "ref_key": "MATERIAL:FORMTEIL", "qty_formula": "qty * FITTINGS", "sort": 20},
            {"type": "material", "ref_key": "MATERIAL:SCHIEBER", "qty_formula": "qty * SHUTOFFVALVE",
             "mandatory": False, "sort": 30},
            {"type": "other", "ref_key": "OTHER:KLEINMATERIAL", "qty_formula": "qty", "sort": 90},
        ],
    },
    # --- Kanal ---
    {
        "key": "KANAL_ROHR_PVC_VERLEGEN",
        "title": "PVC Kanalrohr verlegen",
        "category": "KANAL/ROHR",
        "unit": "m",
        "tags": ["kanal", "pvc", "bettung"],
        "default_params": {"dn_mm": 200, "bedding": True},
        "axes": {
            "dn_mm": [160, 200, 250, 300, 400],
            "bedding": [True, False],
        },
        "components": [
            {"type": "labor", "ref_key": "LABOR:KANALBAUER", "qty_formula": "length * (0.10 + DN_MM/5000)", "sort": 10},
            {"type": "machine", "ref_key": "MACHINE:BAGGER_8_14T", "qty_formula": "length * 0.06", "sort": 20},
            {"type": "material", "ref_key": "MATERIAL:PVC_KANALROHR", "qty_formula": "length", "sort": 30},
            {"type": "material", "ref_key": "MATERIAL:BETTUNG_SAND", "qty_formula": "length * BEDDING * 0.15",
             "mandatory": False, "sort": 40},
        ],
    },
    # --- Oberfläche ---
    {
        "key": "OBERFLAECHE_ASPHALT_WIEDERHERSTELLEN",
        "title": "Asphalt wiederherstellen",
        "category": "OBERFLAECHE/ASPHALT",
        "unit": "m2",
        "tags": ["asphalt", "deckschicht", "tragschicht"],
        "default_params": {"deck_cm": 4, "trag_cm": 10},
        "axes": {"deck_cm": [3, 4, 5], "trag_cm": [8, 10, 14]},
        "components": [
            {"type": "surface", "ref_key": "SURFACE:ASPHALT_DECK", "qty_formula": "area * DECK_CM/100 * 2.4", "sort": 10},
            {"type": "surface", "ref_key": "SURFACE:ASPHALT_TRAG", "qty_formula": "area * TRAG_CM/100 * 2.4", "sort": 20},
            {"type": "machine", "ref_key": "MACHINE:WALZE", "qty_formula": "area * 0.01", "sort": 30},
            {"type": "labor", "ref_key": "LABOR:STRASSENBAUER", "qty_formula": "area * 0.05", "sort": 40},
        ],
    },
]


def seed_prices(db: Session) -> int:
    """Insert missing default prices. Existing rows are left alone."""
    added = 0
    for ref_key, data in DEFAULT_PRICES.items():
        existing = db.query(models.PriceItem).filter(models.PriceItem.ref_key == ref_key).first()
        if not existing:
            upsert_price(db, ref_key, valid_from=PRICE_LIST_START, **data)
            added += 1
    return added


def seed_templates(db: Session) -> int:
    """Insert missing default templates and generate their variants."""
    added = 0
    for data in DEFAULT_TEMPLATES:
        existing = db.query(models.RecipeTemplate).filter(models.RecipeTemplate.key == data["key"]).first()
        if existing:
            continue
        upsert_template(db, **data)
        regenerate_variants(db, data["key"])
        added += 1
    return added


def seed(db: Session) -> dict:
    prices = seed_prices(db)
    templates = seed_templates(db)
    if prices or templates:
        logger.info("Seeded %d prices and %d templates", prices, templates)
    return {"prices": prices, "templates": templates}
