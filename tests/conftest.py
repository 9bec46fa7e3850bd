"""
Shared test fixtures: SQLite test database, test client, catalog helpers.
"""

import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Configure before importing app modules
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["AUTO_SEED"] = "false"

from costbook.database import Base, get_db
from costbook.engine.catalog import Component, Template
from costbook.engine.pricing import DictPriceLookup
from costbook.main import app


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    """Direct database session for test setup/assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# --- Catalog helpers ---

TRENCH_AXES = {
    "soilClass": ["BK2", "BK3", "BK4", "BK5", "BK6"],
    "depth_m": [0.8, 1.2, 1.6],
    "width_m": [0.4, 0.5, 0.6, 0.8, 1.0],
    "restricted": [False, True],
}


@pytest.fixture
def trench_template():
    """Per-metre trench: labor from length, machine from depth, material from width."""
    return Template(
        key="TRENCH",
        unit="m",
        category="TIEFBAU/GRABEN",
        title="Graben",
        default_params={"depth_m": 1.0, "width_m": 0.5, "soilClass": "BK4", "_hint": "m"},
        components=(
            Component(type="labor", ref_key="LABOR:A", qty_formula="length / 18", sort=10),
            Component(type="machine", ref_key="MACHINE:B", qty_formula="length * DEPTH_M * 0.1", sort=20),
            Component(type="material", ref_key="MATERIAL:C", qty_formula="length * WIDTH_M",
                      risk_factor=1.1, sort=30),
        ),
        axes=TRENCH_AXES,
    )


@pytest.fixture
def prices():
    return DictPriceLookup({"LABOR:A": 50.0, "MACHINE:B": 80.0, "MATERIAL:C": 2.0})


@pytest.fixture
def trench_payload():
    """API payload equivalent of trench_template."""
    return {
        "key": "TRENCH",
        "title": "Graben",
        "category": "TIEFBAU/GRABEN",
        "unit": "m",
        "defaultParams": {"depth_m": 1.0, "width_m": 0.5, "soilClass": "BK4"},
        "axes": TRENCH_AXES,
        "components": [
            {"type": "labor", "refKey": "LABOR:A", "qtyFormula": "length / 18", "sort": 10},
            {"type": "machine", "refKey": "MACHINE:B", "qtyFormula": "length * DEPTH_M * 0.1", "sort": 20},
            {"type": "material", "refKey": "MATERIAL:C", "qtyFormula": "length * WIDTH_M",
             "riskFactor": 1.1, "sort": 30},
        ],
    }
