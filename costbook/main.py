from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from .config import settings
from .database import engine, Base
from . import models  # noqa: F401  (registers tables on Base.metadata)
from .routers import recipes, prices

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("costbook")

# Create tables (handles new tables but won't add columns to existing ones)
Base.metadata.create_all(bind=engine)

BASE_REVISION = "3f2a9c1d7e54"


def _run_migrations():
    """Run pending Alembic migrations on startup.

    Databases created by Base.metadata.create_all() before Alembic ran have
    no alembic_version table; those get the base revision stamped first.
    """
    try:
        from alembic.config import Config
        from alembic import command
        from sqlalchemy import inspect

        alembic_ini = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
        if not os.path.exists(alembic_ini):
            logger.info("alembic.ini not found, skipping migrations")
            return

        alembic_cfg = Config(alembic_ini)
        alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

        insp = inspect(engine)
        tables = insp.get_table_names()
        if "alembic_version" not in tables and "recipe_templates" in tables:
            logger.info("Stamping base migration %s (tables already exist)", BASE_REVISION)
            command.stamp(alembic_cfg, BASE_REVISION)

        logger.info("Running pending Alembic migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception as e:
        # Never let migration errors prevent app startup
        logger.warning(f"Alembic migration warning: {e}")


app = FastAPI(
    title="Costbook",
    description="Parametric recipe calculation for construction cost estimates",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(recipes.router, prefix="/api")
app.include_router(prices.router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok", "app": "costbook"}


@app.on_event("startup")
def auto_migrate():
    """Run pending Alembic migrations on startup."""
    _run_migrations()


@app.on_event("startup")
def auto_seed():
    """Seed default prices and templates (with variants) on first run."""
    if not settings.AUTO_SEED:
        return
    from .database import SessionLocal
    from .seed_catalog import seed
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()
