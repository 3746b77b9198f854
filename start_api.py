#!/usr/bin/env python3
"""Migrate the database, seed it, then hand the process over to uvicorn."""
import os
import sys

from busbooking.core.config import settings

# Postgres may still be starting
if settings.DATABASE_URL.startswith("postgres"):
    import wait_for_db  # noqa: F401

from alembic.config import Config
from alembic import command

alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# a separate engine for seeding; the schema exists now
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from busbooking.core.logging import configure_logging
configure_logging()
seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SeedSession = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)
from busbooking.seed import run as run_seed
run_seed(SeedSession())
seed_engine.dispose()

os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "busbooking.main:app", "--host", "0.0.0.0", "--port", os.getenv("PORT", "8000")],
)
