"""
Release phase for the self-hosted backend: bring the schema to head, then
seed the developers team, a developer account and the default project.

Safe to run on every deploy; both steps are idempotent.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set; refusing to guess a database for the release phase.")

    print("Migrating schema to head...", flush=True)
    migrate(db_url)

    from scripts import init_db

    print("Seeding developers team and projects...", flush=True)
    init_db.main(["--database-url", db_url])


if __name__ == "__main__":
    run_release()
