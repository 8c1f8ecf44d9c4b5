"""
Seed what the self-hosted backend expects: the developers team, one
developer account, and a default project. Run after `alembic upgrade head`.

Idempotent; never overwrites an existing account's password.

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --database-url sqlite:///tracker.db --project "Website"
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import select
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tracker.backend import unique_id  # noqa: E402
from app.tracker.backend.models import ProjectRecord, Team, UserAccount  # noqa: E402
from app.tracker.db import create_db_engine, make_sessionmaker, session_scope  # noqa: E402


def seed(
    *,
    database_url: str,
    team_id: str,
    developer_email: str,
    developer_password: str,
    developer_name: str,
    project_names: list[str],
) -> None:
    engine = create_db_engine(database_url)
    try:
        with session_scope(make_sessionmaker(engine)) as s:
            team = s.get(Team, team_id)
            if team is None:
                team = Team(id=team_id, name="Developers")
                s.add(team)

            dev = s.execute(select(UserAccount).where(UserAccount.email == developer_email)).scalar_one_or_none()
            if dev is None:
                dev = UserAccount(
                    id=unique_id(),
                    email=developer_email,
                    name=developer_name,
                    password_hash=generate_password_hash(developer_password),
                )
                s.add(dev)
            if dev not in team.members:
                team.members.append(dev)

            for name in project_names:
                exists = s.execute(select(ProjectRecord).where(ProjectRecord.name == name)).scalar_one_or_none()
                if exists is None:
                    s.add(ProjectRecord(id=unique_id(), name=name, description=""))
    finally:
        engine.dispose()

    print("Initialized database.")
    print(f"Developer email: {developer_email}")
    print("Developer password: (from DEVELOPER_PASSWORD)")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create tables and seed the self-hosted feedback backend.")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL") or "sqlite:///tracker.db")
    parser.add_argument("--team-id", default=os.environ.get("APPWRITE_DEVELOPERS_TEAM_ID") or "developers-team")
    parser.add_argument("--project", action="append", dest="projects", help="Project to create (repeatable).")
    args = parser.parse_args(argv)

    seed(
        database_url=args.database_url.strip(),
        team_id=args.team_id.strip(),
        developer_email=(os.environ.get("DEVELOPER_EMAIL") or "dev@example.com").strip().lower(),
        developer_password=os.environ.get("DEVELOPER_PASSWORD") or "change-me-now",
        developer_name=(os.environ.get("DEVELOPER_NAME") or "Developer").strip(),
        project_names=args.projects or ["General"],
    )


if __name__ == "__main__":
    main()
