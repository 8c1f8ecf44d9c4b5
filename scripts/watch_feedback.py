"""
Sign in and follow the feedback list from a terminal.

Uses the same dashboard session a UI would: one identity fetch, one list
fetch, then live updates from the realtime channel. With BACKEND=local the
realtime feed is in-process, so only changes made by this process show up.

Usage:
    python scripts/watch_feedback.py --email dev@example.com
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tracker.backend import BackendError, backend_from_config  # noqa: E402
from app.tracker.client import DashboardSession  # noqa: E402
from app.tracker.config import load_config  # noqa: E402
from app.tracker.db import create_db_engine, make_sessionmaker  # noqa: E402
from app.tracker.store import Snapshot, SyncStore  # noqa: E402

logger = logging.getLogger("watch_feedback")


def _print_snapshot(snapshot: Snapshot) -> None:
    who = snapshot.identity.display_name if snapshot.identity else "(signed out)"
    print(f"--- {who}: {len(snapshot.items)} item(s)", flush=True)
    for item in snapshot.items:
        print(f"  [{item.status.value:<11}] {item.category.value:<11} {item.title} ({item.id})", flush=True)


async def _watch(session: DashboardSession) -> None:
    identity = await session.mount()
    if identity is None:
        return
    try:
        await asyncio.Event().wait()
    finally:
        session.unmount()


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Follow the live feedback list.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", default=os.environ.get("TRACKER_PASSWORD"))
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = load_config()
    sm = None
    if config.get("BACKEND") == "local":
        sm = make_sessionmaker(create_db_engine(config["DATABASE_URL"]))
    backend = backend_from_config(config, sessionmaker=sm)

    password = args.password or getpass.getpass("Password: ")
    try:
        grant = backend.privileged().account.create_email_password_session(args.email.strip().lower(), password)
    except BackendError as e:
        logger.error("Login failed: %s", e)
        return 1

    store = SyncStore()
    store.subscribe(_print_snapshot)
    session = DashboardSession(backend, grant.secret, store, max_attachment_bytes=config["MAX_ATTACHMENT_BYTES"])
    try:
        asyncio.run(_watch(session))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
