#!/usr/bin/env python3
"""
Container entrypoint: prepare the backend, then hand the process to gunicorn.

With BACKEND=local the release phase (migrations + seed) runs first; the
hosted backend needs no preparation. Worker count comes from
WEB_CONCURRENCY (default 2).

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> str:
    raw = (os.environ.get("PORT") or "").strip() or "8080"
    if not raw.isdigit() or not 1 <= int(raw) <= 65535:
        raise SystemExit(f"PORT must be an integer 1-65535, got {raw!r}.")
    return raw


def gunicorn_argv(port: str) -> list[str]:
    workers = (os.environ.get("WEB_CONCURRENCY") or "").strip() or "2"
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", "60",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _port()
    backend = (os.environ.get("BACKEND") or "local").strip().lower()

    if backend == "local":
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            raise SystemExit(f"Release phase failed: {e}") from e

    argv = gunicorn_argv(port)
    print(f"Starting {' '.join(argv)} (backend={backend})", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
