"""Small CLI helpers exposed as console scripts in pyproject.toml.

Usage (from project root):
  runserver --host=0.0.0.0 --port=8000 --no-reload
  migrate                   # defaults to `alembic upgrade head`
  init-env                  # copies .env.example -> .env if missing
  maintenance sweep-sessions | purge-audit | purge-refresh
"""
from __future__ import annotations

import sys
import shutil
import subprocess
from pathlib import Path
from typing import List


def _args() -> List[str]:
    return sys.argv[1:]


def runserver() -> None:
    """Run Uvicorn programmatically. Accepts simple flags:

    --host=<host>  (default 127.0.0.1)
    --port=<port>  (default 8000)
    --no-reload    (disable auto-reload)
    """
    import uvicorn

    from app.core.config import settings

    host = "127.0.0.1"
    port = 8000
    reload = True

    for a in _args():
        if a.startswith("--host="):
            host = a.split("=", 1)[1]
        elif a.startswith("--port="):
            port = int(a.split("=", 1)[1])
        elif a == "--no-reload":
            reload = False

    print(f"Starting uvicorn on {host}:{port} (reload={reload})")
    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=reload,
        proxy_headers=True,
        forwarded_allow_ips=settings.FORWARDED_ALLOW_IPS,
    )


def run_migrations() -> None:
    """Run alembic. If no args provided, runs `alembic upgrade head`."""
    args = _args()
    cmd = ["alembic"] + (args or ["upgrade", "head"])
    subprocess.run(cmd, check=True)


def init_env() -> None:
    """Copy `.env.example` to `.env` if `.env` is missing."""
    root = Path(__file__).resolve().parents[1]
    src = root / ".env.example"
    dst = root / ".env"
    if dst.exists():
        print(f".env already exists at {dst}")
        return
    if not src.exists():
        print(f".env.example not found at {src}")
        return
    shutil.copy(src, dst)
    print(f"Created .env from .env.example at {dst}")


def maintenance() -> None:
    """Run one maintenance job inline, without a Celery worker."""
    from app.tasks import maintenance_tasks

    jobs = {
        "sweep-sessions": maintenance_tasks.sweep_expired_sessions,
        "purge-audit": maintenance_tasks.purge_audit_logs,
        "purge-refresh": maintenance_tasks.purge_refresh_tokens,
    }
    args = _args()
    if not args or args[0] not in jobs:
        print(f"Usage: maintenance {{{'|'.join(jobs)}}}")
        sys.exit(2)
    count = jobs[args[0]]()
    print(f"{args[0]}: {count} rows affected")


if __name__ == "__main__":
    # Allow running the helpers directly: python -m app.cli runserver
    if len(sys.argv) <= 1:
        print(__doc__)
        sys.exit(0)
    cmd = sys.argv[1]
    sys.argv.pop(1)
    if cmd == "runserver":
        runserver()
    elif cmd in ("migrate", "alembic"):
        run_migrations()
    elif cmd in ("init-env", "initenv"):
        init_env()
    elif cmd == "maintenance":
        maintenance()
    else:
        print(f"Unknown command: {cmd}")
