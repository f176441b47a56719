#!/usr/bin/env python3
"""Development helpers for the YogaSwiss backend."""

import subprocess
import sys

PACKAGE = "yogaswiss"


def start():
    """Start the API server with autoreload."""
    subprocess.run(["uvicorn", f"{PACKAGE}.main:app", "--host", "0.0.0.0", "--port", "8000", "--reload"])


def worker():
    """Start a Celery worker for the background jobs."""
    subprocess.run(["celery", "-A", f"{PACKAGE}.tasks.celery_app", "worker", "--loglevel=info"])


def beat():
    """Start the Celery beat scheduler."""
    subprocess.run(["celery", "-A", f"{PACKAGE}.tasks.celery_app", "beat", "--loglevel=info"])


def migrate():
    """Apply pending database migrations."""
    subprocess.run(["alembic", "upgrade", "head"])


def test():
    subprocess.run(["pytest", "tests/"])


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, beat, migrate, test")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
