"""
Prepare the configured stores: SQL tables, storage directories, or the Azure
table / blob container / queue / file share. Idempotent; safe to run on every release.

Usage:
    python scripts/init_db.py
"""
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.retail import create_app  # noqa: E402
from app.retail.stores import get_stores  # noqa: E402


def init_stores() -> None:
    app = create_app()
    with app.app_context():
        get_stores().ensure_ready()
        app.logger.info("Stores ready (backend=%s)", app.config.get("STORAGE_BACKEND"))


if __name__ == "__main__":
    init_stores()
