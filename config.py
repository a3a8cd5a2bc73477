"""
config.py
Runtime configuration (paths, admin principal, receipt numbering) + logging setup.
Every value can be overridden through an environment variable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

APP_NAME = "EduPay Cloud"

ROOT = Path(__file__).resolve().parent

DB_FILE = Path(os.environ.get("EDUPAY_DB", ROOT / "edupay.db"))
SESSION_FILE = Path(os.environ.get("EDUPAY_SESSION_FILE", ROOT / ".edupay_session.json"))
SESSION_KEY = "edupay_user"

# Seeded principal; never stored in the accountants table
ADMIN_ID = os.environ.get("EDUPAY_ADMIN_ID", "admin")
ADMIN_PASSWORD = os.environ.get("EDUPAY_ADMIN_PASSWORD", "12345")
ADMIN_NAME = os.environ.get("EDUPAY_ADMIN_NAME", "Super Admin")

RECEIPT_PREFIX = "DC-"
RECEIPT_BASE = 1000

REFRESH_TIMEOUT = float(os.environ.get("EDUPAY_REFRESH_TIMEOUT", "10"))

MAX_LOGO_BYTES = 1024 * 1024

LOG_LEVEL = os.environ.get("EDUPAY_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("EDUPAY_LOG_FILE")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> None:
    """Configure the root logger once (Streamlit re-runs the script on every interaction)."""
    root = logging.getLogger()
    if root.handlers:
        return
    kwargs = {"level": LOG_LEVEL.upper(), "format": LOG_FORMAT}
    if LOG_FILE:
        kwargs["filename"] = LOG_FILE
    logging.basicConfig(**kwargs)
