"""
CaseLedger configuration.

Environment-driven; every setting has a local-dev default.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

# ── Logging ──
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


class Config:
    """Settings read from the environment at import time."""
    DB_PATH: str = os.environ.get("CL_DB_PATH", str(Path(__file__).parent / "caseledger.db"))
    UPLOAD_DIR: str = os.environ.get("CL_UPLOAD_DIR", str(Path(__file__).parent / "uploads"))
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "cl_dev_jwt_secret_change_me")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_DAYS: int = int(os.environ.get("JWT_EXPIRES_DAYS", "7"))
    MIN_PASSWORD_LENGTH: int = 6
    MAX_FILE_SIZE: int = int(os.environ.get("MAX_FILE_SIZE", str(10 * 1024 * 1024)))
    ASSISTANT_REPLY_DELAY: float = float(os.environ.get("ASSISTANT_REPLY_DELAY", "0"))
    STATUTE_YEARS: int = int(os.environ.get("STATUTE_YEARS", "2"))
    CORS_ORIGINS: str = os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
    )


config = Config()
