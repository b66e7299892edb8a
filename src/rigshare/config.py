"""Centralized configuration for the RigShare service."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT / "data"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_path(name: str) -> Optional[Path]:
    raw = (os.getenv(name) or "").strip()
    return Path(raw) if raw else None


@dataclass
class Settings:
    db_path: Path = DATA_DIR / "rigshare.db"
    components_csv: Optional[Path] = None
    users_csv: Optional[Path] = None
    # build_events 表写入与变更共用同一事务
    build_events: bool = False
    db_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        db_path = _env_path("RIGSHARE_DB_PATH") or DATA_DIR / "rigshare.db"
        origins = os.getenv("RIGSHARE_CORS_ORIGINS", "*")
        return cls(
            db_path=db_path,
            components_csv=_env_path("RIGSHARE_COMPONENTS_CSV"),
            users_csv=_env_path("RIGSHARE_USERS_CSV"),
            build_events=_env_bool("RIGSHARE_BUILD_EVENTS", False),
            db_timeout_seconds=_env_float("RIGSHARE_DB_TIMEOUT_SECONDS", 5.0),
            log_level=os.getenv("RIGSHARE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] or ["*"],
        )


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
