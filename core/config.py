"""Runtime configuration.

Settings are read once from the environment (and a ``.env`` file at the
repository root when present). Every variable is prefixed with ``RECON_``:

    RECON_DB_PATH=/data/reconciliation.db
    RECON_SMALL_AMOUNT_THRESHOLD=10
    RECON_FALLBACK_COMPANY_NAME="Fast Express"
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_PREFIX = "RECON_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_env_path = REPO_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class ReconciliationSettings(BaseModel):
    """Tunable thresholds and locations for a reconciliation deployment."""

    # Storage
    db_path: Path = Field(default=REPO_ROOT / "reconciliation.db", description="SQLite database file")
    artifacts_dir: Path = Field(default=REPO_ROOT / "artifacts", description="JSON artifact root")

    # Engine thresholds
    small_amount_threshold: Decimal = Field(
        default=Decimal("10"),
        description="Lines at or below this amount are flagged for review",
    )
    discrepancy_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Max allowed |expected - actual| before the run is blocked",
    )
    paid_epsilon: Decimal = Field(
        default=Decimal("1"),
        description="Outstanding below this counts as fully paid",
    )

    # Identity resolution
    fallback_company_name: Optional[str] = Field(
        default="Fast Express",
        description="Suggested company when no similarity score is possible",
    )
    min_token_length: int = Field(default=3, ge=1, description="Shortest token used in similarity scoring")

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def log_level_number(self) -> int:
        return getattr(logging, self.log_level)


def load_settings(**overrides) -> ReconciliationSettings:
    """Build settings from ``RECON_*`` environment variables.

    Keyword overrides win over the environment (used by tests and CLIs).
    """
    values = {}
    for name in ReconciliationSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw != "":
            values[name] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ReconciliationSettings.model_validate(values)


_settings: Optional[ReconciliationSettings] = None


def get_settings() -> ReconciliationSettings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
