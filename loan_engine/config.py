"""Configuration management for the loan engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple


def _parse_days(raw: str) -> Tuple[int, ...]:
    days = sorted({int(part) for part in raw.split(",") if part.strip()}, reverse=True)
    return tuple(days)


@dataclass
class EngineConfig:
    """Settings shared by the CLI, the web app and bonification planning.

    Attributes
    ----------
    alert_days: Tuple[int, ...]
        Days before a bonification evaluation date at which alerts are raised.
    default_bonification_cap: Decimal
        Cap on combined bonification points when a loan does not set one
        (``0.01`` = 1.00 pp).
    fixed_rate_floor: Decimal
        Lowest fixed rate reachable through bonifications at signing.
    spread_floor: Decimal
        Lowest variable spread reachable through bonifications at signing.
    """

    log_level: str = "INFO"
    log_format: str = "standard"
    database_url: str = "sqlite:///loan_engine.sqlite3"
    alert_days: Tuple[int, ...] = field(default_factory=lambda: (45, 21, 7, 2))
    default_bonification_cap: Decimal = Decimal("0.01")
    fixed_rate_floor: Decimal = Decimal("0.01")
    spread_floor: Decimal = Decimal("0.004")
    max_rows: int = 120

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from ``LOAN_ENGINE_*`` environment variables."""
        defaults = cls()
        alert_days_str = os.getenv("LOAN_ENGINE_ALERT_DAYS")
        return cls(
            log_level=os.getenv("LOAN_ENGINE_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("LOAN_ENGINE_LOG_FORMAT", defaults.log_format),
            database_url=os.getenv("LOAN_ENGINE_DATABASE_URL", defaults.database_url),
            alert_days=_parse_days(alert_days_str) if alert_days_str else defaults.alert_days,
            default_bonification_cap=Decimal(
                os.getenv("LOAN_ENGINE_BONIFICATION_CAP", str(defaults.default_bonification_cap))
            ),
            fixed_rate_floor=Decimal(
                os.getenv("LOAN_ENGINE_FIXED_RATE_FLOOR", str(defaults.fixed_rate_floor))
            ),
            spread_floor=Decimal(os.getenv("LOAN_ENGINE_SPREAD_FLOOR", str(defaults.spread_floor))),
            max_rows=int(os.getenv("LOAN_ENGINE_MAX_ROWS", str(defaults.max_rows))),
        )
