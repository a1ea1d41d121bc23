"""
Configuration: Korban Tracker
korban/config.py

All engine settings live in one explicit LedgerConfig built once at startup
and passed to every service. Environment variables only override the
defaults below when `load_config()` runs; nothing reads ambient state later.

Environment:
  KORBAN_DATABASE_URL       = sqlite:///./korban.db
  KORBAN_SCHEDULE_START     = 2025-08
  KORBAN_SCHEDULE_LENGTH    = 8
  KORBAN_TARIFF_KORBAN_SUNAT / KORBAN_TARIFF_KORBAN_NAZAR / KORBAN_TARIFF_AQIQAH
  KORBAN_CURRENCY           = RM
  KORBAN_TIMEZONE_HOURS     = 8
  KORBAN_LOG_LEVEL          = INFO
"""

import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from functools import cached_property, lru_cache
from typing import Dict, Optional

from korban.services.installment_schedule import (
    DEFAULT_TARIFFS,
    SACRIFICE_TYPES,
    InstallmentSchedule,
)

CONFIG_DEFAULTS = {
    "database_url": "sqlite:///./korban.db",
    "schedule_start": "2025-08",         # Ogos 2025
    "schedule_length": 8,                # 8 bulan kutipan
    "currency": "RM",
    "timezone_hours": 8,                 # Asia/Kuala_Lumpur
    "log_level": "INFO",
}


@dataclass(frozen=True)
class LedgerConfig:
    database_url: str = CONFIG_DEFAULTS["database_url"]
    schedule_start: str = CONFIG_DEFAULTS["schedule_start"]
    schedule_length: int = CONFIG_DEFAULTS["schedule_length"]
    tariffs: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TARIFFS))
    currency: str = CONFIG_DEFAULTS["currency"]
    timezone_hours: int = CONFIG_DEFAULTS["timezone_hours"]
    log_level: str = CONFIG_DEFAULTS["log_level"]

    @cached_property
    def schedule(self) -> InstallmentSchedule:
        return InstallmentSchedule.build(self.schedule_start, self.schedule_length, self.tariffs)

    @property
    def tz(self) -> timezone:
        return timezone(timedelta(hours=self.timezone_hours))

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def money(self, amount) -> str:
        """RM100 / RM50.50"""
        if amount is None:
            amount = 0
        shown = f"{amount:.0f}" if amount == int(amount) else f"{amount:.2f}"
        return f"{self.currency}{shown}"


def load_config(env: Optional[Dict[str, str]] = None) -> LedgerConfig:
    """Build the config from defaults plus KORBAN_* overrides."""
    env = os.environ if env is None else env

    tariffs = dict(DEFAULT_TARIFFS)
    for sacrifice_type in SACRIFICE_TYPES:
        value = env.get(f"KORBAN_TARIFF_{sacrifice_type.upper()}")
        if value:
            tariffs[sacrifice_type] = int(value)

    return LedgerConfig(
        database_url=env.get("KORBAN_DATABASE_URL", CONFIG_DEFAULTS["database_url"]),
        schedule_start=env.get("KORBAN_SCHEDULE_START", CONFIG_DEFAULTS["schedule_start"]),
        schedule_length=int(env.get("KORBAN_SCHEDULE_LENGTH", CONFIG_DEFAULTS["schedule_length"])),
        tariffs=tariffs,
        currency=env.get("KORBAN_CURRENCY", CONFIG_DEFAULTS["currency"]),
        timezone_hours=int(env.get("KORBAN_TIMEZONE_HOURS", CONFIG_DEFAULTS["timezone_hours"])),
        log_level=env.get("KORBAN_LOG_LEVEL", CONFIG_DEFAULTS["log_level"]),
    )


@lru_cache(maxsize=1)
def get_config() -> LedgerConfig:
    """Process-wide config (FastAPI dependency; tests override it)."""
    return load_config()
