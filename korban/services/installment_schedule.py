"""
Service: Installment Schedule
korban/services/installment_schedule.py

The collection cycle is a fixed run of monthly periods 'YYYY-MM'
(default: Ogos 2025 → Mac 2026, 8 installments). Every installment costs the
tariff of the participant's sacrifice type.

    Total per participant = len(schedule) × tariff(sacrifice_type)

The schedule is immutable for the life of a cycle.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

PERIOD_RE = re.compile(r'^(\d{4})-(\d{2})$')

# Malay month labels
BULAN_LABEL = {
    1: 'Januari', 2: 'Februari', 3: 'Mac', 4: 'April', 5: 'Mei', 6: 'Jun',
    7: 'Julai', 8: 'Ogos', 9: 'September', 10: 'Oktober',
    11: 'November', 12: 'Disember'
}

BULAN_LABEL_SHORT = {
    1: 'Jan', 2: 'Feb', 3: 'Mac', 4: 'Apr', 5: 'Mei', 6: 'Jun',
    7: 'Jul', 8: 'Ogo', 9: 'Sep', 10: 'Okt', 11: 'Nov', 12: 'Dis'
}


# ═══════════════════════════════════════════════════════════
# SACRIFICE TYPES & TARIFFS
# ═══════════════════════════════════════════════════════════

KORBAN_SUNAT = 'korban_sunat'
KORBAN_NAZAR = 'korban_nazar'
AQIQAH = 'aqiqah'

SACRIFICE_TYPES = (KORBAN_SUNAT, KORBAN_NAZAR, AQIQAH)

SACRIFICE_TYPE_LABELS = {
    KORBAN_SUNAT: 'Korban Sunat',
    KORBAN_NAZAR: 'Korban Nazar',
    AQIQAH: 'Aqiqah',
}

SACRIFICE_TYPE_DESCRIPTIONS = {
    KORBAN_SUNAT: 'Korban sunat pada Hari Raya Haji',
    KORBAN_NAZAR: 'Korban nazar atas janji kepada Allah',
    AQIQAH: 'Aqiqah untuk anak yang baru lahir',
}

# RM per month per participant
DEFAULT_TARIFFS = {
    KORBAN_SUNAT: 100,
    KORBAN_NAZAR: 100,
    AQIQAH: 100,
}


def to_amount(value) -> Decimal:
    """Money as Decimal; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount {value!r}") from e


def parse_period(period: str) -> Tuple[int, int]:
    """'2025-08' → (2025, 8). Raises ValueError on anything else."""
    m = PERIOD_RE.match(period or '')
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ValueError(f"Invalid period '{period}', expected YYYY-MM")
    return int(m.group(1)), int(m.group(2))


def month_index(period: str) -> int:
    """Whole-month ordinal (year*12 + month) used for month arithmetic."""
    year, month = parse_period(period)
    return year * 12 + month


def period_of(d: date) -> str:
    return d.strftime('%Y-%m')


def months_between(start_period: str, end_period: str) -> int:
    """Signed whole months from `start_period` to `end_period` ('2025-08' → '2025-10' = 2)."""
    return month_index(end_period) - month_index(start_period)


def generate_periods(start: str, length: int) -> List[str]:
    """
    Consecutive periods starting at `start`.
    e.g. generate_periods('2025-11', 3) → ['2025-11', '2025-12', '2026-01']
    """
    year, month = parse_period(start)
    first = date(year, month, 1)
    return [period_of(first + relativedelta(months=i)) for i in range(length)]


def period_label(period: str, short: bool = False) -> str:
    year, month = parse_period(period)
    labels = BULAN_LABEL_SHORT if short else BULAN_LABEL
    return f"{labels[month]} {year}"


@dataclass(frozen=True)
class InstallmentSchedule:
    """Ordered, immutable collection periods plus the tariff table."""

    months: Tuple[str, ...]
    tariffs: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TARIFFS))

    def __post_init__(self):
        if not self.months:
            raise ValueError("Installment schedule cannot be empty")
        ordinals = [month_index(m) for m in self.months]
        if ordinals != sorted(set(ordinals)):
            raise ValueError("Installment schedule must be strictly increasing")

    @classmethod
    def build(cls, start: str, length: int, tariffs: Optional[Dict[str, int]] = None):
        return cls(
            months=tuple(generate_periods(start, length)),
            tariffs=dict(tariffs or DEFAULT_TARIFFS),
        )

    def __len__(self) -> int:
        return len(self.months)

    def __iter__(self):
        return iter(self.months)

    def contains(self, period: str) -> bool:
        return period in self.months

    def index_of(self, period: str) -> int:
        """Position in the schedule, -1 if the period is outside it."""
        try:
            return self.months.index(period)
        except ValueError:
            return -1

    def labels(self) -> Dict[str, str]:
        return {m: period_label(m) for m in self.months}

    def current_month(self, today: date) -> str:
        return period_of(today)

    def tariff_for(self, sacrifice_type: Optional[str]) -> int:
        """Monthly tariff for a sacrifice type; unknown types are charged as korban sunat."""
        if sacrifice_type in self.tariffs:
            return self.tariffs[sacrifice_type]
        return self.tariffs.get(KORBAN_SUNAT, DEFAULT_TARIFFS[KORBAN_SUNAT])

    def total_for(self, sacrifice_type: Optional[str]) -> int:
        return self.tariff_for(sacrifice_type) * len(self.months)
