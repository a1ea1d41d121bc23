from datetime import date
from decimal import Decimal

import pytest

from korban.config import LedgerConfig, load_config
from korban.services.installment_schedule import (
    AQIQAH,
    KORBAN_NAZAR,
    KORBAN_SUNAT,
    InstallmentSchedule,
    generate_periods,
    months_between,
    parse_period,
    period_label,
    to_amount,
)


# --- periods ---

def test_generate_periods_crosses_year():
    assert generate_periods("2025-11", 3) == ["2025-11", "2025-12", "2026-01"]


def test_default_schedule_is_ogos_to_mac():
    schedule = LedgerConfig().schedule
    assert len(schedule) == 8
    assert schedule.months[0] == "2025-08"
    assert schedule.months[-1] == "2026-03"


def test_months_between_is_signed():
    assert months_between("2025-08", "2025-10") == 2
    assert months_between("2025-12", "2026-01") == 1
    assert months_between("2026-01", "2025-12") == -1


@pytest.mark.parametrize("bad", ["2025-13", "2025-8", "25-08", "", "Ogos"])
def test_parse_period_rejects_malformed(bad):
    with pytest.raises(ValueError):
        parse_period(bad)


def test_malay_labels():
    assert period_label("2025-08") == "Ogos 2025"
    assert period_label("2025-12", short=True) == "Dis 2025"


def test_index_and_contains():
    schedule = InstallmentSchedule.build("2025-08", 8)
    assert schedule.index_of("2025-10") == 2
    assert schedule.index_of("2024-01") == -1
    assert schedule.contains("2026-03")
    assert not schedule.contains("2026-04")
    assert schedule.current_month(date(2025, 9, 30)) == "2025-09"


def test_schedule_must_increase():
    with pytest.raises(ValueError):
        InstallmentSchedule(months=("2025-09", "2025-08"))
    with pytest.raises(ValueError):
        InstallmentSchedule(months=())


# --- tariffs ---

def test_tariff_per_type_and_fallback():
    schedule = InstallmentSchedule.build("2025-08", 8, {KORBAN_SUNAT: 100, KORBAN_NAZAR: 120, AQIQAH: 150})
    assert schedule.tariff_for(AQIQAH) == 150
    assert schedule.tariff_for("unknown") == 100
    assert schedule.tariff_for(None) == 100
    assert schedule.total_for(KORBAN_NAZAR) == 960


def test_to_amount_keeps_decimal_precision():
    assert to_amount(0.1) == Decimal("0.1")
    assert to_amount("50.50") == Decimal("50.50")
    with pytest.raises(ValueError):
        to_amount("abc")


# --- config ---

def test_load_config_env_overrides():
    config = load_config({
        "KORBAN_SCHEDULE_START": "2026-01",
        "KORBAN_SCHEDULE_LENGTH": "4",
        "KORBAN_TARIFF_AQIQAH": "150",
        "KORBAN_LOG_LEVEL": "DEBUG",
    })
    assert config.schedule.months == ("2026-01", "2026-02", "2026-03", "2026-04")
    assert config.tariffs[AQIQAH] == 150
    assert config.tariffs[KORBAN_SUNAT] == 100
    assert config.log_level == "DEBUG"


def test_load_config_defaults_without_env():
    config = load_config({})
    assert config.database_url == "sqlite:///./korban.db"
    assert config.currency == "RM"
    assert config.timezone_hours == 8


def test_money_format():
    config = LedgerConfig()
    assert config.money(100) == "RM100"
    assert config.money(Decimal("50.5")) == "RM50.50"
    assert config.money(Decimal("100.00")) == "RM100"
