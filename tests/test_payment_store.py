from decimal import Decimal

import pytest

from korban.config import LedgerConfig
from korban.models import Payment
from korban.services.errors import InvalidAmount, InvalidMonth, UnknownParticipant
from korban.services.payment_store import PaymentRecordStore


@pytest.fixture
def store(db, config):
    return PaymentRecordStore(db, config)


def _rows(db, participant_id, month):
    return db.query(Payment).filter_by(participant_id=participant_id, month=month).all()


def test_upsert_twice_keeps_one_row_with_latest_amount(db, store, make_participant):
    p = make_participant()
    first_id = store.upsert_payment(p.id, "2025-08", 100, is_paid=True)
    second_id = store.upsert_payment(p.id, "2025-08", 80, is_paid=True)

    rows = _rows(db, p.id, "2025-08")
    assert first_id == second_id
    assert len(rows) == 1
    assert rows[0].amount == Decimal("80")


def test_upsert_sets_and_clears_paid_date(db, store, make_participant):
    p = make_participant()
    store.upsert_payment(p.id, "2025-09", 100, is_paid=True)
    assert store.find(p.id, "2025-09").paid_date is not None

    store.upsert_payment(p.id, "2025-09", 100, is_paid=False)
    row = store.find(p.id, "2025-09")
    assert row.is_paid is False
    assert row.paid_date is None


def test_upsert_rejects_month_outside_schedule(store, make_participant):
    p = make_participant()
    with pytest.raises(InvalidMonth):
        store.upsert_payment(p.id, "2026-04", 100, is_paid=True)


@pytest.mark.parametrize("amount", [0, -10, "abc"])
def test_upsert_rejects_bad_paid_amount(db, store, make_participant, amount):
    p = make_participant()
    with pytest.raises(InvalidAmount):
        store.upsert_payment(p.id, "2025-08", amount, is_paid=True)
    assert _rows(db, p.id, "2025-08") == []


def test_set_paid_uses_participant_tariff(db, make_participant):
    config = LedgerConfig(tariffs={"korban_sunat": 100, "korban_nazar": 100, "aqiqah": 150})
    store = PaymentRecordStore(db, config)
    p = make_participant(sacrifice_type="aqiqah")

    store.set_paid(p.id, "2025-08", True)
    assert store.find(p.id, "2025-08").amount == Decimal("150")


def test_set_paid_toggle_keeps_amount(store, make_participant):
    p = make_participant()
    store.upsert_payment(p.id, "2025-08", 90, is_paid=True)
    store.set_paid(p.id, "2025-08", False)
    store.set_paid(p.id, "2025-08", True)
    row = store.find(p.id, "2025-08")
    assert row.is_paid is True
    assert row.amount == Decimal("90")


def test_set_unpaid_without_row_is_noop(db, store, make_participant):
    p = make_participant()
    assert store.set_paid(p.id, "2025-08", False) is None
    assert _rows(db, p.id, "2025-08") == []


def test_set_paid_unknown_participant(store):
    with pytest.raises(UnknownParticipant):
        store.set_paid(999, "2025-08", True)


def test_bulk_set_paid(db, store, make_participant):
    a, b = make_participant("Ali"), make_participant("Bakar")
    assert store.bulk_set_paid([a.id, b.id, a.id], "2025-10", True) == 2
    assert all(store.find(pid, "2025-10").is_paid for pid in (a.id, b.id))


def test_bulk_set_paid_validates_before_writing(db, store, make_participant):
    a = make_participant()
    with pytest.raises(UnknownParticipant):
        store.bulk_set_paid([a.id, 999], "2025-10", True)
    assert store.find(a.id, "2025-10") is None
