from decimal import Decimal

import pytest

from korban.services.credit_account import CreditAccount
from korban.services.errors import InvalidAmount, InvalidMonth, UnknownParticipant, ValidationError
from korban.services.ledger_service import LedgerService
from korban.services.lump_sum_reconciler import LumpSumReconciler
from korban.services.payment_store import PaymentRecordStore


@pytest.fixture
def reconciler(db, config):
    return LumpSumReconciler(db, config)


def _paid_months(db, config, participant_id):
    store = PaymentRecordStore(db, config)
    return [p.month for p in store.get_payments(participant_id) if p.is_paid]


def test_exact_amount_marks_all_months(db, config, reconciler, make_participant):
    p = make_participant()
    result = reconciler.process_lump_sum(p.id, 300, ["2025-08", "2025-09", "2025-10"], "R-100")

    assert result.months_marked_paid == 3
    assert result.credit_delta == Decimal("0")
    assert result.summary == "3 payments created, exact amount"
    assert _paid_months(db, config, p.id) == ["2025-08", "2025-09", "2025-10"]
    assert CreditAccount(db, config).get_balance(p.id) == Decimal("0")


def test_shortfall_marks_first_month_only(db, config, reconciler, make_participant):
    p = make_participant()
    result = reconciler.process_lump_sum(p.id, 150, ["2025-08", "2025-09"], "R-101")

    assert result.months_marked_paid == 1
    assert result.paid_months == ["2025-08"]
    assert result.unpaid_months == ["2025-09"]
    assert result.credit_delta == Decimal("-50")
    assert result.summary == "1 payments created, RM50 shortfall"
    assert _paid_months(db, config, p.id) == ["2025-08"]
    # the leftover stays as credit for later
    assert CreditAccount(db, config).get_balance(p.id) == Decimal("50")


def test_given_order_is_respected(db, config, reconciler, make_participant):
    p = make_participant()
    result = reconciler.process_lump_sum(p.id, 100, ["2025-10", "2025-08"])
    assert result.paid_months == ["2025-10"]


def test_surplus_rolls_forward(db, config, reconciler, make_participant):
    p = make_participant()
    result = reconciler.process_lump_sum(p.id, 250, ["2025-08", "2025-09"])

    assert result.months_marked_paid == 2
    assert result.credit_delta == Decimal("50")
    assert result.summary == "2 payments created, RM50 credit remaining"
    assert CreditAccount(db, config).get_balance(p.id) == Decimal("50")


def test_log_matches_balance_after_reconcile(db, config, reconciler, make_participant):
    p = make_participant()
    reconciler.process_lump_sum(p.id, 350, ["2025-08", "2025-09", "2025-10", "2025-11"], "R-1")

    credit = CreditAccount(db, config)
    types = [t.type for t in credit.get_transactions(p.id)]
    assert types == ["payment", "usage", "usage", "usage"]
    assert credit.verify_balance(p.id)["consistent"] is True


@pytest.mark.parametrize("kwargs,error", [
    ({"total_amount": 0, "target_months": ["2025-08"]}, InvalidAmount),
    ({"total_amount": 100, "target_months": ["2027-01"]}, InvalidMonth),
    ({"total_amount": 100, "target_months": []}, ValidationError),
    ({"total_amount": 200, "target_months": ["2025-08", "2025-08"]}, ValidationError),
])
def test_rejected_before_any_mutation(db, config, reconciler, make_participant, kwargs, error):
    p = make_participant()
    with pytest.raises(error):
        reconciler.process_lump_sum(p.id, **kwargs)
    assert CreditAccount(db, config).get_account(p.id) is None
    assert _paid_months(db, config, p.id) == []


def test_unknown_participant(reconciler):
    with pytest.raises(UnknownParticipant):
        reconciler.process_lump_sum(999, 100, ["2025-08"])


def test_facade_accepts_month_generator(db, config, make_participant):
    p = make_participant()
    months = (m for m in ["2025-08", "2025-09"])

    result = LedgerService(db, config).process_lump_sum(p.id, 200, months, "R-110")

    assert result.months_marked_paid == 2
    assert _paid_months(db, config, p.id) == ["2025-08", "2025-09"]
    assert CreditAccount(db, config).get_balance(p.id) == Decimal("0")
