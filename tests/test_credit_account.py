from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from korban.models import CreditTransaction, ParticipantCredit
from korban.services.credit_account import CreditAccount
from korban.services.errors import InvalidAmount, InvalidMonth, UnknownParticipant


@pytest.fixture
def credit(db, config):
    return CreditAccount(db, config)


def test_balance_is_zero_without_account(credit, make_participant):
    p = make_participant()
    assert credit.get_balance(p.id) == Decimal("0")
    assert credit.get_transactions(p.id) == []


def test_account_created_on_first_credit(db, credit, make_participant):
    p = make_participant()
    credit.add_credit(p.id, 250, "R-001", "Resit bank")

    account = credit.get_account(p.id)
    assert account is not None
    assert credit.get_balance(p.id) == Decimal("250")
    tx = credit.get_transactions(p.id)
    assert [(t.type, t.amount, t.receipt_id) for t in tx] == [("payment", Decimal("250"), "R-001")]


def test_credit_conservation(credit, make_participant):
    p = make_participant()
    credit.add_credit(p.id, 250, "R-1", "first")
    assert credit.use_credit(p.id, 100, "2025-08", "Aug")
    credit.adjust_credit(p.id, 30, "correction")
    assert credit.use_credit(p.id, 100, "2025-09", "Sep")

    check = credit.verify_balance(p.id)
    assert check["consistent"] is True
    assert check["balance"] == Decimal("80")
    assert [t.type for t in credit.get_transactions(p.id)] == ["payment", "usage", "adjustment", "usage"]


def test_usage_is_logged_negative_with_month(credit, make_participant):
    p = make_participant()
    credit.add_credit(p.id, 100, None, "cash")
    credit.use_credit(p.id, 100, "2025-08", "Aug")
    usage = credit.get_transactions(p.id)[-1]
    assert usage.amount == Decimal("-100")
    assert usage.month == "2025-08"


def test_no_negative_spend(db, credit, make_participant):
    p = make_participant()
    credit.add_credit(p.id, 50, None, "cash")

    assert credit.use_credit(p.id, 100, "2025-08", "Aug") is False
    assert credit.get_balance(p.id) == Decimal("50")
    assert len(credit.get_transactions(p.id)) == 1


def test_use_without_account_returns_false(db, credit, make_participant):
    p = make_participant()
    assert credit.use_credit(p.id, 100, "2025-08", "Aug") is False
    assert db.query(ParticipantCredit).count() == 0


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_rejected(credit, make_participant, amount):
    p = make_participant()
    with pytest.raises(InvalidAmount):
        credit.add_credit(p.id, amount, None, "x")
    with pytest.raises(InvalidAmount):
        credit.use_credit(p.id, amount, "2025-08", "x")


def test_add_credit_unknown_participant(credit):
    with pytest.raises(UnknownParticipant):
        credit.add_credit(999, 100, None, "x")


def test_use_credit_unknown_participant(db, credit):
    with pytest.raises(UnknownParticipant):
        credit.use_credit(999, 100, "2025-08", "x")
    assert db.query(ParticipantCredit).count() == 0


@pytest.mark.parametrize("month", ["2027-01", "2025-13", "Ogos"])
def test_use_credit_month_outside_schedule(credit, make_participant, month):
    p = make_participant()
    credit.add_credit(p.id, 200, None, "cash")

    with pytest.raises(InvalidMonth):
        credit.use_credit(p.id, 100, month, "x")
    assert credit.get_balance(p.id) == Decimal("200")
    assert len(credit.get_transactions(p.id)) == 1


def test_failed_commit_leaves_no_partial_mutation(db, credit, make_participant, monkeypatch):
    p = make_participant()
    credit.add_credit(p.id, 100, None, "cash")

    def broken_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(SQLAlchemyError):
        credit.use_credit(p.id, 100, "2025-08", "Aug")
    monkeypatch.undo()

    assert credit.get_balance(p.id) == Decimal("100")
    assert db.query(CreditTransaction).count() == 1
    assert credit.verify_balance(p.id)["consistent"] is True


# --- prepaid months / next unpaid ---

@pytest.mark.parametrize("balance,expected", [(0, 0), (99, 0), (100, 1), (250, 2), (-50, 0)])
def test_calculate_prepaid_months(credit, balance, expected):
    assert credit.calculate_prepaid_months(balance) == expected


def test_next_unpaid_month(credit):
    assert credit.get_next_unpaid_month(0, "2025-10") == "2025-11"
    assert credit.get_next_unpaid_month(200, "2025-10") == "2026-01"
    assert credit.get_next_unpaid_month(800, "2025-10") is None
    assert credit.get_next_unpaid_month(500, "2024-01") == "2025-08"


def test_next_unpaid_month_after_cycle_ends(credit):
    assert credit.get_next_unpaid_month(0, "2026-04") is None
    assert credit.get_next_unpaid_month(0, "2026-10") is None
    assert credit.get_next_unpaid_month(0, "2026-03") is None
    assert credit.get_next_unpaid_month(0, "2025-07") == "2025-08"
