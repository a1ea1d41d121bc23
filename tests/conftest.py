import os

# Point the process-wide engine at memory before korban is imported
os.environ.setdefault("KORBAN_DATABASE_URL", "sqlite://")

from datetime import date

import pytest
from sqlalchemy.orm import sessionmaker

from korban import models
from korban.config import LedgerConfig
from korban.database import Base, make_engine


@pytest.fixture
def today():
    """Mid-cycle: Aug overdue 2, Sep overdue 1, Oct current, Nov..Mar future."""
    return date(2025, 10, 15)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSession()
    yield session
    session.close()


@pytest.fixture
def config():
    return LedgerConfig(database_url="sqlite://")


@pytest.fixture
def make_participant(db):
    def _make(name="Ahmad", sacrifice_type="korban_sunat", group_id=None):
        participant = models.Participant(name=name, sacrifice_type=sacrifice_type, group_id=group_id)
        db.add(participant)
        db.commit()
        return participant
    return _make


@pytest.fixture
def add_payment(db):
    """Raw insert, bypassing the upsert (used to seed legacy duplicates)."""
    def _add(participant_id, month, amount=100, is_paid=True):
        payment = models.Payment(participant_id=participant_id, month=month, amount=amount, is_paid=is_paid)
        db.add(payment)
        db.commit()
        return payment
    return _add
