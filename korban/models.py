"""
Models: Korban Tracker
korban/models.py

Principles:
1. ONE ROW PER (participant, month) in payments, enforced by upsert in the
   Payment Record Store, not by the table, so legacy duplicates stay visible
   to the integrity scan.
2. participant_credits.credit_balance == SUM(credit_transactions.amount)
   for that participant, always written together.
3. Payments keep a bare participant_id (no FK): rows from imports may point
   at participants that no longer exist, and the scan reports them.
4. Credit accounts and audit entries outlive a purged participant: money
   received and who changed what are never deleted.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, Boolean, DateTime, Text, Numeric, Index, JSON
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from korban.database import Base
from korban.services.installment_schedule import KORBAN_SUNAT


# --- ENUMS ---
class CreditTransactionType(str, enum.Enum):
    PAYMENT = "payment"         # money received (+)
    USAGE = "usage"             # installment settled from credit (-)
    ADJUSTMENT = "adjustment"   # admin correction (+)


class ChangeRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, enum.Enum):
    DETAIL_CHANGE_REQUESTED = "detail_change_requested"
    DETAIL_CHANGE_APPROVED = "detail_change_approved"
    DETAIL_CHANGE_REJECTED = "detail_change_rejected"
    DETAIL_UPDATED = "detail_updated"              # direct admin edit
    ARCHIVED = "archived"
    RESTORED = "restored"
    PURGED = "purged"


# --- CORE ---
class Group(Base):
    __tablename__ = "groups"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)  # "Kumpulan 1"
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    participants = relationship("Participant", back_populates="group")


class Participant(Base):
    __tablename__ = "participants"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=True, index=True)

    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(200), nullable=True)
    sacrifice_type = Column(String(20), nullable=False, default=KORBAN_SUNAT)

    # Soft delete: archived participants keep their payments for audit
    archived_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    group = relationship("Group", back_populates="participants")

    @property
    def is_active(self) -> bool:
        return self.archived_at is None


# --- LEDGER ---
class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_participant_month", "participant_id", "month"),
        Index("ix_payments_month", "month"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(Integer, nullable=False)
    month = Column(String(7), nullable=False)           # '2025-08'

    amount = Column(Numeric(10, 2), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ParticipantCredit(Base):
    __tablename__ = "participant_credits"
    id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(Integer, nullable=False, unique=True, index=True)

    credit_balance = Column(Numeric(12, 2), nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship(
        "CreditTransaction",
        back_populates="credit",
        order_by="CreditTransaction.id",
        cascade="all, delete-orphan",
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    credit_id = Column(Integer, ForeignKey("participant_credits.id"), nullable=False, index=True)
    participant_id = Column(Integer, nullable=False, index=True)

    date = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)     # signed
    type = Column(String(20), nullable=False)           # payment, usage, adjustment
    receipt_id = Column(String(100), nullable=True)     # source ref of a payment
    month = Column(String(7), nullable=True)            # month settled by a usage
    description = Column(Text, nullable=False, default="")

    credit = relationship("ParticipantCredit", back_populates="transactions")


# --- CHANGE REQUESTS / AUDIT ---
class ParticipantChangeRequest(Base):
    __tablename__ = "participant_change_requests"
    id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True)

    requested_by = Column(String(100), nullable=False)     # participant user / phone
    requested_at = Column(DateTime(timezone=True), nullable=False)
    changes = Column(JSON, nullable=False)                 # {"phone": "...", "sacrifice_type": "..."}
    status = Column(String(20), nullable=False, default=ChangeRequestStatus.PENDING.value, index=True)

    approved_by = Column(String(100), nullable=True)       # admin who approved or rejected
    approved_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(Integer, nullable=False, index=True)  # no FK: survives a purge

    action = Column(String(40), nullable=False)
    performed_by = Column(String(100), nullable=False)
    performed_at = Column(DateTime(timezone=True), nullable=False)

    field = Column(String(40), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    request_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
