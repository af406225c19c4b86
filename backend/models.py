from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint, UniqueConstraint
from database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExpenseState:
    PROPOSED = "proposed"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    full_name = Column(String)
    is_active = Column(Boolean, default=True)

class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String)
    created_by_id = Column(Integer)

class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, index=True)
    user_id = Column(Integer, index=True)

class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, index=True)
    title = Column(String)
    notes = Column(String, nullable=True)
    total_amount = Column(Integer) # Stored in cents
    payer_id = Column(Integer, nullable=True) # May be decided after finalization
    due_date = Column(String, nullable=True) # ISO date string
    state = Column(String, default=ExpenseState.PROPOSED, index=True)
    created_by_id = Column(Integer)
    created_at = Column(DateTime, default=utc_now)
    finalized_at = Column(DateTime, nullable=True)

class ExpenseShare(Base):
    __tablename__ = "expense_shares"
    __table_args__ = (
        UniqueConstraint("expense_id", "member_id", name="uq_share_member"),
        CheckConstraint("individual_amount >= 0", name="ck_share_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, index=True)
    member_id = Column(Integer, index=True)
    individual_amount = Column(Integer) # This member's portion in cents
    weight = Column(String, nullable=True) # Weight as entered, for display
    approved = Column(Boolean, default=False)

class LedgerEntry(Base):
    """A due: ower_id owes payer_id `amount` cents for one expense."""
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("expense_id", "ower_id", name="uq_ledger_expense_ower"),
        CheckConstraint("payer_id != ower_id", name="ck_ledger_not_self"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payer_id = Column(Integer, index=True)
    ower_id = Column(Integer, index=True)
    expense_id = Column(Integer, index=True)
    amount = Column(Integer)
    created_at = Column(DateTime, default=utc_now)

class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True) # Recipient
    kind = Column(String)
    title = Column(String)
    message = Column(String)
    expense_id = Column(Integer, nullable=True)
    actor_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utc_now)
