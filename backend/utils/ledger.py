"""Settlement ledger: turn a finalized expense into directed dues.

Each share not belonging to the payer becomes one LedgerEntry (ower -> payer).
The (expense_id, ower_id) unique constraint on ledger_entries backs up the
existence check below when two sessions race to materialize the same expense.
"""

import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from errors import ConflictError
from utils.validation import get_expense_or_404, validate_expense_participants

logger = logging.getLogger(__name__)


def get_shares(db: Session, expense_id: int) -> list[models.ExpenseShare]:
    return db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id == expense_id
    ).order_by(models.ExpenseShare.id).all()


def ledger_exists(db: Session, expense_id: int) -> bool:
    return db.query(models.LedgerEntry.id).filter(
        models.LedgerEntry.expense_id == expense_id
    ).first() is not None


def build_ledger_entries(expense: models.Expense, shares: list[models.ExpenseShare]) -> list[models.LedgerEntry]:
    """One due per non-payer share. Returns [] when the expense has no payer."""
    if expense.payer_id is None:
        return []
    return [
        models.LedgerEntry(
            payer_id=expense.payer_id,
            ower_id=share.member_id,
            expense_id=expense.id,
            amount=share.individual_amount
        )
        for share in shares
        if share.member_id != expense.payer_id
    ]


def expected_entry_count(expense: models.Expense, shares: list[models.ExpenseShare]) -> int:
    return len(build_ledger_entries(expense, shares))


def insert_ledger_entries(db: Session, expense: models.Expense, shares: list[models.ExpenseShare]) -> list[models.LedgerEntry]:
    """
    Insert dues for an expense without any state checks.

    Raises ConflictError (after rolling back the session) if a due for the
    same (expense, ower) already exists.
    """
    entries = build_ledger_entries(expense, shares)
    if not entries:
        return []
    db.add_all(entries)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Ledger entries for expense {expense.id} already exist")
    return entries


def materialize_ledger(db: Session, expense: models.Expense) -> int:
    """
    Create the dues for a finalized expense, at most once.

    Returns the number of entries created; 0 when dues already exist, when the
    payer owns every share, or when no payer has been set yet. Does not commit.
    """
    if expense.state != models.ExpenseState.FINALIZED:
        raise ConflictError(f"Expense {expense.id} is not finalized")

    if expense.payer_id is None:
        logger.warning(f"Expense {expense.id} finalized without a payer; no ledger entries created")
        return 0

    if ledger_exists(db, expense.id):
        return 0

    shares = get_shares(db, expense.id)
    try:
        entries = insert_ledger_entries(db, expense, shares)
    except ConflictError:
        logger.info(f"Ledger for expense {expense.id} was materialized concurrently; skipping")
        return 0

    logger.info(f"Materialized {len(entries)} ledger entries for expense {expense.id}")
    return len(entries)


def delete_ledger_entries(db: Session, expense_id: int) -> int:
    """Remove every due for an expense. Does not commit."""
    return db.query(models.LedgerEntry).filter(
        models.LedgerEntry.expense_id == expense_id
    ).delete(synchronize_session=False)


def claim_payer(db: Session, expense_id: int, payer_id: int) -> int:
    """
    Set the payer of a finalized expense that was finalized without one,
    then materialize its dues.

    Returns the number of ledger entries created.
    """
    expense = get_expense_or_404(db, expense_id)
    validate_expense_participants(db, expense.group_id, [], payer_id=payer_id)

    if expense.state != models.ExpenseState.FINALIZED:
        raise ConflictError("Set the payer by editing the expense until it is finalized")

    updated = db.query(models.Expense).filter(
        models.Expense.id == expense_id,
        models.Expense.state == models.ExpenseState.FINALIZED,
        models.Expense.payer_id.is_(None)
    ).update({models.Expense.payer_id: payer_id}, synchronize_session=False)

    if updated != 1:
        db.rollback()
        raise ConflictError("Expense already has a payer")

    db.refresh(expense)
    created = materialize_ledger(db, expense)
    db.commit()
    logger.info(f"Payer {payer_id} claimed expense {expense_id}")
    return created
