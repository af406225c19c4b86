"""Reconciliation sweep: repair expenses left behind by interrupted requests.

Two things can go missing when a request dies half way:
1. A proposal whose last approval was written but which was never finalized.
2. A finalized expense whose dues were never written.

Both repairs go through the same guarded entry points as the live path, so a
sweep over a consistent group changes nothing and can run as often as
clients like.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import ConflictError, SplitError
from utils.ledger import expected_entry_count, get_shares, ledger_exists, materialize_ledger
from utils.notifications import ActivityNotifier
from utils.proposals import finalize_expense, is_fully_approved
from utils.validation import get_group_or_404

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    repaired: int = 0
    failed: int = 0
    failed_expense_ids: list[int] = field(default_factory=list)

    def record_failure(self, expense_id: int) -> None:
        self.failed += 1
        self.failed_expense_ids.append(expense_id)


def _expense_ids(db: Session, group_id: int, state: str) -> list[int]:
    rows = db.query(models.Expense.id).filter(
        models.Expense.group_id == group_id,
        models.Expense.state == state
    ).order_by(models.Expense.id).all()
    return [row.id for row in rows]


def _repair_pending(db: Session, expense_id: int, notifier: Optional[ActivityNotifier]) -> bool:
    if not is_fully_approved(get_shares(db, expense_id)):
        return False
    return finalize_expense(db, expense_id, notifier=notifier)


def _repair_missing_dues(db: Session, expense_id: int) -> bool:
    expense = db.query(models.Expense).filter(models.Expense.id == expense_id).first()
    if expense is None or ledger_exists(db, expense_id):
        return False

    if expense.payer_id is None:
        raise ConflictError(f"Expense {expense_id} is finalized but has no payer")

    if expected_entry_count(expense, get_shares(db, expense_id)) == 0:
        # Payer holds every share; no dues is the consistent state
        return False

    created = materialize_ledger(db, expense)
    db.commit()
    return created > 0


def reconcile_group(
    db: Session,
    group_id: int,
    notifier: Optional[ActivityNotifier] = None
) -> ReconcileResult:
    """
    Finalize fully approved proposals and backfill missing dues for one group.

    Each expense is repaired on its own; a failure is logged, counted and
    skipped without stopping the rest of the sweep.
    """
    get_group_or_404(db, group_id)
    result = ReconcileResult()
    # Each expense counts at most once per sweep
    handled = set()

    for expense_id in _expense_ids(db, group_id, models.ExpenseState.PROPOSED):
        try:
            if _repair_pending(db, expense_id, notifier):
                logger.info(f"Reconcile: finalized missed proposal {expense_id}")
                result.repaired += 1
                handled.add(expense_id)
        except (SplitError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning(f"Reconcile: could not finalize expense {expense_id}: {e}")
            result.record_failure(expense_id)
            handled.add(expense_id)

    for expense_id in _expense_ids(db, group_id, models.ExpenseState.FINALIZED):
        if expense_id in handled:
            continue
        try:
            if _repair_missing_dues(db, expense_id):
                logger.info(f"Reconcile: materialized missing dues for expense {expense_id}")
                result.repaired += 1
        except (SplitError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning(f"Reconcile: could not repair dues for expense {expense_id}: {e}")
            result.record_failure(expense_id)

    if result.repaired or result.failed:
        logger.info(f"Reconcile group {group_id}: repaired={result.repaired} failed={result.failed}")
    return result
