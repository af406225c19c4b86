"""Expense proposals: creation, per-member approval, finalization and deletion.

An expense starts as a proposal and only affects balances once every member
has approved their share. Approvals and finalization are written as single
conditional UPDATEs so concurrent sessions cannot lose an approval or
finalize the same expense twice.
"""

import logging
from typing import Optional
from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

import models
from errors import ConflictError, NotFoundError, ValidationError
from utils.allocation import allocate_shares, format_weight, normalize_weight
from utils.ledger import delete_ledger_entries, get_shares, materialize_ledger
from utils.notifications import (
    ActivityNotifier,
    EXPENSE_APPROVED,
    EXPENSE_DECLINED,
    EXPENSE_DELETED,
    EXPENSE_FINALIZED,
    EXPENSE_PROPOSED,
)
from utils.validation import (
    get_expense_or_404,
    get_group_or_404,
    normalize_date,
    validate_expense_participants,
)

logger = logging.getLogger(__name__)


def is_fully_approved(shares: list[models.ExpenseShare]) -> bool:
    """True when the expense has shares and every one of them is approved."""
    return bool(shares) and all(share.approved for share in shares)


def _unapproved_share_exists(expense_id: int):
    # SQL form of `not is_fully_approved`, evaluated inside the finalize UPDATE
    return exists().where(and_(
        models.ExpenseShare.expense_id == expense_id,
        models.ExpenseShare.approved == False
    ))


def _is_proposed(expense_id: int):
    return exists().where(and_(
        models.Expense.id == expense_id,
        models.Expense.state == models.ExpenseState.PROPOSED
    ))


def _validated_allocation(total_cents: int, weights: list[tuple]) -> list[tuple[int, int, str]]:
    """Check the proposal inputs and allocate. Returns (member_id, cents, weight label) triples."""
    if isinstance(total_cents, bool) or not isinstance(total_cents, int):
        raise ValidationError("Total amount must be a whole number of cents")
    if total_cents < 0:
        raise ValidationError("Total amount cannot be negative")
    if not weights:
        raise ValidationError("An expense needs at least one member")

    member_ids = [member_id for member_id, _ in weights]
    if len(set(member_ids)) != len(member_ids):
        raise ValidationError("Each member can only appear once in a split")

    normalized = []
    for member_id, weight in weights:
        ratio = normalize_weight(weight)
        if ratio < 0 or ratio > 100:
            raise ValidationError(f"Weight for member {member_id} must be between 0 and 100")
        normalized.append((member_id, ratio))

    if not any(ratio > 0 for _, ratio in normalized):
        raise ValidationError("At least one member must have a positive weight")

    allocation = allocate_shares(total_cents, normalized)
    return [
        (member_id, cents, format_weight(ratio))
        for (member_id, cents), (_, ratio) in zip(allocation, normalized)
    ]


def _add_shares(db: Session, expense_id: int, allocation: list[tuple[int, int, str]], approver_id: int) -> None:
    for member_id, cents, weight_label in allocation:
        db.add(models.ExpenseShare(
            expense_id=expense_id,
            member_id=member_id,
            individual_amount=cents,
            weight=weight_label,
            approved=member_id == approver_id  # Auto-approve the author
        ))


def _member_ids(db: Session, expense_id: int) -> list[int]:
    return [share.member_id for share in get_shares(db, expense_id)]


def create_proposal(
    db: Session,
    group_id: int,
    title: str,
    total_cents: int,
    weights: list[tuple],
    creator_id: int,
    payer_id: Optional[int] = None,
    due_date: Optional[str] = None,
    notes: Optional[str] = None,
    notifier: Optional[ActivityNotifier] = None
) -> models.Expense:
    """Allocate the total across the weighted members and store the expense as a proposal."""
    if not title or not title.strip():
        raise ValidationError("Title is required")

    allocation = _validated_allocation(total_cents, weights)

    get_group_or_404(db, group_id)
    validate_expense_participants(db, group_id, [m for m, _, _ in allocation] + [creator_id], payer_id)

    expense = models.Expense(
        group_id=group_id,
        title=title.strip(),
        notes=notes,
        total_amount=total_cents,
        payer_id=payer_id,
        due_date=normalize_date(due_date),
        state=models.ExpenseState.PROPOSED,
        created_by_id=creator_id
    )
    db.add(expense)
    db.flush()

    _add_shares(db, expense.id, allocation, creator_id)
    db.commit()
    db.refresh(expense)

    logger.info(f"Expense {expense.id} proposed in group {group_id}: {total_cents} cents across {len(allocation)} members")

    if notifier:
        notifier.emit(
            db, EXPENSE_PROPOSED,
            [m for m, _, _ in allocation if m != creator_id],
            expense_id=expense.id, expense_title=expense.title, actor_id=creator_id
        )

    # A proposal whose only member is the creator is already unanimous
    finalize_expense(db, expense.id, notifier=notifier)
    db.refresh(expense)
    return expense


def update_proposal(
    db: Session,
    expense_id: int,
    editor_id: int,
    title: str,
    total_cents: int,
    weights: list[tuple],
    payer_id: Optional[int] = None,
    due_date: Optional[str] = None,
    notes: Optional[str] = None,
    notifier: Optional[ActivityNotifier] = None
) -> models.Expense:
    """
    Edit a proposal that has not been finalized yet.

    Shares are re-allocated and every approval except the editor's is reset,
    since members approved the old amounts.
    """
    expense = get_expense_or_404(db, expense_id)
    if not title or not title.strip():
        raise ValidationError("Title is required")

    allocation = _validated_allocation(total_cents, weights)
    validate_expense_participants(db, expense.group_id, [m for m, _, _ in allocation], payer_id)

    updated = db.query(models.Expense).filter(
        models.Expense.id == expense_id,
        models.Expense.state == models.ExpenseState.PROPOSED
    ).update({
        models.Expense.title: title.strip(),
        models.Expense.total_amount: total_cents,
        models.Expense.payer_id: payer_id,
        models.Expense.due_date: normalize_date(due_date),
        models.Expense.notes: notes,
    }, synchronize_session=False)

    if updated != 1:
        db.rollback()
        raise ConflictError("Only proposed expenses can be edited")

    db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id == expense_id
    ).delete(synchronize_session=False)
    _add_shares(db, expense_id, allocation, editor_id)
    db.commit()
    db.refresh(expense)

    logger.info(f"Expense {expense_id} edited by {editor_id}; approvals reset")

    if notifier:
        notifier.emit(
            db, EXPENSE_PROPOSED,
            [m for m, _, _ in allocation if m != editor_id],
            expense_id=expense.id, expense_title=expense.title, actor_id=editor_id
        )

    finalize_expense(db, expense_id, notifier=notifier)
    db.refresh(expense)
    return expense


def _require_share(db: Session, expense_id: int, member_id: int) -> None:
    share = db.query(models.ExpenseShare.id).filter(
        models.ExpenseShare.expense_id == expense_id,
        models.ExpenseShare.member_id == member_id
    ).first()
    if share is None:
        raise NotFoundError(f"Member {member_id} has no share in this expense")


def approve_share(
    db: Session,
    expense_id: int,
    member_id: int,
    notifier: Optional[ActivityNotifier] = None
) -> models.Expense:
    """Approve a member's share; finalizes the expense if that makes approval unanimous."""
    expense = get_expense_or_404(db, expense_id)

    updated = db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id == expense_id,
        models.ExpenseShare.member_id == member_id,
        models.ExpenseShare.approved == False,
        _is_proposed(expense_id)
    ).update({models.ExpenseShare.approved: True}, synchronize_session=False)

    if updated != 1:
        db.rollback()
        _require_share(db, expense_id, member_id)
        # Share already approved (or expense already finalized): nothing new to
        # announce, but retry a finalization an earlier request may have missed
        finalize_expense(db, expense_id, notifier=notifier)
        db.refresh(expense)
        return expense

    db.commit()
    logger.info(f"Member {member_id} approved expense {expense_id}")

    if notifier:
        notifier.emit(
            db, EXPENSE_APPROVED,
            [m for m in _member_ids(db, expense_id) if m != member_id],
            expense_id=expense_id, expense_title=expense.title, actor_id=member_id
        )

    finalize_expense(db, expense_id, notifier=notifier)
    db.refresh(expense)
    return expense


def decline_share(
    db: Session,
    expense_id: int,
    member_id: int,
    notifier: Optional[ActivityNotifier] = None
) -> models.Expense:
    """
    Withdraw a member's approval.

    The share stays in place and the expense stays proposed; it cannot be
    finalized until the member approves again or the expense is edited or deleted.
    """
    expense = get_expense_or_404(db, expense_id)

    updated = db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id == expense_id,
        models.ExpenseShare.member_id == member_id,
        _is_proposed(expense_id)
    ).update({models.ExpenseShare.approved: False}, synchronize_session=False)

    if updated != 1:
        db.rollback()
        _require_share(db, expense_id, member_id)
        raise ConflictError("Finalized expenses cannot be declined")

    db.commit()
    logger.info(f"Member {member_id} declined expense {expense_id}")

    if notifier:
        notifier.emit(
            db, EXPENSE_DECLINED,
            [m for m in _member_ids(db, expense_id) if m != member_id] + [expense.created_by_id],
            expense_id=expense_id, expense_title=expense.title, actor_id=member_id
        )

    db.refresh(expense)
    return expense


def finalize_expense(
    db: Session,
    expense_id: int,
    notifier: Optional[ActivityNotifier] = None
) -> bool:
    """
    Move a fully approved proposal to finalized and materialize its dues.

    The state change is one conditional UPDATE (still proposed, no unapproved
    share); only the caller whose UPDATE hits the row writes the ledger, in the
    same transaction. Returns True if this call finalized the expense, False
    if it was a no-op.
    """
    expense = get_expense_or_404(db, expense_id)
    if expense.state != models.ExpenseState.PROPOSED:
        return False

    if not is_fully_approved(get_shares(db, expense_id)):
        return False

    updated = db.query(models.Expense).filter(
        models.Expense.id == expense_id,
        models.Expense.state == models.ExpenseState.PROPOSED,
        ~_unapproved_share_exists(expense_id)
    ).update({
        models.Expense.state: models.ExpenseState.FINALIZED,
        models.Expense.finalized_at: models.utc_now(),
    }, synchronize_session=False)

    if updated != 1:
        db.rollback()
        return False

    db.refresh(expense)
    created = materialize_ledger(db, expense)
    db.commit()

    logger.info(f"Expense {expense_id} finalized with {created} ledger entries")

    if notifier:
        notifier.emit(
            db, EXPENSE_FINALIZED, _member_ids(db, expense_id),
            expense_id=expense_id, expense_title=expense.title
        )
    return True


def delete_expense(
    db: Session,
    expense_id: int,
    actor_id: Optional[int] = None,
    notifier: Optional[ActivityNotifier] = None
) -> None:
    """Cancel and remove an expense together with its shares and dues."""
    expense = get_expense_or_404(db, expense_id)
    title = expense.title
    member_ids = _member_ids(db, expense_id)

    # Any finalize racing with this delete now fails its state check
    db.query(models.Expense).filter(
        models.Expense.id == expense_id
    ).update({models.Expense.state: models.ExpenseState.CANCELLED}, synchronize_session=False)

    removed_dues = delete_ledger_entries(db, expense_id)
    db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id == expense_id
    ).delete(synchronize_session=False)
    db.delete(expense)
    db.commit()

    logger.info(f"Expense {expense_id} deleted ({len(member_ids)} shares, {removed_dues} ledger entries)")

    if notifier:
        notifier.emit(
            db, EXPENSE_DELETED, [m for m in member_ids if m != actor_id],
            expense_id=expense_id, expense_title=title, actor_id=actor_id
        )


def pending_proposals_for_member(db: Session, member_id: int) -> list[models.Expense]:
    """Proposals still waiting for this member's approval."""
    return db.query(models.Expense).join(
        models.ExpenseShare, models.ExpenseShare.expense_id == models.Expense.id
    ).filter(
        models.ExpenseShare.member_id == member_id,
        models.ExpenseShare.approved == False,
        models.Expense.state == models.ExpenseState.PROPOSED
    ).order_by(models.Expense.created_at.desc(), models.Expense.id.desc()).all()
