"""Expenses router: propose, approve, decline, edit, delete and reconcile expenses."""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user, get_notifier
from utils.ledger import claim_payer
from utils.notifications import ActivityNotifier
from utils.proposals import (
    approve_share,
    create_proposal,
    decline_share,
    delete_expense,
    pending_proposals_for_member,
    update_proposal,
)
from utils.reconciliation import reconcile_group
from utils.splits import weights_for_request
from utils.validation import (
    get_expense_or_404,
    get_group_member_ids,
    get_group_or_404,
    verify_group_membership,
)


router = APIRouter(tags=["expenses"])


def build_expenses_with_shares(db: Session, expenses: list[models.Expense]) -> list[schemas.ExpenseWithShares]:
    """Attach shares and member names to expenses using one query per table."""
    if not expenses:
        return []

    expense_ids = [e.id for e in expenses]

    # 1. Fetch all shares for these expenses
    all_shares = db.query(models.ExpenseShare).filter(
        models.ExpenseShare.expense_id.in_(expense_ids)
    ).order_by(models.ExpenseShare.id).all()

    shares_by_expense = {}
    member_ids = set()
    for share in all_shares:
        shares_by_expense.setdefault(share.expense_id, []).append(share)
        member_ids.add(share.member_id)

    # 2. Batch fetch users
    users = {}
    if member_ids:
        user_records = db.query(models.User).filter(models.User.id.in_(member_ids)).all()
        users = {u.id: u for u in user_records}

    # 3. Assemble the result
    result = []
    for expense in expenses:
        shares = []
        for share in shares_by_expense.get(expense.id, []):
            user = users.get(share.member_id)
            shares.append(schemas.ExpenseShare(
                member_id=share.member_id,
                member_name=(user.full_name or user.email) if user else "Unknown User",
                individual_amount=share.individual_amount,
                weight=share.weight,
                approved=share.approved
            ))

        result.append(schemas.ExpenseWithShares(
            **schemas.Expense.model_validate(expense).model_dump(),
            shares=shares
        ))
    return result


def _resolve_split(db: Session, group_id: int, payload: schemas.ExpenseCreate):
    return weights_for_request(
        split_type=payload.split_type,
        group_member_ids=get_group_member_ids(db, group_id),
        total_amount=payload.total_amount,
        weights=payload.weights,
        amounts=payload.amounts,
        items=payload.items,
        member_ids=payload.member_ids
    )


@router.post("/groups/{group_id}/expenses", response_model=schemas.ExpenseWithShares)
def create_expense(
    group_id: int,
    expense: schemas.ExpenseCreate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    total, weights = _resolve_split(db, group_id, expense)
    db_expense = create_proposal(
        db,
        group_id=group_id,
        title=expense.title,
        total_cents=total,
        weights=weights,
        creator_id=current_user.id,
        payer_id=expense.payer_id,
        due_date=expense.due_date,
        notes=expense.notes,
        notifier=notifier
    )
    return build_expenses_with_shares(db, [db_expense])[0]


@router.get("/groups/{group_id}/expenses", response_model=list[schemas.ExpenseWithShares])
def get_group_expenses(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    # Viewing group activity heals anything a dropped request left behind
    reconcile_group(db, group_id, notifier=notifier)

    expenses = db.query(models.Expense).filter(
        models.Expense.group_id == group_id
    ).order_by(models.Expense.created_at.desc(), models.Expense.id.desc()).all()

    return build_expenses_with_shares(db, expenses)


@router.post("/groups/{group_id}/reconcile", response_model=schemas.ReconcileResult)
def reconcile(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    result = reconcile_group(db, group_id, notifier=notifier)
    return schemas.ReconcileResult(
        repaired=result.repaired,
        failed=result.failed,
        failed_expense_ids=result.failed_expense_ids
    )


@router.get("/expenses/pending", response_model=list[schemas.ExpenseWithShares])
def read_pending_expenses(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expenses = pending_proposals_for_member(db, current_user.id)
    return build_expenses_with_shares(db, expenses)


@router.get("/expenses/{expense_id}", response_model=schemas.ExpenseWithShares)
def get_expense(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expense = get_expense_or_404(db, expense_id)
    verify_group_membership(db, expense.group_id, current_user.id)
    return build_expenses_with_shares(db, [expense])[0]


@router.put("/expenses/{expense_id}", response_model=schemas.ExpenseWithShares)
def update_expense(
    expense_id: int,
    expense_update: schemas.ExpenseUpdate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    expense = get_expense_or_404(db, expense_id)

    # All group members can edit a proposal
    verify_group_membership(db, expense.group_id, current_user.id)

    total, weights = _resolve_split(db, expense.group_id, expense_update)
    expense = update_proposal(
        db,
        expense_id,
        editor_id=current_user.id,
        title=expense_update.title,
        total_cents=total,
        weights=weights,
        payer_id=expense_update.payer_id,
        due_date=expense_update.due_date,
        notes=expense_update.notes,
        notifier=notifier
    )
    return build_expenses_with_shares(db, [expense])[0]


@router.delete("/expenses/{expense_id}")
def remove_expense(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    expense = get_expense_or_404(db, expense_id)

    # Only the creator can delete an expense
    if expense.created_by_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the expense creator can delete this expense")

    delete_expense(db, expense_id, actor_id=current_user.id, notifier=notifier)
    return {"message": "Expense deleted successfully"}


@router.post("/expenses/{expense_id}/approve", response_model=schemas.ExpenseWithShares)
def approve_expense(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    expense = approve_share(db, expense_id, current_user.id, notifier=notifier)
    return build_expenses_with_shares(db, [expense])[0]


@router.post("/expenses/{expense_id}/decline", response_model=schemas.ExpenseWithShares)
def decline_expense(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    notifier: Annotated[ActivityNotifier, Depends(get_notifier)],
    db: Session = Depends(get_db)
):
    expense = decline_share(db, expense_id, current_user.id, notifier=notifier)
    return build_expenses_with_shares(db, [expense])[0]


@router.post("/expenses/{expense_id}/payer", response_model=schemas.ExpenseWithShares)
def set_expense_payer(
    expense_id: int,
    claim: schemas.PayerClaim,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expense = get_expense_or_404(db, expense_id)
    verify_group_membership(db, expense.group_id, current_user.id)

    claim_payer(db, expense_id, claim.payer_id)
    db.refresh(expense)
    return build_expenses_with_shares(db, [expense])[0]


@router.get("/expenses/{expense_id}/ledger", response_model=list[schemas.LedgerEntry])
def get_expense_ledger(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expense = get_expense_or_404(db, expense_id)
    verify_group_membership(db, expense.group_id, current_user.id)

    return db.query(models.LedgerEntry).filter(
        models.LedgerEntry.expense_id == expense_id
    ).order_by(models.LedgerEntry.id).all()
