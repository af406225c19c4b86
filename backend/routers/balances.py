"""Balances router: pairwise balances, group balances and debt simplification."""

from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from errors import NotFoundError
from utils.validation import get_group_or_404, verify_group_membership
from utils.balances import (
    balances_for_all_counterparts,
    group_net_balances,
    net_balance,
    simplify_debts,
)


router = APIRouter(tags=["balances"])


def _names(db: Session, user_ids) -> dict[int, str]:
    if not user_ids:
        return {}
    users = db.query(models.User).filter(models.User.id.in_(list(user_ids))).all()
    return {u.id: u.full_name or u.email for u in users}


@router.get("/balances", response_model=dict[str, list[schemas.Balance]])
def get_balances(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    balances = balances_for_all_counterparts(db, current_user.id)
    names = _names(db, balances.keys())

    result = {"balances": []}
    for uid, amount in sorted(balances.items()):
        if amount != 0:
            result["balances"].append(schemas.Balance(
                user_id=uid,
                full_name=names.get(uid, f"User {uid}"),
                amount=amount
            ))
    return result


@router.get("/balances/{user_id}", response_model=schemas.Balance)
def get_balance(
    user_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    other = db.query(models.User).filter(models.User.id == user_id).first()
    if not other:
        raise NotFoundError("User not found")

    return schemas.Balance(
        user_id=other.id,
        full_name=other.full_name or other.email,
        amount=net_balance(db, current_user.id, other.id)
    )


@router.get("/groups/{group_id}/balances", response_model=list[schemas.GroupBalance])
def get_group_balances(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    net_balances = group_net_balances(db, group_id)
    names = _names(db, net_balances.keys())

    return [
        schemas.GroupBalance(
            user_id=uid,
            full_name=names.get(uid, "Unknown User"),
            amount=amount
        )
        for uid, amount in sorted(net_balances.items())
        if amount != 0
    ]


@router.get("/groups/{group_id}/simplify", response_model=dict[str, list[schemas.Transfer]])
def simplify_group_debts(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Suggest the fewest transfers that would settle the group."""
    get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    transactions = simplify_debts(group_net_balances(db, group_id))
    return {"transactions": transactions}
