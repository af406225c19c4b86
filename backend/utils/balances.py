"""Balance calculation utilities over the ledger of dues."""

from typing import Dict, List
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import models


def _sum_dues(db: Session, payer_id: int, ower_id: int) -> int:
    return db.query(func.coalesce(func.sum(models.LedgerEntry.amount), 0)).filter(
        models.LedgerEntry.payer_id == payer_id,
        models.LedgerEntry.ower_id == ower_id
    ).scalar()


def net_balance(db: Session, user_a: int, user_b: int) -> int:
    """
    Net amount between two users in cents.

    Positive means user_b owes user_a, negative means user_a owes user_b.
    """
    if user_a == user_b:
        return 0
    return _sum_dues(db, user_a, user_b) - _sum_dues(db, user_b, user_a)


def balances_for_all_counterparts(db: Session, user_id: int) -> Dict[int, int]:
    """
    Net balance against every user that shares a due with user_id.

    Returns a dict of counterpart_id -> cents, positive when the counterpart owes user_id.
    """
    entries = db.query(models.LedgerEntry).filter(
        or_(models.LedgerEntry.payer_id == user_id, models.LedgerEntry.ower_id == user_id)
    ).all()

    balances: Dict[int, int] = {}
    for entry in entries:
        if entry.payer_id == user_id:
            # They owe me
            balances[entry.ower_id] = balances.get(entry.ower_id, 0) + entry.amount
        else:
            # I owe them
            balances[entry.payer_id] = balances.get(entry.payer_id, 0) - entry.amount
    return balances


def group_net_balances(db: Session, group_id: int) -> Dict[int, int]:
    """
    Net position of every member across the group's finalized expenses.

    Positive means the member is owed money, negative means they owe.
    """
    entries = db.query(models.LedgerEntry).join(
        models.Expense, models.Expense.id == models.LedgerEntry.expense_id
    ).filter(models.Expense.group_id == group_id).all()

    net_balances: Dict[int, int] = {}
    for entry in entries:
        # Creditor (payer) increases balance, debtor decreases
        net_balances[entry.payer_id] = net_balances.get(entry.payer_id, 0) + entry.amount
        net_balances[entry.ower_id] = net_balances.get(entry.ower_id, 0) - entry.amount
    return net_balances


def simplify_debts(net_balances: Dict[int, int]) -> List[dict]:
    """Greedily pair the largest debtors with the largest creditors to minimize transfers."""
    debtors = [{'id': uid, 'amount': amount} for uid, amount in net_balances.items() if amount < 0]
    creditors = [{'id': uid, 'amount': amount} for uid, amount in net_balances.items() if amount > 0]

    debtors.sort(key=lambda x: (x['amount'], x['id']))
    creditors.sort(key=lambda x: (-x['amount'], x['id']))

    transactions = []
    i = 0
    j = 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        amount = min(-debtor['amount'], creditor['amount'])

        transactions.append({
            "from_id": debtor['id'],
            "to_id": creditor['id'],
            "amount": amount
        })

        debtor['amount'] += amount
        creditor['amount'] -= amount

        if debtor['amount'] == 0:
            i += 1
        if creditor['amount'] == 0:
            j += 1

    return transactions
