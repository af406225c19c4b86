"""Validation utilities for group membership, access control, and expense lookups."""

from sqlalchemy.orm import Session
from fastapi import HTTPException

import models
from errors import NotFoundError


def get_user_by_email(db: Session, email: str):
    """Get a user by their email address."""
    return db.query(models.User).filter(models.User.email == email).first()


def get_group_or_404(db: Session, group_id: int):
    """Get a group by ID or raise NotFoundError."""
    group = db.query(models.Group).filter(models.Group.id == group_id).first()
    if not group:
        raise NotFoundError("Group not found")
    return group


def get_expense_or_404(db: Session, expense_id: int):
    """Get an expense by ID or raise NotFoundError."""
    expense = db.query(models.Expense).filter(models.Expense.id == expense_id).first()
    if not expense:
        raise NotFoundError("Expense not found")
    return expense


def get_group_member_ids(db: Session, group_id: int) -> list[int]:
    """User IDs of every member of a group, in the order they joined."""
    rows = db.query(models.GroupMember.user_id).filter(
        models.GroupMember.group_id == group_id
    ).order_by(models.GroupMember.id).all()
    return [row.user_id for row in rows]


def verify_group_membership(db: Session, group_id: int, user_id: int):
    """Verify that a user is a member of a group, raise 403 if not."""
    member = db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group_id,
        models.GroupMember.user_id == user_id
    ).first()
    if not member:
        raise HTTPException(status_code=403, detail="You are not a member of this group")
    return member


def validate_expense_participants(
    db: Session,
    group_id: int,
    member_ids: list[int],
    payer_id: int | None = None
) -> None:
    """Validate that the payer and every share member belong to the group."""
    group_member_ids = set(get_group_member_ids(db, group_id))

    if payer_id is not None and payer_id not in group_member_ids:
        raise NotFoundError(f"Payer with ID {payer_id} is not a member of this group")

    for member_id in member_ids:
        if member_id not in group_member_ids:
            raise NotFoundError(f"Member with ID {member_id} is not a member of this group")


def normalize_date(date_str: str | None) -> str | None:
    """Normalize date string to YYYY-MM-DD format for consistent sorting."""
    if not date_str:
        return date_str
    # If it's already YYYY-MM-DD format, return as-is
    if len(date_str) == 10 and date_str[4] == '-' and date_str[7] == '-':
        return date_str
    # Handle ISO format with time component (e.g., 2025-12-27T00:00:00.000Z)
    if 'T' in date_str:
        return date_str.split('T')[0]
    return date_str
