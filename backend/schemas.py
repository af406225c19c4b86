from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, EmailStr
from typing import Optional

class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None

class UserCreate(UserBase):
    password: str

class User(UserBase):
    id: int
    is_active: bool

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str

class TokenData(BaseModel):
    email: Optional[str] = None

# Group directory schemas
class GroupCreate(BaseModel):
    name: str

class Group(GroupCreate):
    id: int
    created_by_id: int

    class Config:
        from_attributes = True

class GroupMemberAdd(BaseModel):
    email: str

class GroupMember(BaseModel):
    id: int
    user_id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True

class GroupWithMembers(Group):
    members: list[GroupMember]

# Split inputs
class ShareWeight(BaseModel):
    member_id: int
    weight: Decimal  # Percentage in [0, 100]

class ExactAmount(BaseModel):
    member_id: int
    amount: int  # In cents

class ReceiptItem(BaseModel):
    description: str
    price: int  # In cents
    is_tax_tip: bool = False
    assignees: list[int] = []

class ExpenseCreate(BaseModel):
    title: str
    total_amount: Optional[int] = None  # Derived from amounts/items for EXACT and ITEMIZED
    split_type: str = "EVEN"  # EVEN, WEIGHTS, EXACT, ITEMIZED
    member_ids: Optional[list[int]] = None  # EVEN only; defaults to every group member
    weights: Optional[list[ShareWeight]] = None  # Only for WEIGHTS type
    amounts: Optional[list[ExactAmount]] = None  # Only for EXACT type
    items: Optional[list[ReceiptItem]] = None  # Only for ITEMIZED type
    payer_id: Optional[int] = None
    due_date: Optional[str] = None
    notes: Optional[str] = None

class ExpenseUpdate(ExpenseCreate):
    pass

class Expense(BaseModel):
    id: int
    group_id: int
    title: str
    notes: Optional[str] = None
    total_amount: int
    payer_id: Optional[int] = None
    due_date: Optional[str] = None
    state: str
    created_by_id: int
    created_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ExpenseShare(BaseModel):
    member_id: int
    member_name: str
    individual_amount: int
    weight: Optional[str] = None
    approved: bool

    class Config:
        from_attributes = True

class ExpenseWithShares(Expense):
    shares: list[ExpenseShare]

class PayerClaim(BaseModel):
    payer_id: int

class ReconcileResult(BaseModel):
    repaired: int
    failed: int
    failed_expense_ids: list[int] = []

class LedgerEntry(BaseModel):
    payer_id: int
    ower_id: int
    expense_id: int
    amount: int

    class Config:
        from_attributes = True

class Balance(BaseModel):
    """Balance between the current user and one counterpart."""
    user_id: int
    full_name: str
    amount: int  # Positive means they owe you, negative means you owe them

class GroupBalance(BaseModel):
    user_id: int
    full_name: str
    amount: int  # Positive means the member is owed

class Transfer(BaseModel):
    from_id: int
    to_id: int
    amount: int

class Activity(BaseModel):
    id: int
    kind: str
    title: str
    message: str
    expense_id: Optional[int] = None
    actor_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
