"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. The dashboard sends camelCase keys;
snake_case keys are accepted as well.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginIn(BaseModel):
    """Payload for the login endpoint. Empty values are rejected by the handler."""
    username: Optional[str] = None
    password: Optional[str] = None


class UserIn(CamelModel):
    username: str
    password: str
    role: str = 'staff'
    permissions: List[str] = []


class UserUpdate(CamelModel):
    role: Optional[str] = None
    permissions: Optional[List[str]] = None
    password: Optional[str] = None


class BranchIn(CamelModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None


class ShiftIn(CamelModel):
    title: str
    description: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    fee: float = 0.0
    branch_id: Optional[int] = None


class SeatsIn(CamelModel):
    """Bulk seat creation: every number in `seat_numbers` becomes a seat."""
    seat_numbers: List[str]
    branch_id: Optional[int] = None


class StudentIn(CamelModel):
    """Registration payload.

    `cash` and `online` are the amounts paid up front; the remainder of
    `total_fee` becomes the student's due.
    """
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    father_name: Optional[str] = None
    registration_number: Optional[str] = None
    branch_id: Optional[int] = None
    shift_id: Optional[int] = None
    seat_id: Optional[int] = None
    membership_start: date
    membership_end: date
    total_fee: float = 0.0
    cash: float = 0.0
    online: float = 0.0
    security_money: float = 0.0
    remark: Optional[str] = None


class StudentUpdate(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    father_name: Optional[str] = None
    registration_number: Optional[str] = None
    branch_id: Optional[int] = None
    shift_id: Optional[int] = None
    seat_id: Optional[int] = None
    remark: Optional[str] = None


class RenewIn(CamelModel):
    membership_start: date
    membership_end: date
    total_fee: float = 0.0
    cash: float = 0.0
    online: float = 0.0
    security_money: float = 0.0
    shift_id: Optional[int] = None
    seat_id: Optional[int] = None
    remark: Optional[str] = None


class PaymentIn(BaseModel):
    """Settle (part of) the due of a collection record."""
    amount: float
    method: str


class ExpenseIn(CamelModel):
    title: str
    amount: float
    # Omitted on create means today; omitted on update keeps the stored date.
    expense_date: Optional[date] = Field(default=None, alias='date')
    remark: Optional[str] = None
    branch_id: Optional[int] = None
