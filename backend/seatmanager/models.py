"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; foreign keys tie students, seats, shifts,
collections and expenses to the branch they belong to.
"""

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, date, timezone

ROLES = ('admin', 'staff', 'user')
TRANSACTION_TYPES = ('payment', 'due')
PAYMENT_METHODS = ('cash', 'online')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Branch(SQLModel, table=True):
    """A physical library location."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    address: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class User(SQLModel, table=True):
    """A back-office account.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: one of `admin`, `staff`, `user`
    - `permissions`: comma separated permission names for non-admin users
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default='staff')
    permissions: str = ''
    created_at: datetime = Field(default_factory=_utcnow)

    def permission_list(self):
        return [p.strip() for p in (self.permissions or '').split(',') if p.strip()]


class Shift(SQLModel, table=True):
    """A bookable time slot; `fee` is the default monthly fee."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    fee: float = 0.0
    branch_id: Optional[int] = Field(default=None, foreign_key='branch.id', index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class Seat(SQLModel, table=True):
    """A physical seat. `seat_number` is unique inside a branch."""
    id: Optional[int] = Field(default=None, primary_key=True)
    seat_number: str = Field(index=True)
    branch_id: Optional[int] = Field(default=None, foreign_key='branch.id', index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class SeatAssignment(SQLModel, table=True):
    """Which student holds a seat during a shift."""
    id: Optional[int] = Field(default=None, primary_key=True)
    seat_id: int = Field(foreign_key='seat.id', index=True)
    shift_id: int = Field(foreign_key='shift.id', index=True)
    student_id: int = Field(foreign_key='student.id', index=True)


class Student(SQLModel, table=True):
    """A registered library member and their current fee position."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    email: Optional[str] = None
    phone: str
    address: Optional[str] = None
    father_name: Optional[str] = None
    registration_number: Optional[str] = Field(default=None, index=True)
    branch_id: Optional[int] = Field(default=None, foreign_key='branch.id', index=True)
    shift_id: Optional[int] = Field(default=None, foreign_key='shift.id')
    seat_id: Optional[int] = Field(default=None, foreign_key='seat.id')
    membership_start: date
    membership_end: date
    total_fee: float = 0.0
    amount_paid: float = 0.0
    due_amount: float = 0.0
    cash: float = 0.0
    online: float = 0.0
    security_money: float = 0.0
    remark: Optional[str] = None
    status: str = 'active'
    created_at: datetime = Field(default_factory=_utcnow)


class MembershipHistory(SQLModel, table=True):
    """Snapshot of a registration or renewal.

    These rows are the "collections" of the collection & due page and
    the source of collected totals in the profit/loss report.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    branch_id: Optional[int] = Field(default=None, foreign_key='branch.id', index=True)
    shift_id: Optional[int] = Field(default=None, foreign_key='shift.id')
    seat_id: Optional[int] = Field(default=None, foreign_key='seat.id')
    membership_start: date
    membership_end: date
    total_fee: float = 0.0
    amount_paid: float = 0.0
    due_amount: float = 0.0
    cash: float = 0.0
    online: float = 0.0
    security_money: float = 0.0
    remark: Optional[str] = None
    changed_at: datetime = Field(default_factory=_utcnow, index=True)


class StudentTransaction(SQLModel, table=True):
    """A payment received from, or a due raised against, a student."""
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    history_id: Optional[int] = Field(default=None, foreign_key='membershiphistory.id')
    type: str
    amount: float
    method: Optional[str] = None
    transaction_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class Expense(SQLModel, table=True):
    """An operating expense of a branch."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    amount: float
    expense_date: date = Field(index=True)
    remark: Optional[str] = None
    branch_id: Optional[int] = Field(default=None, foreign_key='branch.id', index=True)
    created_at: datetime = Field(default_factory=_utcnow)
