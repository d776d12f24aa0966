"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
branches, shifts, seats, students, collections, transactions,
expenses). Repositories return SQLModel objects and perform
commits/refreshes where appropriate; the aggregation queries used by
the reports live on the repository of the table they sum.
"""

from datetime import date, datetime
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import func, case
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        return self.create(user)

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def list(self) -> List[models.User]:
        return self.session.exec(select(models.User).order_by(models.User.username)).all()

    def delete(self, user: models.User) -> None:
        self.session.delete(user)
        self.session.commit()


class BranchRepository:
    """CRUD operations for `Branch` rows."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, branch: models.Branch) -> models.Branch:
        self.session.add(branch)
        self.session.commit()
        self.session.refresh(branch)
        return branch

    def get(self, branch_id: int) -> Optional[models.Branch]:
        return self.session.get(models.Branch, branch_id)

    def get_by_name(self, name: str) -> Optional[models.Branch]:
        stmt = select(models.Branch).where(func.lower(models.Branch.name) == name.lower())
        return self.session.exec(stmt).first()

    def list(self) -> List[models.Branch]:
        return self.session.exec(select(models.Branch).order_by(models.Branch.name)).all()

    def has_students(self, branch_id: int) -> bool:
        stmt = select(models.Student.id).where(models.Student.branch_id == branch_id)
        return self.session.exec(stmt).first() is not None

    def in_use(self, branch_id: int) -> bool:
        """True while seats, shifts, expenses or history rows reference the branch."""
        for table in (models.Seat, models.Shift, models.Expense, models.MembershipHistory):
            stmt = select(table.id).where(table.branch_id == branch_id)
            if self.session.exec(stmt).first() is not None:
                return True
        return False

    def delete(self, branch: models.Branch) -> None:
        self.session.delete(branch)
        self.session.commit()


class ShiftRepository:
    """CRUD operations for `Shift` rows plus the schedule lookups."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, shift: models.Shift) -> models.Shift:
        self.session.add(shift)
        self.session.commit()
        self.session.refresh(shift)
        return shift

    def get(self, shift_id: int) -> Optional[models.Shift]:
        return self.session.get(models.Shift, shift_id)

    def list(self, branch_id: Optional[int] = None) -> List[models.Shift]:
        stmt = select(models.Shift)
        if branch_id is not None:
            stmt = stmt.where(models.Shift.branch_id == branch_id)
        return self.session.exec(stmt.order_by(models.Shift.start_time, models.Shift.title)).all()

    def student_counts(self) -> dict:
        """Return `{shift_id: number of students}`."""
        stmt = (
            select(models.Student.shift_id, func.count(models.Student.id))
            .where(models.Student.shift_id.is_not(None))
            .group_by(models.Student.shift_id)
        )
        return {shift_id: count for shift_id, count in self.session.exec(stmt).all()}

    def students_in_shift(self, shift_id: int) -> List[tuple]:
        """Return `(Student, seat_number)` pairs ordered by student name."""
        stmt = (
            select(models.Student, models.Seat.seat_number)
            .join(models.Seat, models.Seat.id == models.Student.seat_id, isouter=True)
            .where(models.Student.shift_id == shift_id)
            .order_by(models.Student.name)
        )
        return self.session.exec(stmt).all()

    def in_use(self, shift_id: int) -> bool:
        stmt = select(models.Student.id).where(models.Student.shift_id == shift_id)
        if self.session.exec(stmt).first() is not None:
            return True
        stmt = select(models.SeatAssignment.id).where(models.SeatAssignment.shift_id == shift_id)
        return self.session.exec(stmt).first() is not None

    def delete(self, shift: models.Shift) -> None:
        self.session.delete(shift)
        self.session.commit()


class SeatRepository:
    """Seats and their per-shift assignments."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, seat_id: int) -> Optional[models.Seat]:
        return self.session.get(models.Seat, seat_id)

    def list(self, branch_id: Optional[int] = None) -> List[models.Seat]:
        stmt = select(models.Seat)
        if branch_id is not None:
            stmt = stmt.where(models.Seat.branch_id == branch_id)
        return self.session.exec(stmt).all()

    def existing_numbers(self, branch_id: Optional[int]) -> set:
        stmt = select(models.Seat.seat_number).where(models.Seat.branch_id == branch_id)
        return set(self.session.exec(stmt).all())

    def create_many(self, seats: List[models.Seat]) -> List[models.Seat]:
        """Persist a batch of seats in one commit."""
        for s in seats:
            self.session.add(s)
        self.session.commit()
        for s in seats:
            self.session.refresh(s)
        return seats

    def assignments(self, seat_ids: Optional[List[int]] = None) -> List[tuple]:
        """Return `(SeatAssignment, student_name)` pairs."""
        stmt = select(models.SeatAssignment, models.Student.name).join(
            models.Student, models.Student.id == models.SeatAssignment.student_id
        )
        if seat_ids is not None:
            stmt = stmt.where(models.SeatAssignment.seat_id.in_(seat_ids))
        return self.session.exec(stmt).all()

    def holder(self, seat_id: int, shift_id: int) -> Optional[models.SeatAssignment]:
        stmt = select(models.SeatAssignment).where(
            models.SeatAssignment.seat_id == seat_id,
            models.SeatAssignment.shift_id == shift_id,
        )
        return self.session.exec(stmt).first()

    def assign(self, seat_id: int, shift_id: int, student_id: int) -> models.SeatAssignment:
        """Give the seat to `student_id` for the shift. Does not commit."""
        a = models.SeatAssignment(seat_id=seat_id, shift_id=shift_id, student_id=student_id)
        self.session.add(a)
        return a

    def release_student(self, student_id: int) -> None:
        """Drop all seat assignments of a student. Does not commit."""
        stmt = select(models.SeatAssignment).where(models.SeatAssignment.student_id == student_id)
        for a in self.session.exec(stmt).all():
            self.session.delete(a)

    def is_assigned(self, seat_id: int) -> bool:
        stmt = select(models.SeatAssignment.id).where(models.SeatAssignment.seat_id == seat_id)
        return self.session.exec(stmt).first() is not None

    def delete(self, seat: models.Seat) -> None:
        self.session.delete(seat)
        self.session.commit()


class StudentRepository:
    """Student rows and the lookups the list pages need."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: int) -> Optional[models.Student]:
        return self.session.get(models.Student, student_id)

    def list(self, branch_id: Optional[int] = None, start_from: Optional[date] = None, start_to: Optional[date] = None) -> List[models.Student]:
        """Students ordered newest first, optionally scoped by branch and
        by a `membership_start` date range."""
        stmt = select(models.Student)
        if branch_id is not None:
            stmt = stmt.where(models.Student.branch_id == branch_id)
        if start_from is not None:
            stmt = stmt.where(models.Student.membership_start >= start_from)
        if start_to is not None:
            stmt = stmt.where(models.Student.membership_start <= start_to)
        return self.session.exec(stmt.order_by(models.Student.created_at.desc(), models.Student.id.desc())).all()

    def count(self, branch_id: Optional[int] = None, active_on: Optional[date] = None, expired_on: Optional[date] = None) -> int:
        stmt = select(func.count(models.Student.id))
        if branch_id is not None:
            stmt = stmt.where(models.Student.branch_id == branch_id)
        if active_on is not None:
            stmt = stmt.where(models.Student.membership_end >= active_on)
        if expired_on is not None:
            stmt = stmt.where(models.Student.membership_end < expired_on)
        return self.session.exec(stmt).one()

    def delete(self, student: models.Student) -> None:
        """Delete a student together with everything that references it."""
        for model in (models.SeatAssignment, models.StudentTransaction, models.MembershipHistory):
            stmt = select(model).where(model.student_id == student.id)
            for row in self.session.exec(stmt).all():
                self.session.delete(row)
        self.session.delete(student)
        self.session.commit()


class CollectionRepository:
    """Membership history rows, i.e. the collection records."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, history_id: int) -> Optional[models.MembershipHistory]:
        return self.session.get(models.MembershipHistory, history_id)

    def for_student(self, student_id: int) -> List[models.MembershipHistory]:
        stmt = (
            select(models.MembershipHistory)
            .where(models.MembershipHistory.student_id == student_id)
            .order_by(models.MembershipHistory.changed_at.desc(), models.MembershipHistory.id.desc())
        )
        return self.session.exec(stmt).all()

    def list(self, start: Optional[datetime] = None, end: Optional[datetime] = None, branch_id: Optional[int] = None) -> List[tuple]:
        """Return `(MembershipHistory, shift_title, branch_name)` rows in
        `[start, end)`, newest first."""
        H = models.MembershipHistory
        stmt = (
            select(H, models.Shift.title, models.Branch.name)
            .join(models.Shift, models.Shift.id == H.shift_id, isouter=True)
            .join(models.Branch, models.Branch.id == H.branch_id, isouter=True)
        )
        if start is not None:
            stmt = stmt.where(H.changed_at >= start)
        if end is not None:
            stmt = stmt.where(H.changed_at < end)
        if branch_id is not None:
            stmt = stmt.where(H.branch_id == branch_id)
        return self.session.exec(stmt.order_by(H.changed_at.desc(), H.id.desc())).all()

    def sum_collected(self, start: Optional[datetime] = None, end: Optional[datetime] = None, branch_id: Optional[int] = None) -> float:
        """COALESCE(SUM(amount_paid), 0) over history rows in `[start, end)`."""
        H = models.MembershipHistory
        stmt = select(func.coalesce(func.sum(H.amount_paid), 0))
        if start is not None:
            stmt = stmt.where(H.changed_at >= start)
        if end is not None:
            stmt = stmt.where(H.changed_at < end)
        if branch_id is not None:
            stmt = stmt.where(H.branch_id == branch_id)
        return float(self.session.exec(stmt).one() or 0)

    def sum_due(self, start: Optional[datetime] = None, end: Optional[datetime] = None, branch_id: Optional[int] = None) -> float:
        H = models.MembershipHistory
        stmt = select(func.coalesce(func.sum(H.due_amount), 0))
        if start is not None:
            stmt = stmt.where(H.changed_at >= start)
        if end is not None:
            stmt = stmt.where(H.changed_at < end)
        if branch_id is not None:
            stmt = stmt.where(H.branch_id == branch_id)
        return float(self.session.exec(stmt).one() or 0)


class TransactionRepository:
    """Payment/due ledger entries."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, txn: models.StudentTransaction) -> models.StudentTransaction:
        """Stage a transaction; the caller commits."""
        self.session.add(txn)
        return txn

    def for_student(self, student_id: int) -> List[models.StudentTransaction]:
        T = models.StudentTransaction
        stmt = select(T).where(T.student_id == student_id).order_by(T.transaction_date.desc(), T.id.desc())
        return self.session.exec(stmt).all()

    def list(self, start: Optional[date] = None, end: Optional[date] = None, branch_id: Optional[int] = None,
             student_id: Optional[int] = None, txn_type: Optional[str] = None) -> List[tuple]:
        """Return `(StudentTransaction, student_name, branch_id)` rows."""
        T = models.StudentTransaction
        stmt = select(T, models.Student.name, models.Student.branch_id).join(
            models.Student, models.Student.id == T.student_id
        )
        if start is not None:
            stmt = stmt.where(T.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(T.transaction_date <= end)
        if branch_id is not None:
            stmt = stmt.where(models.Student.branch_id == branch_id)
        if student_id is not None:
            stmt = stmt.where(T.student_id == student_id)
        if txn_type is not None:
            stmt = stmt.where(T.type == txn_type)
        return self.session.exec(stmt.order_by(T.transaction_date.desc(), T.id.desc())).all()

    def monthly_by_student(self, start: date, end: date, branch_id: Optional[int] = None) -> List[tuple]:
        """Per-student payment and due sums for transactions dated in
        `[start, end]`, joined with the student's current fee position."""
        T, S = models.StudentTransaction, models.Student
        collected = func.coalesce(func.sum(case((T.type == 'payment', T.amount))), 0)
        due = func.coalesce(func.sum(case((T.type == 'due', T.amount))), 0)
        stmt = (
            select(S.id, S.name, S.email, S.phone, S.total_fee, S.amount_paid, S.due_amount,
                   collected.label('total_collected'), due.label('total_due'))
            .select_from(T)
            .join(S, S.id == T.student_id)
            .where(T.transaction_date >= start, T.transaction_date <= end)
        )
        if branch_id is not None:
            stmt = stmt.where(S.branch_id == branch_id)
        stmt = stmt.group_by(S.id, S.name, S.email, S.phone, S.total_fee, S.amount_paid, S.due_amount).order_by(S.name)
        return self.session.exec(stmt).all()


class ExpenseRepository:
    """CRUD and sums for `Expense` rows."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, expense: models.Expense) -> models.Expense:
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Optional[models.Expense]:
        return self.session.get(models.Expense, expense_id)

    def list(self, start: Optional[date] = None, end: Optional[date] = None, branch_id: Optional[int] = None) -> List[models.Expense]:
        E = models.Expense
        stmt = select(E)
        if start is not None:
            stmt = stmt.where(E.expense_date >= start)
        if end is not None:
            stmt = stmt.where(E.expense_date <= end)
        if branch_id is not None:
            stmt = stmt.where(E.branch_id == branch_id)
        return self.session.exec(stmt.order_by(E.expense_date.desc(), E.id.desc())).all()

    def sum(self, start: Optional[date] = None, end: Optional[date] = None, branch_id: Optional[int] = None) -> float:
        """COALESCE(SUM(amount), 0) over expenses dated in `[start, end]`."""
        E = models.Expense
        stmt = select(func.coalesce(func.sum(E.amount), 0))
        if start is not None:
            stmt = stmt.where(E.expense_date >= start)
        if end is not None:
            stmt = stmt.where(E.expense_date <= end)
        if branch_id is not None:
            stmt = stmt.where(E.branch_id == branch_id)
        return float(self.session.exec(stmt).one() or 0)

    def delete(self, expense: models.Expense) -> None:
        self.session.delete(expense)
        self.session.commit()
