"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and validation. Services raise `ValueError` for bad input and
`NotFoundError` for missing rows; the controllers translate those into
HTTP 400 and 404. Returned payloads are plain dicts with the camelCase
keys the dashboard consumes.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .utils import validators
from .utils.listing import natural_key, search_rows, sort_rows
from .utils.periods import parse_month, month_datetime_bounds

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("seatmanager.services")


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


def _money(value) -> float:
    return round(float(value or 0), 2)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def effective_status(student: models.Student, today: Optional[date] = None) -> str:
    """`expired` once the membership end date has passed, else the stored status."""
    today = today or date.today()
    if student.membership_end < today:
        return 'expired'
    return student.status or 'active'


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str, role: str = 'staff', permissions: Optional[List[str]] = None) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        username = validators.require_text(username, 'username')
        if not password:
            raise ValueError('password is required')
        if role not in models.ROLES:
            raise ValueError(f'unknown role: {role}')
        if self.user_repo.get_by_username(username):
            raise ValueError('username already exists')
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed, role=role, permissions=','.join(permissions or []))
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str) -> Optional[models.User]:
        """Verify credentials and return the `User`, or `None` on failure."""
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    @staticmethod
    def issue_token(user: models.User) -> str:
        """Sign a session token carrying the user's id, name and role."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.SESSION_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class UserService:
    """Admin management of back-office accounts."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.UserRepository(session)

    @staticmethod
    def to_dict(u: models.User) -> dict:
        return {'id': u.id, 'username': u.username, 'role': u.role, 'permissions': u.permission_list()}

    def list(self) -> List[dict]:
        return [self.to_dict(u) for u in self.repo.list()]

    def create(self, username: str, password: str, role: str, permissions: List[str]) -> dict:
        user = AuthService(self.session).register(username, password, role, permissions)
        logger.info("user created: %s (%s)", user.username, user.role)
        return self.to_dict(user)

    def update(self, user_id: int, role: Optional[str] = None, permissions: Optional[List[str]] = None, password: Optional[str] = None) -> dict:
        user = self.repo.get(user_id)
        if not user:
            raise NotFoundError('User not found')
        if role is not None:
            if role not in models.ROLES:
                raise ValueError(f'unknown role: {role}')
            user.role = role
        if permissions is not None:
            user.permissions = ','.join(p.strip() for p in permissions if p.strip())
        if password is not None:
            if not password:
                raise ValueError('password must not be empty')
            user.password_hash = PWD_CTX.hash(password)
        return self.to_dict(self.repo.save(user))

    def delete(self, user_id: int, acting_user_id: int) -> None:
        if user_id == acting_user_id:
            raise ValueError('You cannot delete your own account')
        user = self.repo.get(user_id)
        if not user:
            raise NotFoundError('User not found')
        username = user.username
        self.repo.delete(user)
        logger.info("user deleted: %s", username)


class BranchService:
    """Create, rename and remove library branches."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BranchRepository(session)

    @staticmethod
    def to_dict(b: models.Branch) -> dict:
        return {'id': b.id, 'name': b.name, 'address': b.address, 'phone': b.phone}

    def list(self) -> List[dict]:
        return [self.to_dict(b) for b in self.repo.list()]

    def create(self, name: str, address: Optional[str] = None, phone: Optional[str] = None) -> dict:
        name = validators.require_text(name, 'name')
        if self.repo.get_by_name(name):
            raise ValueError('Branch name already exists')
        return self.to_dict(self.repo.save(models.Branch(name=name, address=address, phone=phone)))

    def update(self, branch_id: int, name: str, address: Optional[str] = None, phone: Optional[str] = None) -> dict:
        branch = self.repo.get(branch_id)
        if not branch:
            raise NotFoundError('Branch not found')
        name = validators.require_text(name, 'name')
        other = self.repo.get_by_name(name)
        if other and other.id != branch.id:
            raise ValueError('Branch name already exists')
        branch.name, branch.address, branch.phone = name, address, phone
        return self.to_dict(self.repo.save(branch))

    def delete(self, branch_id: int) -> None:
        branch = self.repo.get(branch_id)
        if not branch:
            raise NotFoundError('Branch not found')
        if self.repo.has_students(branch_id):
            raise ValueError('Branch still has students')
        if self.repo.in_use(branch_id):
            raise ValueError('Branch still has seats, shifts, expenses or collection records')
        self.repo.delete(branch)

    def require(self, branch_id: Optional[int]) -> Optional[models.Branch]:
        """Return the branch for `branch_id`, or raise if an id was given but is unknown."""
        if branch_id is None:
            return None
        branch = self.repo.get(branch_id)
        if not branch:
            raise ValueError('Invalid branch ID')
        return branch


class ShiftService:
    """Shifts and the per-shift schedule view."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ShiftRepository(session)

    @staticmethod
    def to_dict(s: models.Shift, student_count: Optional[int] = None) -> dict:
        out = {
            'id': s.id,
            'title': s.title,
            'description': s.description,
            'startTime': s.start_time,
            'endTime': s.end_time,
            'fee': _money(s.fee),
            'branchId': s.branch_id,
        }
        if student_count is not None:
            out['studentCount'] = student_count
        return out

    def list(self, branch_id: Optional[int] = None) -> List[dict]:
        counts = self.repo.student_counts()
        return [self.to_dict(s, counts.get(s.id, 0)) for s in self.repo.list(branch_id)]

    def _apply(self, shift: models.Shift, data) -> models.Shift:
        shift.title = validators.require_text(data.title, 'title')
        shift.description = data.description
        shift.start_time = validators.validate_time(data.start_time, 'startTime')
        shift.end_time = validators.validate_time(data.end_time, 'endTime')
        shift.fee = validators.non_negative(data.fee, 'fee')
        BranchService(self.session).require(data.branch_id)
        shift.branch_id = data.branch_id
        return shift

    def create(self, data) -> dict:
        shift = self._apply(models.Shift(title=''), data)
        return self.to_dict(self.repo.save(shift), 0)

    def update(self, shift_id: int, data) -> dict:
        shift = self.repo.get(shift_id)
        if not shift:
            raise NotFoundError('Shift not found')
        shift = self.repo.save(self._apply(shift, data))
        return self.to_dict(shift, self.repo.student_counts().get(shift.id, 0))

    def delete(self, shift_id: int) -> None:
        shift = self.repo.get(shift_id)
        if not shift:
            raise NotFoundError('Shift not found')
        if self.repo.in_use(shift_id):
            raise ValueError('Shift is assigned to students')
        self.repo.delete(shift)

    def schedule(self, shift_id: int) -> dict:
        """Students booked in a shift, with their seats."""
        shift = self.repo.get(shift_id)
        if not shift:
            raise NotFoundError('Shift not found')
        today = date.today()
        students = [
            {
                'id': st.id,
                'name': st.name,
                'phone': st.phone,
                'seatNumber': seat_number,
                'membershipEnd': _iso(st.membership_end),
                'status': effective_status(st, today),
            }
            for st, seat_number in self.repo.students_in_shift(shift_id)
        ]
        return {'shift': self.to_dict(shift, len(students)), 'students': students}


class SeatService:
    """Seats and per-shift occupancy."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SeatRepository(session)
        self.shift_repo = repositories.ShiftRepository(session)

    def list(self, branch_id: Optional[int] = None) -> List[dict]:
        seats = sorted(self.repo.list(branch_id), key=lambda s: natural_key(s.seat_number))
        held = {}
        for a, student_name in self.repo.assignments([s.id for s in seats]):
            held[(a.seat_id, a.shift_id)] = (a.student_id, student_name)
        all_shifts = self.shift_repo.list()
        out = []
        for seat in seats:
            shifts = [sh for sh in all_shifts if sh.branch_id in (None, seat.branch_id)]
            occupancy = []
            for sh in shifts:
                student_id, student_name = held.get((seat.id, sh.id), (None, None))
                occupancy.append({
                    'shiftId': sh.id,
                    'shiftTitle': sh.title,
                    'isAssigned': student_id is not None,
                    'studentId': student_id,
                    'studentName': student_name,
                })
            out.append({'id': seat.id, 'seatNumber': seat.seat_number, 'branchId': seat.branch_id, 'shifts': occupancy})
        return out

    def available(self, shift_id: int, branch_id: Optional[int] = None) -> List[dict]:
        if not self.shift_repo.get(shift_id):
            raise NotFoundError('Shift not found')
        taken = {a.seat_id for a, _ in self.repo.assignments() if a.shift_id == shift_id}
        seats = [s for s in self.repo.list(branch_id) if s.id not in taken]
        seats.sort(key=lambda s: natural_key(s.seat_number))
        return [{'id': s.id, 'seatNumber': s.seat_number, 'branchId': s.branch_id} for s in seats]

    def create_many(self, seat_numbers: List[str], branch_id: Optional[int] = None) -> dict:
        """Create seats; numbers that already exist in the branch are skipped."""
        BranchService(self.session).require(branch_id)
        existing = self.repo.existing_numbers(branch_id)
        to_create, skipped = [], []
        for raw in seat_numbers:
            number = (raw or '').strip()
            if not number:
                continue
            if number in existing:
                skipped.append(number)
                continue
            existing.add(number)
            to_create.append(models.Seat(seat_number=number, branch_id=branch_id))
        if not to_create and not skipped:
            raise ValueError('seatNumbers must contain at least one seat number')
        created = self.repo.create_many(to_create) if to_create else []
        return {
            'created': [{'id': s.id, 'seatNumber': s.seat_number, 'branchId': s.branch_id} for s in created],
            'skipped': skipped,
        }

    def delete(self, seat_id: int) -> None:
        seat = self.repo.get(seat_id)
        if not seat:
            raise NotFoundError('Seat not found')
        if self.repo.is_assigned(seat_id):
            raise ValueError('Seat is assigned to a student')
        self.repo.delete(seat)


class StudentService:
    """Registration, renewal and listing of students."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.StudentRepository(session)
        self.seat_repo = repositories.SeatRepository(session)
        self.shift_repo = repositories.ShiftRepository(session)
        self.branch_repo = repositories.BranchRepository(session)
        self.history_repo = repositories.CollectionRepository(session)
        self.txn_repo = repositories.TransactionRepository(session)

    def _summary(self, st: models.Student, today: date) -> dict:
        seat = self.seat_repo.get(st.seat_id) if st.seat_id else None
        shift = self.shift_repo.get(st.shift_id) if st.shift_id else None
        branch = self.branch_repo.get(st.branch_id) if st.branch_id else None
        return {
            'id': st.id,
            'name': st.name,
            'phone': st.phone,
            'email': st.email,
            'registrationNumber': st.registration_number,
            'membershipStart': _iso(st.membership_start),
            'membershipEnd': _iso(st.membership_end),
            'createdAt': _iso(st.created_at),
            'status': effective_status(st, today),
            'seatNumber': seat.seat_number if seat else None,
            'shiftId': st.shift_id,
            'shiftTitle': shift.title if shift else None,
            'branchId': st.branch_id,
            'branchName': branch.name if branch else None,
            'dueAmount': _money(st.due_amount),
        }

    def list(self, branch_id: Optional[int] = None, from_date: Optional[date] = None, to_date: Optional[date] = None,
             search: Optional[str] = None, sort: Optional[str] = None, order: str = 'asc', status: Optional[str] = None) -> List[dict]:
        if from_date and to_date and from_date > to_date:
            raise ValueError('fromDate must be on or before toDate')
        today = date.today()
        rows = [self._summary(st, today) for st in self.repo.list(branch_id, from_date, to_date)]
        if status:
            rows = [r for r in rows if r['status'] == status]
        rows = search_rows(rows, search, ('name', 'phone', 'registrationNumber'))
        return sort_rows(rows, sort, order)

    def count(self, kind: str, branch_id: Optional[int] = None) -> int:
        today = date.today()
        if kind == 'active':
            return self.repo.count(branch_id, active_on=today)
        if kind == 'expired':
            return self.repo.count(branch_id, expired_on=today)
        return self.repo.count(branch_id)

    def get(self, student_id: int) -> dict:
        st = self.repo.get(student_id)
        if not st:
            raise NotFoundError('Student not found')
        out = self._summary(st, date.today())
        out.update({
            'address': st.address,
            'fatherName': st.father_name,
            'seatId': st.seat_id,
            'totalFee': _money(st.total_fee),
            'amountPaid': _money(st.amount_paid),
            'cash': _money(st.cash),
            'online': _money(st.online),
            'securityMoney': _money(st.security_money),
            'remark': st.remark,
            'membershipHistory': [CollectionService.history_dict(h) for h in self.history_repo.for_student(st.id)],
            'transactions': [TransactionService.to_dict(t) for t in self.txn_repo.for_student(st.id)],
        })
        return out

    def _check_fees(self, total_fee: float, cash: float, online: float, security_money: float):
        total_fee = validators.non_negative(total_fee, 'totalFee')
        cash = validators.non_negative(cash, 'cash')
        online = validators.non_negative(online, 'online')
        security_money = validators.non_negative(security_money, 'securityMoney')
        if round(cash + online, 2) > round(total_fee, 2):
            raise ValueError('amount paid cannot exceed total fee')
        return total_fee, cash, online, security_money

    def _check_placement(self, branch_id: Optional[int], shift_id: Optional[int], seat_id: Optional[int], student_id: Optional[int] = None):
        """Validate branch/shift/seat references and seat availability."""
        BranchService(self.session).require(branch_id)
        if shift_id is not None and not self.shift_repo.get(shift_id):
            raise ValueError('Invalid shift ID')
        if seat_id is None:
            return
        if shift_id is None:
            raise ValueError('shiftId is required when assigning a seat')
        seat = self.seat_repo.get(seat_id)
        if not seat:
            raise ValueError('Invalid seat ID')
        if branch_id is not None and seat.branch_id is not None and seat.branch_id != branch_id:
            raise ValueError('Seat belongs to a different branch')
        holder = self.seat_repo.holder(seat_id, shift_id)
        if holder and holder.student_id != student_id:
            raise ValueError('Seat is already booked for this shift')

    def _record_membership(self, st: models.Student, security_money: float, remark: Optional[str]) -> models.MembershipHistory:
        """Write the history snapshot and its ledger entries. Does not commit."""
        history = models.MembershipHistory(
            student_id=st.id, name=st.name, email=st.email, phone=st.phone,
            branch_id=st.branch_id, shift_id=st.shift_id, seat_id=st.seat_id,
            membership_start=st.membership_start, membership_end=st.membership_end,
            total_fee=st.total_fee, amount_paid=st.amount_paid, due_amount=st.due_amount,
            cash=st.cash, online=st.online, security_money=security_money, remark=remark,
        )
        self.session.add(history)
        self.session.flush()
        today = date.today()
        for method, amount in (('cash', st.cash), ('online', st.online)):
            if amount > 0:
                self.txn_repo.add(models.StudentTransaction(
                    student_id=st.id, history_id=history.id, type='payment', amount=amount,
                    method=method, transaction_date=today,
                ))
        if st.due_amount > 0:
            self.txn_repo.add(models.StudentTransaction(
                student_id=st.id, history_id=history.id, type='due', amount=st.due_amount, transaction_date=today,
            ))
        return history

    def register(self, data) -> dict:
        """Register a student, book the seat and record the first collection."""
        name = validators.require_text(data.name, 'name')
        phone = validators.validate_phone(data.phone)
        email = validators.validate_email(data.email)
        if data.membership_end < data.membership_start:
            raise ValueError('membershipEnd must be on or after membershipStart')
        total_fee, cash, online, security_money = self._check_fees(data.total_fee, data.cash, data.online, data.security_money)
        self._check_placement(data.branch_id, data.shift_id, data.seat_id)
        paid = cash + online
        st = models.Student(
            name=name, phone=phone, email=email, address=data.address, father_name=data.father_name,
            registration_number=data.registration_number, branch_id=data.branch_id,
            shift_id=data.shift_id, seat_id=data.seat_id,
            membership_start=data.membership_start, membership_end=data.membership_end,
            total_fee=total_fee, amount_paid=paid, due_amount=max(0.0, total_fee - paid),
            cash=cash, online=online, security_money=security_money, remark=data.remark,
        )
        st.status = effective_status(st)
        self.session.add(st)
        self.session.flush()
        if st.seat_id is not None:
            self.seat_repo.assign(st.seat_id, st.shift_id, st.id)
        self._record_membership(st, security_money, data.remark)
        self.session.commit()
        logger.info("student registered: id=%s branch=%s due=%.2f", st.id, st.branch_id, st.due_amount)
        return self.get(st.id)

    def update(self, student_id: int, data) -> dict:
        st = self.repo.get(student_id)
        if not st:
            raise NotFoundError('Student not found')
        fields = data.model_dump(exclude_unset=True)
        if 'name' in fields:
            st.name = validators.require_text(fields['name'], 'name')
        if 'phone' in fields:
            st.phone = validators.validate_phone(fields['phone'])
        if 'email' in fields:
            st.email = validators.validate_email(fields['email'])
        for key in ('address', 'father_name', 'registration_number', 'remark'):
            if key in fields:
                setattr(st, key, fields[key])
        branch_id = fields.get('branch_id', st.branch_id)
        shift_id = fields.get('shift_id', st.shift_id)
        seat_id = fields.get('seat_id', st.seat_id)
        if (branch_id, shift_id, seat_id) != (st.branch_id, st.shift_id, st.seat_id):
            self._move(st, branch_id, shift_id, seat_id)
        self.session.add(st)
        self.session.commit()
        return self.get(st.id)

    def _move(self, st: models.Student, branch_id, shift_id, seat_id) -> None:
        self._check_placement(branch_id, shift_id, seat_id, student_id=st.id)
        self.seat_repo.release_student(st.id)
        st.branch_id, st.shift_id, st.seat_id = branch_id, shift_id, seat_id
        if seat_id is not None:
            self.seat_repo.assign(seat_id, shift_id, st.id)

    def renew(self, student_id: int, data) -> dict:
        """Start a new membership period with fresh fees."""
        st = self.repo.get(student_id)
        if not st:
            raise NotFoundError('Student not found')
        if data.membership_end < data.membership_start:
            raise ValueError('membershipEnd must be on or after membershipStart')
        total_fee, cash, online, security_money = self._check_fees(data.total_fee, data.cash, data.online, data.security_money)
        shift_id = data.shift_id if data.shift_id is not None else st.shift_id
        seat_id = data.seat_id if data.seat_id is not None else st.seat_id
        if (shift_id, seat_id) != (st.shift_id, st.seat_id):
            self._move(st, st.branch_id, shift_id, seat_id)
        paid = cash + online
        st.membership_start, st.membership_end = data.membership_start, data.membership_end
        st.total_fee, st.amount_paid, st.due_amount = total_fee, paid, max(0.0, total_fee - paid)
        st.cash, st.online, st.security_money = cash, online, security_money
        if data.remark is not None:
            st.remark = data.remark
        st.status = 'active'
        st.status = effective_status(st)
        self.session.add(st)
        self._record_membership(st, security_money, data.remark)
        self.session.commit()
        logger.info("membership renewed: student=%s until %s", st.id, st.membership_end)
        return self.get(st.id)

    def delete(self, student_id: int) -> None:
        st = self.repo.get(student_id)
        if not st:
            raise NotFoundError('Student not found')
        self.repo.delete(st)
        logger.info("student deleted: id=%s", student_id)


class CollectionService:
    """The collection & due page: history rows and due payments."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CollectionRepository(session)
        self.student_repo = repositories.StudentRepository(session)
        self.txn_repo = repositories.TransactionRepository(session)

    @staticmethod
    def history_dict(h: models.MembershipHistory, shift_title: Optional[str] = None, branch_name: Optional[str] = None) -> dict:
        return {
            'historyId': h.id,
            'studentId': h.student_id,
            'name': h.name,
            'phone': h.phone or 'N/A',
            'shiftTitle': shift_title,
            'membershipStart': _iso(h.membership_start),
            'membershipEnd': _iso(h.membership_end),
            'totalFee': _money(h.total_fee),
            'amountPaid': _money(h.amount_paid),
            'dueAmount': _money(h.due_amount),
            'cash': _money(h.cash),
            'online': _money(h.online),
            'securityMoney': _money(h.security_money),
            'remark': h.remark or '',
            'createdAt': _iso(h.changed_at),
            'branchId': h.branch_id,
            'branchName': branch_name,
        }

    def list(self, month: Optional[str] = None, branch_id: Optional[int] = None, search: Optional[str] = None, due_only: bool = False) -> dict:
        start = end = None
        if month:
            start, end = month_datetime_bounds(month)
        rows = [self.history_dict(h, title, bname) for h, title, bname in self.repo.list(start, end, branch_id)]
        rows = search_rows(rows, search, ('name', 'studentId', 'phone'))
        if due_only:
            rows = [r for r in rows if r['dueAmount'] > 0]
        summary = {
            'totalStudents': len(rows),
            'totalCollected': _money(sum(r['amountPaid'] for r in rows)),
            'totalDue': _money(sum(r['dueAmount'] for r in rows)),
            'totalCash': _money(sum(r['cash'] for r in rows)),
            'totalOnline': _money(sum(r['online'] for r in rows)),
            'totalSecurityMoney': _money(sum(r['securityMoney'] for r in rows)),
        }
        return {'collections': rows, 'summary': summary}

    def pay_due(self, history_id: int, amount: float, method: str) -> dict:
        """Apply a payment against the due of one collection record.

        The history row always moves and the payment is written to the
        transaction ledger. The student's running totals only move when
        the row is their latest membership; older rows describe a period
        the student's totals no longer cover.
        """
        if method not in models.PAYMENT_METHODS:
            raise ValueError("method must be 'cash' or 'online'")
        history = self.repo.get(history_id)
        if not history:
            raise NotFoundError('Collection record not found')
        amount = round(float(amount), 2)
        if amount <= 0 or amount > round(history.due_amount, 2):
            raise ValueError(f'Invalid amount. Must be between 0.01 and {history.due_amount:.2f}')
        history.amount_paid += amount
        history.due_amount = max(0.0, history.due_amount - amount)
        student = self.student_repo.get(history.student_id)
        latest = self.repo.for_student(history.student_id)
        if not latest or latest[0].id != history.id:
            student = None
        if student:
            student.amount_paid += amount
            student.due_amount = max(0.0, student.due_amount - amount)
        for row in (history, student):
            if row is None:
                continue
            if method == 'cash':
                row.cash += amount
            else:
                row.online += amount
            self.session.add(row)
        self.txn_repo.add(models.StudentTransaction(
            student_id=history.student_id, history_id=history.id, type='payment',
            amount=amount, method=method, transaction_date=date.today(),
        ))
        self.session.commit()
        self.session.refresh(history)
        logger.info("due paid: history=%s amount=%.2f method=%s", history.id, amount, method)
        return self.history_dict(history)


class TransactionService:
    """Read access to the payment/due ledger."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    @staticmethod
    def to_dict(t: models.StudentTransaction, student_name: Optional[str] = None) -> dict:
        out = {
            'id': t.id,
            'studentId': t.student_id,
            'historyId': t.history_id,
            'type': t.type,
            'amount': _money(t.amount),
            'method': t.method,
            'date': _iso(t.transaction_date),
        }
        if student_name is not None:
            out['studentName'] = student_name
        return out

    def list(self, month: Optional[str] = None, branch_id: Optional[int] = None, student_id: Optional[int] = None, txn_type: Optional[str] = None) -> List[dict]:
        if txn_type is not None and txn_type not in models.TRANSACTION_TYPES:
            raise ValueError("type must be 'payment' or 'due'")
        start = end = None
        if month:
            start, end = parse_month(month)
        out = []
        for t, name, bid in self.repo.list(start, end, branch_id, student_id, txn_type):
            row = self.to_dict(t, name)
            row['branchId'] = bid
            out.append(row)
        return out


class ExpenseService:
    """Branch expenses."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ExpenseRepository(session)

    @staticmethod
    def to_dict(e: models.Expense) -> dict:
        return {
            'id': e.id,
            'title': e.title,
            'amount': _money(e.amount),
            'date': _iso(e.expense_date),
            'remark': e.remark,
            'branchId': e.branch_id,
        }

    def list(self, month: Optional[str] = None, branch_id: Optional[int] = None) -> dict:
        start = end = None
        if month:
            start, end = parse_month(month)
        rows = [self.to_dict(e) for e in self.repo.list(start, end, branch_id)]
        return {'expenses': rows, 'total': _money(sum(r['amount'] for r in rows))}

    def _apply(self, expense: models.Expense, data) -> models.Expense:
        expense.title = validators.require_text(data.title, 'title')
        if data.amount is None or data.amount <= 0:
            raise ValueError('amount must be greater than 0')
        expense.amount = float(data.amount)
        if data.expense_date is not None:
            expense.expense_date = data.expense_date
        expense.remark = data.remark
        BranchService(self.session).require(data.branch_id)
        expense.branch_id = data.branch_id
        return expense

    def create(self, data) -> dict:
        expense = self._apply(models.Expense(title='', amount=0, expense_date=date.today()), data)
        return self.to_dict(self.repo.save(expense))

    def update(self, expense_id: int, data) -> dict:
        expense = self.repo.get(expense_id)
        if not expense:
            raise NotFoundError('Expense not found')
        return self.to_dict(self.repo.save(self._apply(expense, data)))

    def delete(self, expense_id: int) -> None:
        expense = self.repo.get(expense_id)
        if not expense:
            raise NotFoundError('Expense not found')
        self.repo.delete(expense)


class ReportService:
    """Profit/loss and collection aggregates."""
    def __init__(self, session: Session):
        self.session = session
        self.collections = repositories.CollectionRepository(session)
        self.expenses = repositories.ExpenseRepository(session)
        self.transactions = repositories.TransactionRepository(session)

    def profit_loss(self, month: str, branch_id: Optional[int] = None) -> dict:
        """Collected minus expenses for one month.

        Collections are summed from history rows recorded in the month,
        expenses from expense rows dated in the month.
        """
        first, last = parse_month(month)
        start, end = month_datetime_bounds(month)
        total_collected = self.collections.sum_collected(start, end, branch_id)
        total_expenses = self.expenses.sum(first, last, branch_id)
        return {
            'month': month,
            'totalCollected': _money(total_collected),
            'totalExpenses': _money(total_expenses),
            'profitLoss': _money(total_collected - total_expenses),
        }

    def monthly_collections(self, month: str, branch_id: Optional[int] = None) -> dict:
        first, last = parse_month(month)
        records = [
            {
                'studentId': r.id,
                'studentName': r.name,
                'email': r.email,
                'phone': r.phone,
                'totalFee': _money(r.total_fee),
                'amountPaid': _money(r.amount_paid),
                'dueAmount': _money(r.due_amount),
                'collected': _money(r.total_collected),
                'due': _money(r.total_due),
            }
            for r in self.transactions.monthly_by_student(first, last, branch_id)
        ]
        return {'month': month, 'records': records}

    def dashboard(self, branch_id: Optional[int] = None, month: Optional[str] = None) -> dict:
        """Headline numbers for the dashboard, all-time unless `month` is given."""
        start = end = first = last = None
        if month:
            first, last = parse_month(month)
            start, end = month_datetime_bounds(month)
        collected = self.collections.sum_collected(start, end, branch_id)
        due = self.collections.sum_due(start, end, branch_id)
        expense = self.expenses.sum(first, last, branch_id)
        return {
            'totalCollection': _money(collected),
            'totalDue': _money(due),
            'totalExpense': _money(expense),
            'profitLoss': _money(collected - expense),
        }
