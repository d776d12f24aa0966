"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the library admin
dashboard. Controllers are intentionally thin: they parse query
parameters, check the caller's role, delegate to services and return
JSON responses.

Endpoints implemented:
- POST /auth/login, GET /auth/logout, GET /auth/status
- GET/POST /users, PUT/DELETE /users/{id}
- GET/POST /branches, PUT/DELETE /branches/{id}
- GET/POST /shifts, PUT/DELETE /shifts/{id}, GET /shifts/{id}/students
- GET/POST /seats, GET /seats/available, DELETE /seats/{id}
- GET/POST /students, GET /students/active|expired,
  GET /students/stats/{total|active|expired},
  GET/PUT/DELETE /students/{id}, POST /students/{id}/renew
- GET /collections, PUT /collections/{history_id}
- GET /transactions
- GET/POST /expenses, PUT/DELETE /expenses/{id}
- GET /reports/profit-loss, GET /reports/monthly-collections
- GET /dashboard/stats
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, require_admin, require_admin_or_staff, require_permission, user_from_request, bearer_scheme
from .schemas import (
    LoginIn, UserIn, UserUpdate, BranchIn, ShiftIn, SeatsIn, StudentIn, StudentUpdate, RenewIn, PaymentIn, ExpenseIn,
)
from .utils.periods import parse_branch_id, parse_iso_date
from .utils.rate_limit import LoginRateLimiter
from .config import settings

app = FastAPI(title="Library Seat Manager API")
logger = logging.getLogger("seatmanager.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_login_limiter = LoginRateLimiter(settings.LOGIN_RATE_LIMIT_PER_MIN, window_seconds=60)

# The dashboard runs on its own dev server and sends the session cookie cross-origin.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    context = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    try:
        response = await call_next(request)
    except Exception as exc:
        context["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(context, ensure_ascii=True))
        response = JSONResponse(status_code=500, content={"detail": "Server error", "error": str(exc)})
    context["status_code"] = response.status_code
    context["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", json.dumps(context, ensure_ascii=True))
    return response


def _call(fn, *args, **kwargs):
    """Run a service call, mapping service errors onto HTTP statuses."""
    try:
        return fn(*args, **kwargs)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _branch(branch_id: Optional[str]) -> Optional[int]:
    return _call(parse_branch_id, branch_id)


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Verify credentials and open a cookie session.

    The session token is also returned as `access_token` for clients
    that prefer a bearer header over cookies.
    """
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail='Username and password are required')
    key = _client_key(request)
    allowed, retry_after = _login_limiter.hit(key)
    if not allowed:
        logger.warning("login rate limit hit for %s", key)
        raise HTTPException(
            status_code=429,
            detail=f"too many login attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    auth = services.AuthService(db)
    user = auth.authenticate(payload.username, payload.password)
    if not user:
        logger.info("failed login for %s", payload.username)
        raise HTTPException(status_code=401, detail='Invalid credentials')
    _login_limiter.reset(key)
    token = auth.issue_token(user)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=settings.SESSION_EXPIRE_HOURS * 3600,
        httponly=True,
        samesite='lax',
        secure=settings.COOKIE_SECURE,
    )
    logger.info("user %s logged in", user.username)
    return {
        'message': 'Login successful',
        'user': {'id': user.id, 'username': user.username, 'role': user.role},
        'access_token': token,
    }


@app.get('/auth/logout')
def logout(request: Request, response: Response, db: Session = Depends(get_session)):
    """Drop the session cookie. Succeeds even without a session."""
    user = user_from_request(request, db)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    logger.info("user %s logged out", user.username if user else "(no session)")
    return {'message': 'Logout successful'}


@app.get('/auth/status')
def auth_status(request: Request, db: Session = Depends(get_session), credentials=Depends(bearer_scheme)):
    user = user_from_request(request, db, credentials)
    if not user:
        return {'isAuthenticated': False, 'user': None}
    return {'isAuthenticated': True, 'user': {'id': user.id, 'username': user.username, 'role': user.role}}


@app.get('/users')
def list_users(db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return services.UserService(db).list()


@app.post('/users', status_code=201)
def create_user(payload: UserIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.UserService(db).create, payload.username, payload.password, payload.role, payload.permissions)


@app.put('/users/{user_id}')
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.UserService(db).update, user_id, payload.role, payload.permissions, payload.password)


@app.delete('/users/{user_id}')
def delete_user(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.UserService(db).delete, user_id, user.id)
    return {'message': 'User deleted'}


@app.get('/branches')
def list_branches(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.BranchService(db).list()


@app.post('/branches', status_code=201)
def create_branch(payload: BranchIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.BranchService(db).create, payload.name, payload.address, payload.phone)


@app.put('/branches/{branch_id}')
def update_branch(branch_id: int, payload: BranchIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.BranchService(db).update, branch_id, payload.name, payload.address, payload.phone)


@app.delete('/branches/{branch_id}')
def delete_branch(branch_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.BranchService(db).delete, branch_id)
    return {'message': 'Branch deleted'}


@app.get('/shifts')
def list_shifts(branch_id: Optional[str] = Query(None, alias='branchId'), db: Session = Depends(get_session),
                user: models.User = Depends(require_admin_or_staff)):
    return services.ShiftService(db).list(_branch(branch_id))


@app.get('/shifts/{shift_id}/students')
def shift_students(shift_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    """Schedule view: who sits where during a shift."""
    return _call(services.ShiftService(db).schedule, shift_id)


@app.post('/shifts', status_code=201)
def create_shift(payload: ShiftIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.ShiftService(db).create, payload)


@app.put('/shifts/{shift_id}')
def update_shift(shift_id: int, payload: ShiftIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.ShiftService(db).update, shift_id, payload)


@app.delete('/shifts/{shift_id}')
def delete_shift(shift_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.ShiftService(db).delete, shift_id)
    return {'message': 'Shift deleted'}


@app.get('/seats')
def list_seats(branch_id: Optional[str] = Query(None, alias='branchId'), db: Session = Depends(get_session),
               user: models.User = Depends(require_admin_or_staff)):
    """Every seat with its occupancy in each shift."""
    return services.SeatService(db).list(_branch(branch_id))


@app.get('/seats/available')
def available_seats(shift_id: int = Query(..., alias='shiftId'), branch_id: Optional[str] = Query(None, alias='branchId'),
                    db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return _call(services.SeatService(db).available, shift_id, _branch(branch_id))


@app.post('/seats', status_code=201)
def create_seats(payload: SeatsIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _call(services.SeatService(db).create_many, payload.seat_numbers, payload.branch_id)


@app.delete('/seats/{seat_id}')
def delete_seat(seat_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.SeatService(db).delete, seat_id)
    return {'message': 'Seat deleted'}


@app.get('/students')
def list_students(
    from_date: Optional[str] = Query(None, alias='fromDate'),
    to_date: Optional[str] = Query(None, alias='toDate'),
    branch_id: Optional[str] = Query(None, alias='branchId'),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    order: str = 'asc',
    db: Session = Depends(get_session),
    user: models.User = Depends(require_admin_or_staff),
):
    """List students, optionally filtered by membership start range and branch.

    `search` matches name, phone or registration number; `sort` is
    `createdAt` or `seatNumber`.
    """
    start = _call(parse_iso_date, from_date, 'fromDate')
    end = _call(parse_iso_date, to_date, 'toDate')
    svc = services.StudentService(db)
    return {'students': _call(svc.list, _branch(branch_id), start, end, search, sort, order)}


@app.get('/students/active')
def active_students(branch_id: Optional[str] = Query(None, alias='branchId'), search: Optional[str] = None,
                    db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return {'students': services.StudentService(db).list(_branch(branch_id), search=search, status='active')}


@app.get('/students/expired')
def expired_students(branch_id: Optional[str] = Query(None, alias='branchId'), search: Optional[str] = None,
                     db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return {'students': services.StudentService(db).list(_branch(branch_id), search=search, status='expired')}


@app.get('/students/stats/{kind}')
def student_count(kind: str, branch_id: Optional[str] = Query(None, alias='branchId'),
                  db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    """Counts for the dashboard cards: `total`, `active` or `expired`."""
    if kind not in ('total', 'active', 'expired'):
        raise HTTPException(status_code=404, detail='Unknown statistic')
    return {'count': services.StudentService(db).count(kind, _branch(branch_id))}


@app.get('/students/{student_id}')
def get_student(student_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return _call(services.StudentService(db).get, student_id)


@app.post('/students', status_code=201)
def register_student(payload: StudentIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    """Register a student, book their seat and record the first collection."""
    return _call(services.StudentService(db).register, payload)


@app.put('/students/{student_id}')
def update_student(student_id: int, payload: StudentUpdate, db: Session = Depends(get_session),
                   user: models.User = Depends(require_admin_or_staff)):
    return _call(services.StudentService(db).update, student_id, payload)


@app.post('/students/{student_id}/renew')
def renew_student(student_id: int, payload: RenewIn, db: Session = Depends(get_session),
                  user: models.User = Depends(require_admin_or_staff)):
    return _call(services.StudentService(db).renew, student_id, payload)


@app.delete('/students/{student_id}')
def delete_student(student_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.StudentService(db).delete, student_id)
    return {'message': 'Student deleted'}


@app.get('/collections')
def list_collections(
    month: Optional[str] = None,
    branch_id: Optional[str] = Query(None, alias='branchId'),
    search: Optional[str] = None,
    due_only: bool = Query(False, alias='dueOnly'),
    db: Session = Depends(get_session),
    user: models.User = Depends(require_admin_or_staff),
):
    return _call(services.CollectionService(db).list, month, _branch(branch_id), search, due_only)


@app.put('/collections/{history_id}')
def pay_due(history_id: int, payload: PaymentIn, db: Session = Depends(get_session),
            user: models.User = Depends(require_admin_or_staff)):
    """Settle (part of) the due on a collection record."""
    return _call(services.CollectionService(db).pay_due, history_id, payload.amount, payload.method)


@app.get('/transactions')
def list_transactions(
    month: Optional[str] = None,
    branch_id: Optional[str] = Query(None, alias='branchId'),
    student_id: Optional[int] = Query(None, alias='studentId'),
    txn_type: Optional[str] = Query(None, alias='type'),
    db: Session = Depends(get_session),
    user: models.User = Depends(require_permission('transactions')),
):
    return {'transactions': _call(services.TransactionService(db).list, month, _branch(branch_id), student_id, txn_type)}


@app.get('/expenses')
def list_expenses(month: Optional[str] = None, branch_id: Optional[str] = Query(None, alias='branchId'),
                  db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return _call(services.ExpenseService(db).list, month, _branch(branch_id))


@app.post('/expenses', status_code=201)
def create_expense(payload: ExpenseIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return _call(services.ExpenseService(db).create, payload)


@app.put('/expenses/{expense_id}')
def update_expense(expense_id: int, payload: ExpenseIn, db: Session = Depends(get_session),
                   user: models.User = Depends(require_admin_or_staff)):
    return _call(services.ExpenseService(db).update, expense_id, payload)


@app.delete('/expenses/{expense_id}')
def delete_expense(expense_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    _call(services.ExpenseService(db).delete, expense_id)
    return {'message': 'Expense deleted'}


@app.get('/reports/profit-loss')
def profit_loss(month: Optional[str] = None, branch_id: Optional[str] = Query(None, alias='branchId'),
                db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    """Collected minus expenses for `month` (YYYY-MM), optionally per branch."""
    return _call(services.ReportService(db).profit_loss, month, _branch(branch_id))


@app.get('/reports/monthly-collections')
def monthly_collections(month: Optional[str] = None, branch_id: Optional[str] = Query(None, alias='branchId'),
                        db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    """Per-student payment and due totals from the transactions of `month`."""
    return _call(services.ReportService(db).monthly_collections, month, _branch(branch_id))


@app.get('/dashboard/stats')
def dashboard_stats(month: Optional[str] = None, branch_id: Optional[str] = Query(None, alias='branchId'),
                    db: Session = Depends(get_session), user: models.User = Depends(require_admin_or_staff)):
    return _call(services.ReportService(db).dashboard, _branch(branch_id), month)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
