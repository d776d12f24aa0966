"""Input validation regexes shared by the services."""

import re
from typing import Optional

PHONE_RE = re.compile(r'^\+?\d{10,15}$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
TIME_RE = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f'{field} is required')
    return str(value).strip()


def validate_phone(phone: Optional[str]) -> str:
    phone = require_text(phone, 'phone').replace(' ', '').replace('-', '')
    if not PHONE_RE.match(phone):
        raise ValueError('invalid phone number')
    return phone


def validate_email(email: Optional[str]) -> Optional[str]:
    if email is None or not email.strip():
        return None
    email = email.strip()
    if not EMAIL_RE.match(email):
        raise ValueError('invalid email address')
    return email


def validate_time(value: Optional[str], field: str) -> Optional[str]:
    if value is None or value == '':
        return None
    if not TIME_RE.match(value):
        raise ValueError(f'{field} must be HH:MM')
    return value


def non_negative(value: float, field: str) -> float:
    if value is None:
        return 0.0
    if value < 0:
        raise ValueError(f'{field} must be >= 0')
    return float(value)
