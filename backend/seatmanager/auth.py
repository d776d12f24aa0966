"""Authentication helpers and FastAPI security dependencies.

The login endpoint stores a signed JWT in an HttpOnly session cookie.
`get_current_user` accepts that cookie, or the same token sent as a
bearer header by API clients, and returns the `User` row. The role
dependencies build on it and raise HTTPExceptions (401 without a
session, 403 for an insufficient role) so they can be used directly
inside route signatures.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger("seatmanager.auth")

UNAUTHORIZED = 'Unauthorized - Please log in'


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='session expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)


def _token_from_request(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


def user_from_request(request: Request, session: Session, credentials: Optional[HTTPAuthorizationCredentials] = None) -> Optional[models.User]:
    """Return the logged-in user or `None`; never raises for a bad session."""
    token = _token_from_request(request, credentials)
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    user_id = payload.get('user_id')
    if not user_id:
        return None
    return repositories.UserRepository(session).get(user_id)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    Raises HTTPException(401) when there is no session, the token does
    not verify, or the user no longer exists.
    """
    token = _token_from_request(request, credentials)
    if not token:
        logger.warning("no session for path %s", request.url.path)
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    payload = decode_token(token)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    user = repositories.UserRepository(session).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    return user


def require_admin(request: Request, user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != 'admin':
        logger.warning("admin check failed: user %s (role: %s) for path %s", user.username, user.role, request.url.path)
        raise HTTPException(status_code=403, detail='Forbidden: Admin access required')
    return user


def require_admin_or_staff(request: Request, user: models.User = Depends(get_current_user)) -> models.User:
    if user.role in ('admin', 'staff'):
        return user
    logger.warning("admin/staff check failed: user %s (role: %s) for path %s", user.username, user.role, request.url.path)
    raise HTTPException(status_code=403, detail='Forbidden: Admin or Staff access required')


def require_permission(permission: str):
    """Build a dependency that admits admins and users holding `permission`."""
    def checker(request: Request, user: models.User = Depends(get_current_user)) -> models.User:
        if user.role == 'admin' or permission in user.permission_list():
            return user
        logger.warning("permission %s denied: user %s for path %s", permission, user.username, request.url.path)
        raise HTTPException(status_code=403, detail='Forbidden - Insufficient permissions')
    return checker
