"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens and two FastAPI
dependencies:

- `get_current_user` validates the bearer token and returns the
  corresponding `User` model instance from the database.
- `get_sensor_writer` additionally accepts a device `X-API-Key` header so
  devices can post their own readings without a user account.

Verification failures raise HTTPExceptions so the helpers can be used
directly inside route dependencies.
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .database import get_session
from .services import JWT_ALGORITHM, JWT_SECRET

bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def _user_from_token(token: str, db: Session) -> models.User:
    payload = decode_token(token)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    It raises an HTTPException(401) for any authentication issue.
    """
    return _user_from_token(credentials.credentials, db)


def get_sensor_writer(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer_scheme),
    api_key: Optional[str] = Header(default=None, alias='X-API-Key'),
    db: Session = Depends(get_session),
) -> Optional[models.Device]:
    """Authenticate a sensor-data writer.

    A valid device `X-API-Key` wins and the matching `Device` is returned;
    the caller must then restrict writes to that device. Otherwise a user
    bearer token is required and `None` is returned.
    """
    if api_key:
        device = repositories.DeviceRepository(db).get_by_api_key(api_key)
        if not device:
            raise HTTPException(status_code=401, detail='invalid api key')
        return device
    if credentials is None:
        raise HTTPException(status_code=401, detail='Unauthenticated.', headers={'WWW-Authenticate': 'Bearer'})
    _user_from_token(credentials.credentials, db)
    return None
