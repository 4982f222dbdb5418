"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the IoT device monitoring API.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses.

Endpoints implemented:
- POST /api/v1/register
- POST /api/v1/login
- POST /api/v1/forgot-password
- POST /api/v1/reset-password
- GET /api/user
- POST /api/v1/devices
- GET /api/v1/devices
- PUT /api/v1/devices/{device_id}
- POST /api/v1/sensor-data
- GET /api/v1/devices/{device_id}/latest-status
- GET /api/v1/devices/{device_id}/historical-status
- GET /health
"""

import json
import logging
import os
import time
import uuid
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, services
from .auth import get_current_user, get_sensor_writer
from .config import settings
from .database import create_db_and_tables, get_session
from .schemas import (
    MAX_ROW_ID,
    DeviceCreatedOut,
    DeviceIn,
    DeviceOut,
    ForgotPasswordIn,
    LoginIn,
    RegisterIn,
    ResetPasswordIn,
    SensorDataIn,
    SensorDataOut,
    TokenOut,
    UserOut,
)
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="IoT Device Monitoring API")
logger = logging.getLogger("iot_monitor.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_auth_rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps local dashboards and device simulators working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

v1 = APIRouter(prefix="/api/v1")
DeviceId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as `{"success": false, "message": ...}`."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Group pydantic errors per field: `{"errors": {field: [messages]}}`."""
    errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(err.get("msg", "invalid value"))
    return _unprocessable(errors)


def _unprocessable(errors: dict) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": "The given data was invalid.", "errors": errors},
    )


def _field_error(exc: services.ValidationFailed) -> JSONResponse:
    return _unprocessable({exc.field: [exc.message]})


def _enforce_auth_rate_limit(request: Request) -> None:
    window = int(os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", "60"))
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _auth_rate_limiter.allow(key, settings.AUTH_RATE_LIMIT_PER_MIN, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@v1.post('/register', status_code=201)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_session)):
    """Create a user account; the email must not already be registered."""
    _enforce_auth_rate_limit(request)
    try:
        user = services.AuthService(db).register(payload.name, payload.email, payload.password)
    except services.ValidationFailed as e:
        return _field_error(e)
    return {'data': UserOut.model_validate(user)}


@v1.post('/login', response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT bearer token.

    The token carries `user_id` and `email` and is signed with the
    configured JWT secret.
    """
    _enforce_auth_rate_limit(request)
    token = services.AuthService(db).authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return TokenOut(access_token=token)


@v1.post('/forgot-password')
def forgot_password(payload: ForgotPasswordIn, request: Request, db: Session = Depends(get_session)):
    """Issue a password reset token.

    No mailer is wired in; in the `dev` environment the token is echoed
    back in the response so the reset flow can be exercised locally.
    """
    _enforce_auth_rate_limit(request)
    try:
        token = services.AuthService(db).create_reset_token(payload.email)
    except services.ValidationFailed as e:
        return _field_error(e)
    out = {'message': 'We have emailed your password reset link.'}
    if settings.ENV == 'dev':
        out['reset_token'] = token
    return out


@v1.post('/reset-password')
def reset_password(payload: ResetPasswordIn, request: Request, db: Session = Depends(get_session)):
    _enforce_auth_rate_limit(request)
    try:
        services.AuthService(db).reset_password(payload.email, payload.token, payload.password)
    except services.ValidationFailed as e:
        return _field_error(e)
    return {'message': 'Your password has been reset.'}


@app.get('/api/user')
def current_user(user: models.User = Depends(get_current_user)):
    """Return the authenticated user."""
    return UserOut.model_validate(user)


@v1.post('/devices', status_code=201)
def store_device(payload: DeviceIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Register a new device.

    The response includes the device `api_key`; it is not shown again by
    any other endpoint.
    """
    device = services.DeviceService(db).store(payload.device_name, payload.location)
    return {'data': DeviceCreatedOut.model_validate(device)}


@v1.get('/devices')
def list_devices(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    devices = services.DeviceService(db).get_all()
    return {'data': [DeviceOut.model_validate(d) for d in devices]}


@v1.put('/devices/{device_id}')
def update_device(device_id: DeviceId, payload: DeviceIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Replace the name and location of an existing device."""
    try:
        device = services.DeviceService(db).update(device_id, payload.device_name, payload.location)
    except services.NotFoundError:
        raise HTTPException(status_code=404, detail='ID is not found.')
    return {'data': DeviceOut.model_validate(device)}


@v1.post('/sensor-data', status_code=201)
def store_sensor_data(
    payload: SensorDataIn,
    db: Session = Depends(get_session),
    device: Optional[models.Device] = Depends(get_sensor_writer),
):
    """Store a reading.

    Accepts a user bearer token or a device `X-API-Key`; a device key can
    only write readings for its own device.
    """
    if device is not None and device.id != payload.device_id:
        raise HTTPException(status_code=403, detail='This action is unauthorized.')
    try:
        reading = services.SensorDataService(db).store(
            payload.device_id, payload.temperature, payload.humidity, payload.status, payload.timestamp
        )
    except services.ValidationFailed as e:
        return _field_error(e)
    return {'data': SensorDataOut.model_validate(reading)}


@v1.get('/devices/{device_id}/latest-status')
def latest_status(device_id: DeviceId, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the newest reading for a device, or `null` if it has none.

    Results may be up to `LATEST_STATUS_CACHE_SECONDS` old unless a new
    reading was stored through this API in the meantime.
    """
    try:
        return services.SensorDataService(db).get_latest_status(device_id)
    except services.NotFoundError:
        raise HTTPException(status_code=404, detail='ID is not found.')


@v1.get('/devices/{device_id}/historical-status')
def historical_status(
    device_id: DeviceId,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Return the readings of a device between `start_time` and `end_time` (inclusive)."""
    svc = services.SensorDataService(db)
    try:
        readings = svc.get_historical_status(device_id, start_time, end_time)
    except services.NotFoundError:
        raise HTTPException(status_code=404, detail='ID is not found.')
    except services.ValidationFailed as e:
        return _field_error(e)
    return [SensorDataOut.model_validate(r) for r in readings]


app.include_router(v1)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
