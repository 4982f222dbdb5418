"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
auxiliary logic. Services are intentionally thin: they perform validation,
execute domain logic and persist aggregates via repositories. They raise
`NotFoundError` and `ValidationFailed` and leave the HTTP mapping to the
controllers.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .schemas import SensorDataOut
from .utils.cache import InMemoryTTLCache

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

logger = logging.getLogger("iot_monitor.services")

latest_status_cache = InMemoryTTLCache()


class NotFoundError(LookupError):
    """The requested resource does not exist."""


class ValidationFailed(ValueError):
    """Input was well-formed but rejected by a domain rule on `field`."""
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


def to_utc(value: datetime, field: str) -> datetime:
    """Normalise `value` to aware UTC; naive inputs are assumed to be UTC.

    Shifting a value near `datetime.min`/`max` can leave the representable
    range; that is reported as a `ValidationFailed` on `field`.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError:
        raise ValidationFailed(field, f"The {field} is out of the supported date range.")


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """Authentication related operations (register, login, password reset)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.reset_repo = repositories.PasswordResetRepository(session)

    def register(self, name: str, email: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `ValidationFailed` if the email is already taken.
        """
        email = email.strip().lower()
        if self.user_repo.get_by_email(email):
            raise ValidationFailed("email", "The email has already been taken.")
        hashed = PWD_CTX.hash(password)
        user = self.user_repo.create(models.User(name=name, email=email, password_hash=hashed))
        logger.info("user_registered user_id=%s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email.strip().lower())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "email": user.email, "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

    def create_reset_token(self, email: str) -> str:
        """Issue a password reset token for `email` and return it in plain text.

        Only the token hash is stored; issuing a new token revokes older ones.
        """
        email = email.strip().lower()
        if not self.user_repo.get_by_email(email):
            raise ValidationFailed("email", "We can't find a user with that email address.")
        token = secrets.token_urlsafe(32)
        self.reset_repo.replace(email, _hash_token(token))
        logger.info("password_reset_requested email=%s", email)
        return token

    def reset_password(self, email: str, token: str, password: str) -> models.User:
        """Consume a reset token and set a new password for the user."""
        email = email.strip().lower()
        user = self.user_repo.get_by_email(email)
        record = self.reset_repo.latest(email)
        if not user or not record or not hmac.compare_digest(record.token_hash, _hash_token(token)):
            raise ValidationFailed("token", "This password reset token is invalid.")
        expires = models.as_utc(record.created_at) + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        if expires < models.utcnow():
            self.reset_repo.delete_for(email)
            raise ValidationFailed("token", "This password reset token has expired.")
        user = self.user_repo.update_password(user, PWD_CTX.hash(password))
        self.reset_repo.delete_for(email)
        logger.info("password_reset_completed user_id=%s", user.id)
        return user


class DeviceService:
    """Create, list and update monitored devices."""
    def __init__(self, session: Session):
        self.session = session
        self.device_repo = repositories.DeviceRepository(session)

    def store(self, device_name: str, location: str) -> models.Device:
        """Persist a new device with a freshly generated api key."""
        device = models.Device(device_name=device_name, location=location, api_key=secrets.token_hex(20))
        device = self.device_repo.create(device)
        logger.info("device_created device_id=%s", device.id)
        return device

    def get_all(self) -> List[models.Device]:
        return self.device_repo.list_all()

    def get(self, device_id: int) -> models.Device:
        """Return the device or raise `NotFoundError`."""
        device = self.device_repo.get(device_id)
        if not device:
            raise NotFoundError(f"device not found: {device_id}")
        return device

    def update(self, device_id: int, device_name: str, location: str) -> models.Device:
        """Rename/relocate an existing device; raises `NotFoundError` if missing."""
        device = self.get(device_id)
        return self.device_repo.update(device, device_name, location)


class SensorDataService:
    """Store sensor readings and answer latest/historical status queries."""
    def __init__(self, session: Session, cache: InMemoryTTLCache = latest_status_cache):
        self.session = session
        self.cache = cache
        self.device_repo = repositories.DeviceRepository(session)
        self.data_repo = repositories.SensorDataRepository(session)

    @staticmethod
    def cache_key(device_id: int) -> str:
        return f"device_{device_id}_latest_status"

    def store(self, device_id: int, temperature: float, humidity: float, status: str,
              timestamp: datetime) -> models.SensorData:
        """Persist a reading for an existing device.

        The reading timestamp is normalised to UTC and the device's cached
        latest status is dropped so the next query sees the new row.
        """
        if not self.device_repo.get(device_id):
            raise ValidationFailed("device_id", "The selected device_id is invalid.")
        reading = models.SensorData(
            device_id=device_id,
            temperature=temperature,
            humidity=humidity,
            status=status,
            timestamp=to_utc(timestamp, "timestamp"),
        )
        reading = self.data_repo.create(reading)
        self.cache.forget(self.cache_key(device_id))
        logger.info("sensor_data_stored device_id=%s reading_id=%s", device_id, reading.id)
        return reading

    def get_latest_status(self, device_id: int) -> Optional[SensorDataOut]:
        """Return the newest reading for `device_id` as a `SensorDataOut`, or `None`.

        Results are remembered for `LATEST_STATUS_CACHE_SECONDS`. A snapshot
        is cached rather than the ORM row so it stays valid after the
        request's session closes.
        """
        self._require_device(device_id)

        def _load():
            reading = self.data_repo.latest_for_device(device_id)
            return SensorDataOut.model_validate(reading) if reading else None

        return self.cache.remember(self.cache_key(device_id), settings.LATEST_STATUS_CACHE_SECONDS, _load)

    def get_historical_status(self, device_id: int, start_time: datetime, end_time: datetime) -> List[models.SensorData]:
        """Return readings with `start_time <= timestamp <= end_time`, oldest first."""
        self._require_device(device_id)
        start = to_utc(start_time, "start_time")
        end = to_utc(end_time, "end_time")
        if end < start:
            raise ValidationFailed("end_time", "The end_time must be a date after or equal to start_time.")
        return self.data_repo.between(device_id, start, end)

    def _require_device(self, device_id: int) -> models.Device:
        device = self.device_repo.get(device_id)
        if not device:
            raise NotFoundError(f"device not found: {device_id}")
        return device
