"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Datetimes are written as timezone-aware UTC values; some backends (SQLite
on older SQLModel releases) hand them back naive, so readers go through
`as_utc`.
"""

from typing import List, Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime read back from storage."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(SQLModel, table=True):
    """A registered API user.

    Fields:
    - `email`: unique login identifier
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    email: str = Field(index=True, nullable=False, unique=True, max_length=255)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PasswordResetToken(SQLModel, table=True):
    """A pending password reset for `email`; only a hash of the token is kept."""
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    token_hash: str
    created_at: datetime = Field(default_factory=utcnow)


class Device(SQLModel, table=True):
    """A monitored device.

    `api_key` lets the device itself post readings without a user token.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    device_name: str = Field(max_length=255)
    location: str = Field(max_length=255)
    api_key: Optional[str] = Field(default=None, index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sensor_data: List['SensorData'] = Relationship(back_populates='device')


class SensorData(SQLModel, table=True):
    """A single reading reported by a `Device`."""
    __tablename__ = 'sensor_data'

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: int = Field(foreign_key='device.id', index=True)
    temperature: float
    humidity: float
    status: str = Field(max_length=255)
    timestamp: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    device: Optional[Device] = Relationship(back_populates='sensor_data')
