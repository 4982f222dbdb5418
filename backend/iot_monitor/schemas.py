"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Output schemas are built from ORM rows and
render stored (naive UTC) datetimes as timezone-aware UTC values.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Largest id a signed 64-bit INTEGER primary key can hold.
MAX_ROW_ID = 2**63 - 1


def _confirmed(v: str, info: ValidationInfo) -> str:
    if 'password' in info.data and v != info.data['password']:
        raise ValueError('password confirmation does not match')
    return v


class RegisterIn(BaseModel):
    """Payload for the user registration endpoint."""
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8)
    password_confirmation: str

    @field_validator('email')
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip().lower()
        if '@' not in v or v.startswith('@') or v.endswith('@'):
            raise ValueError('must be a valid email address')
        return v

    @field_validator('password_confirmation')
    @classmethod
    def _passwords_match(cls, v: str, info: ValidationInfo) -> str:
        return _confirmed(v, info)


class LoginIn(BaseModel):
    """Credentials for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = 'bearer'


class ForgotPasswordIn(BaseModel):
    email: str


class ResetPasswordIn(BaseModel):
    """Payload for completing a password reset."""
    email: str
    token: str = Field(min_length=1)
    password: str = Field(min_length=8)
    password_confirmation: str

    @field_validator('password_confirmation')
    @classmethod
    def _passwords_match(cls, v: str, info: ValidationInfo) -> str:
        return _confirmed(v, info)


class DeviceIn(BaseModel):
    """Request body for creating or updating a device."""
    model_config = ConfigDict(str_strip_whitespace=True)

    device_name: str = Field(min_length=1, max_length=255, examples=['Device 1'])
    location: str = Field(min_length=1, max_length=255, examples=['Building A'])


class SensorDataIn(BaseModel):
    """Request body for storing a sensor reading."""
    model_config = ConfigDict(str_strip_whitespace=True)

    device_id: int = Field(ge=1, le=MAX_ROW_ID, examples=[1])
    temperature: float = Field(allow_inf_nan=False, examples=[25.5])
    humidity: float = Field(allow_inf_nan=False, examples=[60.5])
    status: str = Field(min_length=1, max_length=255, examples=['active'])
    timestamp: datetime = Field(examples=['2025-03-04T12:00:00Z'])



class _RowOut(BaseModel):
    """Base for responses read from ORM rows; naive datetimes are UTC."""
    model_config = ConfigDict(from_attributes=True)

    @field_validator('*')
    @classmethod
    def _as_utc(cls, v):
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class UserOut(_RowOut):
    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class DeviceOut(_RowOut):
    """Public representation of a `Device`."""
    id: int
    device_name: str
    location: str
    created_at: datetime
    updated_at: datetime


class DeviceCreatedOut(DeviceOut):
    """Create response; the only place the device api key is shown."""
    api_key: str


class SensorDataOut(_RowOut):
    """Public representation of a `SensorData` reading."""
    id: int
    device_id: int
    temperature: float
    humidity: float
    status: str
    timestamp: datetime
    created_at: datetime
    updated_at: datetime
