"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
password resets, devices, sensor readings). Repositories return SQLModel
objects and perform commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import Session, select, col
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

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def update_password(self, user: models.User, password_hash: str) -> models.User:
        user.password_hash = password_hash
        user.updated_at = models.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class PasswordResetRepository:
    """Storage for hashed password reset tokens, one live token per email."""
    def __init__(self, session: Session):
        self.session = session

    def replace(self, email: str, token_hash: str) -> models.PasswordResetToken:
        """Drop any previous tokens for `email` and store the new one."""
        self._delete_for(email)
        record = models.PasswordResetToken(email=email, token_hash=token_hash)
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def latest(self, email: str) -> Optional[models.PasswordResetToken]:
        stmt = (
            select(models.PasswordResetToken)
            .where(models.PasswordResetToken.email == email)
            .order_by(col(models.PasswordResetToken.id).desc())
        )
        return self.session.exec(stmt).first()

    def delete_for(self, email: str) -> None:
        self._delete_for(email)
        self.session.commit()

    def _delete_for(self, email: str) -> None:
        stmt = select(models.PasswordResetToken).where(models.PasswordResetToken.email == email)
        for record in self.session.exec(stmt).all():
            self.session.delete(record)


class DeviceRepository:
    """CRUD operations for `Device` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, device: models.Device) -> models.Device:
        """Persist a new device and return the managed instance."""
        self.session.add(device)
        self.session.commit()
        self.session.refresh(device)
        return device

    def list_all(self) -> List[models.Device]:
        """Return every device ordered by id."""
        stmt = select(models.Device).order_by(col(models.Device.id))
        return self.session.exec(stmt).all()

    def get(self, device_id: int) -> Optional[models.Device]:
        """Fetch a device by id."""
        return self.session.get(models.Device, device_id)

    def get_by_api_key(self, api_key: str) -> Optional[models.Device]:
        stmt = select(models.Device).where(models.Device.api_key == api_key)
        return self.session.exec(stmt).first()

    def update(self, device: models.Device, device_name: str, location: str) -> models.Device:
        """Apply new name/location to `device` and bump `updated_at`."""
        device.device_name = device_name
        device.location = location
        device.updated_at = models.utcnow()
        self.session.add(device)
        self.session.commit()
        self.session.refresh(device)
        return device


class SensorDataRepository:
    """Persist and query `SensorData` readings."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, reading: models.SensorData) -> models.SensorData:
        """Store a reading and return the managed instance."""
        self.session.add(reading)
        self.session.commit()
        self.session.refresh(reading)
        return reading

    def latest_for_device(self, device_id: int) -> Optional[models.SensorData]:
        """Return the reading with the newest `timestamp` for `device_id`.

        Readings sharing the newest timestamp are ordered by id so the most
        recently stored one wins.
        """
        stmt = (
            select(models.SensorData)
            .where(models.SensorData.device_id == device_id)
            .order_by(col(models.SensorData.timestamp).desc(), col(models.SensorData.id).desc())
            .limit(1)
        )
        return self.session.exec(stmt).first()

    def between(self, device_id: int, start: datetime, end: datetime) -> List[models.SensorData]:
        """Return readings for `device_id` with `start <= timestamp <= end`, oldest first."""
        stmt = (
            select(models.SensorData)
            .where(
                models.SensorData.device_id == device_id,
                col(models.SensorData.timestamp).between(start, end),
            )
            .order_by(col(models.SensorData.timestamp), col(models.SensorData.id))
        )
        return self.session.exec(stmt).all()
