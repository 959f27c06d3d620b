"""
Shared fixtures: a throwaway SQLite database, a controllable clock, and a
small cast of registered doctors and patients.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet

from engine.service import HealthVaultService
from storage import crypto
from storage.db import Database
from storage.models import AccessContext, UserRole

NOW = datetime(2025, 3, 10, 12, 0)

# Verhoeff-valid 12-digit numbers.
VALID_AADHAAR = "234567890124"
OTHER_VALID_AADHAAR = "499181011254"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def data_key(monkeypatch):
    monkeypatch.setenv("APP_DATA_KEY", Fernet.generate_key().decode())
    crypto.reset_key()
    yield
    crypto.reset_key()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "healthvault.db")


@pytest.fixture
def service(db, clock):
    return HealthVaultService(db, clock=clock)


@pytest.fixture
def people(service):
    reg = service.registry
    house = reg.register_doctor("d-house", "Gregory House", "house@clinic.test")
    cuddy = reg.register_doctor("d-cuddy", "Lisa Cuddy", "cuddy@clinic.test")
    priya = reg.register_patient("p-priya", "Priya Sharma", "priya@mail.test", VALID_AADHAAR)
    ravi = reg.register_patient("p-ravi", "Ravi Kumar", "ravi@mail.test", OTHER_VALID_AADHAAR)

    def ctx(profile):
        return AccessContext(uid=profile.uid, role=UserRole(profile.role), name=profile.name)

    return SimpleNamespace(
        house=house,
        cuddy=cuddy,
        priya=priya,
        ravi=ravi,
        house_ctx=ctx(house),
        cuddy_ctx=ctx(cuddy),
        priya_ctx=ctx(priya),
        ravi_ctx=ctx(ravi),
    )
