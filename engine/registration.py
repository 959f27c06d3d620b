"""
engine/registration.py

Creating and looking up doctor and patient profiles.

Credentials live with the external identity provider; this module only
records the profile for a uid the provider has already issued.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from engine.aadhaar import require_valid
from engine.errors import NotFound, ValidationError
from engine.ports import IdentityStore
from storage.models import Doctor, Patient, UserProfile

logger = logging.getLogger(__name__)


class Registry:
    def __init__(self, identity: IdentityStore, clock: Callable[[], datetime] = datetime.now) -> None:
        self.identity = identity
        self.clock = clock

    def register_patient(self, uid: str, name: str, email: str | None, national_id: str) -> Patient:
        """
        Create a patient profile with an empty consent set.

        Raises:
            InvalidFormat / InvalidChecksum: the Aadhaar number is not
                structurally valid.  Nothing is written.
            ValidationError: blank name, or *uid* already registered.
        """
        national_id = require_valid((national_id or "").strip())
        patient = Patient(
            uid=uid,
            name=self._require_name(name),
            email=email,
            national_id=national_id,
            created_at=self.clock(),
        )
        self.identity.create_profile(patient)
        return patient

    def register_doctor(self, uid: str, name: str, email: str | None) -> Doctor:
        doctor = Doctor(uid=uid, name=self._require_name(name), email=email, created_at=self.clock())
        self.identity.create_profile(doctor)
        return doctor

    def get_profile(self, uid: str) -> UserProfile:
        profile = self.identity.get_profile(uid)
        if profile is None:
            raise NotFound(f"No user with uid '{uid}'.")
        return profile

    def list_doctors(self) -> list[Doctor]:
        return self.identity.list_doctors()

    @staticmethod
    def _require_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError(fields=["name"])
        return name
