"""
engine/consent.py

Who may read which patient's records.

A doctor may read a patient's records iff the doctor is in the patient's
``shared_with`` set; a patient may always read their own.  Changes apply to
every later check immediately; they do not reach back into data a caller
has already fetched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from engine.errors import AccessDenied, NotFound, StorageUnavailable
from engine.ports import ConsentStore, IdentityStore
from storage.models import Doctor, Patient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsentChange:
    """Outcome of a confirmed permission toggle."""
    previous: frozenset[str]
    current: frozenset[str]

    @property
    def changed(self) -> bool:
        return self.previous != self.current


class ConsentRegistry:
    """Grant, revoke and check record access against a consent store."""

    def __init__(self, store: ConsentStore, identity: IdentityStore) -> None:
        self.store = store
        self.identity = identity

    def shared_with(self, patient_id: str) -> frozenset[str]:
        shared = self.store.get_shared_with(patient_id)
        if shared is None:
            raise NotFound(f"No patient with uid '{patient_id}'.")
        return shared

    def grant(self, patient_id: str, doctor_id: str) -> None:
        """Allow *doctor_id* to read *patient_id*'s records.  Safe to repeat."""
        if not isinstance(self.identity.get_profile(patient_id), Patient):
            raise NotFound(f"No patient with uid '{patient_id}'.")
        if not isinstance(self.identity.get_profile(doctor_id), Doctor):
            raise NotFound(f"No doctor with uid '{doctor_id}'.")
        self.store.update_shared_with(patient_id, doctor_id, add=True)
        logger.info("Consent granted: patient=%s doctor=%s", patient_id, doctor_id)

    def revoke(self, patient_id: str, doctor_id: str) -> None:
        """Withdraw *doctor_id*'s access.  Revoking an absent grant is a no-op."""
        self.store.update_shared_with(patient_id, doctor_id, add=False)
        logger.info("Consent revoked: patient=%s doctor=%s", patient_id, doctor_id)

    def can_access(self, patient_id: str, doctor_id: str) -> bool:
        if doctor_id == patient_id:
            return True
        shared = self.store.get_shared_with(patient_id)
        return shared is not None and doctor_id in shared

    def check_access_or_fail(self, patient_id: str, doctor_id: str) -> None:
        """
        Raise ``AccessDenied`` unless *doctor_id* may read *patient_id*.

        An unknown patient and a missing grant produce the same error so the
        check cannot be used to discover which patients exist.
        """
        if not self.can_access(patient_id, doctor_id):
            logger.warning("Access denied: %s attempted to read records of %s", doctor_id, patient_id)
            raise AccessDenied()

    def set_permission(self, patient_id: str, doctor_id: str, allowed: bool) -> ConsentChange:
        """
        Toggle one doctor's access and report the confirmed before/after sets.

        For callers that update their view optimistically: the returned
        ``current`` is what the store confirmed.  If the store fails, the
        raised ``StorageUnavailable`` carries ``previous`` so the caller can
        put its view back.
        """
        previous = self.shared_with(patient_id)
        try:
            if allowed:
                self.grant(patient_id, doctor_id)
            else:
                self.revoke(patient_id, doctor_id)
        except StorageUnavailable as exc:
            raise StorageUnavailable(exc.message, previous=previous) from exc
        current = previous | {doctor_id} if allowed else previous - {doctor_id}
        return ConsentChange(previous=previous, current=current)
