"""Sources of a patient's active medications.

The engine never reads prescription storage directly. It asks a
`PrescriptionSource` for the patient's active medications, already
decrypted. Two implementations ship here:

- OpenEMRPrescriptionSource reads the medication list from OpenEMR
  (GET /api/patient/{pid}/medication).
- DecryptingPrescriptionSource wraps any source whose names are stored
  encrypted. A name that fails to decrypt raises MedicationDecryptionError
  instead of passing ciphertext along, because ciphertext never matches
  any drug and would silently hide interactions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from ddi_engine.context import AccessContext
from ddi_engine.models import PatientMedication
from ddi_engine.openemr_client import OpenEMRAPIError, OpenEMRAuthError, OpenEMRClient

logger = logging.getLogger(__name__)


class PrescriptionSourceError(Exception):
    """Raised when a patient's medications cannot be obtained."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class MedicationDecryptionError(PrescriptionSourceError):
    """Raised when a stored medication name cannot be decrypted."""


class PrescriptionSource(Protocol):
    async def active_medications(
        self, ctx: AccessContext, patient_id: str
    ) -> list[PatientMedication]:
        """Return the patient's active medications with plaintext names."""
        ...


def _is_active(entry: dict[str, Any]) -> bool:
    # OpenEMR list entries carry activity=0 once discontinued
    return str(entry.get("activity", "1")).strip() not in {"0", "false", "False"}


class OpenEMRPrescriptionSource:
    """Active medications from an OpenEMR instance.

    Note: the medication endpoint uses the numeric patient ID (pid), not
    the UUID.
    """

    def __init__(self, client: OpenEMRClient) -> None:
        self.client = client

    async def active_medications(
        self, ctx: AccessContext, patient_id: str
    ) -> list[PatientMedication]:
        try:
            data = await self.client.get(f"/patient/{patient_id}/medication")
        except OpenEMRAuthError as exc:
            raise PrescriptionSourceError(f"OpenEMR authentication failed: {exc}") from exc
        except OpenEMRAPIError as exc:
            raise PrescriptionSourceError(f"Error fetching medications: {exc.detail}") from exc

        entries = (data.get("data") or []) if isinstance(data, dict) else []
        meds: list[PatientMedication] = []
        for entry in entries:
            title = (entry.get("title") or "").strip()
            if not title or not _is_active(entry):
                continue
            meds.append(PatientMedication(medication_name=title))

        logger.debug("OpenEMR returned %d active medications for patient %s", len(meds), patient_id)
        return meds


class DecryptingPrescriptionSource:
    """Decrypts medication names coming from another source.

    Args:
        inner: The source returning encrypted names.
        decrypt: Turns one ciphertext string into plaintext. Any exception
            it raises is reported as MedicationDecryptionError.
    """

    def __init__(self, inner: PrescriptionSource, decrypt: Callable[[str], str]) -> None:
        self.inner = inner
        self.decrypt = decrypt

    def _plaintext(self, value: str, field: str) -> str:
        try:
            return self.decrypt(value)
        except Exception as exc:
            raise MedicationDecryptionError(f"Failed to decrypt {field}") from exc

    async def active_medications(
        self, ctx: AccessContext, patient_id: str
    ) -> list[PatientMedication]:
        encrypted = await self.inner.active_medications(ctx, patient_id)
        return [
            PatientMedication(
                medication_name=self._plaintext(med.medication_name, "medication_name"),
                generic_name=(
                    self._plaintext(med.generic_name, "generic_name")
                    if med.generic_name is not None
                    else None
                ),
                identifier_code=med.identifier_code,
            )
            for med in encrypted
        ]
