"""End-to-end tests for the interaction checks.

The service runs against the in-memory store and formulary, with the
prescription source mocked, so every step of the pipeline runs for real
except the I/O.
"""

from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from ddi_engine.context import AccessContext, AccessDeniedError
from ddi_engine.models import InteractionRecord, PatientMedication, ReferenceEntry, ReferenceSide
from ddi_engine.prescriptions import (
    DecryptingPrescriptionSource,
    MedicationDecryptionError,
    PrescriptionSourceError,
)
from ddi_engine.service import InteractionService
from ddi_engine.severity import Severity
from ddi_engine.store import InMemoryFormulary, InMemoryInteractionStore


def _record(
    code_a: str, name_a: str, code_b: str, name_b: str, severity: Severity
) -> InteractionRecord:
    return InteractionRecord(
        id=uuid4(),
        side_a=ReferenceSide(code_a, name_a),
        side_b=ReferenceSide(code_b, name_b),
        severity=severity,
        effect=f"{name_a} + {name_b}",
    )


METFORMIN_WARFARIN = _record("A10BA02", "Metformin", "B01AA03", "Warfarin", Severity.MODERATE)
WARFARIN_IBUPROFEN = _record("B01AA03", "Warfarin", "M01AE01", "Ibuprofen", Severity.MAJOR)
IBUPROFEN_ASA = _record("M01AE01", "Ibuprofen", "N02BA01", "Acetylsalicylic acid", Severity.MINOR)
ENALAPRIL_SPIRONOLACTONE = _record(
    "C03DA01", "Spironolactone", "C09AA02", "Enalapril", Severity.MAJOR
)

FORMULARY = InMemoryFormulary(
    [
        ("Metforal", "metformina", "A10BA02"),
        ("Coumadin", "warfarin", "B01AA03"),
        ("Brufen", "ibuprofene", "M01AE01"),
    ]
)


def _service(prescriptions: object | None = None) -> InteractionService:
    store = InMemoryInteractionStore(
        [METFORMIN_WARFARIN, WARFARIN_IBUPROFEN, IBUPROFEN_ASA, ENALAPRIL_SPIRONOLACTONE]
    )
    return InteractionService(store, FORMULARY, prescriptions)  # type: ignore[arg-type]


def _prescriptions(*meds: PatientMedication) -> AsyncMock:
    source = AsyncMock()
    source.active_medications.return_value = list(meds)
    return source


# --- check_interactions ---


@pytest.mark.asyncio
async def test_check_interactions_by_code(ctx: AccessContext) -> None:
    result = await _service().check_interactions(ctx, ["B01AA03", "m01ae01", "N02BA01"])

    assert result.total == 2
    assert [r.id for r in result.interactions] == [WARFARIN_IBUPROFEN.id, IBUPROFEN_ASA.id]
    assert result.major_count == 1
    assert result.minor_count == 1
    assert result.highest_severity is Severity.MAJOR


@pytest.mark.asyncio
async def test_check_interactions_min_severity(ctx: AccessContext) -> None:
    result = await _service().check_interactions(
        ctx, ["B01AA03", "M01AE01", "N02BA01"], min_severity="major"
    )
    assert [r.id for r in result.interactions] == [WARFARIN_IBUPROFEN.id]
    assert result.minor_count == 0


@pytest.mark.asyncio
async def test_unrecognized_min_severity_filters_nothing(ctx: AccessContext) -> None:
    result = await _service().check_interactions(
        ctx, ["B01AA03", "M01AE01", "N02BA01"], min_severity="whatever"
    )
    assert result.total == 2


@pytest.mark.asyncio
async def test_check_interactions_empty_list_touches_nothing(ctx: AccessContext) -> None:
    store = AsyncMock()
    formulary = AsyncMock()
    service = InteractionService(store, formulary)

    result = await service.check_interactions(ctx, [])

    assert result.total == 0
    assert result.interactions == []
    assert result.highest_severity is None
    store.fetch_candidates.assert_not_awaited()
    formulary.names_for_codes.assert_not_awaited()


@pytest.mark.asyncio
async def test_single_drug_has_no_interactions(ctx: AccessContext) -> None:
    result = await _service().check_interactions(ctx, ["B01AA03"])
    assert result.total == 0


# --- check_patient_interactions ---


@pytest.mark.asyncio
async def test_patient_check_with_localized_names(ctx: AccessContext) -> None:
    """Italian generic names without codes still match the English reference."""
    store = InMemoryInteractionStore([METFORMIN_WARFARIN, WARFARIN_IBUPROFEN])
    prescriptions = _prescriptions(
        PatientMedication("Metformina EG", "metformina"),
        PatientMedication("Warfarin Teva", "warfarin"),
    )
    # Empty formulary: no codes, matching is by name only
    service = InteractionService(store, InMemoryFormulary(), prescriptions)

    result = await service.check_patient_interactions(ctx, "1")

    assert result.total == 1
    assert result.moderate_count == 1
    assert result.highest_severity is Severity.MODERATE
    assert result.interactions[0].id == METFORMIN_WARFARIN.id


@pytest.mark.asyncio
async def test_patient_check_mixing_code_and_name(ctx: AccessContext) -> None:
    """metformina has no code, warfarin does; the pair is still found once."""
    store = InMemoryInteractionStore([METFORMIN_WARFARIN])
    prescriptions = _prescriptions(
        PatientMedication("Metformina EG", "metformina"),
        PatientMedication("Coumadin", "warfarin", "B01AA03"),
    )
    service = InteractionService(store, InMemoryFormulary(), prescriptions)

    result = await service.check_patient_interactions(ctx, "1")

    assert result.total == 1
    assert result.moderate_count == 1
    assert result.highest_severity is Severity.MODERATE


@pytest.mark.asyncio
async def test_patient_check_resolves_codes_from_formulary(ctx: AccessContext) -> None:
    service = _service(_prescriptions(PatientMedication("Coumadin"), PatientMedication("Brufen")))
    result = await service.check_patient_interactions(ctx, "1")
    assert [r.id for r in result.interactions] == [WARFARIN_IBUPROFEN.id]


@pytest.mark.asyncio
async def test_patient_without_medications(ctx: AccessContext) -> None:
    store = AsyncMock()
    service = InteractionService(store, FORMULARY, _prescriptions())

    result = await service.check_patient_interactions(ctx, "1")

    assert result.total == 0
    store.fetch_candidates.assert_not_awaited()


@pytest.mark.asyncio
async def test_patient_check_without_prescription_source(ctx: AccessContext) -> None:
    with pytest.raises(PrescriptionSourceError, match="No prescription source"):
        await _service().check_patient_interactions(ctx, "1")


@pytest.mark.asyncio
async def test_decryption_failure_is_surfaced(ctx: AccessContext) -> None:
    """Ciphertext is never matched; the check fails instead."""

    def decrypt(value: str) -> str:
        raise ValueError("bad padding")

    inner = _prescriptions(PatientMedication("gAAAAB..."))
    service = _service(DecryptingPrescriptionSource(inner, decrypt))

    with pytest.raises(MedicationDecryptionError):
        await service.check_patient_interactions(ctx, "1")


# --- check_new_medication ---


@pytest.mark.asyncio
async def test_check_new_medication(ctx: AccessContext) -> None:
    result = await _service().check_new_medication(ctx, "M01AE01", ["B01AA03", "A10BA02"])

    # Metformin + warfarin is already there, only the new drug's pairs count
    assert [r.id for r in result.interactions] == [WARFARIN_IBUPROFEN.id]


@pytest.mark.asyncio
async def test_check_new_medication_without_existing(ctx: AccessContext) -> None:
    store = AsyncMock()
    service = InteractionService(store, FORMULARY)
    result = await service.check_new_medication(ctx, "M01AE01", [])
    assert result.total == 0
    store.fetch_candidates.assert_not_awaited()


@pytest.mark.asyncio
async def test_check_new_medication_blank_code(ctx: AccessContext) -> None:
    result = await _service().check_new_medication(ctx, "  ", ["B01AA03"])
    assert result.total == 0


# --- check_new_medication_for_patient ---


@pytest.mark.asyncio
async def test_check_new_medication_for_patient(ctx: AccessContext) -> None:
    prescriptions = _prescriptions(
        PatientMedication("Coumadin"), PatientMedication("Aspirinetta", "acetylsalicylic acid")
    )
    service = _service(prescriptions)

    result = await service.check_new_medication_for_patient(ctx, "Moment", "ibuprofene", "7")

    prescriptions.active_medications.assert_awaited_once_with(ctx, "7")
    assert [r.id for r in result.interactions] == [WARFARIN_IBUPROFEN.id, IBUPROFEN_ASA.id]
    assert result.major_count == 1
    assert result.minor_count == 1


@pytest.mark.asyncio
async def test_check_new_medication_for_patient_min_severity(ctx: AccessContext) -> None:
    service = _service(_prescriptions(PatientMedication("Coumadin")))
    result = await service.check_new_medication_for_patient(
        ctx, "Brufen", None, "7", min_severity="contraindicated"
    )
    assert result.total == 0


# --- Reference data ---


@pytest.mark.asyncio
async def test_statistics(ctx: AccessContext) -> None:
    stats = await _service().statistics(ctx)
    assert stats.total == 4
    assert stats.major == 2


@pytest.mark.asyncio
async def test_upsert_requires_admin(ctx: AccessContext, admin_ctx: AccessContext) -> None:
    service = _service()
    entry = ReferenceEntry(
        side_a=ReferenceSide("B01AA03", "Warfarin"),
        side_b=ReferenceSide("N02BA01", "Aspirin"),
        severity=Severity.MAJOR,
    )

    with pytest.raises(AccessDeniedError):
        await service.upsert_interaction(ctx, entry)

    stored = await service.upsert_interaction(admin_ctx, entry)
    assert stored.severity is Severity.MAJOR
    assert stored.is_active is True
    assert (await service.statistics(admin_ctx)).total == 5


@pytest.mark.asyncio
async def test_checks_require_a_reading_role() -> None:
    """A context built outside from_headers() with a foreign role is refused."""
    outsider = AccessContext(user_id="9", role="guest")  # type: ignore[arg-type]
    with pytest.raises(AccessDeniedError):
        await _service().check_interactions(outsider, ["B01AA03"])
