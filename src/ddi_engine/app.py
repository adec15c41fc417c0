"""FastAPI server exposing the interaction checks over HTTP.

Endpoints:
- GET  /health                                   Liveness check
- POST /drug-interactions/check                  Cross-check a list of ATC codes
- POST /drug-interactions/check-new              New ATC code vs existing codes
- POST /drug-interactions/check-new-for-patient  New drug name vs a patient's prescriptions
- GET  /drug-interactions/patient/{patient_id}   Cross-check a patient's prescriptions
- GET  /drug-interactions/statistics             Reference table statistics
- PUT  /drug-interactions/reference              Insert or merge a reference entry (admin)

Authentication happens upstream. The authenticating proxy forwards the
user as X-User-Id / X-User-Role headers, which become the AccessContext
passed to every store call.

Run locally with:
    uvicorn ddi_engine.app:app --reload
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ddi_engine.config import LOG_LEVEL
from ddi_engine.context import AccessContext, AccessDeniedError
from ddi_engine.db import SqlFormulary, SqlInteractionStore, close_db
from ddi_engine.models import (
    InteractionCheckResult,
    InteractionRecord,
    ReferenceEntry,
    ReferenceSide,
)
from ddi_engine.openemr_client import OpenEMRClient
from ddi_engine.prescriptions import OpenEMRPrescriptionSource, PrescriptionSourceError
from ddi_engine.service import InteractionService
from ddi_engine.severity import Severity
from ddi_engine.store import InteractionStoreError

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


# --- Request / response models ---


class CheckInteractionsRequest(BaseModel):
    atc_codes: list[str]
    min_severity: str | None = None  # "contraindicated" | "major" | "moderate" | "minor"


class CheckNewMedicationRequest(BaseModel):
    new_atc_code: str = Field(min_length=1)
    existing_atc_codes: list[str]
    min_severity: str | None = None


class CheckNewMedicationForPatientRequest(BaseModel):
    new_medication_name: str = Field(min_length=1)
    new_generic_name: str | None = None  # Optional but improves matching
    patient_id: str = Field(min_length=1)
    min_severity: str | None = None


class InteractionView(BaseModel):
    id: UUID
    drug_a_atc_code: str
    drug_a_name: str | None
    drug_b_atc_code: str
    drug_b_name: str | None
    severity: Severity
    effect: str | None
    mechanism: str | None
    management: str | None
    source: str

    @classmethod
    def from_record(cls, record: InteractionRecord) -> InteractionView:
        return cls(
            id=record.id,
            drug_a_atc_code=record.side_a.identifier_code,
            drug_a_name=record.side_a.name,
            drug_b_atc_code=record.side_b.identifier_code,
            drug_b_name=record.side_b.name,
            severity=record.severity,
            effect=record.effect,
            mechanism=record.mechanism,
            management=record.management,
            source=record.source,
        )


class CheckInteractionsResponse(BaseModel):
    interactions: list[InteractionView]
    total: int
    major_count: int  # contraindicated + major
    moderate_count: int
    minor_count: int
    highest_severity: Severity | None

    @classmethod
    def from_result(cls, result: InteractionCheckResult) -> CheckInteractionsResponse:
        return cls(
            interactions=[InteractionView.from_record(r) for r in result.interactions],
            total=result.total,
            major_count=result.major_count,
            moderate_count=result.moderate_count,
            minor_count=result.minor_count,
            highest_severity=result.highest_severity,
        )


class StatisticsResponse(BaseModel):
    total: int
    contraindicated: int
    major: int
    moderate: int
    minor: int
    unknown: int
    sources: int


class ReferenceEntryRequest(BaseModel):
    drug_a_atc_code: str = Field(min_length=1, max_length=10)
    drug_a_name: str | None = None
    drug_b_atc_code: str = Field(min_length=1, max_length=10)
    drug_b_name: str | None = None
    severity: str | None = None
    effect: str | None = None
    mechanism: str | None = None
    management: str | None = None
    source: str = "CUSTOM"
    is_active: bool | None = None

    def to_entry(self) -> ReferenceEntry:
        """Omitted fields stay None so a merge keeps the stored values."""
        return ReferenceEntry(
            side_a=ReferenceSide(identifier_code=self.drug_a_atc_code, name=self.drug_a_name),
            side_b=ReferenceSide(identifier_code=self.drug_b_atc_code, name=self.drug_b_name),
            severity=Severity.parse(self.severity) if self.severity is not None else None,
            effect=self.effect,
            mechanism=self.mechanism,
            management=self.management,
            source=self.source,
            is_active=self.is_active,
        )


# --- Dependencies ---

_service: InteractionService | None = None
_openemr: OpenEMRClient | None = None


def get_service() -> InteractionService:
    """Get or create the shared InteractionService."""
    global _service, _openemr  # noqa: PLW0603
    if _service is None:
        _openemr = OpenEMRClient()
        _service = InteractionService(
            store=SqlInteractionStore(),
            formulary=SqlFormulary(),
            prescriptions=OpenEMRPrescriptionSource(_openemr),
        )
    return _service


def get_access_context(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> AccessContext:
    return AccessContext.from_headers(x_user_id, x_user_role)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    if _openemr is not None:
        await _openemr.close()
    await close_db()


app = FastAPI(
    title="Drug Interaction Engine",
    description="Severity-ranked drug-drug interaction warnings for prescribing",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error handling ---


@app.exception_handler(AccessDeniedError)
async def access_denied(request: Request, exc: AccessDeniedError) -> JSONResponse:
    logger.warning("Access denied on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(InteractionStoreError)
async def store_failure(request: Request, exc: InteractionStoreError) -> JSONResponse:
    logger.error("Interaction store failure on %s: %s", request.url.path, exc.detail)
    return JSONResponse(
        status_code=500, content={"detail": "Failed to check drug interactions"}
    )


@app.exception_handler(PrescriptionSourceError)
async def prescription_failure(request: Request, exc: PrescriptionSourceError) -> JSONResponse:
    logger.error("Prescription source failure on %s: %s", request.url.path, exc.detail)
    return JSONResponse(
        status_code=502, content={"detail": f"Failed to load prescriptions: {exc.detail}"}
    )


# --- Routes ---


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/drug-interactions/check", response_model=CheckInteractionsResponse)
async def check_interactions(
    request: CheckInteractionsRequest,
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> CheckInteractionsResponse:
    """Check all pairwise interactions between the given ATC codes."""
    result = await service.check_interactions(ctx, request.atc_codes, request.min_severity)
    return CheckInteractionsResponse.from_result(result)


@app.post("/drug-interactions/check-new", response_model=CheckInteractionsResponse)
async def check_new_medication(
    request: CheckNewMedicationRequest,
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> CheckInteractionsResponse:
    """Check which interactions a new ATC code adds to an existing list."""
    result = await service.check_new_medication(
        ctx, request.new_atc_code, request.existing_atc_codes, request.min_severity
    )
    return CheckInteractionsResponse.from_result(result)


@app.post("/drug-interactions/check-new-for-patient", response_model=CheckInteractionsResponse)
async def check_new_medication_for_patient(
    request: CheckNewMedicationForPatientRequest,
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> CheckInteractionsResponse:
    """Check which interactions a new medication adds to a patient's regimen.

    Names are fuzzy-matched, so the local brand name is enough; passing
    the generic name improves matching.
    """
    result = await service.check_new_medication_for_patient(
        ctx,
        request.new_medication_name,
        request.new_generic_name,
        request.patient_id,
        request.min_severity,
    )
    return CheckInteractionsResponse.from_result(result)


@app.get("/drug-interactions/patient/{patient_id}", response_model=CheckInteractionsResponse)
async def check_patient_interactions(
    patient_id: str,
    min_severity: str | None = None,
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> CheckInteractionsResponse:
    """Check all interactions among a patient's active prescriptions."""
    result = await service.check_patient_interactions(ctx, patient_id, min_severity)
    return CheckInteractionsResponse.from_result(result)


@app.get("/drug-interactions/statistics", response_model=StatisticsResponse)
async def statistics(
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> StatisticsResponse:
    stats = await service.statistics(ctx)
    return StatisticsResponse(**asdict(stats))


@app.put("/drug-interactions/reference", response_model=InteractionView)
async def upsert_reference_entry(
    request: ReferenceEntryRequest,
    ctx: AccessContext = Depends(get_access_context),
    service: InteractionService = Depends(get_service),
) -> InteractionView:
    """Insert a custom interaction, or merge it into the existing entry.

    Fields sent as null keep their stored value.
    """
    record = await service.upsert_interaction(ctx, request.to_entry())
    return InteractionView.from_record(record)
