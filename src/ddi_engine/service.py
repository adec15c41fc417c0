"""Interaction check operations.

Every check runs the same pipeline:

    resolve identities -> build prefilter -> fetch candidates
        -> pair (matcher per candidate per drug) -> aggregate

A call makes at most two read-only trips to reference data: one formulary
lookup to resolve identities and one candidate query. Empty inputs return
an empty result before touching either.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ddi_engine.aggregator import aggregate
from ddi_engine.context import AccessContext
from ddi_engine.models import (
    DrugIdentity,
    InteractionCheckResult,
    InteractionRecord,
    InteractionStatistics,
    PatientMedication,
    ReferenceEntry,
)
from ddi_engine.pairing import cross_check, incremental_check
from ddi_engine.prefilter import cross_check_filter, incremental_filter
from ddi_engine.prescriptions import PrescriptionSource, PrescriptionSourceError
from ddi_engine.resolver import IdentityResolver
from ddi_engine.severity import Severity
from ddi_engine.store import Formulary, InteractionStore

logger = logging.getLogger(__name__)


def _threshold(min_severity: str | None) -> Severity | None:
    # An unrecognized value parses to UNKNOWN, the lowest priority, so it
    # filters nothing out.
    return Severity.parse(min_severity) if min_severity is not None else None


class InteractionService:
    """Entry point for all interaction checks.

    Args:
        store: Reference interaction store.
        formulary: Local formulary used to resolve ATC codes and names.
        prescriptions: Source of patients' active medications. Only the
            patient-based checks need it.
    """

    def __init__(
        self,
        store: InteractionStore,
        formulary: Formulary,
        prescriptions: PrescriptionSource | None = None,
    ) -> None:
        self.store = store
        self.resolver = IdentityResolver(formulary)
        self.prescriptions = prescriptions

    # --- Full cross-check ---

    async def check_interactions(
        self,
        ctx: AccessContext,
        atc_codes: Sequence[str],
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Check every pair of the given medications (by ATC code)."""
        ctx.require_read()
        if not atc_codes:
            logger.debug("check_interactions: empty code list")
            return InteractionCheckResult.empty()

        drugs = await self.resolver.resolve_codes(ctx, atc_codes)
        return await self.cross_check_identities(ctx, drugs, min_severity)

    async def check_patient_interactions(
        self,
        ctx: AccessContext,
        patient_id: str,
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Check every pair of a patient's active medications."""
        ctx.require_read()
        meds = await self._patient_medications(ctx, patient_id)
        if not meds:
            logger.debug("check_patient_interactions: no active medications")
            return InteractionCheckResult.empty()

        drugs = await self.resolver.resolve_medications(ctx, meds)
        return await self.cross_check_identities(ctx, drugs, min_severity)

    async def cross_check_identities(
        self,
        ctx: AccessContext,
        drugs: Sequence[DrugIdentity],
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Full cross-check over already resolved identities."""
        if not drugs:
            return InteractionCheckResult.empty()

        predicate = cross_check_filter(drugs)
        candidates = await self.store.fetch_candidates(ctx, predicate) if not predicate.is_empty else []
        confirmed = cross_check(drugs, candidates)
        result = aggregate(confirmed, _threshold(min_severity))

        logger.info(
            "Cross-check: %d drugs, %d candidates, %d confirmed, %d reported",
            len(drugs),
            len(candidates),
            len(confirmed),
            result.total,
        )
        return result

    # --- Incremental check ---

    async def check_new_medication(
        self,
        ctx: AccessContext,
        new_atc_code: str,
        existing_atc_codes: Sequence[str],
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Interactions a new medication (by ATC code) would introduce."""
        ctx.require_read()
        if not existing_atc_codes or not new_atc_code.strip():
            logger.debug("check_new_medication: nothing to compare")
            return InteractionCheckResult.empty()

        # One formulary lookup for the new and the existing codes together
        resolved = await self.resolver.resolve_codes(ctx, [new_atc_code, *existing_atc_codes])
        return await self.incremental_identities(ctx, resolved[0], resolved[1:], min_severity)

    async def check_new_medication_for_patient(
        self,
        ctx: AccessContext,
        new_medication_name: str,
        new_generic_name: str | None,
        patient_id: str,
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Interactions a new medication (by name) would introduce for a patient.

        The patient's existing medications come from the prescription
        source; names are fuzzy-matched, so a local brand or Italian
        generic name is enough.
        """
        ctx.require_read()
        existing = await self._patient_medications(ctx, patient_id)
        if not existing:
            logger.debug("check_new_medication_for_patient: no active medications")
            return InteractionCheckResult.empty()

        new_med = PatientMedication(
            medication_name=new_medication_name, generic_name=new_generic_name
        )
        resolved = await self.resolver.resolve_medications(ctx, [new_med, *existing])
        return await self.incremental_identities(ctx, resolved[0], resolved[1:], min_severity)

    async def incremental_identities(
        self,
        ctx: AccessContext,
        new_drug: DrugIdentity,
        existing: Sequence[DrugIdentity],
        min_severity: str | None = None,
    ) -> InteractionCheckResult:
        """Incremental check over already resolved identities."""
        if not existing:
            return InteractionCheckResult.empty()

        predicate = incremental_filter(new_drug, existing)
        candidates = await self.store.fetch_candidates(ctx, predicate) if not predicate.is_empty else []
        confirmed = incremental_check(new_drug, existing, candidates)
        result = aggregate(confirmed, _threshold(min_severity))

        logger.info(
            "Incremental check for %r: %d existing, %d candidates, %d confirmed, %d reported",
            new_drug.display_name,
            len(existing),
            len(candidates),
            len(confirmed),
            result.total,
        )
        return result

    # --- Reference data ---

    async def statistics(self, ctx: AccessContext) -> InteractionStatistics:
        ctx.require_read()
        return await self.store.statistics(ctx)

    async def upsert_interaction(
        self, ctx: AccessContext, entry: ReferenceEntry
    ) -> InteractionRecord:
        """Insert a custom reference entry or merge it into an existing one."""
        ctx.require_write()
        merged = await self.store.upsert(ctx, entry)
        logger.info(
            "Upserted interaction %s <-> %s (%s)",
            merged.side_a.identifier_code,
            merged.side_b.identifier_code,
            merged.source,
        )
        return merged

    # --- Helpers ---

    async def _patient_medications(
        self, ctx: AccessContext, patient_id: str
    ) -> list[PatientMedication]:
        if self.prescriptions is None:
            raise PrescriptionSourceError("No prescription source configured")
        return await self.prescriptions.active_medications(ctx, patient_id)
