"""Turn medication records into `DrugIdentity` values.

Prescriptions carry a display name and, sometimes, a generic name and an
ATC code. When the code is missing, the local formulary is consulted by
display name and then by generic name (case-insensitive). A drug that
isn't in the formulary keeps `identifier_code=None` and is matched by name
only.

Each resolver call issues at most one formulary query, however many
medications it resolves.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ddi_engine.context import AccessContext
from ddi_engine.models import DrugIdentity, PatientMedication
from ddi_engine.store import Formulary

logger = logging.getLogger(__name__)


def resolve_identity(
    display_name: str,
    generic_name: str | None = None,
    identifier_code: str | None = None,
    formulary_codes: Mapping[str, str] | None = None,
) -> DrugIdentity:
    """Build a DrugIdentity from raw medication fields.

    Args:
        display_name: Name as prescribed.
        generic_name: Active ingredient; defaults to the display name.
        identifier_code: ATC code if already known.
        formulary_codes: Lowercased name -> ATC code, from the formulary.

    Returns:
        The normalized identity.
    """
    display = display_name.strip()
    generic = (generic_name or "").strip() or display
    code = (identifier_code or "").strip() or None

    if code is None and formulary_codes:
        code = formulary_codes.get(display.lower()) or formulary_codes.get(generic.lower())

    return DrugIdentity(display_name=display, generic_name=generic, identifier_code=code)


class IdentityResolver:
    """Resolves identities against a formulary collaborator."""

    def __init__(self, formulary: Formulary) -> None:
        self.formulary = formulary

    async def resolve_medications(
        self, ctx: AccessContext, medications: Sequence[PatientMedication]
    ) -> list[DrugIdentity]:
        """Resolve prescription records, looking up missing ATC codes."""
        lookup: set[str] = set()
        for med in medications:
            if not (med.identifier_code or "").strip():
                lookup.add(med.medication_name.strip().lower())
                if med.generic_name:
                    lookup.add(med.generic_name.strip().lower())
        lookup.discard("")

        codes: dict[str, str] = {}
        if lookup:
            codes = await self.formulary.codes_for_names(ctx, lookup)
            logger.debug("Formulary resolved %d of %d names", len(codes), len(lookup))

        return [
            resolve_identity(
                med.medication_name,
                generic_name=med.generic_name,
                identifier_code=med.identifier_code,
                formulary_codes=codes,
            )
            for med in medications
        ]

    async def resolve_codes(self, ctx: AccessContext, codes: Sequence[str]) -> list[DrugIdentity]:
        """Resolve bare ATC codes, recovering names from the formulary.

        A code the formulary doesn't know is used as its own name.
        """
        cleaned = [c.strip() for c in codes if c and c.strip()]
        if not cleaned:
            return []
        names = await self.formulary.names_for_codes(ctx, {c.upper() for c in cleaned})

        identities = []
        for code in cleaned:
            display, generic = names.get(code.upper(), (code, code))
            identities.append(resolve_identity(display, generic, identifier_code=code))
        return identities
