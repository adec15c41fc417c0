"""Import DDInter 2.0 interactions into the reference table.

Prerequisites:
  1. DDInter CSV files from https://ddinter2.scbdd.com/download/
     (header: DDInterID_A,Drug_A,DDInterID_B,Drug_B,Level)
  2. The WHO ATC English CSV from https://github.com/fabkury/atcd
     (header: atc_code,atc_name,ddd,uom,adm_r,note)

Usage:
    ddi-import --ddinter-dir data/ddinter --atc-file data/who_atc_english.csv

DDInter identifies drugs by English name only, so each name is mapped to
a level-5 ATC code through the WHO table. Rows where either drug has no
code are skipped, as are repeated code pairs. The two sides are written
in alphabetical code order through the store's insert-or-merge operation,
so re-running the import updates rows in place.
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ddi_engine.config import LOG_LEVEL
from ddi_engine.context import AccessContext, Role
from ddi_engine.db import SqlInteractionStore, close_db, get_engine, init_db
from ddi_engine.models import ReferenceEntry, ReferenceSide
from ddi_engine.severity import Severity
from ddi_engine.store import InteractionStore, InteractionStoreError

logger = logging.getLogger(__name__)

SOURCE = "DDINTER"
PROGRESS_EVERY = 10_000

# Level-5 ATC codes (single substances) are exactly 7 characters, e.g. B01AA03
ATC_SUBSTANCE_CODE_LENGTH = 7

_DDINTER_LEVELS = {
    "major": Severity.MAJOR,
    "moderate": Severity.MODERATE,
    "minor": Severity.MINOR,
}


@dataclass(frozen=True)
class DDInterRow:
    id_a: str
    drug_a: str
    id_b: str
    drug_b: str
    level: str


@dataclass
class ImportSummary:
    total: int = 0
    imported: int = 0
    skipped_no_atc: int = 0
    skipped_duplicate: int = 0
    failed: int = 0

    def percent(self, count: int) -> float:
        return 100.0 * count / self.total if self.total else 0.0


def normalize_severity(level: str) -> Severity:
    """Map a DDInter Level to a severity; DDInter has no contraindicated level."""
    return _DDINTER_LEVELS.get(level.strip().lower(), Severity.UNKNOWN)


def load_atc_mapping(path: Path) -> dict[str, str]:
    """Load the WHO ATC table as lowercase substance name -> ATC code."""
    mapping: dict[str, str] = {}
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        next(reader, None)  # header
        for fields in reader:
            if len(fields) < 2:
                continue
            code = fields[0].strip()
            name = fields[1].strip().lower()
            if len(code) == ATC_SUBSTANCE_CODE_LENGTH and name:
                mapping[name] = code
    return mapping


def parse_ddinter_csv(path: Path) -> list[DDInterRow]:
    rows: list[DDInterRow] = []
    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        next(reader, None)  # header
        for fields in reader:
            if len(fields) < 5:
                continue
            row = DDInterRow(*(f.strip() for f in fields[:5]))
            if row.drug_a and row.drug_b:
                rows.append(row)
    return rows


def to_entry(row: DDInterRow, code_a: str, code_b: str) -> ReferenceEntry:
    return ReferenceEntry(
        side_a=ReferenceSide(identifier_code=code_a, name=row.drug_a),
        side_b=ReferenceSide(identifier_code=code_b, name=row.drug_b),
        severity=normalize_severity(row.level),
        source=SOURCE,
        source_id=f"{row.id_a}-{row.id_b}",
    ).ordered()


async def import_ddinter(
    store: InteractionStore,
    ctx: AccessContext,
    atc_mapping: dict[str, str],
    csv_paths: Iterable[Path],
) -> ImportSummary:
    """Import every row of the given DDInter files through `store.upsert`.

    A row that fails to write is logged and counted, and the import goes on.
    """
    summary = ImportSummary()
    seen_pairs: set[tuple[str, str]] = set()

    for path in csv_paths:
        rows = parse_ddinter_csv(path)
        logger.info("Processing %s (%d rows)", path.name, len(rows))

        for row in rows:
            summary.total += 1
            code_a = atc_mapping.get(row.drug_a.lower())
            code_b = atc_mapping.get(row.drug_b.lower())
            if code_a is None or code_b is None:
                summary.skipped_no_atc += 1
                continue

            entry = to_entry(row, code_a, code_b)
            pair = entry.natural_key[:2]
            if pair in seen_pairs:
                summary.skipped_duplicate += 1
                continue
            seen_pairs.add(pair)

            try:
                await store.upsert(ctx, entry)
            except InteractionStoreError as exc:
                summary.failed += 1
                logger.warning(
                    "Failed to import interaction %s <-> %s: %s", row.drug_a, row.drug_b, exc.detail
                )
                continue

            summary.imported += 1
            if summary.imported % PROGRESS_EVERY == 0:
                logger.info("Progress: %d interactions imported...", summary.imported)

    logger.info("Import completed")
    logger.info("  - Total records processed: %d", summary.total)
    logger.info("  - Imported: %d", summary.imported)
    logger.info(
        "  - Skipped (no ATC code): %d (%.1f%%)",
        summary.skipped_no_atc,
        summary.percent(summary.skipped_no_atc),
    )
    logger.info(
        "  - Skipped (duplicate): %d (%.1f%%)",
        summary.skipped_duplicate,
        summary.percent(summary.skipped_duplicate),
    )
    if summary.failed:
        logger.warning("  - Failed: %d", summary.failed)
    return summary


async def _run(ddinter_dir: Path, atc_file: Path) -> ImportSummary:
    atc_mapping = load_atc_mapping(atc_file)
    logger.info("Loaded %d drug name to ATC code mappings", len(atc_mapping))

    csv_paths = sorted(ddinter_dir.glob("*.csv"))
    if not csv_paths:
        raise FileNotFoundError(f"No DDInter CSV files found in {ddinter_dir}")

    await init_db(get_engine())
    ctx = AccessContext(user_id="ddi-import", role=Role.ADMIN)
    try:
        return await import_ddinter(SqlInteractionStore(), ctx, atc_mapping, csv_paths)
    finally:
        await close_db()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import DDInter interactions")
    parser.add_argument("--ddinter-dir", type=Path, default=Path("data/ddinter"))
    parser.add_argument("--atc-file", type=Path, default=Path("data/who_atc_english.csv"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not args.atc_file.exists():
        logger.error("WHO ATC file not found: %s", args.atc_file)
        return 1

    summary = asyncio.run(_run(args.ddinter_dir, args.atc_file))
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
