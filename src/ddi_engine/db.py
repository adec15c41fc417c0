"""SQLAlchemy-backed reference store and formulary.

Tables:
- drug_interactions: the interaction reference table (imported from
  DDInter, sides ordered alphabetically by ATC code). Each side also
  stores `code_key()` and `name_key()` of its code and name, computed in
  Python; candidate queries compare against those columns, never against
  the database's own lower(), which on SQLite folds ASCII only;
- medications: the local formulary (brand name, generic name, ATC code).

Every query runs inside its own transaction. On PostgreSQL the caller's
AccessContext is pushed into transaction-local settings first, so the
row-level security policies on these tables see who is asking:

    SELECT set_config('app.current_user_id', :user_id, true)
    SELECT set_config('app.current_user_role', :role, true)

Other dialects (SQLite in development and tests) skip that step.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    and_,
    case,
    func,
    or_,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, InstrumentedAttribute, Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement

from ddi_engine.config import DATABASE_ECHO, DATABASE_URL
from ddi_engine.context import AccessContext
from ddi_engine.models import (
    InteractionRecord,
    InteractionStatistics,
    ReferenceEntry,
    ReferenceSide,
    code_key,
    merge_records,
    name_key,
)
from ddi_engine.prefilter import CandidateFilter, PairedCandidateFilter
from ddi_engine.severity import Severity
from ddi_engine.store import CandidatePredicate, InteractionStoreError, new_record_id

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


def _name_key_or_none(name: str | None) -> str | None:
    return name_key(name) if name is not None else None


class DrugInteractionRow(Base):
    __tablename__ = "drug_interactions"
    __table_args__ = (
        UniqueConstraint(
            "drug_a_code_key", "drug_b_code_key", "source", name="unique_drug_interaction"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    drug_a_atc_code: Mapped[str] = mapped_column(String(10), index=True)
    drug_a_name: Mapped[str | None] = mapped_column(String(500))
    drug_b_atc_code: Mapped[str] = mapped_column(String(10), index=True)
    drug_b_name: Mapped[str | None] = mapped_column(String(500))
    drug_a_code_key: Mapped[str] = mapped_column(String(10), index=True)
    drug_a_name_key: Mapped[str | None] = mapped_column(String(500), index=True)
    drug_b_code_key: Mapped[str] = mapped_column(String(10), index=True)
    drug_b_name_key: Mapped[str | None] = mapped_column(String(500), index=True)
    severity: Mapped[str] = mapped_column(String(30), index=True)
    effect: Mapped[str | None] = mapped_column(Text)
    mechanism: Mapped[str | None] = mapped_column(Text)
    management: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(50), default="DDINTER")
    source_id: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def to_record(self) -> InteractionRecord:
        return InteractionRecord(
            id=self.id,
            side_a=ReferenceSide(identifier_code=self.drug_a_atc_code, name=self.drug_a_name),
            side_b=ReferenceSide(identifier_code=self.drug_b_atc_code, name=self.drug_b_name),
            # Free text in the table; anything odd degrades to UNKNOWN
            severity=Severity.parse(self.severity),
            effect=self.effect,
            mechanism=self.mechanism,
            management=self.management,
            source=self.source,
            source_id=self.source_id,
            is_active=self.is_active,
        )

    def apply(self, record: InteractionRecord) -> None:
        self.drug_a_atc_code = record.side_a.identifier_code
        self.drug_a_name = record.side_a.name
        self.drug_b_atc_code = record.side_b.identifier_code
        self.drug_b_name = record.side_b.name
        self.drug_a_code_key = code_key(record.side_a.identifier_code)
        self.drug_a_name_key = _name_key_or_none(record.side_a.name)
        self.drug_b_code_key = code_key(record.side_b.identifier_code)
        self.drug_b_name_key = _name_key_or_none(record.side_b.name)
        self.severity = record.severity.value
        self.effect = record.effect
        self.mechanism = record.mechanism
        self.management = record.management
        self.source = record.source
        self.source_id = record.source_id
        self.is_active = record.is_active


class MedicationRow(Base):
    __tablename__ = "medications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    generic_name: Mapped[str | None] = mapped_column(String(255))
    atc_code: Mapped[str | None] = mapped_column(String(10), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# --- Engine / session management ---

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the shared async engine for DATABASE_URL."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = create_async_engine(DATABASE_URL, echo=DATABASE_ECHO)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory  # noqa: PLW0603
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db(engine: AsyncEngine) -> None:
    """Create the tables if they don't exist (development and tests)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


@asynccontextmanager
async def scoped_session(
    factory: async_sessionmaker[AsyncSession], ctx: AccessContext
) -> AsyncIterator[AsyncSession]:
    """Open a session and transaction carrying the caller's access context.

    Database errors are wrapped in InteractionStoreError. They are not
    retried here.
    """
    try:
        async with factory() as session, session.begin():
            if session.get_bind().dialect.name == "postgresql":
                await session.execute(
                    select(func.set_config("app.current_user_id", ctx.user_id, True))
                )
                await session.execute(
                    select(func.set_config("app.current_user_role", ctx.role.value.upper(), True))
                )
            yield session
    except SQLAlchemyError as exc:
        logger.error("Reference database query failed: %s", exc)
        raise InteractionStoreError(f"Reference database query failed: {exc}") from exc


# --- Candidate predicate translation ---


def _side_clause(
    f: CandidateFilter,
    code_col: InstrumentedAttribute[str],
    name_col: InstrumentedAttribute[str | None],
) -> ColumnElement[bool]:
    clauses: list[ColumnElement[bool]] = []
    if f.codes:
        clauses.append(code_col.in_(sorted(f.codes)))
    # startswith() becomes LIKE 'prefix%'; autoescape keeps % and _ literal
    clauses.extend(name_col.startswith(prefix, autoescape=True) for prefix in sorted(f.prefixes))
    return or_(*clauses)


def candidate_clause(predicate: CandidatePredicate) -> ColumnElement[bool]:
    """Translate a prefilter predicate into a SQL WHERE clause."""
    t = DrugInteractionRow
    if isinstance(predicate, PairedCandidateFilter):
        return or_(
            and_(
                _side_clause(predicate.new, t.drug_a_code_key, t.drug_a_name_key),
                _side_clause(predicate.existing, t.drug_b_code_key, t.drug_b_name_key),
            ),
            and_(
                _side_clause(predicate.new, t.drug_b_code_key, t.drug_b_name_key),
                _side_clause(predicate.existing, t.drug_a_code_key, t.drug_a_name_key),
            ),
        )
    return or_(
        _side_clause(predicate, t.drug_a_code_key, t.drug_a_name_key),
        _side_clause(predicate, t.drug_b_code_key, t.drug_b_name_key),
    )


class SqlInteractionStore:
    """InteractionStore over the drug_interactions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory or get_session_factory()

    async def fetch_candidates(
        self, ctx: AccessContext, predicate: CandidatePredicate
    ) -> list[InteractionRecord]:
        if predicate.is_empty:
            return []
        stmt = select(DrugInteractionRow).where(
            DrugInteractionRow.is_active.is_(True), candidate_clause(predicate)
        )
        async with scoped_session(self._factory, ctx) as session:
            rows = (await session.scalars(stmt)).all()
            return [row.to_record() for row in rows]

    async def upsert(self, ctx: AccessContext, entry: ReferenceEntry) -> InteractionRecord:
        """Insert the entry, or merge it into the row with the same natural key.

        The merge rule is merge_records(): incoming non-null values win and
        incoming nulls keep what is stored.
        """
        incoming = entry.ordered()
        code_a, code_b, source = incoming.natural_key
        stmt = select(DrugInteractionRow).where(
            DrugInteractionRow.drug_a_code_key == code_a,
            DrugInteractionRow.drug_b_code_key == code_b,
            DrugInteractionRow.source == source,
        )
        async with scoped_session(self._factory, ctx) as session:
            row = (await session.scalars(stmt)).one_or_none()
            if row is None:
                record = incoming.to_record(new_record_id())
                row = DrugInteractionRow(id=record.id)
                row.apply(record)
                session.add(row)
                return record
            merged = merge_records(row.to_record(), incoming)
            row.apply(merged)
            return merged

    async def statistics(self, ctx: AccessContext) -> InteractionStatistics:
        t = DrugInteractionRow

        def count(severity: Severity) -> ColumnElement[int]:
            return func.count(case((t.severity == severity.value, 1)))

        stmt = select(
            func.count(),
            count(Severity.CONTRAINDICATED),
            count(Severity.MAJOR),
            count(Severity.MODERATE),
            count(Severity.MINOR),
            count(Severity.UNKNOWN),
            func.count(t.source.distinct()),
        ).where(t.is_active.is_(True))

        async with scoped_session(self._factory, ctx) as session:
            row = (await session.execute(stmt)).one()
        total, contraindicated, major, moderate, minor, unknown, sources = row
        return InteractionStatistics(
            total=total or 0,
            contraindicated=contraindicated or 0,
            major=major or 0,
            moderate=moderate or 0,
            minor=minor or 0,
            unknown=unknown or 0,
            sources=sources or 0,
        )


class SqlFormulary:
    """Formulary over the medications table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory or get_session_factory()

    async def codes_for_names(self, ctx: AccessContext, names: Collection[str]) -> dict[str, str]:
        wanted = sorted({n.lower() for n in names if n})
        if not wanted:
            return {}
        m = MedicationRow
        stmt = (
            select(m.name, m.generic_name, m.atc_code)
            .where(
                m.is_active.is_(True),
                m.atc_code.is_not(None),
                or_(func.lower(m.name).in_(wanted), func.lower(m.generic_name).in_(wanted)),
            )
            .order_by(m.name)
        )
        async with scoped_session(self._factory, ctx) as session:
            rows = (await session.execute(stmt)).all()

        wanted_set = set(wanted)
        found: dict[str, str] = {}
        for name, generic, code in rows:
            for key in (name, generic):
                if key and key.lower() in wanted_set:
                    found.setdefault(key.lower(), code)
        return found

    async def names_for_codes(
        self, ctx: AccessContext, codes: Collection[str]
    ) -> dict[str, tuple[str, str]]:
        wanted = sorted({c.upper() for c in codes if c})
        if not wanted:
            return {}
        m = MedicationRow
        stmt = (
            select(m.name, m.generic_name, m.atc_code)
            .where(m.is_active.is_(True), func.upper(m.atc_code).in_(wanted))
            .order_by(m.name)
        )
        async with scoped_session(self._factory, ctx) as session:
            rows = (await session.execute(stmt)).all()

        found: dict[str, tuple[str, str]] = {}
        for name, generic, code in rows:
            found.setdefault(code.upper(), (name, generic or name))
        return found
