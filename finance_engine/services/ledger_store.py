"""
HERA Finance Engine - Ledger Store

Commit and staging persistence for derived journals. Both operations are
idempotent: the same idempotency key always resolves to the same journal
code (or staged reference) and never creates a second record.

Implementations:
- InMemoryLedgerStore: development and tests
- SqlAlchemyLedgerStore: SQLAlchemy 2.0 async, unique key at the table level
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finance_engine.models.ledger import FinanceJournal, FinanceJournalLine, FinanceStagedJournal
from finance_engine.schemas.finance_event import GLLine, JournalDraft, UniversalFinanceEvent
from finance_engine.schemas.posting_rule import PostingRule
from finance_engine.utils.error_handling import ErrorCode, FinanceInfrastructureError, JournalAlreadyCommittedError

logger = logging.getLogger(__name__)

_METADATA_ADAPTER = TypeAdapter(Dict[str, Any])


def format_code(prefix: str, event_time: datetime, sequence: int) -> str:
    """JE-202601-00001"""
    return f"{prefix}-{event_time.strftime('%Y%m')}-{sequence:05d}"


class LedgerStore(ABC):
    """Abstract commit/staging store."""

    @abstractmethod
    async def commit_journal(self, journal: JournalDraft, idempotency_key: str) -> str:
        """Persist a balanced journal; returns its journal code."""
        pass

    @abstractmethod
    async def stage_for_review(
        self,
        event: UniversalFinanceEvent,
        journal: JournalDraft,
        rule: PostingRule,
        reason: str,
    ) -> str:
        """
        Queue a derived journal for review; returns the staged reference.

        Raises:
            JournalAlreadyCommittedError: a journal is already committed under the key
        """
        pass

    @abstractmethod
    async def get_journal(self, organization_id: str, journal_code: str) -> Optional[JournalDraft]:
        pass

    @abstractmethod
    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[str]:
        """Journal code already committed under this key, if any."""
        pass


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

@dataclass
class StagedJournal:
    staged_reference: str
    event: UniversalFinanceEvent
    journal: JournalDraft
    smart_code: str
    rule_version: str
    reason: str
    status: str = "pending_review"


class InMemoryLedgerStore(LedgerStore):
    """Journals kept in dictionaries behind an asyncio lock; inserts are all-or-nothing."""

    def __init__(self, journal_prefix: str = "JE", staged_prefix: str = "STG"):
        self.journal_prefix = journal_prefix
        self.staged_prefix = staged_prefix
        self._lock = asyncio.Lock()
        self._journal_codes: Dict[str, str] = {}
        self._journals: Dict[Tuple[str, str], JournalDraft] = {}
        self._staged_refs: Dict[str, str] = {}
        self._staged: Dict[Tuple[str, str], StagedJournal] = {}
        self._sequences: Dict[Tuple[str, str, str], int] = {}

    def _next_code(self, prefix: str, organization_id: str, event_time: datetime) -> str:
        bucket = (prefix, organization_id, event_time.strftime('%Y%m'))
        self._sequences[bucket] = self._sequences.get(bucket, 0) + 1
        return format_code(prefix, event_time, self._sequences[bucket])

    async def commit_journal(self, journal: JournalDraft, idempotency_key: str) -> str:
        async with self._lock:
            existing = self._journal_codes.get(idempotency_key)
            if existing:
                logger.info(f"Journal already committed under {idempotency_key}: {existing}")
                return existing

            code = self._next_code(self.journal_prefix, journal.organization_id, journal.event_time)
            self._journals[(journal.organization_id, code)] = journal.model_copy(deep=True)
            self._journal_codes[idempotency_key] = code
            return code

    async def stage_for_review(
        self,
        event: UniversalFinanceEvent,
        journal: JournalDraft,
        rule: PostingRule,
        reason: str,
    ) -> str:
        key = journal.idempotency_key
        async with self._lock:
            committed = self._journal_codes.get(key)
            if committed:
                raise JournalAlreadyCommittedError(key, committed)

            existing = self._staged_refs.get(key)
            if existing:
                return existing

            reference = self._next_code(self.staged_prefix, journal.organization_id, journal.event_time)
            self._staged[(journal.organization_id, reference)] = StagedJournal(
                staged_reference=reference,
                event=event,
                journal=journal.model_copy(deep=True),
                smart_code=rule.smart_code,
                rule_version=rule.rule_version,
                reason=reason,
            )
            self._staged_refs[key] = reference
            return reference

    async def get_journal(self, organization_id: str, journal_code: str) -> Optional[JournalDraft]:
        return self._journals.get((organization_id, journal_code))

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[str]:
        return self._journal_codes.get(idempotency_key)

    def get_staged(self, organization_id: str, staged_reference: str) -> Optional[StagedJournal]:
        return self._staged.get((organization_id, staged_reference))

    @property
    def journals(self) -> List[JournalDraft]:
        return list(self._journals.values())

    @property
    def staged(self) -> List[StagedJournal]:
        return list(self._staged.values())


# =============================================================================
# SQLALCHEMY STORE
# =============================================================================

class SqlAlchemyLedgerStore(LedgerStore):
    """
    Ledger store over SQLAlchemy async sessions.

    Each call runs in its own session and transaction, so a failure leaves
    nothing behind and the event can be retried under the same key.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        journal_prefix: str = "JE",
        staged_prefix: str = "STG",
    ):
        self._session_factory = session_factory
        self.journal_prefix = journal_prefix
        self.staged_prefix = staged_prefix

    async def _generate_code(self, session: AsyncSession, model, column, prefix: str,
                             organization_id: str, event_time: datetime) -> str:
        """Generate unique entry number."""
        period_prefix = f"{prefix}-{event_time.strftime('%Y%m')}"
        result = await session.execute(
            select(func.count(model.id))
            .where(model.organization_id == organization_id)
            .where(column.like(f"{period_prefix}-%"))
        )
        count = result.scalar() or 0
        return format_code(prefix, event_time, count + 1)

    async def _journal_code_for(self, session: AsyncSession, idempotency_key: str) -> Optional[str]:
        result = await session.execute(
            select(FinanceJournal.journal_code).where(FinanceJournal.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def _staged_reference_for(self, session: AsyncSession, idempotency_key: str) -> Optional[str]:
        result = await session.execute(
            select(FinanceStagedJournal.staged_reference)
            .where(FinanceStagedJournal.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def commit_journal(self, journal: JournalDraft, idempotency_key: str) -> str:
        try:
            async with self._session_factory() as session:
                existing = await self._journal_code_for(session, idempotency_key)
                if existing:
                    logger.info(f"Journal already committed under {idempotency_key}: {existing}")
                    return existing

                code = await self._generate_code(
                    session, FinanceJournal, FinanceJournal.journal_code,
                    self.journal_prefix, journal.organization_id, journal.event_time,
                )
                session.add(FinanceJournal(
                    organization_id=journal.organization_id,
                    journal_code=code,
                    idempotency_key=idempotency_key,
                    smart_code=journal.smart_code,
                    origin_txn_id=journal.origin_txn_id,
                    source_system=journal.source_system,
                    rule_version=journal.rule_version,
                    event_time=journal.event_time,
                    currency=journal.currency,
                    total_debit=journal.total_debit,
                    total_credit=journal.total_credit,
                    journal_metadata=_json_safe(journal.metadata),
                    lines=[
                        FinanceJournalLine(
                            line_number=line.line_number,
                            account_code=line.account_code,
                            dr=line.dr,
                            cr=line.cr,
                            role=line.role,
                            source_entity_id=line.source_entity_id,
                            description=line.description,
                            line_metadata=_json_safe(line.metadata),
                        )
                        for line in journal.lines
                    ],
                ))

                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    existing = await self._journal_code_for(session, idempotency_key)
                    if existing:
                        logger.info(f"Concurrent commit resolved to existing journal {existing}")
                        return existing
                    raise FinanceInfrastructureError(
                        "ledger_store",
                        "Journal number collision; retry the event",
                        code=ErrorCode.DATA_INTEGRITY_ERROR,
                        original_error=e,
                    )
                return code
        except SQLAlchemyError as e:
            logger.error(f"Ledger commit failed for {idempotency_key}: {e}")
            raise FinanceInfrastructureError(
                "ledger_store",
                f"Ledger commit failed: {type(e).__name__}",
                code=ErrorCode.DATABASE_ERROR,
                original_error=e,
            )

    async def stage_for_review(
        self,
        event: UniversalFinanceEvent,
        journal: JournalDraft,
        rule: PostingRule,
        reason: str,
    ) -> str:
        key = journal.idempotency_key
        try:
            async with self._session_factory() as session:
                committed = await self._journal_code_for(session, key)
                if committed:
                    raise JournalAlreadyCommittedError(key, committed)

                existing = await self._staged_reference_for(session, key)
                if existing:
                    return existing

                reference = await self._generate_code(
                    session, FinanceStagedJournal, FinanceStagedJournal.staged_reference,
                    self.staged_prefix, journal.organization_id, journal.event_time,
                )
                session.add(FinanceStagedJournal(
                    organization_id=journal.organization_id,
                    staged_reference=reference,
                    idempotency_key=key,
                    smart_code=rule.smart_code,
                    origin_txn_id=journal.origin_txn_id,
                    rule_version=rule.rule_version,
                    reason=reason,
                    event_payload=event.model_dump(mode="json"),
                    journal_payload=journal.model_dump(mode="json"),
                ))

                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    existing = await self._staged_reference_for(session, key)
                    if existing:
                        return existing
                    raise FinanceInfrastructureError(
                        "ledger_store",
                        "Staged reference collision; retry the event",
                        code=ErrorCode.DATA_INTEGRITY_ERROR,
                        original_error=e,
                    )
                return reference
        except SQLAlchemyError as e:
            logger.error(f"Staging failed for {key}: {e}")
            raise FinanceInfrastructureError(
                "ledger_store",
                f"Staging failed: {type(e).__name__}",
                code=ErrorCode.DATABASE_ERROR,
                original_error=e,
            )

    async def get_journal(self, organization_id: str, journal_code: str) -> Optional[JournalDraft]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(FinanceJournal)
                    .where(FinanceJournal.organization_id == organization_id)
                    .where(FinanceJournal.journal_code == journal_code)
                )
                record = result.scalar_one_or_none()
                if record is None:
                    return None
                return JournalDraft(
                    organization_id=record.organization_id,
                    smart_code=record.smart_code,
                    origin_txn_id=record.origin_txn_id,
                    source_system=record.source_system,
                    event_time=record.event_time,
                    currency=record.currency,
                    idempotency_key=record.idempotency_key,
                    rule_version=record.rule_version,
                    metadata=record.journal_metadata or {},
                    lines=[
                        GLLine(
                            line_number=line.line_number,
                            account_code=line.account_code,
                            dr=line.dr,
                            cr=line.cr,
                            role=line.role,
                            source_entity_id=line.source_entity_id,
                            description=line.description,
                            metadata=line.line_metadata or {},
                        )
                        for line in record.lines
                    ],
                )
        except SQLAlchemyError as e:
            raise FinanceInfrastructureError(
                "ledger_store", "Journal lookup failed", code=ErrorCode.DATABASE_ERROR, original_error=e,
            )

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                return await self._journal_code_for(session, idempotency_key)
        except SQLAlchemyError as e:
            raise FinanceInfrastructureError(
                "ledger_store", "Journal lookup failed", code=ErrorCode.DATABASE_ERROR, original_error=e,
            )


def _json_safe(data: Dict[str, Any]) -> Dict[str, Any]:
    """Metadata bags may hold Decimals or datetimes; store them as JSON values."""
    return _METADATA_ADAPTER.dump_python(data, mode="json")
