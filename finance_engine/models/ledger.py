"""
HERA Finance Engine - Ledger Models

Journals committed by the posting engine and journals staged for review.
The unique idempotency key is what makes duplicate submissions safe.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finance_engine.models.base import BaseModel


class FinanceJournal(BaseModel):
    """
    Committed journal entry.

    Every journal carries the originating smart code and transaction id for
    audit traceability.
    """

    __tablename__ = "finance_journals"
    __table_args__ = (
        UniqueConstraint("organization_id", "journal_code", name="uq_finance_journals_org_code"),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    journal_code: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Journal number (e.g., JE-202601-00001)",
    )
    idempotency_key: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)

    # Source
    smart_code: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    origin_txn_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_system: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_version: Mapped[str] = mapped_column(String(20), nullable=False)

    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Totals (for quick reference - must always balance)
    total_debit: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=4), nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=4), nullable=False)

    journal_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    lines: Mapped[List["FinanceJournalLine"]] = relationship(
        back_populates="journal",
        cascade="all, delete-orphan",
        order_by="FinanceJournalLine.line_number",
        lazy="selectin",
    )


class FinanceJournalLine(BaseModel):
    """One GL line of a committed journal."""

    __tablename__ = "finance_journal_lines"

    journal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("finance_journals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    dr: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=4), default=Decimal("0"), nullable=False)
    cr: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=4), default=Decimal("0"), nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    source_entity_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    line_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    journal: Mapped["FinanceJournal"] = relationship(back_populates="lines")


class FinanceStagedJournal(BaseModel):
    """Derived journal waiting for human review, kept with the event and rule reference."""

    __tablename__ = "finance_staged_journals"
    __table_args__ = (
        UniqueConstraint("organization_id", "staged_reference", name="uq_finance_staged_journals_org_ref"),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    staged_reference: Mapped[str] = mapped_column(String(50), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)

    smart_code: Mapped[str] = mapped_column(String(200), nullable=False)
    origin_txn_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_version: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending_review", nullable=False)

    event_payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    journal_payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
