"""
HERA Finance Engine - Database Models

SQLAlchemy models for the ledger store.
"""

from finance_engine.models.base import BaseModel, TimestampMixin
from finance_engine.models.ledger import FinanceJournal, FinanceJournalLine, FinanceStagedJournal

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "FinanceJournal",
    "FinanceJournalLine",
    "FinanceStagedJournal",
]
