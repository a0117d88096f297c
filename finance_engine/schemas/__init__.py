"""
HERA Finance Engine - Schemas Package

Pydantic schemas for events, posting rules, organization configuration and outcomes.
"""

from finance_engine.schemas.finance_event import (
    FinanceLine,
    UniversalFinanceEvent,
    GLLine,
    JournalDraft,
    LineDescriptor,
    BusinessEventParams,
    RevenueParams,
    ExpenseParams,
    ProcessResult,
)
from finance_engine.schemas.posting_rule import (
    DeriveInstruction,
    AmountLimits,
    RuleValidations,
    PostingRecipe,
    RuleOutcomes,
    PostingRule,
)
from finance_engine.schemas.org_config import FinancePolicy, OrgFinanceConfig
from finance_engine.schemas.outcome import Posted, Staged, Rejected, PostingOutcome

__all__ = [
    "FinanceLine",
    "UniversalFinanceEvent",
    "GLLine",
    "JournalDraft",
    "LineDescriptor",
    "BusinessEventParams",
    "RevenueParams",
    "ExpenseParams",
    "ProcessResult",
    "DeriveInstruction",
    "AmountLimits",
    "RuleValidations",
    "PostingRecipe",
    "RuleOutcomes",
    "PostingRule",
    "FinancePolicy",
    "OrgFinanceConfig",
    "Posted",
    "Staged",
    "Rejected",
    "PostingOutcome",
]
