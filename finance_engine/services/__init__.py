"""
HERA Finance Engine - Services Package

Posting engine, its collaborators and the vertical-app facade.
"""

from finance_engine.services.posting_engine import FinanceEventPostingEngine, PostingMetrics
from finance_engine.services.finance_event_processor import FinanceEventProcessor, FinanceProcessorRegistry
from finance_engine.services.posting_rule_registry import PostingRuleRegistry, CompiledRule
from finance_engine.services.org_finance_config import (
    OrganizationFinanceConfiguration,
    ModuleGate,
    build_default_config,
)
from finance_engine.services.account_derivation import DerivationContext, derive_account, build_line_context
from finance_engine.services.expression import Expression, compile_expression
from finance_engine.services.guardrails import validate_double_entry, generate_idempotency_key

# Collaborators
from finance_engine.services.fiscal_period_service import (
    FiscalPeriodService,
    FiscalPeriodValidation,
    FiscalPeriod,
    HttpFiscalPeriodService,
    InMemoryFiscalPeriodService,
)
from finance_engine.services.master_data import MasterDataLookup, InMemoryMasterDataLookup
from finance_engine.services.ledger_store import LedgerStore, InMemoryLedgerStore, SqlAlchemyLedgerStore
from finance_engine.services.config_source import FinanceConfigSource, InMemoryFinanceConfigSource

__all__ = [
    "FinanceEventPostingEngine",
    "PostingMetrics",
    "FinanceEventProcessor",
    "FinanceProcessorRegistry",
    "PostingRuleRegistry",
    "CompiledRule",
    "OrganizationFinanceConfiguration",
    "ModuleGate",
    "build_default_config",
    "DerivationContext",
    "derive_account",
    "build_line_context",
    "Expression",
    "compile_expression",
    "validate_double_entry",
    "generate_idempotency_key",
    "FiscalPeriodService",
    "FiscalPeriodValidation",
    "FiscalPeriod",
    "HttpFiscalPeriodService",
    "InMemoryFiscalPeriodService",
    "MasterDataLookup",
    "InMemoryMasterDataLookup",
    "LedgerStore",
    "InMemoryLedgerStore",
    "SqlAlchemyLedgerStore",
    "FinanceConfigSource",
    "InMemoryFinanceConfigSource",
]
