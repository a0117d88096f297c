"""
HERA Finance Engine - Finance Event Processor

The call surface for vertical apps. Converts caller line descriptors into
the canonical event, delegates to the posting engine and always returns a
ProcessResult; a finance-layer failure never propagates to the caller.

FinanceProcessorRegistry is the per-organization cache of processors. It is
created once by the host application and passed to request handlers.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from finance_engine.config import Settings
from finance_engine.schemas.finance_event import (
    BusinessEventParams,
    ExpenseParams,
    LineDescriptor,
    ProcessResult,
    RevenueParams,
    UniversalFinanceEvent,
)
from finance_engine.schemas.outcome import Posted, PostingOutcome, Staged
from finance_engine.services.config_source import FinanceConfigSource
from finance_engine.services.fiscal_period_service import FiscalPeriodService
from finance_engine.services.ledger_store import LedgerStore
from finance_engine.services.master_data import MasterDataLookup
from finance_engine.services.org_finance_config import OrganizationFinanceConfiguration, build_default_config
from finance_engine.services.posting_engine import FinanceEventPostingEngine
from finance_engine.services.posting_rule_registry import PostingRuleRegistry
from finance_engine.utils.error_handling import (
    FinanceException,
    FinanceInfrastructureError,
    PostingRuleError,
    RejectionKind,
)

logger = logging.getLogger(__name__)

# Retryable; reported as infrastructure_error rather than rejected
INFRASTRUCTURE_ERRORS = (FinanceInfrastructureError, OSError, asyncio.TimeoutError)


def idempotency_key_for(organization_id: str, params: BusinessEventParams) -> str:
    return f"{organization_id}:{params.smart_code}:{params.origin_txn_id}"


def failure_result(error: Exception, organization_id: str, params: BusinessEventParams) -> ProcessResult:
    """
    Map an exception raised while processing (or while building the
    organization's processor) to a ProcessResult.
    """
    key = idempotency_key_for(organization_id, params)

    if isinstance(error, INFRASTRUCTURE_ERRORS):
        message = error.message if isinstance(error, FinanceInfrastructureError) else str(error) or type(error).__name__
        logger.error(
            f"Infrastructure failure processing {params.smart_code}/{params.origin_txn_id} "
            f"for org {organization_id}: {message}",
            exc_info=error,
        )
        return ProcessResult(success=False, status="infrastructure_error", message=message, idempotency_key=key)

    rejection_kind = None
    if isinstance(error, FinanceException):
        rejection_kind = error.kind.value
    elif isinstance(error, PostingRuleError):
        rejection_kind = RejectionKind.CONFIGURATION.value

    logger.error(
        f"Error processing {params.smart_code}/{params.origin_txn_id} "
        f"for org {organization_id}: {str(error)}",
        exc_info=error,
    )
    return ProcessResult(
        success=False,
        status="rejected",
        message=str(error),
        idempotency_key=key,
        rejection_kind=rejection_kind,
    )


class FinanceEventProcessor:
    """Finance event processor for one organization."""

    def __init__(self, engine: FinanceEventPostingEngine, settings: Settings):
        self.engine = engine
        self.settings = settings

    @property
    def organization_id(self) -> str:
        return self.engine.organization_id

    # ===========================================
    # EVENT PROCESSING
    # ===========================================

    def build_event(self, params: BusinessEventParams) -> UniversalFinanceEvent:
        """Normalize debit/credit descriptors into dr/cr lines."""
        return UniversalFinanceEvent(
            organization_id=self.organization_id,
            smart_code=params.smart_code,
            event_time=params.event_time or datetime.utcnow(),
            currency=(params.currency or self.settings.default_currency).upper(),
            source_system=params.source_system,
            origin_txn_id=params.origin_txn_id,
            ai_confidence=(
                params.ai_confidence if params.ai_confidence is not None
                else self.settings.default_ai_confidence
            ),
            action=params.action,
            metadata=params.metadata,
            lines=[descriptor.to_finance_line() for descriptor in params.lines],
        )

    async def process_business_event(self, params: BusinessEventParams) -> ProcessResult:
        """
        Process one business event.

        Returns:
            ProcessResult; success is True for posted and staged outcomes
        """
        try:
            event = self.build_event(params)
            outcome = await self.engine.process(event)
            return self._to_result(outcome)
        except Exception as e:
            return failure_result(e, self.organization_id, params)

    async def post_revenue(self, params: RevenueParams) -> ProcessResult:
        """Payment received against revenue and, when taxed, output tax."""
        net_amount = params.amount - params.tax_amount
        lines = [
            LineDescriptor(entity_id=f"PAYMENT:{params.payment_method}", role="Payment",
                           amount=params.amount, type="debit"),
            LineDescriptor(entity_id=f"REVENUE:{params.revenue_type}", role="Revenue",
                           amount=net_amount, type="credit"),
        ]
        if params.tax_amount > 0:
            lines.append(LineDescriptor(entity_id="TAX:OUTPUT", role="Tax",
                                        amount=params.tax_amount, type="credit"))

        return await self.process_business_event(BusinessEventParams(
            smart_code=params.smart_code,
            origin_txn_id=params.origin_txn_id,
            event_time=params.event_time,
            currency=params.currency,
            source_system=params.source_system,
            ai_confidence=params.ai_confidence,
            metadata=params.metadata,
            lines=lines,
        ))

    async def post_expense(self, params: ExpenseParams) -> ProcessResult:
        """Expense against payment when paid, against accounts payable when on account."""
        lines = [
            LineDescriptor(entity_id=f"EXPENSE:{params.category}", role="Expense",
                           amount=params.amount, type="debit"),
        ]
        if params.is_paid:
            lines.append(LineDescriptor(entity_id=f"PAYMENT:{params.payment_method}", role="Payment",
                                        amount=params.amount, type="credit"))
        else:
            relationships = {"vendor_id": params.vendor_id} if params.vendor_id else {}
            lines.append(LineDescriptor(entity_id="AP:TRADE", role="AP", amount=params.amount,
                                        type="credit", relationships=relationships))

        return await self.process_business_event(BusinessEventParams(
            smart_code=params.smart_code,
            origin_txn_id=params.origin_txn_id,
            event_time=params.event_time,
            currency=params.currency,
            source_system=params.source_system,
            ai_confidence=params.ai_confidence,
            metadata=params.metadata,
            lines=lines,
        ))

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {"organization_id": self.organization_id, **self.engine.get_performance_metrics()}

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _to_result(outcome: PostingOutcome) -> ProcessResult:
        if isinstance(outcome, Posted):
            return ProcessResult(
                success=True,
                status="posted",
                journal_code=outcome.journal_code,
                message=outcome.message,
                gl_lines=outcome.gl_lines,
                idempotency_key=outcome.idempotency_key,
            )
        if isinstance(outcome, Staged):
            return ProcessResult(
                success=True,
                status="staged",
                staged_reference=outcome.staged_reference,
                message=outcome.reason,
                gl_lines=outcome.gl_lines,
                idempotency_key=outcome.idempotency_key,
            )
        return ProcessResult(
            success=False,
            status="rejected",
            message=outcome.reason,
            rejection_kind=outcome.kind.value,
        )


# =============================================================================
# PER-ORGANIZATION CACHE
# =============================================================================

class FinanceProcessorRegistry:
    """
    Lazily builds and caches one FinanceEventProcessor per organization.

    Rule registry and finance configuration are loaded once per
    organization; invalidate() forces a reload on the next get().
    """

    def __init__(
        self,
        config_source: FinanceConfigSource,
        master_data: MasterDataLookup,
        fiscal_service: FiscalPeriodService,
        ledger_store: LedgerStore,
        settings: Settings,
    ):
        self.config_source = config_source
        self.master_data = master_data
        self.fiscal_service = fiscal_service
        self.ledger_store = ledger_store
        self.settings = settings
        self._processors: Dict[str, FinanceEventProcessor] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, organization_id: str) -> FinanceEventProcessor:
        processor = self._processors.get(organization_id)
        if processor is not None:
            return processor

        lock = self._locks.setdefault(organization_id, asyncio.Lock())
        async with lock:
            processor = self._processors.get(organization_id)
            if processor is None:
                processor = await self._build(organization_id)
                self._processors[organization_id] = processor
            return processor

    async def _build(self, organization_id: str) -> FinanceEventProcessor:
        try:
            overrides = await self.config_source.load_rule_overrides(organization_id)
            config = await self.config_source.load_org_config(organization_id)
        except FinanceInfrastructureError:
            raise
        except (OSError, asyncio.TimeoutError) as e:
            raise FinanceInfrastructureError(
                "finance_config_source",
                f"Finance configuration for org {organization_id} could not be loaded: {str(e) or type(e).__name__}",
                original_error=e,
            ) from e

        if config is None:
            registry = PostingRuleRegistry.build(self.settings.default_industry, overrides=overrides)
            config = build_default_config(organization_id, self.settings.default_industry, registry.modules())
        else:
            registry = PostingRuleRegistry.build(config.industry, overrides=overrides)

        engine = FinanceEventPostingEngine(
            org_config=OrganizationFinanceConfiguration(config),
            registry=registry,
            fiscal_service=self.fiscal_service,
            master_data=self.master_data,
            ledger_store=self.ledger_store,
            balance_tolerance=self.settings.balance_tolerance,
        )
        logger.info(
            f"Finance processor initialized for org {organization_id} "
            f"(industry={config.industry}, rules={len(registry)})"
        )
        return FinanceEventProcessor(engine, self.settings)

    # ===========================================
    # ENTRY POINTS
    # ===========================================

    async def process_business_event(self, organization_id: str, params: BusinessEventParams) -> ProcessResult:
        """
        Process one business event for an organization.

        A failure to build the organization's processor (unreadable
        configuration, invalid rule override) is reported in the result
        the same way a processing failure is.
        """
        try:
            processor = await self.get(organization_id)
        except Exception as e:
            return failure_result(e, organization_id, params)
        return await processor.process_business_event(params)

    async def post_revenue(self, organization_id: str, params: RevenueParams) -> ProcessResult:
        try:
            processor = await self.get(organization_id)
        except Exception as e:
            return failure_result(e, organization_id, params)
        return await processor.post_revenue(params)

    async def post_expense(self, organization_id: str, params: ExpenseParams) -> ProcessResult:
        try:
            processor = await self.get(organization_id)
        except Exception as e:
            return failure_result(e, organization_id, params)
        return await processor.post_expense(params)

    # ===========================================
    # CACHE
    # ===========================================

    def invalidate(self, organization_id: Optional[str] = None) -> None:
        """Drop one cached processor, or all of them."""
        if organization_id is None:
            self._processors.clear()
            self._locks = {org: lock for org, lock in self._locks.items() if lock.locked()}
            logger.info("All cached finance processors invalidated")
            return
        lock = self._locks.get(organization_id)
        if lock is not None and not lock.locked():
            del self._locks[organization_id]
        if self._processors.pop(organization_id, None) is not None:
            logger.info(f"Finance processor for org {organization_id} invalidated")

    def cached_organizations(self) -> List[str]:
        return sorted(self._processors)
