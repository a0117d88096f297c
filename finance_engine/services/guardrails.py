"""
HERA Finance Engine - Finance Guardrails

Static checks run by the posting engine before anything is committed:
double-entry balance, required fields, currency, amount limits and the
fiscal-period check (delegated to the fiscal service).

Predicates return bools; the check_* helpers raise FinanceException
subclasses that the engine turns into Rejected outcomes.
"""

import logging
from decimal import Decimal
from typing import Any, Iterable

from finance_engine.schemas.finance_event import ZERO, FinanceLine, UniversalFinanceEvent
from finance_engine.schemas.org_config import FinancePolicy
from finance_engine.schemas.posting_rule import PostingRule
from finance_engine.services.fiscal_period_service import FiscalPeriodService, FiscalPeriodValidation
from finance_engine.utils.error_handling import BalanceError, ErrorCode, FinanceException, RejectionKind

logger = logging.getLogger(__name__)


DEFAULT_TOLERANCE = Decimal("0.01")


# =============================================================================
# DOUBLE ENTRY
# =============================================================================

def totals(lines: Iterable[Any]) -> tuple:
    """(sum of debits, sum of credits) for FinanceLine or GLLine sequences."""
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        total_debit += line.dr
        total_credit += line.cr
    return total_debit, total_credit


def validate_double_entry(lines: Iterable[Any], tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """True iff |Σdr - Σcr| < tolerance."""
    total_debit, total_credit = totals(lines)
    return abs(total_debit - total_credit) < tolerance


def check_double_entry(lines: Iterable[Any], tolerance: Decimal = DEFAULT_TOLERANCE, stage: str = "input") -> None:
    lines = list(lines)
    total_debit, total_credit = totals(lines)
    if abs(total_debit - total_credit) >= tolerance:
        raise BalanceError(total_debit, total_credit, stage=stage)


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def generate_idempotency_key(event: UniversalFinanceEvent) -> str:
    """organization_id:smart_code:origin_txn_id, identical for every resubmission."""
    return f"{event.organization_id}:{event.smart_code}:{event.origin_txn_id}"


# =============================================================================
# REQUIRED FIELDS
# =============================================================================

def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple)):
        return len(value) > 0
    return True


def _header_value(event: UniversalFinanceEvent, name: str) -> Any:
    if name in UniversalFinanceEvent.model_fields:
        return getattr(event, name)
    return event.metadata.get(name)


def _line_value(line: FinanceLine, name: str) -> Any:
    if name in FinanceLine.model_fields:
        return getattr(line, name)
    if name in line.metadata:
        return line.metadata[name]
    return line.relationships.get(name)


def check_required_fields(event: UniversalFinanceEvent, rule: PostingRule) -> None:
    """Header fields come from the event or its metadata; line fields from the line, its metadata or relationships."""
    for name in rule.validations.required_header:
        if not _is_present(_header_value(event, name)):
            raise FinanceException(
                f"missing required field: {name}",
                kind=RejectionKind.DATA,
                code=ErrorCode.MISSING_FIELD,
                field=name,
            )

    for index, line in enumerate(event.lines, start=1):
        for name in rule.validations.required_lines:
            if not _is_present(_line_value(line, name)):
                raise FinanceException(
                    f"missing required field on line {index}: {name}",
                    kind=RejectionKind.DATA,
                    code=ErrorCode.MISSING_FIELD,
                    field=name,
                    details={"line": index, "entity_id": line.entity_id},
                )


# =============================================================================
# CURRENCY AND AMOUNTS
# =============================================================================

def check_currency(event: UniversalFinanceEvent, rule: PostingRule, policy: FinancePolicy) -> None:
    if not rule.validations.currency_validation or not policy.supported_currencies:
        return
    if event.currency not in policy.supported_currencies:
        raise FinanceException(
            f"currency {event.currency} is not supported (allowed: {', '.join(policy.supported_currencies)})",
            kind=RejectionKind.DATA,
            code=ErrorCode.CURRENCY_NOT_SUPPORTED,
            field="currency",
        )


def check_amount_limits(event: UniversalFinanceEvent, rule: PostingRule) -> None:
    limits = rule.validations.amount_limits
    if limits is None:
        return
    amount = event.total_debit
    if limits.min_amount is not None and amount < limits.min_amount:
        raise FinanceException(
            f"amount {amount} is below the minimum {limits.min_amount}",
            kind=RejectionKind.POLICY,
            code=ErrorCode.AMOUNT_LIMIT_EXCEEDED,
            field="amount",
        )
    if limits.max_amount is not None and amount > limits.max_amount:
        raise FinanceException(
            f"amount {amount} exceeds the maximum {limits.max_amount}",
            kind=RejectionKind.POLICY,
            code=ErrorCode.AMOUNT_LIMIT_EXCEEDED,
            field="amount",
        )


def requires_approval_by_amount(event: UniversalFinanceEvent, rule: PostingRule) -> bool:
    limits = rule.validations.amount_limits
    return bool(limits and limits.approval_threshold is not None and event.total_debit > limits.approval_threshold)


# =============================================================================
# FISCAL PERIOD
# =============================================================================

async def validate_period(
    event: UniversalFinanceEvent,
    rule: PostingRule,
    fiscal_service: FiscalPeriodService,
) -> FiscalPeriodValidation:
    """
    Ask the fiscal service whether the event date may be posted.

    Raises:
        FinanceException: period invalid (errors surfaced verbatim) or action not allowed
        FinanceInfrastructureError: the service could not be reached
    """
    validation = await fiscal_service.validate_fiscal_period(
        event.event_time,
        event.organization_id,
        {"fiscal_check": rule.validations.fiscal_check, "action": event.action},
    )

    if not validation.valid:
        message = "; ".join(validation.errors) or "fiscal period validation failed"
        raise FinanceException(
            message,
            kind=RejectionKind.POLICY,
            code=ErrorCode.FISCAL_PERIOD_CLOSED,
            details={"period": validation.period},
        )

    if validation.allowed_actions and event.action not in validation.allowed_actions:
        raise FinanceException(
            "action not permitted in current period state",
            kind=RejectionKind.POLICY,
            code=ErrorCode.ACTION_NOT_PERMITTED,
            details={"action": event.action, "allowed_actions": validation.allowed_actions},
        )

    for warning in validation.warnings:
        logger.info(f"Fiscal warning for {event.origin_txn_id}: {warning}")

    return validation

