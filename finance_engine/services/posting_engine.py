"""
HERA Finance Engine - Finance Event Posting Engine

Turns one normalized business event into a balanced journal and decides
whether it is committed, staged for review or rejected.

Flow per event:
    Received -> ModuleGated -> Validated -> Derived -> Decided -> Posted | Staged | Rejected

Business failures come back as Rejected outcomes. Infrastructure failures
(FinanceInfrastructureError) propagate so the caller can retry; nothing is
persisted until the final commit/stage call.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from finance_engine.schemas.finance_event import FinanceLine, GLLine, JournalDraft, UniversalFinanceEvent
from finance_engine.schemas.outcome import Posted, PostingOutcome, Rejected, Staged
from finance_engine.schemas.posting_rule import DeriveInstruction, PostingRule, normalize_role
from finance_engine.services.account_derivation import build_line_context, derive_account
from finance_engine.services.expression import compare, event_expression_context, lookup
from finance_engine.services.fiscal_period_service import FiscalPeriodService, FiscalPeriodValidation
from finance_engine.services.guardrails import (
    DEFAULT_TOLERANCE,
    check_amount_limits,
    check_currency,
    check_double_entry,
    check_required_fields,
    generate_idempotency_key,
    requires_approval_by_amount,
    validate_period,
)
from finance_engine.services.ledger_store import LedgerStore
from finance_engine.services.master_data import MasterDataLookup
from finance_engine.services.org_finance_config import ModuleGate, OrganizationFinanceConfiguration
from finance_engine.services.posting_rule_registry import CompiledRule, PostingRuleRegistry
from finance_engine.utils.error_handling import (
    DerivationError,
    ErrorCode,
    FinanceException,
    FinanceInfrastructureError,
    JournalAlreadyCommittedError,
    RejectionKind,
)

logger = logging.getLogger(__name__)


_CONDITION_OPERATORS = (">=", "<=", "!=", "==", ">", "<")


# =============================================================================
# METRICS
# =============================================================================

@dataclass
class PostingMetrics:
    """In-process counters for one organization's engine."""
    total_processed: int = 0
    by_status: Dict[str, int] = field(default_factory=lambda: {"posted": 0, "staged": 0, "rejected": 0})
    infrastructure_failures: int = 0
    total_processing_ms: float = 0.0

    def record(self, status: str, elapsed_ms: float) -> None:
        self.total_processed += 1
        self.total_processing_ms += elapsed_ms
        if status == "infrastructure_error":
            self.infrastructure_failures += 1
        else:
            self.by_status[status] = self.by_status.get(status, 0) + 1

    @property
    def average_processing_ms(self) -> float:
        if not self.total_processed:
            return 0.0
        return self.total_processing_ms / self.total_processed

    @property
    def success_rate(self) -> float:
        """Share of events that ended posted or staged, in percent."""
        if not self.total_processed:
            return 0.0
        succeeded = self.by_status.get("posted", 0) + self.by_status.get("staged", 0)
        return round(succeeded / self.total_processed * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "posted": self.by_status.get("posted", 0),
            "staged": self.by_status.get("staged", 0),
            "rejected": self.by_status.get("rejected", 0),
            "infrastructure_failures": self.infrastructure_failures,
            "average_processing_ms": round(self.average_processing_ms, 3),
            "success_rate": self.success_rate,
        }


# =============================================================================
# DECISION
# =============================================================================

@dataclass(frozen=True)
class ReviewDecision:
    """
    Reason to stage (None when the event may post). approval_needed marks a
    mandatory review, which a rule's else: reject never overrides.
    """
    reason: Optional[str] = None
    approval_needed: bool = False


# =============================================================================
# RECIPE CONDITIONS
# =============================================================================

def _condition_value(key: str, event: UniversalFinanceEvent, line: FinanceLine) -> Any:
    """
    Resolve a condition key for one line.

    Dotted keys address line.*, event.* or metadata.* explicitly; bare keys
    are looked up in the line metadata, then the event metadata, then the
    event fields.
    """
    line_view = {**line.metadata, "role": line.role, "entity_id": line.entity_id,
                 "amount": line.amount, **line.relationships}
    event_view = event_expression_context(event)

    if "." in key:
        scope, rest = key.split(".", 1)
        if scope == "line":
            return lookup(line_view, rest)
        if scope == "event":
            return lookup({**event.metadata, **event_view}, rest)
        if scope == "metadata":
            return lookup(event.metadata, rest)

    for source in (line.metadata, event.metadata, event_view):
        value = lookup(source, key)
        if value is not None:
            return value
    return None


def conditions_match(conditions: Mapping[str, Any], event: UniversalFinanceEvent, line: FinanceLine) -> bool:
    """
    All conditions must hold. Values may be a literal (equality), a list
    (membership) or an operator string such as ">= 100" or "!= cash".
    """
    for key, expected in conditions.items():
        actual = _condition_value(key, event, line)

        if isinstance(expected, (list, tuple, set)):
            if not any(compare("==", actual, option) for option in expected):
                return False
            continue

        if isinstance(expected, str):
            text = expected.strip()
            operator = next((op for op in _CONDITION_OPERATORS if text.startswith(op)), None)
            if operator:
                if not compare(operator, actual, text[len(operator):].strip()):
                    return False
                continue

        if not compare("==", actual, expected):
            return False
    return True


# =============================================================================
# POSTING ENGINE
# =============================================================================

class FinanceEventPostingEngine:
    """
    Posting engine for one organization.

    The rule registry and finance configuration are loaded once and treated
    as read-only; concurrent events need no locking beyond what the ledger
    store does for idempotency.
    """

    def __init__(
        self,
        org_config: OrganizationFinanceConfiguration,
        registry: PostingRuleRegistry,
        fiscal_service: FiscalPeriodService,
        master_data: MasterDataLookup,
        ledger_store: LedgerStore,
        balance_tolerance: Decimal = DEFAULT_TOLERANCE,
    ):
        self.org_config = org_config
        self.registry = registry
        self.fiscal_service = fiscal_service
        self.master_data = master_data
        self.ledger_store = ledger_store
        self.balance_tolerance = balance_tolerance
        self.metrics = PostingMetrics()

    @property
    def organization_id(self) -> str:
        return self.org_config.organization_id

    async def process(self, event: UniversalFinanceEvent) -> PostingOutcome:
        """
        Process one event to a terminal outcome.

        Raises:
            FinanceInfrastructureError: fiscal service, master data or ledger store failed
        """
        started = time.perf_counter()
        try:
            outcome = await self._process(event)
        except FinanceInfrastructureError as e:
            self.metrics.record("infrastructure_error", (time.perf_counter() - started) * 1000)
            logger.error(
                f"Finance event infrastructure failure: org={event.organization_id} "
                f"smart_code={event.smart_code} origin_txn_id={event.origin_txn_id}: {e.message}"
            )
            raise

        self.metrics.record(outcome.status, (time.perf_counter() - started) * 1000)
        if isinstance(outcome, Rejected):
            logger.warning(
                f"Finance event rejected: org={event.organization_id} smart_code={event.smart_code} "
                f"origin_txn_id={event.origin_txn_id} kind={outcome.kind.value}: {outcome.reason}"
            )
        else:
            logger.info(
                f"Finance event {outcome.status}: org={event.organization_id} smart_code={event.smart_code} "
                f"origin_txn_id={event.origin_txn_id}"
            )
        return outcome

    async def _process(self, event: UniversalFinanceEvent) -> PostingOutcome:
        idempotency_key = generate_idempotency_key(event)

        try:
            if event.organization_id != self.organization_id:
                raise FinanceException(
                    f"event organization {event.organization_id} does not match engine organization "
                    f"{self.organization_id}",
                    kind=RejectionKind.CONFIGURATION,
                    code=ErrorCode.TENANT_MISMATCH,
                )

            # Resubmission of a committed transaction
            committed = await self.ledger_store.find_by_idempotency_key(idempotency_key)
            if committed:
                return await self._already_posted(committed, idempotency_key)

            # ModuleGated
            gate = self.org_config.module_gate(event.module)
            if gate.suppressed:
                return Rejected(
                    reason=f"module not active: {gate.module}",
                    kind=RejectionKind.MODULE_INACTIVE,
                    code=ErrorCode.MODULE_INACTIVE.value,
                )

            # Validated
            compiled = self.registry.get_compiled(event.smart_code)
            rule = compiled.rule

            if not gate.configured:
                raise FinanceException(
                    f"module not configured: {gate.module}",
                    kind=RejectionKind.CONFIGURATION,
                    code=ErrorCode.MODULE_NOT_CONFIGURED,
                )
            if gate.route_to_suspense and not self.org_config.suspense_account:
                raise FinanceException(
                    f"module not active: {gate.module} (no suspense account configured)",
                    kind=RejectionKind.MODULE_INACTIVE,
                    code=ErrorCode.MODULE_INACTIVE,
                )

            check_required_fields(event, rule)
            check_currency(event, rule, self.org_config.policy)
            check_double_entry(event.lines, self.balance_tolerance, stage="input")
            check_amount_limits(event, rule)
            fiscal = await validate_period(event, rule, self.fiscal_service)

            if not event.lines:
                return Posted(
                    journal_code=None,
                    gl_lines=[],
                    idempotency_key=idempotency_key,
                    message="Event has no GL impact",
                )

            # Derived
            journal = await self._derive(event, rule, gate, fiscal, idempotency_key)
            check_double_entry(journal.lines, self.balance_tolerance, stage="derived")

        except FinanceException as e:
            return Rejected(reason=e.message, kind=e.kind, code=e.code.value)

        # Decided
        return await self._decide(event, compiled, gate, journal)

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    def _assign_instructions(
        self,
        event: UniversalFinanceEvent,
        instructions: List[DeriveInstruction],
    ) -> Dict[int, DeriveInstruction]:
        """Instructions in order consume every still-unassigned line with the same side and role."""
        assigned: Dict[int, DeriveInstruction] = {}
        for instruction in instructions:
            side, role = instruction.side, instruction.role
            for index, line in enumerate(event.lines):
                if index in assigned:
                    continue
                if line.side != side or normalize_role(line.role) != role:
                    continue
                if not conditions_match(instruction.conditions, event, line):
                    continue
                assigned[index] = instruction
        return assigned

    async def _derive(
        self,
        event: UniversalFinanceEvent,
        rule: PostingRule,
        gate: ModuleGate,
        fiscal: FiscalPeriodValidation,
        idempotency_key: str,
    ) -> JournalDraft:
        """Build the GL lines; a failure on any line fails the whole event unless a suspense account is set."""
        policy = self.org_config.policy
        suspense_account = self.org_config.suspense_account
        metadata: Dict[str, Any] = dict(event.metadata)
        if fiscal.period:
            metadata["fiscal_period"] = fiscal.period
        if fiscal.warnings:
            metadata["fiscal_warnings"] = list(fiscal.warnings)

        accounts: Dict[int, Tuple[str, Optional[str]]] = {}
        failures: List[Tuple[int, DerivationError]] = []

        if gate.route_to_suspense:
            for index in range(len(event.lines)):
                accounts[index] = (suspense_account, "Module inactive - posted to suspense")
            metadata["posted_to_suspense"] = True
            metadata["inactive_module"] = gate.module
            logger.warning(f"Module {gate.module} inactive; {event.origin_txn_id} routed to suspense {suspense_account}")
        else:
            assigned = self._assign_instructions(event, rule.posting_recipe.lines)
            cache: Dict[str, Optional[Mapping[str, Any]]] = {}
            for index, line in enumerate(event.lines):
                instruction = assigned.get(index)
                if instruction is None:
                    failures.append((index, DerivationError(
                        f"{line.side} {line.role}",
                        entity_id=line.entity_id,
                        message=f"cannot derive account: no posting instruction for {line.side} {line.role}",
                    )))
                    continue
                context = await build_line_context(event, line, policy, self.master_data, cache)
                try:
                    account = derive_account(instruction.from_path, event, context)
                except DerivationError as e:
                    failures.append((index, e))
                    continue
                accounts[index] = (account, instruction.description or instruction.derive)

        if failures:
            if not suspense_account:
                raise failures[0][1]
            for index, error in failures:
                accounts[index] = (suspense_account, f"Suspense: {error.message}")
            metadata["derivation_fallback"] = True
            metadata["suspense_lines"] = [index + 1 for index, _ in failures]
            logger.warning(
                f"Derivation fallback for {event.origin_txn_id}: "
                f"{len(failures)} line(s) posted to suspense {suspense_account}"
            )

        gl_lines = [
            GLLine(
                line_number=index + 1,
                account_code=accounts[index][0],
                dr=line.dr,
                cr=line.cr,
                role=line.role,
                source_entity_id=line.entity_id,
                description=accounts[index][1],
                metadata=dict(line.metadata),
            )
            for index, line in enumerate(event.lines)
        ]

        return JournalDraft(
            organization_id=event.organization_id,
            smart_code=event.smart_code,
            origin_txn_id=event.origin_txn_id,
            source_system=event.source_system,
            event_time=event.event_time,
            currency=event.currency,
            idempotency_key=idempotency_key,
            rule_version=rule.rule_version,
            lines=gl_lines,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def _review_reason(
        self,
        event: UniversalFinanceEvent,
        compiled: CompiledRule,
        gate: ModuleGate,
        context: Dict[str, Any],
    ) -> ReviewDecision:
        """Why the event must be staged instead of auto-posted; an empty decision means it may post."""
        rule = compiled.rule
        if compiled.approval_required_if and compiled.approval_required_if.evaluate(context):
            return ReviewDecision(f"approval required: {compiled.approval_required_if.source}", approval_needed=True)
        if requires_approval_by_amount(event, rule):
            return ReviewDecision(
                f"approval required: amount {event.total_debit} exceeds threshold "
                f"{rule.validations.amount_limits.approval_threshold}",
                approval_needed=True,
            )
        if gate.force_review:
            return ReviewDecision(f"module {gate.module} is inactive; staged for review", approval_needed=True)
        if compiled.auto_post_if and compiled.auto_post_if.evaluate(context):
            return ReviewDecision()
        if compiled.auto_post_if:
            return ReviewDecision(f"auto-post conditions not met: {compiled.auto_post_if.source}")
        return ReviewDecision("no auto-post policy for this rule")

    async def _decide(
        self,
        event: UniversalFinanceEvent,
        compiled: CompiledRule,
        gate: ModuleGate,
        journal: JournalDraft,
    ) -> PostingOutcome:
        rule = compiled.rule
        context = event_expression_context(event)
        decision = self._review_reason(event, compiled, gate, context)

        if decision.reason is None:
            journal_code = await self.ledger_store.commit_journal(journal, journal.idempotency_key)
            return Posted(
                journal_code=journal_code,
                gl_lines=journal.lines,
                idempotency_key=journal.idempotency_key,
                message="Posted to GL",
            )

        if rule.outcomes.otherwise == "reject" and not decision.approval_needed:
            return Rejected(reason=decision.reason, kind=RejectionKind.POLICY, code=ErrorCode.POSTING_REJECTED.value)

        try:
            staged_reference = await self.ledger_store.stage_for_review(event, journal, rule, decision.reason)
        except JournalAlreadyCommittedError as e:
            # Committed concurrently under the same key
            return await self._already_posted(e.journal_code, journal.idempotency_key)

        return Staged(
            staged_reference=staged_reference,
            gl_lines=journal.lines,
            reason=decision.reason,
            idempotency_key=journal.idempotency_key,
        )

    async def _already_posted(self, journal_code: str, idempotency_key: str) -> Posted:
        """Outcome for a key that already has a journal; nothing is re-validated or re-derived."""
        journal = await self.ledger_store.get_journal(self.organization_id, journal_code)
        logger.info(f"Journal {journal_code} already committed under {idempotency_key}")
        return Posted(
            journal_code=journal_code,
            gl_lines=journal.lines if journal else [],
            idempotency_key=idempotency_key,
            message="Already posted to GL",
        )

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()
