"""
HERA Finance Engine - Posting Engine Tests

Covers the posting flow end to end with in-memory collaborators:
module gating, validation, derivation, decision and persistence.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import pytest

from finance_engine.rules import default_accounts
from finance_engine.schemas.finance_event import FinanceLine
from finance_engine.schemas.org_config import FinancePolicy, OrgFinanceConfig
from finance_engine.schemas.outcome import Posted, Rejected, Staged
from finance_engine.services.fiscal_period_service import (
    FiscalPeriod,
    FiscalPeriodService,
    FiscalPeriodValidation,
    InMemoryFiscalPeriodService,
)
from finance_engine.services.guardrails import validate_double_entry
from finance_engine.services.ledger_store import InMemoryLedgerStore
from finance_engine.services.org_finance_config import OrganizationFinanceConfiguration
from finance_engine.services.posting_engine import FinanceEventPostingEngine, PostingMetrics, conditions_match
from finance_engine.services.posting_rule_registry import PostingRuleRegistry
from finance_engine.utils.error_handling import FinanceInfrastructureError, RejectionKind


SALON_ORG = "org-salon-001"

SERVICE_SALE = "HERA.SALON.SALE.SERVICE.v1"


def salon_config(**overrides) -> OrgFinanceConfig:
    data: Dict[str, Any] = {
        "organization_id": SALON_ORG,
        "industry": "salon",
        "modules_enabled": {"SALE": True, "EXPENSE": True, "POS": True, "SD": True, "MM": True, "FI": True},
        "finance_policy": FinancePolicy(accounts=default_accounts("salon")),
    }
    data.update(overrides)
    return OrgFinanceConfig(**data)


class UnavailableFiscalService(FiscalPeriodService):
    """Fiscal service that is down."""

    def __init__(self):
        self.calls = 0

    async def validate_fiscal_period(
        self,
        transaction_date: datetime,
        organization_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> FiscalPeriodValidation:
        self.calls += 1
        raise FinanceInfrastructureError("fiscal_period_service", "Fiscal period service unreachable")


# ===========================================
# CORE SCENARIOS
# ===========================================

class TestServiceSale:
    """Salon service sale: payment against revenue and tax."""

    @pytest.mark.asyncio
    async def test_high_confidence_is_posted(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        outcome = await engine.process(make_event(ai_confidence=0.97))

        assert isinstance(outcome, Posted)
        assert outcome.journal_code == "JE-202603-00001"
        assert [line.account_code for line in outcome.gl_lines] == ["1110", "4100", "2300"]
        assert sum(line.dr for line in outcome.gl_lines) == Decimal("100")
        assert sum(line.cr for line in outcome.gl_lines) == Decimal("100")
        assert len(ledger_store.journals) == 1
        assert ledger_store.staged == []

    @pytest.mark.asyncio
    async def test_low_confidence_is_staged_with_same_lines(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        outcome = await engine.process(make_event(ai_confidence=0.5))

        assert isinstance(outcome, Staged)
        assert outcome.staged_reference == "STG-202603-00001"
        assert [line.account_code for line in outcome.gl_lines] == ["1110", "4100", "2300"]
        assert "auto-post conditions not met" in outcome.reason
        assert ledger_store.journals == []

        staged = ledger_store.get_staged(SALON_ORG, outcome.staged_reference)
        assert staged.smart_code == SERVICE_SALE
        assert staged.event.origin_txn_id == "TXN-001"
        assert [line.account_code for line in staged.journal.lines] == ["1110", "4100", "2300"]

    @pytest.mark.asyncio
    async def test_confidence_threshold_boundary(self, make_engine, make_event):
        engine = make_engine()

        at_threshold = await engine.process(make_event(ai_confidence=0.8, origin_txn_id="TXN-A"))
        below_threshold = await engine.process(make_event(ai_confidence=0.79999, origin_txn_id="TXN-B"))

        assert at_threshold.status == "posted"
        assert below_threshold.status == "staged"

    @pytest.mark.asyncio
    async def test_gl_lines_are_numbered_and_described(self, make_engine, make_event):
        event = make_event(lines=[
            ("PAYMENT:card", "Payment", "DR", 100, {"metadata": {"terminal": "T1"}}),
            ("REVENUE:service", "Revenue", "CR", 90),
            ("TAX:OUTPUT", "Tax", "CR", 10),
        ])

        outcome = await make_engine().process(event)

        assert [line.line_number for line in outcome.gl_lines] == [1, 2, 3]
        assert outcome.gl_lines[0].description == "DR Payment"
        assert outcome.gl_lines[0].source_entity_id == "PAYMENT:card"
        assert outcome.gl_lines[0].metadata == {"terminal": "T1"}
        assert outcome.gl_lines[1].side == "CR"

    @pytest.mark.asyncio
    async def test_journal_metadata(self, make_engine, make_event, ledger_store):
        await make_engine().process(make_event(metadata={"ticket": "T-77"}))

        journal = ledger_store.journals[0]
        assert journal.metadata["ticket"] == "T-77"
        assert journal.metadata["fiscal_warnings"] == ["No fiscal calendar defined; period treated as open"]
        assert journal.idempotency_key == f"{SALON_ORG}:{SERVICE_SALE}:TXN-001"
        assert journal.rule_version == "v1"


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_resubmission_returns_same_journal(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        first = await engine.process(make_event(origin_txn_id="ORD-001"))
        second = await engine.process(make_event(origin_txn_id="ORD-001"))

        assert first.status == second.status == "posted"
        assert first.journal_code == second.journal_code
        assert len(ledger_store.journals) == 1

    @pytest.mark.asyncio
    async def test_restaging_returns_same_reference(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        first = await engine.process(make_event(origin_txn_id="ORD-002", ai_confidence=0.3))
        second = await engine.process(make_event(origin_txn_id="ORD-002", ai_confidence=0.3))

        assert first.staged_reference == second.staged_reference
        assert len(ledger_store.staged) == 1

    @pytest.mark.asyncio
    async def test_distinct_transactions_get_distinct_codes(self, make_engine, make_event):
        engine = make_engine()

        first = await engine.process(make_event(origin_txn_id="ORD-010"))
        second = await engine.process(make_event(origin_txn_id="ORD-011"))

        assert first.journal_code == "JE-202603-00001"
        assert second.journal_code == "JE-202603-00002"

    @pytest.mark.asyncio
    async def test_committed_key_ignores_lower_confidence(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        first = await engine.process(make_event(origin_txn_id="ORD-001", ai_confidence=0.97))
        second = await engine.process(make_event(origin_txn_id="ORD-001", ai_confidence=0.5))

        assert isinstance(second, Posted)
        assert second.journal_code == first.journal_code
        assert second.gl_lines == first.gl_lines
        assert len(ledger_store.journals) == 1
        assert ledger_store.staged == []

    @pytest.mark.asyncio
    async def test_committed_key_survives_period_close(self, make_engine, make_event, ledger_store):
        fiscal = InMemoryFiscalPeriodService({
            SALON_ORG: [FiscalPeriod("2026-03", date(2026, 3, 1), date(2026, 3, 31))],
        })
        engine = make_engine(fiscal=fiscal)

        first = await engine.process(make_event(origin_txn_id="ORD-001"))
        fiscal.set_status(SALON_ORG, "2026-03", "closed")
        second = await engine.process(make_event(origin_txn_id="ORD-001"))
        other = await engine.process(make_event(origin_txn_id="ORD-002"))

        assert second.status == "posted"
        assert second.journal_code == first.journal_code
        assert other.status == "rejected"
        assert len(ledger_store.journals) == 1

    @pytest.mark.asyncio
    async def test_commit_between_check_and_staging(self, make_engine, make_event, master_data):
        class LateCommitStore(InMemoryLedgerStore):
            """Reports no journal at the start of processing, as if the commit raced the check."""

            async def find_by_idempotency_key(self, idempotency_key):
                return None

        store = LateCommitStore()
        engine = FinanceEventPostingEngine(
            org_config=OrganizationFinanceConfiguration(salon_config()),
            registry=PostingRuleRegistry.build("salon"),
            fiscal_service=InMemoryFiscalPeriodService(),
            master_data=master_data,
            ledger_store=store,
        )

        first = await engine.process(make_event(origin_txn_id="ORD-001", ai_confidence=0.97))
        second = await engine.process(make_event(origin_txn_id="ORD-001", ai_confidence=0.5))

        assert second.status == "posted"
        assert second.journal_code == first.journal_code
        assert store.staged == []

    @pytest.mark.asyncio
    async def test_staged_key_can_post_later(self, make_engine, make_event, ledger_store):
        engine = make_engine()

        staged = await engine.process(make_event(origin_txn_id="ORD-003", ai_confidence=0.3))
        posted = await engine.process(make_event(origin_txn_id="ORD-003", ai_confidence=0.95))
        again = await engine.process(make_event(origin_txn_id="ORD-003", ai_confidence=0.3))

        assert staged.status == "staged"
        assert posted.status == "posted"
        assert again.status == "posted"
        assert again.journal_code == posted.journal_code
        assert len(ledger_store.staged) == 1


# ===========================================
# REJECTIONS
# ===========================================

class TestRejections:
    """Business failures come back as Rejected and persist nothing."""

    @pytest.mark.asyncio
    async def test_unknown_smart_code(self, make_engine, make_event, ledger_store):
        outcome = await make_engine().process(make_event(smart_code="HERA.UNKNOWN.FOO.v1", ai_confidence=1.0))

        assert isinstance(outcome, Rejected)
        assert "unknown smart code" in outcome.reason
        assert outcome.kind == RejectionKind.CONFIGURATION
        assert outcome.code == "UNKNOWN_SMART_CODE"
        assert ledger_store.journals == [] and ledger_store.staged == []

    @pytest.mark.asyncio
    async def test_unbalanced_input(self, make_engine, make_event, ledger_store):
        event = make_event(lines=[
            ("PAYMENT:card", "Payment", "DR", 100),
            ("REVENUE:service", "Revenue", "CR", 90),
        ])

        outcome = await make_engine().process(event)

        assert isinstance(outcome, Rejected)
        assert "lines do not balance" in outcome.reason
        assert "difference 10" in outcome.reason
        assert outcome.kind == RejectionKind.DATA
        assert ledger_store.journals == [] and ledger_store.staged == []

    @pytest.mark.asyncio
    async def test_tenant_mismatch(self, make_engine, make_event):
        outcome = await make_engine().process(make_event(organization_id="org-other"))

        assert outcome.status == "rejected"
        assert outcome.kind == RejectionKind.CONFIGURATION
        assert outcome.code == "TENANT_MISMATCH"

    @pytest.mark.asyncio
    async def test_module_not_configured(self, make_engine, make_event):
        engine = make_engine(config=salon_config(modules_enabled={"SD": True}))

        outcome = await engine.process(make_event())

        assert outcome.status == "rejected"
        assert outcome.kind == RejectionKind.CONFIGURATION
        assert "module not configured: SALE" in outcome.reason

    @pytest.mark.asyncio
    async def test_closed_fiscal_period(self, make_engine, make_event, ledger_store):
        fiscal = InMemoryFiscalPeriodService({
            SALON_ORG: [FiscalPeriod("2026-03", date(2026, 3, 1), date(2026, 3, 31), status="locked")],
        })

        outcome = await make_engine(fiscal=fiscal).process(make_event())

        assert outcome.status == "rejected"
        assert outcome.kind == RejectionKind.POLICY
        assert outcome.reason == "Fiscal period 2026-03 is locked"
        assert ledger_store.journals == []

    @pytest.mark.asyncio
    async def test_action_not_permitted(self, make_engine, make_event):
        fiscal = InMemoryFiscalPeriodService({
            SALON_ORG: [FiscalPeriod("2026-03", date(2026, 3, 1), date(2026, 3, 31), status="soft_closed")],
        })

        outcome = await make_engine(fiscal=fiscal).process(make_event(action="MODIFY"))

        assert outcome.status == "rejected"
        assert outcome.reason == "action not permitted in current period state"

    @pytest.mark.asyncio
    async def test_missing_required_header(self, make_engine, make_event):
        override = {
            "smart_code": SERVICE_SALE,
            "validations": {"required_header": ["customer_id"]},
            "posting_recipe": {"lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "entity.gl_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]},
            "outcomes": {"auto_post_if": "ai_confidence >= 0.8"},
        }

        outcome = await make_engine(overrides=[override]).process(make_event())

        assert outcome.status == "rejected"
        assert outcome.code == "MISSING_FIELD"

    @pytest.mark.asyncio
    async def test_else_reject(self, make_engine, make_event, ledger_store):
        override = {
            "smart_code": SERVICE_SALE,
            "posting_recipe": {"lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "entity.gl_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]},
            "outcomes": {"auto_post_if": "ai_confidence >= 0.9", "else": "reject"},
        }
        engine = make_engine(overrides=[override])

        rejected = await engine.process(make_event(ai_confidence=0.5, origin_txn_id="TXN-LOW"))
        posted = await engine.process(make_event(ai_confidence=0.95, origin_txn_id="TXN-HIGH"))

        assert rejected.status == "rejected"
        assert rejected.kind == RejectionKind.POLICY
        assert posted.status == "posted"
        assert ledger_store.staged == []


# ===========================================
# MODULE GATING
# ===========================================

class TestModuleGating:
    """Deactivated modules: suppress, suspense or review."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence", [0.0, 0.5, 1.0])
    async def test_suppressed_module_always_rejected(self, make_engine, make_event, master_data, confidence):
        engine = make_engine(config=salon_config(
            modules_enabled={"SALE": False},
            deactivation_behaviour={"SALE": "suppress_events"},
        ))

        outcome = await engine.process(make_event(ai_confidence=confidence))

        assert isinstance(outcome, Rejected)
        assert outcome.kind == RejectionKind.MODULE_INACTIVE
        assert outcome.reason == "module not active: SALE"
        assert master_data.lookups == 0

    @pytest.mark.asyncio
    async def test_post_to_suspense(self, make_engine, make_event, ledger_store):
        engine = make_engine(config=salon_config(
            modules_enabled={"SALE": False},
            deactivation_behaviour={"SALE": "post_to_suspense"},
            finance_policy=FinancePolicy(suspense_account="9999"),
        ))

        outcome = await engine.process(make_event(ai_confidence=0.97))

        assert outcome.status == "posted"
        assert [line.account_code for line in outcome.gl_lines] == ["9999", "9999", "9999"]
        journal = ledger_store.journals[0]
        assert journal.metadata["posted_to_suspense"] is True
        assert journal.metadata["inactive_module"] == "SALE"

    @pytest.mark.asyncio
    async def test_post_to_suspense_without_account(self, make_engine, make_event):
        engine = make_engine(config=salon_config(
            modules_enabled={"SALE": False},
            deactivation_behaviour={"SALE": "post_to_suspense"},
        ))

        outcome = await engine.process(make_event())

        assert outcome.status == "rejected"
        assert outcome.kind == RejectionKind.MODULE_INACTIVE

    @pytest.mark.asyncio
    async def test_stage_for_review_module(self, make_engine, make_event):
        engine = make_engine(config=salon_config(
            modules_enabled={"SALE": False},
            deactivation_behaviour={"SALE": "stage_for_review"},
        ))

        outcome = await engine.process(make_event(ai_confidence=0.99))

        assert isinstance(outcome, Staged)
        assert "module SALE is inactive" in outcome.reason
        assert [line.account_code for line in outcome.gl_lines] == ["1110", "4100", "2300"]


# ===========================================
# DERIVATION
# ===========================================

class TestDerivation:
    """Recipe interpretation and the suspense fallback."""

    @pytest.mark.asyncio
    async def test_missing_master_data_rejects(self, make_engine, make_event, ledger_store):
        event = make_event(lines=[
            ("PAYMENT:crypto", "Payment", "DR", 100),
            ("REVENUE:service", "Revenue", "CR", 90),
            ("TAX:OUTPUT", "Tax", "CR", 10),
        ])

        outcome = await make_engine().process(event)

        assert outcome.status == "rejected"
        assert outcome.kind == RejectionKind.DATA
        assert outcome.code == "DERIVATION_FAILED"
        assert "entity.gl_account" in outcome.reason
        assert ledger_store.journals == [] and ledger_store.staged == []

    @pytest.mark.asyncio
    async def test_missing_master_data_falls_back_to_suspense(self, make_engine, make_event, ledger_store):
        engine = make_engine(config=salon_config(finance_policy=FinancePolicy(suspense_account="9999")))
        event = make_event(lines=[
            ("PAYMENT:crypto", "Payment", "DR", 100),
            ("REVENUE:service", "Revenue", "CR", 90),
            ("TAX:OUTPUT", "Tax", "CR", 10),
        ])

        outcome = await engine.process(event)

        assert outcome.status in ("posted", "staged")
        assert [line.account_code for line in outcome.gl_lines] == ["9999", "4100", "2300"]
        journal = ledger_store.journals[0]
        assert journal.metadata["derivation_fallback"] is True
        assert journal.metadata["suspense_lines"] == [1]

    @pytest.mark.asyncio
    async def test_line_without_instruction_rejects(self, make_engine, make_event):
        event = make_event(lines=[
            ("PAYMENT:card", "Payment", "DR", 100),
            ("REVENUE:service", "Revenue", "CR", 90),
            ("DISCOUNT:promo", "Discount", "CR", 10),
        ])

        outcome = await make_engine().process(event)

        assert outcome.status == "rejected"
        assert outcome.reason == "cannot derive account: no posting instruction for CR Discount"

    @pytest.mark.asyncio
    async def test_roles_match_case_insensitively(self, make_engine, make_event):
        event = make_event(lines=[
            ("PAYMENT:card", "payment", "DR", 100),
            ("REVENUE:service", "REVENUE", "CR", 90),
            ("TAX:OUTPUT", " Tax ", "CR", 10),
        ])

        outcome = await make_engine().process(event)

        assert outcome.status == "posted"

    @pytest.mark.asyncio
    async def test_finance_accounts_and_relationships(self, make_engine, make_event):
        event = make_event(
            smart_code="HERA.ERP.MM.GoodsReceipt.Posted.v1",
            ai_confidence=0.9,
            lines=[
                ("PRODUCT:SHAMPOO", "Inventory", "DR", 100),
                ("AP:TRADE", "AP", "CR", 60, {"relationships": {"vendor_id": "V-001"}}),
                ("GRIR:PO-9", "GRIR", "CR", 40),
            ],
        )

        outcome = await make_engine().process(event)

        assert outcome.status == "posted"
        assert [line.account_code for line in outcome.gl_lines] == ["1330", "2110", "2150"]

    @pytest.mark.asyncio
    async def test_conditions_split_revenue(self, make_engine, make_event):
        config = OrgFinanceConfig(
            organization_id="org-rest-001",
            industry="restaurant",
            modules_enabled={"SALE": True},
            finance_policy=FinancePolicy(accounts=default_accounts("restaurant")),
        )
        event = make_event(
            smart_code="HERA.RESTAURANT.SALE.ORDER.v1",
            organization_id="org-rest-001",
            lines=[
                ("PAYMENT:cash", "Payment", "DR", 115),
                ("MENU:burger", "Revenue", "CR", 60, {"metadata": {"category": "food"}}),
                ("MENU:lemonade", "Revenue", "CR", 50, {"metadata": {"category": "beverage"}}),
                ("TAX:OUTPUT", "Tax", "CR", 5),
            ],
        )

        outcome = await make_engine(config=config).process(event)

        assert outcome.status == "posted"
        assert [line.account_code for line in outcome.gl_lines] == ["1100", "4110", "4120", "2300"]

    @pytest.mark.asyncio
    async def test_operator_conditions(self, make_engine, make_event):
        override = {
            "smart_code": SERVICE_SALE,
            "posting_recipe": {"lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "finance.accounts.product_revenue",
                 "conditions": {"line.amount": ">= 1000"}},
                {"derive": "CR Revenue", "from": "finance.accounts.service_revenue"},
            ]},
            "outcomes": {"auto_post_if": "ai_confidence >= 0.8"},
        }
        event = make_event(lines=[
            ("PAYMENT:card", "Payment", "DR", 1700),
            ("REVENUE:service", "Revenue", "CR", 200),
            ("REVENUE:product", "Revenue", "CR", 1500),
        ])

        outcome = await make_engine(overrides=[override]).process(event)

        assert [line.account_code for line in outcome.gl_lines] == ["1110", "4100", "4200"]


class TestConditionsMatch:
    """Recipe condition evaluation for one line."""

    def test_lookup_order_and_value_forms(self, make_event):
        line = FinanceLine(entity_id="MENU:1", role="Revenue", cr=50, metadata={"category": "beverage"})
        event = make_event(metadata={"channel": "web", "category": "food"})

        assert conditions_match({}, event, line)
        assert conditions_match({"category": "beverage"}, event, line)
        assert conditions_match({"metadata.category": "food"}, event, line)
        assert conditions_match({"channel": ["web", "app"]}, event, line)
        assert not conditions_match({"channel": ["kiosk"]}, event, line)
        assert conditions_match({"line.amount": "< 100", "event.currency": "AED"}, event, line)
        assert conditions_match({"currency": "!= USD"}, event, line)
        assert not conditions_match({"category": "beverage", "channel": "app"}, event, line)


# ===========================================
# DECISION
# ===========================================

class TestDecision:
    """Approval rules take precedence over auto-posting."""

    @pytest.mark.asyncio
    async def test_amount_above_threshold_is_staged(self, make_engine, make_event):
        event = make_event(ai_confidence=0.99, lines=[
            ("PAYMENT:card", "Payment", "DR", 12000),
            ("REVENUE:service", "Revenue", "CR", 11000),
            ("TAX:OUTPUT", "Tax", "CR", 1000),
        ])

        outcome = await make_engine().process(event)

        assert outcome.status == "staged"
        assert outcome.reason.startswith("approval required")

    @pytest.mark.asyncio
    async def test_approval_expression(self, make_engine, make_event):
        engine = make_engine()
        lines = [
            ("EMP:E-1", "Payroll Expense", "DR", 5000),
            ("PAYMENT:bank", "Payment", "CR", 4500),
            ("WHT:E-1", "Withholdings", "CR", 500),
        ]

        stylist = await engine.process(make_event(
            smart_code="HERA.SALON.EXPENSE.SALARY.v1", ai_confidence=0.9, origin_txn_id="PAY-1",
            lines=lines, metadata={"employee_type": "stylist"},
        ))
        manager = await engine.process(make_event(
            smart_code="HERA.SALON.EXPENSE.SALARY.v1", ai_confidence=0.9, origin_txn_id="PAY-2",
            lines=lines, metadata={"employee_type": "manager"},
        ))

        assert stylist.status == "posted"
        assert [line.account_code for line in stylist.gl_lines] == ["6100", "1120", "2250"]
        assert manager.status == "staged"
        assert "approval required" in manager.reason

    @pytest.mark.asyncio
    async def test_else_reject_never_overrides_mandatory_review(self, make_engine, make_event, ledger_store):
        override = {
            "smart_code": SERVICE_SALE,
            "validations": {"amount_limits": {"approval_threshold": "1000"}},
            "posting_recipe": {"lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "entity.gl_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]},
            "outcomes": {
                "auto_post_if": "ai_confidence >= 0.9",
                "approval_required_if": "metadata.channel == 'phone'",
                "else": "reject",
            },
        }
        engine = make_engine(overrides=[override])
        inactive = make_engine(
            config=salon_config(modules_enabled={"SALE": False}, deactivation_behaviour={"SALE": "stage_for_review"}),
            overrides=[override],
        )
        large = [
            ("PAYMENT:card", "Payment", "DR", 2100),
            ("REVENUE:service", "Revenue", "CR", 2000),
            ("TAX:OUTPUT", "Tax", "CR", 100),
        ]

        by_expression = await engine.process(make_event(origin_txn_id="R-1", metadata={"channel": "phone"}))
        by_threshold = await engine.process(make_event(origin_txn_id="R-2", lines=large))
        by_module = await inactive.process(make_event(origin_txn_id="R-3"))
        low_confidence = await engine.process(make_event(origin_txn_id="R-4", ai_confidence=0.5))

        assert by_expression.status == "staged"
        assert by_threshold.status == "staged"
        assert by_module.status == "staged"
        assert low_confidence.status == "rejected"
        assert low_confidence.reason == "auto-post conditions not met: ai_confidence >= 0.9"

    @pytest.mark.asyncio
    async def test_commitment_only_event(self, make_engine, make_event, ledger_store):
        event = make_event(smart_code="HERA.ERP.SD.Order.Created.v1", lines=[])

        outcome = await make_engine().process(event)

        assert isinstance(outcome, Posted)
        assert outcome.journal_code is None
        assert outcome.gl_lines == []
        assert outcome.message == "Event has no GL impact"
        assert ledger_store.journals == []


# ===========================================
# INVARIANTS AND METRICS
# ===========================================

class TestInvariants:
    @pytest.mark.asyncio
    async def test_every_accepted_journal_balances(self, make_engine, make_event):
        engine = make_engine(config=salon_config(finance_policy=FinancePolicy(
            accounts=default_accounts("salon"), suspense_account="9999",
        )))
        events = [
            make_event(origin_txn_id=f"INV-{index}", ai_confidence=confidence, lines=[
                ("PAYMENT:card", "Payment", "DR", gross),
                ("REVENUE:service", "Revenue", "CR", gross - tax),
                ("TAX:OUTPUT", "Tax", "CR", tax),
            ])
            for index, (confidence, gross, tax) in enumerate([
                (0.97, Decimal("105.00"), Decimal("5.00")),
                (0.40, Decimal("33.33"), Decimal("1.59")),
                (0.85, Decimal("20000"), Decimal("952.38")),
                (0.99, Decimal("0.03"), Decimal("0.01")),
            ])
        ]

        for event in events:
            outcome = await engine.process(event)
            assert outcome.status in ("posted", "staged")
            assert validate_double_entry(outcome.gl_lines)


class TestMetrics:
    @pytest.mark.asyncio
    async def test_counts_by_status(self, make_engine, make_event):
        engine = make_engine()

        await engine.process(make_event(origin_txn_id="M-1", ai_confidence=0.9))
        await engine.process(make_event(origin_txn_id="M-2", ai_confidence=0.1))
        await engine.process(make_event(origin_txn_id="M-3", smart_code="HERA.UNKNOWN.FOO.v1"))

        metrics = engine.get_performance_metrics()
        assert metrics["total_processed"] == 3
        assert metrics["posted"] == 1
        assert metrics["staged"] == 1
        assert metrics["rejected"] == 1
        assert metrics["success_rate"] == 66.67
        assert metrics["average_processing_ms"] >= 0

    @pytest.mark.asyncio
    async def test_infrastructure_failure_propagates(self, make_engine, make_event, ledger_store):
        engine = make_engine(fiscal=UnavailableFiscalService())

        with pytest.raises(FinanceInfrastructureError):
            await engine.process(make_event())

        assert engine.metrics.infrastructure_failures == 1
        assert engine.metrics.total_processed == 1
        assert ledger_store.journals == [] and ledger_store.staged == []

    def test_empty_metrics(self):
        metrics = PostingMetrics()

        assert metrics.success_rate == 0.0
        assert metrics.average_processing_ms == 0.0
        assert metrics.to_dict()["total_processed"] == 0
