"""
HERA Finance Engine - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from finance_engine.config import Settings
from finance_engine.rules import default_accounts
from finance_engine.schemas.finance_event import FinanceLine, UniversalFinanceEvent
from finance_engine.schemas.org_config import FinancePolicy, OrgFinanceConfig
from finance_engine.services.config_source import InMemoryFinanceConfigSource
from finance_engine.services.finance_event_processor import FinanceProcessorRegistry
from finance_engine.services.fiscal_period_service import InMemoryFiscalPeriodService
from finance_engine.services.ledger_store import InMemoryLedgerStore
from finance_engine.services.master_data import InMemoryMasterDataLookup
from finance_engine.services.org_finance_config import OrganizationFinanceConfiguration
from finance_engine.services.posting_engine import FinanceEventPostingEngine
from finance_engine.services.posting_rule_registry import PostingRuleRegistry
from main import app


SALON_ORG = "org-salon-001"
ERP_ORG = "org-erp-001"

EVENT_TIME = datetime(2026, 3, 15, 10, 30)


# ===========================================
# MASTER DATA
# ===========================================

SHARED_MASTER_DATA: Dict[str, Dict[str, Any]] = {
    "PAYMENT:card": {"name": "Card", "gl_account": "1110"},
    "PAYMENT:cash": {"name": "Cash", "gl_account": "1100"},
    "PAYMENT:bank": {"name": "Bank transfer", "gl_account": "1120"},
    "REVENUE:service": {"name": "Service revenue", "gl_account": "4100"},
    "REVENUE:product": {"name": "Product revenue", "gl_account": "4200"},
    "TAX:OUTPUT": {"name": "Output VAT", "gl_account": "2300"},
    "EXPENSE:general": {"name": "General expense", "gl_account": "6900"},
    "EXPENSE:supplies": {"name": "Salon supplies", "gl_account": "6200"},
    "AP:TRADE": {"name": "Trade payables", "gl_account": "2100"},
    "CUSTOMER:C-100": {"name": "Acme Trading", "ar_control": "1210", "revenue_account": "4000"},
    "PRODUCT:SHAMPOO": {"name": "Shampoo", "inventory_account": "1330", "revenue_account": "4200"},
    "VENDOR:V-001": {"name": "Gulf Supplies", "ap_control": "2110"},
}


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        _env_file=None,
        database_url_async=None,
        fiscal_service_url=None,
        config_source_factory=None,
        master_data_factory=None,
        default_currency="AED",
        default_industry="universal",
        default_ai_confidence=0.0,
    )


@pytest.fixture
def master_data() -> InMemoryMasterDataLookup:
    return InMemoryMasterDataLookup({"*": dict(SHARED_MASTER_DATA)})


@pytest.fixture
def ledger_store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def fiscal_service() -> InMemoryFiscalPeriodService:
    """No calendar defined: every date is open."""
    return InMemoryFiscalPeriodService()


# ===========================================
# CONFIGURATION FIXTURES
# ===========================================

def make_salon_config(
    modules_enabled: Optional[Dict[str, bool]] = None,
    deactivation_behaviour: Optional[Dict[str, str]] = None,
    suspense_account: Optional[str] = None,
    supported_currencies: Optional[List[str]] = None,
) -> OrgFinanceConfig:
    return OrgFinanceConfig(
        organization_id=SALON_ORG,
        industry="salon",
        modules_enabled=modules_enabled if modules_enabled is not None else {
            "SALE": True, "EXPENSE": True, "POS": True, "SD": True, "MM": True, "HR": True, "FI": True,
        },
        deactivation_behaviour=deactivation_behaviour or {},
        finance_policy=FinancePolicy(
            accounts=default_accounts("salon"),
            suspense_account=suspense_account,
            supported_currencies=supported_currencies or [],
        ),
    )


@pytest.fixture
def salon_config() -> OrgFinanceConfig:
    return make_salon_config()


@pytest.fixture
def make_engine(master_data, ledger_store, fiscal_service) -> Callable[..., FinanceEventPostingEngine]:
    """Build an engine for the salon organization (or any config passed in)."""

    def _make(
        config: Optional[OrgFinanceConfig] = None,
        overrides: Optional[List[Dict[str, Any]]] = None,
        fiscal=None,
    ) -> FinanceEventPostingEngine:
        config = config or make_salon_config()
        return FinanceEventPostingEngine(
            org_config=OrganizationFinanceConfiguration(config),
            registry=PostingRuleRegistry.build(config.industry, overrides=overrides),
            fiscal_service=fiscal or fiscal_service,
            master_data=master_data,
            ledger_store=ledger_store,
        )

    return _make


@pytest.fixture
def make_event() -> Callable[..., UniversalFinanceEvent]:
    """Build an event from (entity_id, role, side, amount) tuples."""

    def _make(
        smart_code: str = "HERA.SALON.SALE.SERVICE.v1",
        lines: Optional[List[tuple]] = None,
        ai_confidence: float = 0.97,
        origin_txn_id: str = "TXN-001",
        organization_id: str = SALON_ORG,
        **kwargs,
    ) -> UniversalFinanceEvent:
        if lines is None:
            lines = service_sale_lines()
        finance_lines = []
        for line in lines:
            entity_id, role, side, amount = line[:4]
            extra = line[4] if len(line) > 4 else {}
            amount = Decimal(str(amount))
            if side == "DR":
                finance_lines.append(FinanceLine(entity_id=entity_id, role=role, dr=amount, **extra))
            else:
                finance_lines.append(FinanceLine(entity_id=entity_id, role=role, cr=amount, **extra))
        return UniversalFinanceEvent(
            organization_id=organization_id,
            smart_code=smart_code,
            event_time=kwargs.pop("event_time", EVENT_TIME),
            currency=kwargs.pop("currency", "AED"),
            source_system=kwargs.pop("source_system", "salon-pos"),
            origin_txn_id=origin_txn_id,
            ai_confidence=ai_confidence,
            lines=finance_lines,
            **kwargs,
        )

    return _make


def service_sale_lines(gross=100, net=90, tax=10) -> List[tuple]:
    return [
        ("PAYMENT:card", "Payment", "DR", gross),
        ("REVENUE:service", "Revenue", "CR", net),
        ("TAX:OUTPUT", "Tax", "CR", tax),
    ]


# ===========================================
# PROCESSOR / API FIXTURES
# ===========================================

@pytest.fixture
def config_source() -> InMemoryFinanceConfigSource:
    return InMemoryFinanceConfigSource({SALON_ORG: make_salon_config()})


@pytest.fixture
def processor_registry(config_source, master_data, fiscal_service, ledger_store, settings) -> FinanceProcessorRegistry:
    return FinanceProcessorRegistry(
        config_source=config_source,
        master_data=master_data,
        fiscal_service=fiscal_service,
        ledger_store=ledger_store,
        settings=settings,
    )


@pytest_asyncio.fixture(scope="function")
async def client(processor_registry) -> AsyncGenerator[AsyncClient, None]:
    """API client backed by in-memory collaborators."""
    previous = getattr(app.state, "finance_processors", None)
    app.state.finance_processors = processor_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.finance_processors = previous
