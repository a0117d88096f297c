"""
HERA Finance Engine - Account Derivation Service

Resolves dotted account paths from posting recipes (entity.gl_account,
finance.accounts.food_revenue, vendor.ap_control, ...) against a context
assembled from master data for one event line.

The context is a set of namespaces, each an AccountContext able to resolve
the rest of the path. Defaults from the organization finance policy are
injected as the `finance` namespace before resolution; the resolver itself
never falls back.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Sequence

from finance_engine.schemas.finance_event import FinanceLine, UniversalFinanceEvent
from finance_engine.schemas.org_config import FinancePolicy
from finance_engine.utils.error_handling import DerivationError

logger = logging.getLogger(__name__)


_SCALAR_TYPES = (str, int, Decimal)


# =============================================================================
# ACCOUNT CONTEXTS
# =============================================================================

class AccountContext:
    """Something that can resolve the remaining segments of a path."""

    kind = "record"

    def __init__(self, data: Mapping[str, Any], reference: Optional[str] = None):
        self._data = data
        self.reference = reference

    def resolve(self, segments: Sequence[str]) -> Any:
        value: Any = self._data
        for segment in segments:
            if not isinstance(value, Mapping):
                return None
            value = value.get(segment)
            if value is None:
                return None
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reference!r})"


class MasterRecordContext(AccountContext):
    """Generic master-data record with no more specific variant."""


class PaymentMethodContext(MasterRecordContext):
    kind = "payment_method"


class CustomerContext(MasterRecordContext):
    kind = "customer"


class VendorContext(MasterRecordContext):
    kind = "vendor"


class ProductContext(MasterRecordContext):
    kind = "product"


class TaxContext(MasterRecordContext):
    kind = "tax"


class LedgerAccountContext(MasterRecordContext):
    """A line that already names its account (COA:<code>)."""

    kind = "ledger_account"

    @classmethod
    def for_code(cls, code: str) -> "LedgerAccountContext":
        return cls({"gl_account": code, "code": code}, reference=f"COA:{code}")


class FinancePolicyContext(AccountContext):
    """
    Organization finance policy: default_coa_id, tax_profile_id, fx_source,
    suspense_account and the semantic account map under `accounts`.

    Linked record contexts are reachable too, so finance.customer.ar_control
    resolves through the line's customer relationship.
    """

    kind = "finance_policy"

    def __init__(self, policy: FinancePolicy, linked: Optional[Mapping[str, AccountContext]] = None):
        super().__init__(policy.model_dump(), reference="finance")
        self._linked = dict(linked or {})

    def resolve(self, segments: Sequence[str]) -> Any:
        if segments and segments[0] in self._linked and segments[0] not in self._data:
            return self._linked[segments[0]].resolve(segments[1:])
        return super().resolve(segments)


CONTEXT_TYPES: Dict[str, type] = {
    "PAYMENT": PaymentMethodContext,
    "CUSTOMER": CustomerContext,
    "VENDOR": VendorContext,
    "SUPPLIER": VendorContext,
    "PRODUCT": ProductContext,
    "ITEM": ProductContext,
    "TAX": TaxContext,
    "COA": LedgerAccountContext,
}


def reference_kind(reference: str) -> Optional[str]:
    """PAYMENT:card -> PAYMENT; references without a prefix have no kind."""
    if ":" not in reference:
        return None
    return reference.split(":", 1)[0].upper()


def context_for(reference: str, record: Mapping[str, Any]) -> AccountContext:
    """Wrap a master-data record in the variant matching its reference prefix."""
    context_type = CONTEXT_TYPES.get(reference_kind(reference) or "", MasterRecordContext)
    return context_type(record, reference=reference)


def relationship_namespace(name: str) -> str:
    """vendor_id -> vendor"""
    return name[:-3] if name.endswith("_id") and len(name) > 3 else name


def relationship_reference(name: str, value: str) -> str:
    """("vendor_id", "V-001") -> "VENDOR:V-001"; values that already carry a prefix are kept."""
    if ":" in value:
        return value
    return f"{relationship_namespace(name).upper()}:{value}"


# =============================================================================
# DERIVATION CONTEXT
# =============================================================================

class DerivationContext:
    """Namespaces available to recipe paths for one line."""

    def __init__(self, namespaces: Mapping[str, AccountContext]):
        self.namespaces = dict(namespaces)

    def resolve(self, path: str) -> Any:
        segments = [segment for segment in path.split(".") if segment]
        if not segments:
            return None
        namespace = self.namespaces.get(segments[0])
        if namespace is None:
            return None
        return namespace.resolve(segments[1:])


def derive_account(path: str, event: UniversalFinanceEvent, context: DerivationContext) -> str:
    """
    Walk `path` through the context and return the account identifier.

    Raises:
        DerivationError: a segment is missing/null or the leaf is not a scalar
    """
    value = context.resolve(path)
    if value is None or isinstance(value, bool) or not isinstance(value, _SCALAR_TYPES):
        logger.debug(f"Cannot derive {path} for {event.smart_code}/{event.origin_txn_id}")
        raise DerivationError(path)
    account = str(value).strip()
    if not account:
        raise DerivationError(path)
    return account


async def build_line_context(
    event: UniversalFinanceEvent,
    line: FinanceLine,
    policy: FinancePolicy,
    master_data,
    cache: Dict[str, Optional[Mapping[str, Any]]],
) -> DerivationContext:
    """
    Assemble the derivation context for one line.

    `cache` is shared across the lines of one event so each master record is
    fetched at most once per event.
    """

    async def fetch(reference: str) -> Optional[Mapping[str, Any]]:
        if reference not in cache:
            cache[reference] = await master_data.get_record(event.organization_id, reference)
        return cache[reference]

    namespaces: Dict[str, AccountContext] = {}

    if reference_kind(line.entity_id) == "COA":
        namespaces["entity"] = LedgerAccountContext.for_code(line.entity_id.split(":", 1)[1])
    else:
        record = await fetch(line.entity_id)
        if record is not None:
            namespaces["entity"] = context_for(line.entity_id, record)

    linked: Dict[str, AccountContext] = {}
    for name, value in line.relationships.items():
        reference = relationship_reference(name, value)
        record = await fetch(reference)
        if record is not None:
            linked[relationship_namespace(name)] = context_for(reference, record)
    namespaces.update(linked)

    namespaces["finance"] = FinancePolicyContext(policy, linked=linked)
    namespaces["event"] = AccountContext(
        {**event.metadata, "currency": event.currency, "source_system": event.source_system},
        reference="event",
    )
    namespaces["line"] = AccountContext({**line.metadata, "role": line.role}, reference="line")

    return DerivationContext(namespaces)
