"""
HERA Finance Engine - Finance Event Schemas

Pydantic schemas for the normalized business event, its finance lines and
the journal produced from them.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EventAction = Literal["POST", "MODIFY", "REVERSE"]
LineSide = Literal["DR", "CR"]

ZERO = Decimal("0")


# =============================================================================
# INPUT: UNIVERSAL FINANCE EVENT
# =============================================================================

class FinanceLine(BaseModel):
    """
    One side of the journal before (or after) derivation.

    entity_id is either a concrete account reference (COA:<code>) or a role
    placeholder such as PAYMENT:card that the posting recipe resolves.
    """
    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    dr: Decimal = Field(ZERO, ge=0)
    cr: Decimal = Field(ZERO, ge=0)
    relationships: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def one_side_only(self):
        """Exactly one of dr/cr carries the amount."""
        if (self.dr > 0) == (self.cr > 0):
            raise ValueError(
                f"Line '{self.entity_id}' must have exactly one non-zero side (dr={self.dr}, cr={self.cr})"
            )
        return self

    @property
    def side(self) -> LineSide:
        return "DR" if self.dr > 0 else "CR"

    @property
    def amount(self) -> Decimal:
        return self.dr if self.dr > 0 else self.cr


class UniversalFinanceEvent(BaseModel):
    """Normalized input to the posting engine."""
    model_config = ConfigDict(frozen=True)

    organization_id: str = Field(..., min_length=1)
    smart_code: str = Field(..., pattern=r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+){2,}$")
    event_time: datetime
    currency: str = Field(..., pattern=r"^[A-Z]{3}$")
    source_system: str = Field(..., min_length=1)
    origin_txn_id: str = Field(..., min_length=1)
    ai_confidence: float = Field(0.0, ge=0, le=1)
    action: EventAction = "POST"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    lines: List[FinanceLine] = Field(default_factory=list)

    @property
    def module(self) -> str:
        """Owning module, taken from smart code segment 2 (HERA.ERP.<SD>.Invoice...)."""
        return self.smart_code.split(".")[2].upper()

    @property
    def total_debit(self) -> Decimal:
        return sum((line.dr for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.cr for line in self.lines), ZERO)


# =============================================================================
# OUTPUT: JOURNAL
# =============================================================================

class GLLine(BaseModel):
    """A derived general ledger line."""
    model_config = ConfigDict(frozen=True)

    line_number: int
    account_code: str
    dr: Decimal = ZERO
    cr: Decimal = ZERO
    role: str
    source_entity_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def side(self) -> LineSide:
        return "DR" if self.dr > 0 else "CR"


class JournalDraft(BaseModel):
    """Balanced journal ready to be committed or staged."""
    organization_id: str
    smart_code: str
    origin_txn_id: str
    source_system: str
    event_time: datetime
    currency: str
    idempotency_key: str
    rule_version: str
    lines: List[GLLine] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def total_debit(self) -> Decimal:
        return sum((line.dr for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.cr for line in self.lines), ZERO)


# =============================================================================
# VERTICAL APP CALL SURFACE
# =============================================================================

class LineDescriptor(BaseModel):
    """Line as supplied by a vertical app: an amount and a side."""
    entity_id: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    type: Literal["debit", "credit"]
    relationships: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_finance_line(self) -> FinanceLine:
        if self.type == "debit":
            return FinanceLine(entity_id=self.entity_id, role=self.role, dr=self.amount,
                               relationships=self.relationships, metadata=self.metadata)
        return FinanceLine(entity_id=self.entity_id, role=self.role, cr=self.amount,
                           relationships=self.relationships, metadata=self.metadata)


class BusinessEventParams(BaseModel):
    """Request to process an arbitrary business event."""
    smart_code: str
    origin_txn_id: str
    event_time: Optional[datetime] = None
    currency: Optional[str] = None
    source_system: str = "api"
    ai_confidence: Optional[float] = None
    action: EventAction = "POST"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    lines: List[LineDescriptor] = Field(default_factory=list)


class RevenueParams(BaseModel):
    """Revenue helper: payment received against revenue (and output tax)."""
    smart_code: str
    origin_txn_id: str
    amount: Decimal = Field(..., gt=0, description="Gross amount received, tax included")
    tax_amount: Decimal = Field(ZERO, ge=0)
    payment_method: str = "cash"
    revenue_type: str = "service"
    event_time: Optional[datetime] = None
    currency: Optional[str] = None
    source_system: str = "api"
    ai_confidence: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('tax_amount')
    @classmethod
    def tax_below_gross(cls, v, info):
        if 'amount' in info.data and v >= info.data['amount']:
            raise ValueError('Tax amount must be less than the gross amount')
        return v


class ExpenseParams(BaseModel):
    """Expense helper: expense against payment (paid) or accounts payable (on account)."""
    smart_code: str
    origin_txn_id: str
    amount: Decimal = Field(..., gt=0)
    category: str = "general"
    is_paid: bool = True
    payment_method: str = "cash"
    vendor_id: Optional[str] = None
    event_time: Optional[datetime] = None
    currency: Optional[str] = None
    source_system: str = "api"
    ai_confidence: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


ProcessStatus = Literal["posted", "staged", "rejected", "infrastructure_error"]


class ProcessResult(BaseModel):
    """Uniform result returned to vertical apps; never raised."""
    success: bool
    status: ProcessStatus
    journal_code: Optional[str] = None
    staged_reference: Optional[str] = None
    message: Optional[str] = None
    gl_lines: Optional[List[GLLine]] = None
    idempotency_key: Optional[str] = None
    rejection_kind: Optional[str] = None
