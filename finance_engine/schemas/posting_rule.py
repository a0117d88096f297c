"""
HERA Finance Engine - Posting Rule Schemas

A posting rule is keyed by smart code and holds the validation requirements,
the posting recipe and the outcome policy for one kind of business event.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


FiscalCheck = Literal["open_period", "allow_future", "block_past"]
ElseOutcome = Literal["stage_for_review", "reject"]

_DERIVE_PATTERN = re.compile(r"^\s*(DR|CR)\s+(.+?)\s*$", re.IGNORECASE)


def normalize_role(role: str) -> str:
    """Roles match case-insensitively with collapsed whitespace ("Tax  Payable" == "tax payable")."""
    return " ".join(role.split()).lower()


def parse_derive(derive: str) -> Tuple[str, str]:
    """Split "DR Payment" into ("DR", "payment")."""
    match = _DERIVE_PATTERN.match(derive or "")
    if not match:
        raise ValueError(f"derive must look like 'DR <Role>' or 'CR <Role>', got {derive!r}")
    return match.group(1).upper(), normalize_role(match.group(2))


class DeriveInstruction(BaseModel):
    """One recipe line: which side/role it produces and where the account comes from."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    derive: str
    from_path: str = Field(..., alias="from", min_length=1)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None

    @field_validator('derive')
    @classmethod
    def valid_derive(cls, v: str) -> str:
        parse_derive(v)
        return v.strip()

    @property
    def side(self) -> str:
        return parse_derive(self.derive)[0]

    @property
    def role(self) -> str:
        return parse_derive(self.derive)[1]


class AmountLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, gt=0)
    approval_threshold: Optional[Decimal] = Field(None, gt=0)

    @model_validator(mode='after')
    def min_below_max(self):
        if self.min_amount is not None and self.max_amount is not None and self.min_amount > self.max_amount:
            raise ValueError('min_amount cannot exceed max_amount')
        return self


class RuleValidations(BaseModel):
    model_config = ConfigDict(frozen=True)

    required_header: List[str] = Field(default_factory=list)
    required_lines: List[str] = Field(default_factory=list)
    fiscal_check: FiscalCheck = "open_period"
    amount_limits: Optional[AmountLimits] = None
    currency_validation: bool = False


class PostingRecipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    lines: List[DeriveInstruction] = Field(default_factory=list)


class RuleOutcomes(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    auto_post_if: Optional[str] = None
    approval_required_if: Optional[str] = None
    otherwise: ElseOutcome = Field("stage_for_review", alias="else")


class PostingRule(BaseModel):
    """Immutable posting policy for one smart code."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    smart_code: str = Field(..., min_length=1)
    rule_version: str = "v1"
    priority: int = 100
    description: Optional[str] = None
    validations: RuleValidations = Field(default_factory=RuleValidations)
    posting_recipe: PostingRecipe = Field(default_factory=PostingRecipe)
    outcomes: RuleOutcomes = Field(default_factory=RuleOutcomes)
