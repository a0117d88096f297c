"""
HERA Finance Engine - Posting Outcome Schemas

Terminal states of one event: Posted, Staged or Rejected. Business failures
are values of these types; only infrastructure faults are raised.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from finance_engine.schemas.finance_event import GLLine
from finance_engine.utils.error_handling import RejectionKind


class Posted(BaseModel):
    """Journal committed (or nothing to commit for commitment-only events)."""
    status: Literal["posted"] = "posted"
    journal_code: Optional[str] = None
    gl_lines: List[GLLine] = Field(default_factory=list)
    idempotency_key: str
    message: Optional[str] = None


class Staged(BaseModel):
    """Balanced journal computed but held for human review."""
    status: Literal["staged"] = "staged"
    staged_reference: str
    gl_lines: List[GLLine] = Field(default_factory=list)
    reason: str
    idempotency_key: str


class Rejected(BaseModel):
    """Event refused; nothing was persisted."""
    status: Literal["rejected"] = "rejected"
    reason: str
    kind: RejectionKind
    code: Optional[str] = None


PostingOutcome = Union[Posted, Staged, Rejected]
