"""
HERA Finance Engine - Utilities Package
"""

from finance_engine.utils.error_handling import (
    AppException,
    ErrorCode,
    RejectionKind,
    FinanceException,
    DerivationError,
    UnknownSmartCodeError,
    BalanceError,
    PostingRuleError,
    ExpressionError,
    JournalAlreadyCommittedError,
    FinanceInfrastructureError,
    setup_exception_handlers,
)

__all__ = [
    "AppException",
    "ErrorCode",
    "RejectionKind",
    "FinanceException",
    "DerivationError",
    "UnknownSmartCodeError",
    "BalanceError",
    "PostingRuleError",
    "ExpressionError",
    "JournalAlreadyCommittedError",
    "FinanceInfrastructureError",
    "setup_exception_handlers",
]
