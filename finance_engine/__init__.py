"""
HERA Finance Engine

Converts business events from vertical apps into balanced general-ledger
journals under per-organization posting rules.
"""

__version__ = "0.1.0"
