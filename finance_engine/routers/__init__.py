"""
HERA Finance Engine - Routers Package

FastAPI route handlers.

Routers:
- finance_events: business event posting, revenue/expense helpers, metrics, reload
"""

from finance_engine.routers import finance_events

__all__ = ["finance_events"]
