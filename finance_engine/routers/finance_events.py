"""
HERA Finance Engine - Finance Events Router

HTTP call surface for vertical apps. Posting outcomes (including business
rejections and configuration load failures) are returned with HTTP 200;
check `success` and `status`.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path

from finance_engine.dependencies import get_finance_processor, get_processor_registry
from finance_engine.schemas.finance_event import (
    BusinessEventParams,
    ExpenseParams,
    ProcessResult,
    RevenueParams,
)
from finance_engine.services.finance_event_processor import FinanceEventProcessor, FinanceProcessorRegistry


router = APIRouter(prefix="/api/v1/organizations/{organization_id}/finance", tags=["Finance Events"])


# ============================================================================
# POSTING ENDPOINTS
# ============================================================================

@router.post("/events", response_model=ProcessResult)
async def process_business_event(
    params: BusinessEventParams,
    organization_id: str = Path(..., min_length=1, description="Organization ID"),
    registry: FinanceProcessorRegistry = Depends(get_processor_registry),
):
    """Process a business event into a GL journal."""
    return await registry.process_business_event(organization_id, params)


@router.post("/revenue", response_model=ProcessResult)
async def post_revenue(
    params: RevenueParams,
    organization_id: str = Path(..., min_length=1, description="Organization ID"),
    registry: FinanceProcessorRegistry = Depends(get_processor_registry),
):
    """Post a payment received against revenue and output tax."""
    return await registry.post_revenue(organization_id, params)


@router.post("/expense", response_model=ProcessResult)
async def post_expense(
    params: ExpenseParams,
    organization_id: str = Path(..., min_length=1, description="Organization ID"),
    registry: FinanceProcessorRegistry = Depends(get_processor_registry),
):
    """Post an expense, paid or on account."""
    return await registry.post_expense(organization_id, params)


# ============================================================================
# OPERATIONS
# ============================================================================

@router.get("/metrics")
async def get_metrics(
    processor: FinanceEventProcessor = Depends(get_finance_processor),
) -> Dict[str, Any]:
    """Posting counters for the organization's processor."""
    return processor.get_performance_metrics()


@router.post("/reload")
async def reload_configuration(
    organization_id: str = Path(..., min_length=1, description="Organization ID"),
    registry: FinanceProcessorRegistry = Depends(get_processor_registry),
) -> Dict[str, Any]:
    """Drop the cached processor; rules and configuration reload on the next event."""
    registry.invalidate(organization_id)
    return {"success": True, "organization_id": organization_id, "message": "Finance configuration reloaded"}
