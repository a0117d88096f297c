"""
HERA Finance Engine - FastAPI Dependencies

The processor registry is built once in the application lifespan and kept
on app.state; request handlers receive it (or the organization's
processor) through these dependencies.
"""

from fastapi import Depends, HTTPException, Path, Request, status

from finance_engine.services.finance_event_processor import FinanceEventProcessor, FinanceProcessorRegistry


def get_processor_registry(request: Request) -> FinanceProcessorRegistry:
    registry = getattr(request.app.state, "finance_processors", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Finance engine is not initialized",
        )
    return registry


async def get_finance_processor(
    organization_id: str = Path(..., min_length=1, description="Organization ID"),
    registry: FinanceProcessorRegistry = Depends(get_processor_registry),
) -> FinanceEventProcessor:
    """Cached processor for the organization in the path."""
    return await registry.get(organization_id)
