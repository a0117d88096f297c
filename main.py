"""
HERA Finance Engine - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import importlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from finance_engine.config import Settings, settings
from finance_engine.database import close_db, create_engine_from_settings, create_session_factory, init_db
from finance_engine.routers import finance_events
from finance_engine.services.config_source import FinanceConfigSource, InMemoryFinanceConfigSource
from finance_engine.services.finance_event_processor import FinanceProcessorRegistry
from finance_engine.services.fiscal_period_service import (
    FiscalPeriodService,
    HttpFiscalPeriodService,
    InMemoryFiscalPeriodService,
)
from finance_engine.services.ledger_store import InMemoryLedgerStore, LedgerStore, SqlAlchemyLedgerStore
from finance_engine.services.master_data import InMemoryMasterDataLookup, MasterDataLookup
from finance_engine.utils.error_handling import setup_exception_handlers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO) if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_factory(path: str) -> Callable[[Settings], Any]:
    """Resolve a "package.module:callable" path."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Factory path must look like 'package.module:callable', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attribute, None)
    if not callable(factory):
        raise ValueError(f"{path!r} is not a callable")
    return factory


def build_config_source(app_settings: Settings) -> FinanceConfigSource:
    if app_settings.config_source_factory:
        logger.info(f"Finance configuration source: {app_settings.config_source_factory}")
        return load_factory(app_settings.config_source_factory)(app_settings)
    logger.warning("No finance configuration source configured; every organization uses the default configuration")
    return InMemoryFinanceConfigSource()


def build_master_data(app_settings: Settings) -> MasterDataLookup:
    if app_settings.master_data_factory:
        logger.info(f"Master data lookup: {app_settings.master_data_factory}")
        return load_factory(app_settings.master_data_factory)(app_settings)
    logger.warning("No master data lookup configured; using an empty in-memory lookup")
    return InMemoryMasterDataLookup()


def build_fiscal_service(app_settings: Settings) -> FiscalPeriodService:
    if app_settings.fiscal_service_url:
        logger.info(f"Fiscal period service: {app_settings.fiscal_service_url}")
        return HttpFiscalPeriodService.from_settings(app_settings)
    logger.warning("No fiscal service configured; using in-memory calendar (all periods open)")
    return InMemoryFiscalPeriodService()


async def build_ledger_store(app_settings: Settings, engine: Optional[AsyncEngine]) -> LedgerStore:
    if engine is None:
        logger.warning("No database configured; journals are kept in memory")
        return InMemoryLedgerStore(app_settings.journal_code_prefix, app_settings.staged_code_prefix)

    # Create tables in development only - production schemas are managed outside the app
    if app_settings.is_development:
        await init_db(engine)
        logger.info("Ledger tables initialized")
    return SqlAlchemyLedgerStore(
        create_session_factory(engine),
        journal_prefix=app_settings.journal_code_prefix,
        staged_prefix=app_settings.staged_code_prefix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")

    engine = create_engine_from_settings(settings)
    app.state.finance_processors = FinanceProcessorRegistry(
        config_source=build_config_source(settings),
        master_data=build_master_data(settings),
        fiscal_service=build_fiscal_service(settings),
        ledger_store=await build_ledger_store(settings, engine),
        settings=settings,
    )

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    app.state.finance_processors.invalidate()
    if engine is not None:
        await close_db(engine)
        logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Posting engine that turns business events into balanced general-ledger journals",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

setup_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "ledger_store": "database" if settings.uses_database else "memory",
        "fiscal_service": "http" if settings.fiscal_service_url else "memory",
    }


# ===========================================
# ROUTERS
# ===========================================

app.include_router(finance_events.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
