"""
Optimus Portfolio Analyzer - FastAPI application.

Wires the portfolio router, the shared analyzer and the global exception
handler.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from .api.portfolio import router as portfolio_router
from .core.exceptions import OptimusError, exception_handler
from .core.logging import cleanup_logging, setup_logging
from .core.settings import Settings, get_settings
from .strategy.analyzer import PortfolioAnalyzer, build_analyzer

logger = logging.getLogger(__name__)


def create_app(
    analyzer: Optional[PortfolioAnalyzer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        analyzer: Preconfigured analyzer; built from settings at startup
            when omitted
        settings: Settings to use instead of the global instance

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager for startup and shutdown tasks."""
        setup_logging(settings.log_level, settings.debug, settings.log_dir)
        if app.state.analyzer is None:
            app.state.analyzer = build_analyzer(settings)
        logger.info(
            f"Starting {settings.app_name}",
            extra={"extra_data": {"version": settings.version, "environment": settings.environment}},
        )
        try:
            yield
        finally:
            logger.info(f"Shutting down {settings.app_name}")
            await app.state.analyzer.aclose()
            cleanup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Portfolio risk and rebalancing recommendations for Solana wallets",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.analyzer = analyzer

    app.add_exception_handler(OptimusError, exception_handler)
    app.add_exception_handler(Exception, exception_handler)
    app.include_router(portfolio_router)

    @app.get("/")
    async def root():
        """Service banner."""
        return {
            "message": settings.app_name,
            "version": settings.version,
            "environment": settings.environment,
        }

    @app.get("/health")
    async def health_check():
        """Basic health check."""
        return {"status": "OK", "service": "optimus", "version": settings.version}

    return app


app = create_app()

__all__ = ["app", "create_app"]
