from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, market, transactions
from .client import DobClient
from .config import settings
from .logging_config import setup_logging
from .middleware.logging_middleware import RequestLoggingMiddleware


def create_app(client: Optional[DobClient] = None) -> FastAPI:
    """
    Build the HTTP app.

    The client is created from settings at startup unless one is given.
    Its synchronizer runs for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.client = client or DobClient(settings.to_ledger_config())
        await app.state.client.start()
        try:
            yield
        finally:
            await app.state.client.close()

    app = FastAPI(
        title="DOB Market Client API",
        description="Read-side view of the DOB oracle, pool and liquidity nodes",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(market.router, tags=["Market"])
    app.include_router(transactions.router, tags=["Transactions"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "DOB Market Client API",
            "version": "0.1.0",
            "network": settings.network,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


def run() -> None:
    import uvicorn

    setup_logging()
    uvicorn.run(
        "dob_client.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
