"""
FastAPI application shell.

The card ledger is a service library; this module only wraps it in an
ASGI app so the ledger's error taxonomy maps onto HTTP the same way for
whatever routers get mounted on top:
  1. Lifespan manager: logging setup, table creation, engine disposal
  2. CORS middleware
  3. Exception handlers: domain errors to HTTP responses
  4. /health check

Running locally:
    uvicorn bankcards.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import bankcards.models  # noqa: F401  (registers every table on Base.metadata)
from bankcards.config import settings
from bankcards.database import engine, Base
from bankcards.exceptions import register_exception_handlers
from bankcards.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Configures JSON logging and creates any missing tables. Production
      deployments should manage the schema with migrations instead.

    Shutdown:
      Disposes of the database engine.
    """
    setup_logging(settings.LOG_LEVEL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bank card ledger: card issuance, lifecycle and transfers",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
