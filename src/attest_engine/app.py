"""FastAPI application factory for Attest-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from attest_engine.common.config import get_settings
from attest_engine.common.logging import setup_logging
from attest_engine.common.schemas import HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        from attest_engine.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    from attest_engine.vault.router import router as identity_router
    from attest_engine.signing.router import router as signing_router
    from attest_engine.audit.router import router as audit_router

    prefix = settings.api_prefix
    app.include_router(identity_router, prefix=prefix, tags=["identities"])
    app.include_router(signing_router, prefix=prefix, tags=["signing"])
    app.include_router(audit_router, prefix=prefix, tags=["audit"])

    return app
