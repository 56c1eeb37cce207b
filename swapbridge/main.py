import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import bridge, health, quotes
from .config import settings
from .core.bridge.models import InvalidTransitionError, NoActiveAccountError, TransactionNotFoundError
from .logging_config import bind_request_context, clear_request_context, setup_logging
from .runtime import SwapBridgeRuntime


def create_app(runtime: Optional[SwapBridgeRuntime] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.runtime = runtime or SwapBridgeRuntime()
        await app.state.runtime.start()
        try:
            yield
        finally:
            await app.state.runtime.stop()

    app = FastAPI(
        title="SwapBridge API",
        description="Cross-provider swap and bridge quotes with bridge transaction tracking",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_request_context()
        bind_request_context(
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex[:12],
            path=request.url.path,
        )
        try:
            return await call_next(request)
        finally:
            clear_request_context()

    @app.exception_handler(TransactionNotFoundError)
    async def not_found_handler(request: Request, exc: TransactionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NoActiveAccountError)
    async def no_account_handler(request: Request, exc: NoActiveAccountError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=409, content={"detail": exc.message})

    app.include_router(health.router, tags=["Health"])
    app.include_router(quotes.router, tags=["Quotes"])
    app.include_router(bridge.router, tags=["Bridge"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "SwapBridge API",
            "version": __version__,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "swapbridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
