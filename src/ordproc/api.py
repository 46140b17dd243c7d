"""FastAPI application for the order resolution service."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ordproc.config import get_config
from ordproc.dependencies import AppResources, get_resolution_service
from ordproc.embeddings import InMemoryEmbeddingCache
from ordproc.exceptions import ContractError, SnapshotError
from ordproc.models import (
    ParseOrderRequest,
    ParseOrderResponse,
    ResolvedOrder,
    ResolveOrderRequest,
)
from ordproc.services.resolve_service import OrderResolutionService

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
    swallow_errors=True,
)


def get_allowed_origins() -> list[str]:
    """Get allowed CORS origins from environment."""
    origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:8081")
    return [origin.strip() for origin in origins.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create app-scoped resources once per process."""
    config = get_config()
    embedding_cache = InMemoryEmbeddingCache(
        ttl_sec=config.embedding_cache_ttl_sec,
        max_entries=config.embedding_cache_max_entries,
    )
    app.state.ordproc_resources = AppResources(
        config=config,
        embedding_cache=embedding_cache,
        resolution_service=OrderResolutionService.from_config(config, embedding_cache),
    )
    logger.info(
        "Order resolution API ready (mock=%s, completion=%s, semantic=%s)",
        config.mock,
        config.uses_completion,
        config.uses_embeddings,
    )
    yield


def create_app() -> FastAPI:
    """Build the FastAPI app with middleware, routes and error handlers."""
    app = FastAPI(
        title="Order Resolution Service",
        description="Resolve free-text wholesale orders into priced catalog lines",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    @limiter.exempt
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint for container orchestration."""
        return {
            "status": "healthy",
            "service": "order-resolution",
            "version": "1.0.0",
        }

    @app.post(
        "/orders/parse",
        response_model=ParseOrderResponse,
        status_code=status.HTTP_200_OK,
        responses={429: {"description": "Rate limit exceeded"}},
    )
    @limiter.limit("30/minute")
    async def parse_order_text(
        request: Request,
        payload: ParseOrderRequest,
        service: OrderResolutionService = Depends(get_resolution_service),
    ) -> ParseOrderResponse:
        """Split order text into candidate lines without touching the catalog."""
        lines, parser = await run_in_threadpool(service.parse, payload.text)
        return ParseOrderResponse(parser=parser, lines=lines)

    @app.post(
        "/orders/resolve",
        response_model=ResolvedOrder,
        status_code=status.HTTP_200_OK,
        responses={
            400: {"description": "Inconsistent snapshot"},
            429: {"description": "Rate limit exceeded"},
        },
    )
    @limiter.limit("30/minute")
    async def resolve_order(
        request: Request,
        payload: ResolveOrderRequest,
        service: OrderResolutionService = Depends(get_resolution_service),
    ) -> ResolvedOrder:
        """Resolve an order against the catalog and price history in the payload."""
        try:
            return await run_in_threadpool(
                service.resolve,
                payload.text,
                payload.customer_id,
                payload.catalog,
                payload.price_history,
            )
        except SnapshotError as e:
            raise ContractError(
                "INVALID_SNAPSHOT",
                str(e),
                status_code=status.HTTP_400_BAD_REQUEST,
            )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceeded
    ) -> JSONResponse:
        """Rate limit exceeded handler."""
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Please try again later."},
        )

    @app.exception_handler(ContractError)
    async def contract_error_handler(request: Request, exc: ContractError) -> JSONResponse:
        """Map domain contract errors to stable API error payload."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                }
            },
        )

    return app


app = create_app()


def main() -> None:
    """Run API server."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "ordproc.api:app",
        host=config.api_host,
        port=config.api_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
