"""Shared FastAPI app resource container and provider dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import cast

from fastapi import Depends, HTTPException, Request, status

from ordproc.config import OrderConfig
from ordproc.embeddings import InMemoryEmbeddingCache
from ordproc.services.resolve_service import OrderResolutionService


@dataclass
class AppResources:
    """App-scoped resources initialized during FastAPI lifespan."""

    config: OrderConfig
    embedding_cache: InMemoryEmbeddingCache
    resolution_service: OrderResolutionService


def get_app_resources(request: Request) -> AppResources:
    """Return initialized app resources from state."""
    resources = getattr(request.app.state, "ordproc_resources", None)
    if resources is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Application resources are not initialized",
        )
    return cast(AppResources, resources)


def get_resolution_service(
    resources: AppResources = Depends(get_app_resources),
) -> OrderResolutionService:
    """Get the app-scoped resolution service."""
    return resources.resolution_service
