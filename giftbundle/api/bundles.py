"""
Bundles API — gift bundle generation and permalink lookup.

POST /api/v1/bundles/generate — Run the generation pipeline
GET /api/v1/bundles/search — Semantic search over persisted bundles
GET /api/v1/bundles/{slug} — Fetch a persisted bundle (view counted in the background)
"""

import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, status

from giftbundle.agents.pipeline import GenerationOrchestrator, build_orchestrator
from giftbundle.agents.state import GenerationResult
from giftbundle.core.config import API_V1_PREFIX, get_settings
from giftbundle.core.errors import (
    ConceptGenerationError,
    GenerationTimeoutError,
    InvalidRequestError,
    SelectionError,
)
from giftbundle.db.bundle_store import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    MIN_SEARCH_QUERY_LENGTH,
    BundleStore,
    SupabaseBundleStore,
)
from giftbundle.models.bundles import BundleSearchResult, StoredBundle

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/bundles", tags=["bundles"])


# ===================================================================
# Dependencies
# ===================================================================

@lru_cache(maxsize=1)
def get_orchestrator() -> GenerationOrchestrator:
    return build_orchestrator(get_settings())


def get_bundle_store() -> Optional[BundleStore]:
    settings = get_settings()
    if not settings.is_supabase_configured:
        return None
    return SupabaseBundleStore(settings)


# ===================================================================
# POST /api/v1/bundles/generate — Generate Gift Bundles
# ===================================================================

@router.post(
    "/generate",
    status_code=status.HTTP_200_OK,
    response_model=GenerationResult,
)
async def generate_bundles(
    payload: dict[str, Any] = Body(...),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResult:
    """
    Generate themed gift bundles for a recipient description.

    Returns:
        200: Gift ideas with permalink, or preview-mode concepts.
        400: The request failed validation.
        422: The body is not a JSON object.
        502: Concept generation or product selection failed upstream.
        504: Generation exceeded its deadline.
    """
    try:
        return await orchestrator.generate(payload)
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except (ConceptGenerationError, SelectionError) as exc:
        logger.error("Generation failed at stage %s: %s", exc.stage, exc.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    except GenerationTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=exc.message)


# ===================================================================
# GET /api/v1/bundles/search — Search Stored Bundles
# ===================================================================

@router.get(
    "/search",
    status_code=status.HTTP_200_OK,
    response_model=list[BundleSearchResult],
)
async def search_bundles(
    q: str = Query(default="", max_length=500),
    limit: int = Query(default=DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_SEARCH_LIMIT),
    store: Optional[BundleStore] = Depends(get_bundle_store),
) -> list[BundleSearchResult]:
    """
    Returns:
        200: Bundles most similar to the query, best match first.
             Empty for queries shorter than two characters.
        422: limit outside 1..50.
        503: No datastore is configured, or the search failed.
    """
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bundle storage is not configured.",
        )

    query = q.strip()
    if len(query) < MIN_SEARCH_QUERY_LENGTH:
        return []

    try:
        return await store.search(query, limit)
    except Exception as exc:
        logger.error("Bundle search failed for '%s': %s", query, exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to search bundles right now. Please try again.",
        )


# ===================================================================
# GET /api/v1/bundles/{slug} — Fetch Stored Bundle
# ===================================================================

@router.get(
    "/{slug}",
    status_code=status.HTTP_200_OK,
    response_model=StoredBundle,
)
async def get_bundle(
    slug: str,
    background_tasks: BackgroundTasks,
    store: Optional[BundleStore] = Depends(get_bundle_store),
) -> StoredBundle:
    """
    Returns:
        200: The bundle with its ideas and products in display order.
        404: No live bundle has this slug.
        503: No datastore is configured.
    """
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bundle storage is not configured.",
        )

    try:
        bundle = await store.fetch(slug)
    except Exception as exc:
        logger.error("Failed to load bundle '%s': %s", slug, exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to load this bundle right now. Please try again.",
        )

    if bundle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Bundle not found.",
        )

    # Counting the view must not delay the response
    background_tasks.add_task(store.record_view, slug)
    return bundle
