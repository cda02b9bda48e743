"""
Bundle Store — persistence of generated gift bundles in Supabase.

A bundle is written in one transaction by the `save_gift_bundle` Postgres
function: the bundle row, its gift ideas, the upserted products (deduplicated
by product id across bundles) and the idea → product junction rows with their
display positions. A partially written bundle is never visible.

The supabase-py client is synchronous, so every call runs in a worker thread
via asyncio.to_thread() to keep the event loop free.
"""

import asyncio
import logging
import random
import re
from typing import Any, Optional, Protocol

from supabase import Client

from giftbundle.agents.state import GenerationRequest, GiftIdea
from giftbundle.core.config import Settings
from giftbundle.db.supabase_client import get_service_client
from giftbundle.models.bundles import BundleSearchResult, StoredBundle
from giftbundle.services.embedding import format_embedding_for_pgvector, generate_embedding
from giftbundle.services.seo import SeoContent

logger = logging.getLogger(__name__)

# --- Constants ---
SLUG_MAX_LENGTH = 60
SLUG_SUFFIX_LENGTH = 4
SLUG_SUFFIX_ALPHABET = "abcdefghijkmnpqrstuvwxyz23456789"  # no l, o, 0, 1

MIN_SEARCH_QUERY_LENGTH = 2
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50
SEARCH_SIMILARITY_THRESHOLD = 0.0

BUDGET_CEILING = 50
MID_CEILING = 150

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "should", "could", "may", "might",
    "who", "what", "when", "where", "why", "how", "this", "that", "these",
    "those", "i", "you", "he", "she", "it", "we", "they", "my", "your",
})

BUNDLE_SELECT = (
    "slug, recipient_description, occasion, humor_style, min_price, max_price, "
    "price_range, seo_title, seo_description, seo_keywords, seo_content, "
    "seo_faq_json, view_count, created_at, "
    "gift_ideas(title, tagline, description, position, "
    "gift_idea_products(position, products(*)))"
)


class BundleStore(Protocol):
    async def save(
        self,
        request: GenerationRequest,
        gift_ideas: list[GiftIdea],
        seo: SeoContent,
    ) -> str: ...

    async def fetch(self, slug: str) -> Optional[StoredBundle]: ...

    async def record_view(self, slug: str) -> None: ...

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[BundleSearchResult]: ...


# ======================================================================
# Helpers
# ======================================================================

def generate_slug(title: str, rng: Optional[random.Random] = None) -> str:
    """
    URL slug from a title: lower-case [a-z0-9-], at most 60 characters,
    followed by a 4-character random suffix, e.g. "gifts-for-dad-a3k9".
    """
    base = re.sub(r"[^a-z0-9\s-]", "", title.lower()).strip()
    base = re.sub(r"\s+", "-", base)
    base = re.sub(r"-+", "-", base)[:SLUG_MAX_LENGTH].strip("-")

    chooser = rng or random
    suffix = "".join(chooser.choice(SLUG_SUFFIX_ALPHABET) for _ in range(SLUG_SUFFIX_LENGTH))
    return f"{base}-{suffix}" if base else f"bundle-{suffix}"


def calculate_price_range(min_price: float, max_price: float) -> str:
    average = (min_price + max_price) / 2
    if average < BUDGET_CEILING:
        return "budget"
    if average < MID_CEILING:
        return "mid"
    return "premium"


def extract_keywords(text: str) -> str:
    """Space-separated distinct words longer than two letters, minus stop words."""
    words = re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()
    kept = [w for w in words if len(w) > 2 and w not in STOP_WORDS]
    return " ".join(dict.fromkeys(kept))


def build_embedding_text(request: GenerationRequest, gift_ideas: list[GiftIdea]) -> str:
    titles = ", ".join(idea.title for idea in gift_ideas)
    return f"{request.recipient_description}. {request.occasion or ''}. Gift ideas: {titles}"


def build_save_payload(
    slug: str,
    request: GenerationRequest,
    gift_ideas: list[GiftIdea],
    seo: SeoContent,
    embedding: Optional[list[float]],
) -> dict[str, Any]:
    """Arguments for the save_gift_bundle RPC."""
    return {
        "p_bundle": {
            "slug": slug,
            "recipient_description": request.recipient_description,
            "occasion": request.occasion,
            "humor_style": request.humor_style,
            "min_price": request.min_price,
            "max_price": request.max_price,
            "price_range": calculate_price_range(request.min_price, request.max_price),
            "seo_title": seo.title,
            "seo_description": seo.description,
            "seo_keywords": seo.keywords,
            "seo_content": seo.content,
            "seo_faq_json": [entry.model_dump() for entry in seo.faq],
            "recipient_keywords": extract_keywords(request.recipient_description),
            "embedding": format_embedding_for_pgvector(embedding) if embedding else None,
        },
        "p_gift_ideas": [
            {
                "title": idea.title,
                "tagline": idea.tagline or None,
                "description": idea.description or None,
                "position": position,
                "products": [
                    {**product.model_dump(), "position": product_position}
                    for product_position, product in enumerate(idea.products)
                ],
            }
            for position, idea in enumerate(gift_ideas)
        ],
    }


# ======================================================================
# SupabaseBundleStore
# ======================================================================

class SupabaseBundleStore:
    """BundleStore backed by Supabase/PostgREST."""

    def __init__(self, settings: Settings, client: Optional[Client] = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = get_service_client(self._settings)
        return self._client

    async def save(
        self,
        request: GenerationRequest,
        gift_ideas: list[GiftIdea],
        seo: SeoContent,
    ) -> str:
        """
        Persist a bundle atomically and return its slug.

        Raises:
            Any client or database error. The caller decides how to degrade.
        """
        slug = generate_slug(seo.title)
        embedding = await generate_embedding(
            build_embedding_text(request, gift_ideas),
            self._settings.google_cloud_project,
        )
        payload = build_save_payload(slug, request, gift_ideas, seo, embedding)

        client = self._get_client()
        await asyncio.to_thread(
            lambda: client.rpc("save_gift_bundle", payload).execute()
        )
        logger.info(
            "Saved bundle '%s' (%d ideas, embedding: %s)",
            slug, len(gift_ideas), "yes" if embedding else "no",
        )
        return slug

    async def fetch(self, slug: str) -> Optional[StoredBundle]:
        client = self._get_client()
        response = await asyncio.to_thread(
            lambda: (
                client.table("gift_bundles")
                .select(BUNDLE_SELECT)
                .eq("slug", slug)
                .is_("deleted_at", "null")
                .limit(1)
                .execute()
            )
        )
        if not response.data:
            return None
        return StoredBundle.from_row(response.data[0])

    async def record_view(self, slug: str) -> None:
        """Increment the bundle's view counter. Failures are logged, never raised."""
        try:
            client = self._get_client()
            await asyncio.to_thread(
                lambda: client.rpc("increment_bundle_view_count", {"p_slug": slug}).execute()
            )
        except Exception as exc:
            logger.warning("Failed to record view for '%s': %s", slug, exc)

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[BundleSearchResult]:
        """
        Semantic search over live bundles via the match_gift_bundles RPC.

        Returns an empty list for queries shorter than two characters and
        when the query cannot be embedded. Database errors propagate.
        """
        query = query.strip()
        if len(query) < MIN_SEARCH_QUERY_LENGTH:
            return []

        embedding = await generate_embedding(query, self._settings.google_cloud_project)
        if embedding is None:
            logger.warning("Query embedding unavailable, skipping bundle search")
            return []

        params = {
            "query_embedding": format_embedding_for_pgvector(embedding),
            "match_count": max(1, min(limit, MAX_SEARCH_LIMIT)),
            "match_threshold": SEARCH_SIMILARITY_THRESHOLD,
        }
        client = self._get_client()
        response = await asyncio.to_thread(
            lambda: client.rpc("match_gift_bundles", params).execute()
        )

        base_url = self._settings.public_base_url
        results = [BundleSearchResult.from_row(row, base_url) for row in response.data or []]
        logger.info("Bundle search '%s' matched %d bundles", query, len(results))
        return results
