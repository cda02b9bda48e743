"""
Product Search Coordination — fans concept queries out to a ProductSource.

Two interchangeable strategies share one contract and are chosen once from
configuration, based on which provider is active:

- ParallelStrategy: every query of every concept in flight at once, bounded
  by a concurrency ceiling. Used for the web-search provider.
- SequentialStrategy: exactly one outbound call at a time with a fixed delay
  between calls. Used for the rate-limited PA-API provider. Lite mode searches
  the first two queries of each concept, full mode searches all of them.

Each branch returns its own list; results are re-associated by concept index
and deduplicated by product identity, keeping the first occurrence.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from giftbundle.agents.state import Concept, Product
from giftbundle.core.config import Settings
from giftbundle.services.integrations.base import ProductSource

logger = logging.getLogger(__name__)

# --- Constants ---
LITE_QUERY_COUNT = 2
DEFAULT_INTER_QUERY_DELAY = 1.5  # seconds


# ======================================================================
# Deduplication
# ======================================================================

def deduplicate_products(products: list[Product]) -> list[Product]:
    """Drop later products whose identity was already seen. Order preserved."""
    seen: set[str] = set()
    unique: list[Product] = []
    for product in products:
        if product.id in seen:
            continue
        seen.add(product.id)
        unique.append(product)
    return unique


def deduplicate_across_ideas(selections: list[list[Product]]) -> list[list[Product]]:
    """
    Remove products already chosen by an earlier concept.

    Two concepts may independently surface the same product; the first
    concept (in concept order) keeps it.
    """
    seen: set[str] = set()
    result: list[list[Product]] = []
    for products in selections:
        kept: list[Product] = []
        for product in deduplicate_products(products):
            if product.id in seen:
                logger.debug("Cross-concept dedup: dropping '%s' (%s)", product.title, product.id)
                continue
            seen.add(product.id)
            kept.append(product)
        result.append(kept)
    return result


async def _safe_search(
    source: ProductSource,
    query: str,
    min_price: float,
    max_price: float,
) -> list[Product]:
    """A source failure contributes nothing for that query instead of failing the run."""
    try:
        return await source.search(query, min_price, max_price)
    except Exception as exc:
        logger.error("Product search failed for '%s': %s", query[:80], exc)
        return []


# ======================================================================
# Strategies
# ======================================================================

class SearchStrategy(Protocol):
    name: str

    async def run(
        self,
        source: ProductSource,
        concept: Concept,
        min_price: float,
        max_price: float,
    ) -> list[Product]: ...

    async def run_all(
        self,
        source: ProductSource,
        concepts: list[Concept],
        min_price: float,
        max_price: float,
    ) -> list[list[Product]]: ...


class ParallelStrategy:
    """All queries concurrently, under one semaphore ceiling per run."""

    name = "parallel"

    def __init__(self, max_concurrency: int = 6) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    async def run(
        self,
        source: ProductSource,
        concept: Concept,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        return await self._run_concept(source, concept, min_price, max_price, semaphore)

    async def run_all(
        self,
        source: ProductSource,
        concepts: list[Concept],
        min_price: float,
        max_price: float,
    ) -> list[list[Product]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        # gather returns results in argument order, not completion order
        return list(await asyncio.gather(*(
            self._run_concept(source, concept, min_price, max_price, semaphore)
            for concept in concepts
        )))

    async def _run_concept(
        self,
        source: ProductSource,
        concept: Concept,
        min_price: float,
        max_price: float,
        semaphore: asyncio.Semaphore,
    ) -> list[Product]:
        queries = concept.search_queries
        if not queries:
            return []

        query_min = min_price / len(queries)
        query_max = max_price / len(queries)

        async def _bounded(query: str) -> list[Product]:
            async with semaphore:
                return await _safe_search(source, query, query_min, query_max)

        logger.info("Searching %d queries for '%s' (parallel)", len(queries), concept.title)
        per_query = await asyncio.gather(*(_bounded(q) for q in queries))

        products = deduplicate_products([p for batch in per_query for p in batch])
        logger.info("Found %d unique products for '%s'", len(products), concept.title)
        return products


class SequentialStrategy:
    """One call in flight at a time, with a fixed delay between calls."""

    name = "sequential"

    def __init__(
        self,
        full_search: bool = False,
        delay_seconds: float = DEFAULT_INTER_QUERY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.full_search = full_search
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    def queries_for(self, concept: Concept) -> list[str]:
        if self.full_search:
            return list(concept.search_queries)
        return list(concept.search_queries[:LITE_QUERY_COUNT])

    async def run(
        self,
        source: ProductSource,
        concept: Concept,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        return await self._run_concept(source, concept, min_price, max_price, first_call=True)

    async def run_all(
        self,
        source: ProductSource,
        concepts: list[Concept],
        min_price: float,
        max_price: float,
    ) -> list[list[Product]]:
        results: list[list[Product]] = []
        for index, concept in enumerate(concepts):
            results.append(
                await self._run_concept(
                    source, concept, min_price, max_price, first_call=(index == 0),
                )
            )
        return results

    async def _run_concept(
        self,
        source: ProductSource,
        concept: Concept,
        min_price: float,
        max_price: float,
        first_call: bool,
    ) -> list[Product]:
        queries = self.queries_for(concept)
        if not queries:
            return []

        logger.info(
            "Searching %d/%d queries for '%s' (sequential, %s)",
            len(queries), len(concept.search_queries), concept.title,
            "full" if self.full_search else "lite",
        )

        query_min = min_price / len(queries)
        query_max = max_price / len(queries)

        collected: list[Product] = []
        for index, query in enumerate(queries):
            # Spacing also applies across concept boundaries
            if index > 0 or not first_call:
                await self._sleep(self.delay_seconds)
            collected.extend(await _safe_search(source, query, query_min, query_max))

        products = deduplicate_products(collected)
        logger.info("Found %d unique products for '%s'", len(products), concept.title)
        return products


# ======================================================================
# Coordinator
# ======================================================================

class SearchCoordinator:
    """Runs concept searches against one ProductSource with one strategy."""

    def __init__(self, source: ProductSource, strategy: SearchStrategy) -> None:
        self.source = source
        self.strategy = strategy

    @property
    def mode(self) -> str:
        return self.strategy.name

    async def run(self, concept: Concept, min_price: float, max_price: float) -> list[Product]:
        """Deduplicated candidates for a single concept."""
        return await self.strategy.run(self.source, concept, min_price, max_price)

    async def run_all(
        self,
        concepts: list[Concept],
        min_price: float,
        max_price: float,
    ) -> list[list[Product]]:
        """One deduplicated candidate list per concept, in concept order."""
        start = time.monotonic()
        results = await self.strategy.run_all(self.source, concepts, min_price, max_price)
        logger.info(
            "Product search (%s) finished in %.1fs: %s",
            self.mode, time.monotonic() - start, [len(r) for r in results],
        )
        return results


def build_search_coordinator(
    settings: Settings,
    source: ProductSource,
    strategy: Optional[SearchStrategy] = None,
) -> SearchCoordinator:
    """
    Pick the strategy once from configuration: the web-search provider has
    no meaningful rate limit and runs in parallel, PA-API runs sequentially.
    """
    if strategy is None:
        if settings.product_provider == "web_search":
            strategy = ParallelStrategy(max_concurrency=settings.max_concurrent_searches)
        else:
            strategy = SequentialStrategy(
                full_search=settings.enable_full_search,
                delay_seconds=settings.inter_query_delay_seconds,
            )
    if isinstance(strategy, SequentialStrategy):
        logger.info(
            "Search mode: %s | %s | %s",
            settings.product_provider.upper(),
            strategy.name,
            "FULL" if strategy.full_search else "LITE",
        )
    else:
        logger.info("Search mode: %s | %s", settings.product_provider.upper(), strategy.name)
    return SearchCoordinator(source, strategy)
