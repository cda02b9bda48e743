"""
Gift Bundle Pipeline — LangGraph graph for one generation request.

Chains the generation stages into an executable graph:
1. validate — Parse and validate the inbound request (no external calls)
2. generate_concepts — One Claude call for themed gift concepts
3. search_products — Per-concept product search (parallel or sequential)
4. select_products — One batched Claude call picks products for every concept
5. enrich_products — Optional PA-API refresh of the selected products
6. persist_bundle — SEO content, atomic save, permalink

Conditional edges:
- If no concept has any product after search → preview (raw concepts, no
  selection call, nothing persisted)
- If selection leaves no gift idea with products → preview
- enrich_products only runs when an enricher is configured

The whole graph runs under one deadline (GENERATION_TIMEOUT_SECONDS).
Exceeding it cancels every in-flight branch and raises GenerationTimeoutError.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError

from giftbundle.agents.bundle_builder import apply_enrichment, build_gift_ideas, flatten_products
from giftbundle.agents.enrichment import Enricher
from giftbundle.agents.search import (
    SearchCoordinator,
    build_search_coordinator,
    deduplicate_across_ideas,
)
from giftbundle.agents.state import (
    ConceptCandidates,
    GenerationRequest,
    GenerationResult,
    GenerationStage,
    GenerationState,
    Product,
)
from giftbundle.core.config import Settings
from giftbundle.core.errors import GenerationTimeoutError, InvalidRequestError
from giftbundle.core.retry import RetryingCaller
from giftbundle.db.bundle_store import BundleStore, SupabaseBundleStore
from giftbundle.services.concepts import ClaudeConceptService, ConceptService
from giftbundle.services.integrations.amazon import AmazonProductSource
from giftbundle.services.integrations.base import ProductSource
from giftbundle.services.integrations.web_search import WebSearchProductSource
from giftbundle.services.selection import ClaudeSelectionService, SelectionService
from giftbundle.services.seo import SeoWriter, TemplateSeoWriter

logger = logging.getLogger(__name__)

# Minimum time left on the deadline for a save to be attempted
PERSIST_MARGIN_SECONDS = 5.0

PREVIEW_MESSAGE = (
    "No products found for these concepts. Showing gift concepts only; "
    "configure a product provider to get full bundles."
)


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


class GenerationOrchestrator:
    """
    Drives one request through the generation graph.

    All collaborators are injected; build_orchestrator() wires the concrete
    ones from Settings.
    """

    def __init__(
        self,
        settings: Settings,
        concept_service: ConceptService,
        coordinator: SearchCoordinator,
        selection_service: SelectionService,
        enricher: Optional[Enricher] = None,
        store: Optional[BundleStore] = None,
        seo_writer: Optional[SeoWriter] = None,
        persist_margin_seconds: float = PERSIST_MARGIN_SECONDS,
    ) -> None:
        self.settings = settings
        self.concept_service = concept_service
        self.coordinator = coordinator
        self.selection_service = selection_service
        self.enricher = enricher
        self.store = store
        self.seo_writer = seo_writer or TemplateSeoWriter()
        self.persist_margin_seconds = persist_margin_seconds
        self.graph = self.build_graph().compile()

    # ==================================================================
    # Nodes
    # ==================================================================

    async def validate(self, state: GenerationState) -> dict[str, Any]:
        try:
            request = GenerationRequest.model_validate(state.payload)
        except ValidationError as exc:
            message = _validation_message(exc)
            logger.warning("Rejected generation request: %s", message)
            raise InvalidRequestError(message) from exc

        logger.info(
            "Validated request (humor: %s, budget: $%.0f-$%.0f, occasion: %s)",
            request.humor_style, request.min_price, request.max_price,
            request.occasion or "-",
        )
        return {"request": request, "stage": GenerationStage.GENERATING_CONCEPTS}

    async def generate_concepts(self, state: GenerationState) -> dict[str, Any]:
        start = time.monotonic()
        concepts = await self.concept_service.generate_concepts(state.request)
        logger.info("Stage generate_concepts: %d concepts in %.1fs", len(concepts), time.monotonic() - start)
        return {"concepts": concepts, "stage": GenerationStage.SEARCHING_PRODUCTS}

    async def search_products(self, state: GenerationState) -> dict[str, Any]:
        start = time.monotonic()
        candidates = await self.coordinator.run_all(
            state.concepts, state.request.min_price, state.request.max_price,
        )
        logger.info(
            "Stage search_products: %d candidates across %d concepts in %.1fs",
            sum(len(c) for c in candidates), len(candidates), time.monotonic() - start,
        )
        return {"candidates": candidates, "stage": GenerationStage.SELECTING}

    async def select_products(self, state: GenerationState) -> dict[str, Any]:
        start = time.monotonic()
        k = self.settings.products_per_bundle

        # Only concepts with candidates go to selection; results map back by index
        with_products = [i for i, products in enumerate(state.candidates) if products]
        picked = await self.selection_service.select_best(
            [
                ConceptCandidates(concept=state.concepts[i], products=state.candidates[i])
                for i in with_products
            ],
            k,
        )

        selections: list[list[Product]] = [[] for _ in state.concepts]
        for i, products in zip(with_products, picked):
            selections[i] = products

        gift_ideas = build_gift_ideas(
            state.concepts,
            deduplicate_across_ideas(selections),
            state.request.humor_style,
            k,
        )
        logger.info(
            "Stage select_products: %d gift ideas in %.1fs",
            len(gift_ideas), time.monotonic() - start,
        )
        return {"gift_ideas": gift_ideas, "stage": GenerationStage.ENRICHING}

    async def enrich_products(self, state: GenerationState) -> dict[str, Any]:
        start = time.monotonic()
        enriched = await self.enricher.enrich(flatten_products(state.gift_ideas))
        gift_ideas = apply_enrichment(state.gift_ideas, enriched)
        logger.info("Stage enrich_products: done in %.1fs", time.monotonic() - start)
        return {"gift_ideas": gift_ideas, "stage": GenerationStage.PERSISTING}

    async def persist_bundle(self, state: GenerationState) -> dict[str, Any]:
        if self.store is None:
            logger.warning("No bundle store configured — returning bundles without a permalink")
            return {"stage": GenerationStage.DONE}

        start = time.monotonic()
        # A save running in a worker thread outlives cancellation
        if state.deadline is not None and state.deadline - start < self.persist_margin_seconds:
            logger.warning(
                "Skipping persistence: %.1fs left before the deadline (need %.1fs)",
                state.deadline - start, self.persist_margin_seconds,
            )
            return {"stage": GenerationStage.DONE}

        try:
            seo = await self.seo_writer.write(state.request, state.gift_ideas)
            slug = await self.store.save(state.request, state.gift_ideas, seo)
        except Exception as exc:
            logger.error("Failed to persist bundle, returning it without a permalink: %s", exc)
            return {"stage": GenerationStage.DONE}

        permalink = f"{self.settings.public_base_url.rstrip('/')}/{slug}"
        logger.info("Stage persist_bundle: saved '%s' in %.1fs", slug, time.monotonic() - start)
        return {"slug": slug, "permalink_url": permalink, "stage": GenerationStage.DONE}

    async def preview(self, state: GenerationState) -> dict[str, Any]:
        logger.warning(
            "Preview mode: no products for any of %d concepts — returning concepts only",
            len(state.concepts),
        )
        return {"needs_configuration": True, "gift_ideas": [], "stage": GenerationStage.DONE}

    # ==================================================================
    # Conditional edge functions
    # ==================================================================

    def _check_after_search(self, state: GenerationState) -> str:
        if not any(state.candidates):
            return "preview"
        return "continue"

    def _check_after_selection(self, state: GenerationState) -> str:
        if not state.gift_ideas:
            return "preview"
        if self.enricher is not None:
            return "enrich"
        return "persist"

    # ==================================================================
    # Graph construction
    # ==================================================================

    def build_graph(self) -> StateGraph:
        """
        Build the uncompiled StateGraph.

        Node names: "validate", "generate_concepts", "search_products",
        "select_products", "enrich_products", "persist_bundle", "preview".
        """
        graph = StateGraph(GenerationState)

        # --- Add nodes ---
        graph.add_node("validate", self.validate)
        graph.add_node("generate_concepts", self.generate_concepts)
        graph.add_node("search_products", self.search_products)
        graph.add_node("select_products", self.select_products)
        graph.add_node("enrich_products", self.enrich_products)
        graph.add_node("persist_bundle", self.persist_bundle)
        graph.add_node("preview", self.preview)

        # --- Define edges ---

        # START → validate → generate_concepts → search_products
        graph.add_edge(START, "validate")
        graph.add_edge("validate", "generate_concepts")
        graph.add_edge("generate_concepts", "search_products")

        # search_products → (conditional) select_products or preview
        graph.add_conditional_edges(
            "search_products",
            self._check_after_search,
            {"continue": "select_products", "preview": "preview"},
        )

        # select_products → (conditional) enrich_products, persist_bundle or preview
        graph.add_conditional_edges(
            "select_products",
            self._check_after_selection,
            {"enrich": "enrich_products", "persist": "persist_bundle", "preview": "preview"},
        )

        graph.add_edge("enrich_products", "persist_bundle")
        graph.add_edge("persist_bundle", END)
        graph.add_edge("preview", END)

        return graph

    # ==================================================================
    # Entry point
    # ==================================================================

    async def generate(self, payload: dict[str, Any]) -> GenerationResult:
        """
        Run one generation request end to end.

        Raises:
            InvalidRequestError, ConceptGenerationError, SelectionError:
                fatal stage failures.
            GenerationTimeoutError: the deadline elapsed.
        """
        timeout = self.settings.generation_timeout_seconds
        start = time.monotonic()
        logger.info(
            "Starting gift generation (provider: %s, search: %s, timeout: %.0fs)",
            self.settings.product_provider, self.coordinator.mode, timeout,
        )

        try:
            result = await asyncio.wait_for(
                self.graph.ainvoke(GenerationState(payload=payload, deadline=start + timeout)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Gift generation timed out after %.0fs", timeout)
            raise GenerationTimeoutError(timeout) from None

        final = GenerationState.model_validate(result)
        logger.info(
            "Gift generation finished in %.1fs: %d ideas%s",
            time.monotonic() - start, len(final.gift_ideas),
            " (preview)" if final.needs_configuration else "",
        )

        if final.needs_configuration:
            return GenerationResult(
                success=False,
                concepts=final.concepts,
                needs_configuration=True,
                message=PREVIEW_MESSAGE,
            )

        return GenerationResult(
            success=True,
            gift_ideas=final.gift_ideas,
            slug=final.slug,
            permalink_url=final.permalink_url,
        )


# ======================================================================
# Wiring
# ======================================================================

def build_product_source(settings: Settings, retrying: RetryingCaller) -> ProductSource:
    if settings.product_provider == "web_search":
        return WebSearchProductSource(settings, retrying=retrying)
    return AmazonProductSource(settings, retrying=retrying)


def build_orchestrator(settings: Settings) -> GenerationOrchestrator:
    """Wire concrete collaborators from configuration."""
    retrying = RetryingCaller(max_attempts=settings.max_retry_attempts)
    source = build_product_source(settings, retrying)

    enricher = None
    if settings.enable_enrichment and settings.is_amazon_configured:
        amazon = source if isinstance(source, AmazonProductSource) else AmazonProductSource(
            settings, retrying=retrying,
        )
        enricher = Enricher(amazon)

    store = SupabaseBundleStore(settings) if settings.is_supabase_configured else None
    if store is None:
        logger.warning("Supabase not configured — bundles will not be persisted")

    return GenerationOrchestrator(
        settings=settings,
        concept_service=ClaudeConceptService(settings, retrying=retrying),
        coordinator=build_search_coordinator(settings, source),
        selection_service=ClaudeSelectionService(settings, retrying=retrying),
        enricher=enricher,
        store=store,
        seo_writer=TemplateSeoWriter(),
    )
