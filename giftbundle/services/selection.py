"""
Product Selection Service — one batched Claude call picks products per concept.

All concepts are sent together in a single Messages request, each with a
pre-filtered, indexed candidate list. Claude returns, per concept index, the
candidate indices to keep. The response is then repaired locally:

- invalid or repeated indices are ignored
- short selections are filled from the remaining candidates in order
- a concept missing from the response falls back to its first k candidates

Concepts that already hold k or fewer candidates still go through the same
call so there is exactly one selection call per request. A failed or
unparseable call fails the request (SelectionError).
"""

import json
import logging
import re
import time
from typing import Any, Optional, Protocol

from anthropic import AsyncAnthropic

from giftbundle.agents.state import ConceptCandidates, Product
from giftbundle.core.config import Settings
from giftbundle.core.errors import SelectionError
from giftbundle.core.retry import RetryingCaller
from giftbundle.services.concepts import strip_code_fences

logger = logging.getLogger(__name__)

CLAUDE_MODEL = "claude-sonnet-4-20250514"
CLAUDE_MAX_TOKENS = 1024
TITLE_DEDUP_PREFIX = 40

SELECTION_SYSTEM_PROMPT = (
    "You are a product curation expert building funny themed gift bundles. "
    "Always respond with valid JSON only. No markdown, no code fences."
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


class SelectionService(Protocol):
    async def select_best(
        self,
        concepts: list[ConceptCandidates],
        k: int,
    ) -> list[list[Product]]: ...


# ======================================================================
# Pre-filtering
# ======================================================================

def _title_key(title: str) -> str:
    return _NON_ALNUM_RE.sub("", title.lower())[:TITLE_DEDUP_PREFIX]


def prefilter_products(products: list[Product], max_count: int) -> list[Product]:
    """
    Drop near-duplicate titles (same first 40 normalised characters), then
    cap at max_count keeping priced products first, highest price first.
    """
    seen: set[str] = set()
    filtered: list[Product] = []
    for product in products:
        key = _title_key(product.title)
        if key in seen:
            continue
        seen.add(key)
        filtered.append(product)

    if len(filtered) > max_count:
        with_price = sorted((p for p in filtered if p.price > 0), key=lambda p: p.price, reverse=True)
        without_price = [p for p in filtered if p.price <= 0]
        filtered = (with_price + without_price)[:max_count]

    return filtered


# ======================================================================
# Prompt and response handling
# ======================================================================

def build_selection_prompt(concepts: list[ConceptCandidates], k: int) -> str:
    sections = []
    for index, item in enumerate(concepts):
        summaries = [
            {"index": i, "title": p.title, "price": p.price, "rating": p.rating}
            for i, p in enumerate(item.products)
        ]
        sections.append(
            f'CONCEPT {index}: "{item.concept.title}"\n'
            f"Description: {item.concept.description}\n"
            f"Available products ({len(item.products)} total):\n"
            f"{json.dumps(summaries, indent=2)}"
        )

    return (
        f"You are selecting products for {len(concepts)} different gift bundles.\n\n"
        + "\n\n---\n\n".join(sections)
        + f"\n\nFor EACH concept, select up to {k} products that are:\n"
        "1. UNIQUE (no duplicates or near-identical items within the concept)\n"
        "2. RELEVANT to that specific gift concept\n"
        "3. DIVERSE (different kinds of items)\n"
        "4. WELL-PRICED (prefer items with a price above $0)\n\n"
        "Return a JSON object of this exact shape:\n"
        '{"selections": [{"concept_index": 0, "indices": [2, 5, 8, 11]}]}'
    )


def parse_selection_response(text: str) -> dict[int, list[Any]]:
    """
    Map concept_index → raw indices.

    Raises:
        ValueError: when the text is not a JSON object with a selections list.
    """
    data = json.loads(strip_code_fences(text))
    if not isinstance(data, dict) or not isinstance(data.get("selections"), list):
        raise ValueError("selection response has no 'selections' list")

    by_concept: dict[int, list[Any]] = {}
    for entry in data["selections"]:
        if not isinstance(entry, dict):
            continue
        concept_index = entry.get("concept_index", entry.get("conceptIndex"))
        indices = entry.get("indices")
        if isinstance(concept_index, int) and isinstance(indices, list):
            by_concept.setdefault(concept_index, indices)
    return by_concept


def resolve_selection(
    products: list[Product],
    indices: Optional[list[Any]],
    k: int,
) -> list[Product]:
    """Turn raw indices into at most k distinct products, filling short picks."""
    if indices is None:
        return products[:k]

    chosen: list[int] = []
    for raw in indices:
        if isinstance(raw, bool) or not isinstance(raw, int):
            continue
        if 0 <= raw < len(products) and raw not in chosen:
            chosen.append(raw)
        if len(chosen) == k:
            break

    for i in range(len(products)):
        if len(chosen) >= k:
            break
        if i not in chosen:
            chosen.append(i)

    return [products[i] for i in chosen]


# ======================================================================
# ClaudeSelectionService
# ======================================================================

class ClaudeSelectionService:
    """Batched product selection, one Claude call per request."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[AsyncAnthropic] = None,
        retrying: Optional[RetryingCaller] = None,
    ) -> None:
        self._api_key = settings.anthropic_api_key
        self._max_candidates = settings.max_products_before_selection
        self._client = client
        self._retrying = retrying or RetryingCaller(max_attempts=settings.max_retry_attempts)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) or self._client is not None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def select_best(
        self,
        concepts: list[ConceptCandidates],
        k: int,
    ) -> list[list[Product]]:
        """
        Select up to k products per concept with a single Claude call.

        Returns one list per input concept, in input order.

        Raises:
            SelectionError: when Claude is not configured, the call fails or
                its output cannot be parsed.
        """
        if not concepts:
            return []

        if not self.is_configured:
            logger.error("Anthropic API key not configured — cannot select products")
            raise SelectionError("Product selection is not configured")

        prefiltered = [
            ConceptCandidates(
                concept=item.concept,
                products=prefilter_products(item.products, self._max_candidates),
            )
            for item in concepts
        ]
        for index, (item, filtered) in enumerate(zip(concepts, prefiltered)):
            logger.info(
                "Concept %d '%s': %d → %d products after pre-filter",
                index, item.concept.title, len(item.products), len(filtered.products),
            )

        client = self._get_client()
        start = time.monotonic()
        try:
            response = await self._retrying.call(
                client.messages.create,
                model=CLAUDE_MODEL,
                max_tokens=CLAUDE_MAX_TOKENS,
                system=SELECTION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_selection_prompt(prefiltered, k)}],
            )
            by_concept = parse_selection_response(response.content[0].text)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError
            logger.error("Selection response could not be parsed: %s", exc)
            raise SelectionError() from exc
        except Exception as exc:
            logger.error("Batched product selection failed: %s", exc)
            raise SelectionError() from exc

        results: list[list[Product]] = []
        for index, item in enumerate(prefiltered):
            indices = by_concept.get(index)
            if indices is None:
                logger.warning(
                    "No selection returned for concept %d '%s', using first %d candidates",
                    index, item.concept.title, k,
                )
            results.append(resolve_selection(item.products, indices, k))

        logger.info(
            "Selected products in %.1fs: %s",
            time.monotonic() - start, [len(r) for r in results],
        )
        return results
