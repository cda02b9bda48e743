"""
Gift Concept Generation Service — Claude-powered themed gift concepts.

Makes a single Claude call that returns GIFT_CONCEPTS_COUNT concepts, each
with a punny title, a tagline, a short pitch and QUERIES_PER_CONCEPT product
search queries. The humor style of the request selects a style guide that
goes into the system prompt.

Invalid JSON is retried up to MAX_RETRIES times; rate limits are retried
with exponential backoff through RetryingCaller. If nothing usable comes
back the request fails with ConceptGenerationError: there is no bundle
without concepts.
"""

import json
import logging
import time
from typing import Any, Optional, Protocol

from anthropic import AsyncAnthropic

from giftbundle.agents.state import Concept, GenerationRequest
from giftbundle.core.config import Settings
from giftbundle.core.errors import ConceptGenerationError
from giftbundle.core.retry import RetryingCaller

logger = logging.getLogger(__name__)

# ======================================================================
# Constants
# ======================================================================

CLAUDE_MODEL = "claude-sonnet-4-20250514"
CLAUDE_MAX_TOKENS = 2048
MAX_RETRIES = 2
MAX_TITLE_LENGTH = 100
MAX_TAGLINE_LENGTH = 200
MAX_CONCEPT_DESCRIPTION_LENGTH = 1000

HUMOR_STYLE_GUIDES: dict[str, str] = {
    "dad-joke": (
        "Use wholesome puns, groan-worthy wordplay, and family-friendly humor. "
        "Think classic dad jokes and corny one-liners."
    ),
    "office-safe": (
        "Keep it professional yet funny. Suitable for workplace gifts with clever "
        "wit but nothing offensive or inappropriate."
    ),
    "edgy": (
        "Push boundaries with sarcastic, irreverent humor. Clever and bold, "
        "but not mean-spirited."
    ),
    "pg": (
        "Fun and lighthearted humor suitable for all ages. Playful and silly "
        "without any adult themes."
    ),
}


class ConceptService(Protocol):
    async def generate_concepts(self, request: GenerationRequest) -> list[Concept]: ...


# ======================================================================
# Prompts
# ======================================================================

def build_system_prompt(humor_style: str, concepts_count: int, queries_per_concept: int) -> str:
    style_guide = HUMOR_STYLE_GUIDES.get(humor_style, HUMOR_STYLE_GUIDES["dad-joke"])
    return f"""\
You are a world-class comedy writer and gift expert who creates hilarious, \
thoughtful gift ideas.

HUMOR STYLE: {style_guide}

Generate {concepts_count} creative gift "concepts". Each concept is a themed \
bundle of products with a punny title.

Requirements:
1. A punny, memorable title that makes people laugh.
2. A witty one-line tagline (max 20 words).
3. A description of why this bundle fits the recipient (2-3 sentences).
4. Exactly {queries_per_concept} specific product search queries for finding \
real items on Amazon, most important first.

Search queries must be specific enough to find real products \
(e.g. "funny cat coffee mug ceramic", not "cat thing"). Mix practical items \
with novelty items, keep the products thematically related, and keep the \
bundle within the requested price range.

Return ONLY a JSON object of this exact shape. No markdown, no code fences:
{{"gift_concepts": [{{"title": "...", "tagline": "...", "description": "...", \
"search_queries": ["...", "..."]}}]}}"""


def build_user_prompt(request: GenerationRequest, concepts_count: int) -> str:
    parts = [
        "Create funny gift concepts for this person:",
        "",
        f"RECIPIENT: {request.recipient_description}",
    ]
    if request.occasion:
        parts.append(f"OCCASION: {request.occasion}")
    parts.append(f"HUMOR STYLE: {request.humor_style}")
    parts.append(f"BUDGET: ${request.min_price:.0f} - ${request.max_price:.0f}")
    parts.append("")
    parts.append(
        f"Generate {concepts_count} creative gift bundles. "
        "Make them genuinely funny and shareable!"
    )
    return "\n".join(parts)


# ======================================================================
# Response parsing
# ======================================================================

def strip_code_fences(text: str) -> str:
    """Remove markdown code fences Claude sometimes wraps JSON in."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3].strip()
    if text.startswith("json"):
        text = text[4:].strip()
    return text


def _normalize_concept(raw: Any, queries_per_concept: int) -> Optional[Concept]:
    if not isinstance(raw, dict):
        return None

    title = str(raw.get("title") or "").strip()
    queries = raw.get("search_queries") or raw.get("productSearchQueries") or []
    if not title or not isinstance(queries, list):
        return None

    clean_queries = [str(q).strip() for q in queries if str(q).strip()]
    if not clean_queries:
        return None

    return Concept(
        title=title[:MAX_TITLE_LENGTH],
        tagline=str(raw.get("tagline") or "").strip()[:MAX_TAGLINE_LENGTH],
        description=str(raw.get("description") or "").strip()[:MAX_CONCEPT_DESCRIPTION_LENGTH],
        search_queries=clean_queries[:queries_per_concept],
    )


def parse_concepts(text: str, concepts_count: int, queries_per_concept: int) -> list[Concept]:
    """
    Parse Claude's response into Concepts.

    Raises:
        json.JSONDecodeError: when the text is not JSON.
    """
    data = json.loads(strip_code_fences(text))
    if isinstance(data, dict):
        raw_concepts = data.get("gift_concepts") or data.get("giftConcepts") or []
    elif isinstance(data, list):
        raw_concepts = data
    else:
        raw_concepts = []

    concepts: list[Concept] = []
    for raw in raw_concepts:
        concept = _normalize_concept(raw, queries_per_concept)
        if concept is None:
            logger.debug("Skipping invalid concept: %s", raw)
            continue
        concepts.append(concept)
    return concepts[:concepts_count]


# ======================================================================
# ClaudeConceptService
# ======================================================================

class ClaudeConceptService:
    """Generates gift concepts with one Claude Messages call."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[AsyncAnthropic] = None,
        retrying: Optional[RetryingCaller] = None,
    ) -> None:
        self._api_key = settings.anthropic_api_key
        self._concepts_count = settings.gift_concepts_count
        self._queries_per_concept = settings.queries_per_concept
        self._client = client
        self._retrying = retrying or RetryingCaller(max_attempts=settings.max_retry_attempts)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) or self._client is not None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def generate_concepts(self, request: GenerationRequest) -> list[Concept]:
        """
        Generate gift concepts for a validated request.

        Raises:
            ConceptGenerationError: when Claude is not configured, every
                attempt fails, or no valid concept is returned.
        """
        if not self.is_configured:
            logger.error("Anthropic API key not configured — cannot generate concepts")
            raise ConceptGenerationError("Concept generation is not configured")

        client = self._get_client()
        system_prompt = build_system_prompt(
            request.humor_style, self._concepts_count, self._queries_per_concept,
        )
        user_prompt = build_user_prompt(request, self._concepts_count)

        logger.info(
            "Generating %d concepts (humor: %s, budget: $%.0f-$%.0f)",
            self._concepts_count, request.humor_style, request.min_price, request.max_price,
        )
        start = time.monotonic()

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._retrying.call(
                    client.messages.create,
                    model=CLAUDE_MODEL,
                    max_tokens=CLAUDE_MAX_TOKENS,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                )
                concepts = parse_concepts(
                    response.content[0].text, self._concepts_count, self._queries_per_concept,
                )
            except json.JSONDecodeError as exc:
                logger.error(
                    "Claude returned invalid JSON (attempt %d/%d): %s",
                    attempt + 1, MAX_RETRIES + 1, exc,
                )
                continue
            except Exception as exc:
                logger.error("Concept generation failed: %s", exc)
                raise ConceptGenerationError() from exc

            if concepts:
                logger.info(
                    "Generated %d concepts in %.1fs: %s",
                    len(concepts), time.monotonic() - start, [c.title for c in concepts],
                )
                return concepts

            logger.warning(
                "No valid concepts in Claude response (attempt %d/%d)",
                attempt + 1, MAX_RETRIES + 1,
            )

        logger.error("Concept generation exhausted all retries")
        raise ConceptGenerationError()
