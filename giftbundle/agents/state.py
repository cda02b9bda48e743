"""
Generation State Schema — Pydantic models for the gift bundle pipeline.

Defines the value objects that flow through the LangGraph generation graph:
1. validate — GenerationRequest parsed from the inbound payload
2. generate_concepts — Concepts from the concept service
3. search_products — one deduplicated candidate list per concept
4. select_products — one batched selection call, GiftIdeas built
5. enrich_products — optional price/rating/image refresh
6. persist_bundle — slug + permalink when a datastore is configured
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

HumorStyle = Literal["dad-joke", "office-safe", "edgy", "pg"]

MIN_DESCRIPTION_LENGTH = 5
MAX_DESCRIPTION_LENGTH = 2000
MAX_PRICE = 10000


# ======================================================================
# Request
# ======================================================================

class GenerationRequest(BaseModel):
    """
    A validated gift request. Immutable once accepted.

    Prices are in dollars; min_price must not exceed max_price.
    """

    model_config = ConfigDict(frozen=True)

    recipient_description: str = Field(
        min_length=MIN_DESCRIPTION_LENGTH,
        max_length=MAX_DESCRIPTION_LENGTH,
    )
    occasion: Optional[str] = Field(default=None, max_length=500)
    humor_style: HumorStyle = "dad-joke"
    min_price: float = Field(default=20, ge=0, le=MAX_PRICE)
    max_price: float = Field(default=100, ge=0, le=MAX_PRICE)

    @field_validator("recipient_description", mode="before")
    @classmethod
    def strip_description(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("occasion", mode="before")
    @classmethod
    def blank_occasion_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_price_band(self) -> "GenerationRequest":
        if self.min_price > self.max_price:
            raise ValueError("min_price must be less than or equal to max_price")
        return self


# ======================================================================
# Concepts and products
# ======================================================================

class Concept(BaseModel):
    """An AI-generated gift theme with its ordered product search queries."""

    model_config = ConfigDict(frozen=True)

    title: str
    tagline: str = ""
    description: str = ""
    search_queries: list[str] = Field(default_factory=list)


class Product(BaseModel):
    """
    A purchasable product from a provider.

    `id` is the provider-scoped identity (ASIN for Amazon) and is the
    deduplication key.
    """

    id: str
    title: str
    price: float = 0.0
    currency: str = "USD"
    image_url: str = ""
    affiliate_url: str
    source: str = "amazon"
    rating: Optional[float] = None
    review_count: Optional[int] = None


class ConceptCandidates(BaseModel):
    """A concept paired with its deduplicated search results, for selection."""

    concept: Concept
    products: list[Product] = Field(default_factory=list)


class GiftIdea(BaseModel):
    """A concept with its finalized product list. The unit persisted and shown."""

    id: str
    title: str
    tagline: str = ""
    description: str = ""
    humor_style: HumorStyle = "dad-joke"
    products: list[Product] = Field(default_factory=list)


# ======================================================================
# Result
# ======================================================================

class GenerationResult(BaseModel):
    """
    Outcome of one generation call.

    In preview mode (no products for any concept) `gift_ideas` is empty,
    `needs_configuration` is True and the raw `concepts` are returned instead.
    """

    success: bool
    gift_ideas: list[GiftIdea] = Field(default_factory=list)
    slug: Optional[str] = None
    permalink_url: Optional[str] = None
    concepts: list[Concept] = Field(default_factory=list)
    needs_configuration: bool = False
    message: Optional[str] = None


# ======================================================================
# Main LangGraph State
# ======================================================================

class GenerationStage(str, Enum):
    VALIDATING = "validating"
    GENERATING_CONCEPTS = "generating_concepts"
    SEARCHING_PRODUCTS = "searching_products"
    SELECTING = "selecting"
    ENRICHING = "enriching"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class GenerationState(BaseModel):
    """
    Complete state for the LangGraph generation pipeline.

    `candidates[i]` and the GiftIdeas are always aligned with concept order,
    never with the order in which concurrent branches finished.
    """

    # --- Input (set before graph execution) ---
    payload: dict[str, Any] = Field(default_factory=dict)
    deadline: Optional[float] = None  # time.monotonic() value

    # --- Populated by graph nodes ---
    stage: GenerationStage = GenerationStage.VALIDATING
    request: Optional[GenerationRequest] = None
    concepts: list[Concept] = Field(default_factory=list)
    candidates: list[list[Product]] = Field(default_factory=list)
    gift_ideas: list[GiftIdea] = Field(default_factory=list)

    # --- Persistence outcome ---
    slug: Optional[str] = None
    permalink_url: Optional[str] = None

    # --- Preview mode ---
    needs_configuration: bool = False
