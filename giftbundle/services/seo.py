"""
SEO Content — metadata stored alongside a persisted bundle page.

The SeoWriter interface lets a richer copywriter be plugged in later; the
default TemplateSeoWriter is deterministic and makes no external calls.
"""

from typing import Protocol

from pydantic import BaseModel, Field

from giftbundle.agents.state import GenerationRequest, GiftIdea

MAX_SEO_TITLE_LENGTH = 60
MAX_SEO_DESCRIPTION_LENGTH = 160
MAX_SEO_KEYWORDS_LENGTH = 500


class FaqEntry(BaseModel):
    question: str
    answer: str


class SeoContent(BaseModel):
    title: str = Field(max_length=MAX_SEO_TITLE_LENGTH)
    description: str = Field(max_length=MAX_SEO_DESCRIPTION_LENGTH)
    keywords: str = Field(default="", max_length=MAX_SEO_KEYWORDS_LENGTH)
    content: str = ""
    faq: list[FaqEntry] = Field(default_factory=list)


class SeoWriter(Protocol):
    async def write(self, request: GenerationRequest, gift_ideas: list[GiftIdea]) -> SeoContent: ...


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


class TemplateSeoWriter:
    """Fills fixed templates from the request and the bundle titles."""

    async def write(self, request: GenerationRequest, gift_ideas: list[GiftIdea]) -> SeoContent:
        recipient = request.recipient_description
        occasion_text = f" for {request.occasion}" if request.occasion else ""
        count = len(gift_ideas)

        keywords = ["gifts", *recipient.split()[:3]]
        if request.occasion:
            keywords.append(request.occasion)

        titles = ", ".join(idea.title for idea in gift_ideas)
        content = (
            f"Looking for the perfect gift for {recipient}? We've curated {count} "
            f"gift bundles that combine humor and practicality: {titles}. Each bundle "
            "includes hand-picked products, so you can buy the whole set or just the "
            "pieces you like."
        )

        return SeoContent(
            title=_truncate(f"Gift Ideas for {recipient[:35]}{occasion_text}", MAX_SEO_TITLE_LENGTH),
            description=_truncate(
                f"Discover {count} funny gift bundles perfect for {recipient[:80]}.",
                MAX_SEO_DESCRIPTION_LENGTH,
            ),
            keywords=_truncate(", ".join(keywords), MAX_SEO_KEYWORDS_LENGTH),
            content=content,
            faq=[
                FaqEntry(question="Who is this gift for?", answer=recipient),
                FaqEntry(
                    question="What's included in these bundles?",
                    answer=f"{count} themed gift bundles with curated products",
                ),
                FaqEntry(
                    question="How much do these gifts cost?",
                    answer=f"Products were picked for a ${request.min_price:.0f}-${request.max_price:.0f} budget",
                ),
                FaqEntry(
                    question="Can I buy items separately?",
                    answer="Yes, each product links directly to its store page",
                ),
            ],
        )
