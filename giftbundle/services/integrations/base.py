"""
Product Source contract and shared ranking heuristics.

Both marketplace integrations (signed PA-API and web search) implement the
same `search` signature and rank their combined results with the same static
relevance heuristic before returning.
"""

from typing import Protocol, runtime_checkable

from giftbundle.agents.state import Product

# Titles containing these words are more likely to fit a funny gift bundle
HUMOR_KEYWORDS: tuple[str, ...] = (
    "funny", "hilarious", "humor", "joke", "gag",
    "quirky", "unique", "novelty", "silly", "weird",
)


@runtime_checkable
class ProductSource(Protocol):
    """A marketplace that can be searched by keywords within a price band."""

    @property
    def is_configured(self) -> bool: ...

    async def search(
        self,
        keywords: str,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        """
        Return products for the keywords, or [] when the provider is
        unconfigured or unavailable. Never raises for provider failures.
        """
        ...


def has_image(product: Product) -> bool:
    return bool(product.image_url and product.image_url.strip())


def relevance_score(product: Product) -> int:
    """
    Static relevance score:
    +3 per humor keyword in the title, +2 for rating >= 4, +1 for >100 reviews.
    """
    score = 0
    title = product.title.lower()
    for keyword in HUMOR_KEYWORDS:
        if keyword in title:
            score += 3
    if product.rating is not None and product.rating >= 4:
        score += 2
    if product.review_count is not None and product.review_count > 100:
        score += 1
    return score


def score_and_sort_products(products: list[Product]) -> list[Product]:
    """Sort by relevance_score descending; ties keep provider order."""
    return sorted(products, key=relevance_score, reverse=True)
