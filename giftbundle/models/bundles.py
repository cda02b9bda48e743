"""
Bundle Models — Pydantic schemas for the bundle API.

- POST /api/v1/bundles/generate — GenerationRequest in, GenerationResult out
- GET /api/v1/bundles/search — list[BundleSearchResult]
- GET /api/v1/bundles/{slug} — StoredBundle
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from giftbundle.agents.state import GiftIdea, Product
from giftbundle.services.seo import FaqEntry


class StoredBundle(BaseModel):
    """A persisted bundle page with its ideas and products in display order."""

    slug: str
    recipient_description: str
    occasion: Optional[str] = None
    humor_style: str
    min_price: float
    max_price: float
    price_range: str
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None
    seo_content: Optional[str] = None
    seo_faq: list[FaqEntry] = Field(default_factory=list)
    view_count: int = 0
    created_at: Optional[str] = None  # ISO 8601 timestamp string
    gift_ideas: list[GiftIdea] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StoredBundle":
        """
        Build from a gift_bundles row with nested gift_ideas →
        gift_idea_products → products, as returned by PostgREST.
        """
        ideas = sorted(row.get("gift_ideas") or [], key=lambda i: i.get("position", 0))
        gift_ideas: list[GiftIdea] = []
        for position, idea in enumerate(ideas, start=1):
            links = sorted(
                idea.get("gift_idea_products") or [],
                key=lambda link: link.get("position", 0),
            )
            products = [
                _product_from_row(link["products"])
                for link in links
                if link.get("products")
            ]
            gift_ideas.append(GiftIdea(
                id=f"gift-{position}",
                title=idea["title"],
                tagline=idea.get("tagline") or "",
                description=idea.get("description") or "",
                humor_style=row["humor_style"],
                products=products,
            ))

        return cls(
            slug=row["slug"],
            recipient_description=row["recipient_description"],
            occasion=row.get("occasion"),
            humor_style=row["humor_style"],
            min_price=float(row["min_price"]),
            max_price=float(row["max_price"]),
            price_range=row["price_range"],
            seo_title=row.get("seo_title"),
            seo_description=row.get("seo_description"),
            seo_keywords=row.get("seo_keywords"),
            seo_content=row.get("seo_content"),
            seo_faq=row.get("seo_faq_json") or [],
            view_count=row.get("view_count") or 0,
            created_at=row.get("created_at"),
            gift_ideas=gift_ideas,
        )


def _product_from_row(row: dict[str, Any]) -> Product:
    # numeric columns come back from PostgREST as strings or numbers
    rating = row.get("rating")
    return Product(
        id=row["id"],
        title=row["title"],
        price=float(row.get("price") or 0),
        currency=row.get("currency") or "USD",
        image_url=row.get("image_url") or "",
        affiliate_url=row["affiliate_url"],
        source=row.get("source") or "amazon",
        rating=float(rating) if rating is not None else None,
        review_count=row.get("review_count"),
    )


class BundleSearchResult(BaseModel):
    """One semantic search hit, as returned by the match_gift_bundles RPC."""

    slug: str
    title: str
    description: str
    occasion: Optional[str] = None
    similarity: float
    url: str
    product_images: list[str] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any], base_url: str) -> "BundleSearchResult":
        return cls(
            slug=row["slug"],
            title=row.get("seo_title") or row["recipient_description"],
            description=row["recipient_description"],
            occasion=row.get("occasion"),
            similarity=float(row.get("similarity") or 0.0),
            url=f"{base_url.rstrip('/')}/{row['slug']}",
            product_images=[image for image in row.get("product_images") or [] if image],
        )
