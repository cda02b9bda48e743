"""
Bundle Builder — pairs concepts with their selected products as GiftIdeas.
"""

import logging

from giftbundle.agents.state import Concept, GiftIdea, HumorStyle, Product

logger = logging.getLogger(__name__)


def build_gift_ideas(
    concepts: list[Concept],
    selections: list[list[Product]],
    humor_style: HumorStyle,
    products_per_bundle: int,
) -> list[GiftIdea]:
    """
    Zip concepts with their selections by index.

    Each product list is capped at products_per_bundle. Concepts that end up
    with no products are dropped. Ids are assigned as gift-1, gift-2, ... in
    concept order, counting only the ideas that are kept.
    """
    gift_ideas: list[GiftIdea] = []
    for index, concept in enumerate(concepts):
        products = selections[index] if index < len(selections) else []
        products = products[:products_per_bundle]
        if not products:
            logger.warning("Dropping concept '%s': no products selected", concept.title)
            continue
        gift_ideas.append(GiftIdea(
            id=f"gift-{len(gift_ideas) + 1}",
            title=concept.title,
            tagline=concept.tagline,
            description=concept.description,
            humor_style=humor_style,
            products=list(products),
        ))
    return gift_ideas


def flatten_products(gift_ideas: list[GiftIdea]) -> list[Product]:
    return [product for idea in gift_ideas for product in idea.products]


def apply_enrichment(gift_ideas: list[GiftIdea], enriched: list[Product]) -> list[GiftIdea]:
    """Re-associate enriched products with their ideas by product identity."""
    by_id = {product.id: product for product in enriched}
    return [
        idea.model_copy(update={
            "products": [by_id.get(product.id, product) for product in idea.products],
        })
        for idea in gift_ideas
    ]
