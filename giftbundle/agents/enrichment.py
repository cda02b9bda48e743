"""
Product Enrichment — refresh selected products with authoritative PA-API data.

Runs after selection, only when ENABLE_AMAZON_ENRICHMENT is set and Amazon
credentials are configured. One GetItems lookup (batched by ten) covers the
products of every gift idea. Fields present in the response overwrite the
product's fields; absent fields keep their original values.

Enrichment is best-effort: any failure returns the input unchanged. It never
drops, reorders or blanks a product.
"""

import logging
import time

from giftbundle.agents.state import Product
from giftbundle.services.integrations.amazon import AmazonProductSource

logger = logging.getLogger(__name__)

ENRICHABLE_FIELDS = ("price", "currency", "rating", "review_count", "image_url")


def merge_product_fields(product: Product, fields: dict) -> Product:
    """Overlay non-empty enrichment fields onto a copy of the product."""
    update = {}
    for name in ENRICHABLE_FIELDS:
        value = fields.get(name)
        if value is None or value == "":
            continue
        if name == "price" and value <= 0:
            continue
        update[name] = value
    if not update:
        return product
    return product.model_copy(update=update)


class Enricher:
    """GetItems-backed enrichment for already-selected products."""

    def __init__(self, source: AmazonProductSource) -> None:
        self.source = source

    @property
    def is_configured(self) -> bool:
        return self.source.is_configured

    async def enrich(self, products: list[Product]) -> list[Product]:
        if not products:
            return products

        if not self.is_configured:
            logger.info("Enrichment skipped — Amazon API not configured")
            return products

        asins = list(dict.fromkeys(p.id for p in products if p.id))
        start = time.monotonic()
        try:
            found = await self.source.get_items(asins)
        except Exception as exc:
            logger.warning("Enrichment failed, keeping search data: %s", exc)
            return products

        enriched = [
            merge_product_fields(product, found[product.id]) if product.id in found else product
            for product in products
        ]
        logger.info(
            "Enriched %d/%d products in %.1fs",
            sum(1 for p in products if p.id in found), len(products),
            time.monotonic() - start,
        )
        return enriched
