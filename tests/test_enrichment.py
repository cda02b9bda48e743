"""
Product Enrichment Verification

Tests that:
1. Fields present in GetItems data overwrite the product's fields
2. Absent or empty fields keep the original values (never cleared)
3. Products are never dropped or reordered
4. Any lookup failure returns the input unchanged
5. Unconfigured sources skip the lookup entirely

Run with: pytest tests/test_enrichment.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from giftbundle.agents.enrichment import Enricher, merge_product_fields
from giftbundle.agents.state import Product
from giftbundle.core.retry import RateLimitError


def _product(pid: str, **overrides) -> Product:
    data = {
        "id": pid,
        "title": f"Product {pid}",
        "price": 20.0,
        "image_url": f"https://img/{pid}.jpg",
        "affiliate_url": f"https://www.amazon.com/dp/{pid}?tag=test-20",
        "rating": 4.0,
        "review_count": 50,
    }
    data.update(overrides)
    return Product(**data)


def _source(found: dict | None = None, error: Exception | None = None, configured: bool = True) -> MagicMock:
    source = MagicMock()
    source.is_configured = configured
    source.get_items = AsyncMock(side_effect=error) if error else AsyncMock(return_value=found or {})
    return source


# ======================================================================
# TestMergeProductFields
# ======================================================================

class TestMergeProductFields:

    def test_present_fields_overwrite(self):
        merged = merge_product_fields(_product("A"), {
            "price": 17.5, "rating": 4.8, "review_count": 900, "image_url": "https://img/new.jpg",
        })
        assert merged.price == 17.5
        assert merged.rating == 4.8
        assert merged.review_count == 900
        assert merged.image_url == "https://img/new.jpg"

    def test_absent_fields_keep_original(self):
        original = _product("A")
        merged = merge_product_fields(original, {"rating": 4.9})
        assert merged.price == original.price
        assert merged.image_url == original.image_url
        assert merged.rating == 4.9

    def test_zero_price_and_empty_image_never_clear(self):
        original = _product("A")
        merged = merge_product_fields(original, {"price": 0, "image_url": ""})
        assert merged == original

    def test_original_is_not_mutated(self):
        original = _product("A")
        merge_product_fields(original, {"price": 5.0})
        assert original.price == 20.0


# ======================================================================
# TestEnricher
# ======================================================================

class TestEnricher:

    async def test_enriches_matching_products_in_order(self):
        products = [_product("A"), _product("B"), _product("C")]
        source = _source({"B": {"price": 9.99}, "C": {"rating": 4.7}})

        result = await Enricher(source).enrich(products)

        assert [p.id for p in result] == ["A", "B", "C"]
        assert result[0] == products[0]
        assert result[1].price == 9.99
        assert result[2].rating == 4.7
        source.get_items.assert_awaited_once_with(["A", "B", "C"])

    async def test_duplicate_ids_looked_up_once(self):
        source = _source({})
        await Enricher(source).enrich([_product("A"), _product("A")])
        source.get_items.assert_awaited_once_with(["A"])

    @pytest.mark.parametrize("error", [RateLimitError("429"), RuntimeError("boom"), ValueError("bad json")])
    async def test_any_error_returns_input(self, error):
        products = [_product("A"), _product("B")]
        result = await Enricher(_source(error=error)).enrich(products)
        assert result == products

    async def test_never_shrinks(self):
        products = [_product("A"), _product("B")]
        result = await Enricher(_source({"A": {}})).enrich(products)
        assert len(result) == len(products)
        assert all(p.image_url for p in result)

    async def test_unconfigured_skips_lookup(self):
        source = _source(configured=False)
        products = [_product("A")]
        assert await Enricher(source).enrich(products) == products
        source.get_items.assert_not_called()

    async def test_empty_input(self):
        source = _source()
        assert await Enricher(source).enrich([]) == []
        source.get_items.assert_not_called()
