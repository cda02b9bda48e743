"""
Web Search Product Source — Amazon products found through Brave Web Search.

Issues a single web search per query scoped to amazon.com and recovers
product data from the result metadata: the ASIN from the product URL, the
price from structured product metadata or a dollar amount in the snippet,
and the image from the result thumbnail. Results without a resolvable image
are discarded because every bundle card needs one.

This provider has no meaningful per-second ceiling, so the search
coordinator runs it in parallel mode.
"""

import logging
import re
from typing import Any, Optional

import httpx

from giftbundle.agents.state import Product
from giftbundle.core.config import Settings
from giftbundle.core.retry import RateLimitError, RetryingCaller
from giftbundle.services.integrations.amazon import MARKETPLACE, _build_affiliate_url
from giftbundle.services.integrations.base import has_image, score_and_sort_products

logger = logging.getLogger(__name__)

# ======================================================================
# Constants
# ======================================================================

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_TIMEOUT = 10.0  # seconds
RESULTS_PER_QUERY = 10
SITE_DOMAIN = "amazon.com"

_ASIN_RE = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})")
_PRICE_RE = re.compile(r"\$(\d{1,5}(?:,\d{3})*(?:\.\d{2})?)")
_NUMBER_RE = re.compile(r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)")

_TITLE_SUFFIXES = (" - Amazon.com", " : Amazon.com", " | Amazon.com")
_TITLE_PREFIXES = ("Amazon.com: ", "Amazon.com : ")


# ======================================================================
# Result parsing helpers
# ======================================================================

def _extract_asin(url: str) -> Optional[str]:
    match = _ASIN_RE.search(url or "")
    return match.group(1) if match else None


def _parse_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _PRICE_RE.search(str(value)) or _NUMBER_RE.search(str(value))
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", ""))
    except ValueError:
        return None


def _extract_price(result: dict[str, Any]) -> float:
    """
    Best-effort price: structured product metadata first, then the first
    dollar amount in the description or extra snippets. 0.0 when unknown.
    """
    product = result.get("product") or {}
    price = _parse_number(product.get("price"))
    if price is None:
        for offer in product.get("offers") or []:
            price = _parse_number(offer.get("price"))
            if price is not None:
                break

    if price is None:
        snippets = [result.get("description") or ""] + list(result.get("extra_snippets") or [])
        for snippet in snippets:
            match = _PRICE_RE.search(snippet)
            if match:
                price = float(match.group(1).replace(",", ""))
                break

    return price or 0.0


def _extract_image(result: dict[str, Any]) -> str:
    thumbnail = result.get("thumbnail") or {}
    return thumbnail.get("original") or thumbnail.get("src") or ""


def _clean_title(title: str) -> str:
    title = (title or "").strip()
    for prefix in _TITLE_PREFIXES:
        if title.startswith(prefix):
            title = title[len(prefix):]
    for suffix in _TITLE_SUFFIXES:
        if title.endswith(suffix):
            title = title[: -len(suffix)]
    return title.strip() or "Untitled Product"


# ======================================================================
# WebSearchProductSource
# ======================================================================

class WebSearchProductSource:
    """Brave Web Search scoped to amazon.com, implementing ProductSource."""

    source_tag = "amazon"

    def __init__(
        self,
        settings: Settings,
        retrying: Optional[RetryingCaller] = None,
    ) -> None:
        self._api_key = settings.brave_search_api_key
        self._associate_tag = settings.amazon_associate_tag
        self._best_seller_prefix = settings.web_search_best_seller
        self._retrying = retrying or RetryingCaller(max_attempts=settings.max_retry_attempts)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def search(
        self,
        keywords: str,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        """
        Search amazon.com through Brave for the keywords.

        The price band is not sent upstream (web search cannot filter on it);
        it is kept in the signature so both sources are interchangeable.
        """
        if not self.is_configured:
            logger.warning("Brave Search not configured — skipping web search")
            return []

        if not keywords or not keywords.strip():
            return []

        query = keywords.strip()
        if self._best_seller_prefix:
            query = f"best seller {query}"

        try:
            results = await self._retrying.call(self._query, f"site:{SITE_DOMAIN} {query}")
        except RateLimitError:
            logger.warning("Brave Search rate limit not cleared for '%s'", query[:80])
            return []
        except httpx.TimeoutException:
            logger.warning("Brave Search timeout for '%s'", query[:80])
            return []
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Brave Search error: %s", exc)
            return []

        products: list[Product] = []
        seen: set[str] = set()
        for result in results:
            product = self._normalize_result(result, self._associate_tag)
            if product is None or product.id in seen:
                continue
            if not has_image(product):
                continue
            seen.add(product.id)
            products.append(product)

        logger.info(
            "Web search '%s': %d results, %d usable products",
            query[:80], len(results), len(products),
        )
        return score_and_sort_products(products)

    async def _query(self, query: str) -> list[dict[str, Any]]:
        """
        Run one Brave Web Search request.

        Raises:
            RateLimitError: on HTTP 429.
            httpx.HTTPError: on any other failure.
        """
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
            "X-Subscription-Token": self._api_key,
        }
        params = {
            "q": query,
            "count": RESULTS_PER_QUERY,
            "text_decorations": False,
            "search_lang": "en",
        }

        async with httpx.AsyncClient(timeout=BRAVE_TIMEOUT) as client:
            response = await client.get(BRAVE_SEARCH_URL, headers=headers, params=params)

        if response.status_code == 429:
            raise RateLimitError("Brave Search rate limited (429)", status_code=429)

        response.raise_for_status()
        data = response.json()
        return data.get("web", {}).get("results", [])

    @staticmethod
    def _normalize_result(result: dict[str, Any], associate_tag: str) -> Optional[Product]:
        """Convert a Brave web result to a Product; None if it is not a product page."""
        asin = _extract_asin(result.get("url", ""))
        if asin is None:
            return None

        product_meta = result.get("product") or {}
        rating = _parse_number(product_meta.get("rating"))
        review_count = product_meta.get("review_count")

        return Product(
            id=asin,
            title=_clean_title(result.get("title", "")),
            price=_extract_price(result),
            currency="USD",
            image_url=_extract_image(result),
            affiliate_url=_build_affiliate_url(f"https://{MARKETPLACE}/dp/{asin}", associate_tag),
            source=WebSearchProductSource.source_tag,
            rating=rating,
            review_count=int(review_count) if isinstance(review_count, (int, float)) else None,
        )
