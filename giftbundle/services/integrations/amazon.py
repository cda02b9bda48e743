"""
Amazon Product Advertising API Integration — signed marketplace product source.

Queries the Amazon Product Advertising API (PA-API 5.0) for products matching
a concept's search query and price band, and looks up authoritative item data
(GetItems) for the enrichment pass. Normalizes results into Product models.

Uses HMAC-SHA256 request signing (AWS Signature Version 4). PA-API enforces a
strict requests-per-second ceiling, so every call goes through a
RetryingCaller: HTTP 429 and 503 are raised as RateLimitError and retried with
exponential backoff. All product URLs include the associate tag.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from giftbundle.agents.state import Product
from giftbundle.core.config import Settings
from giftbundle.core.retry import RateLimitError, RetryingCaller
from giftbundle.services.integrations.base import has_image, score_and_sort_products

logger = logging.getLogger(__name__)

# ======================================================================
# Constants
# ======================================================================

# PA-API 5.0 endpoint (US marketplace)
HOST = "webservices.amazon.com"
BASE_URL = f"https://{HOST}"
SEARCH_ITEMS_PATH = "/paapi5/searchitems"
GET_ITEMS_PATH = "/paapi5/getitems"
SERVICE = "ProductAdvertisingAPI"
REGION = "us-east-1"
MARKETPLACE = "www.amazon.com"
DEFAULT_TIMEOUT = 10.0  # seconds
ITEM_COUNT = 10  # PA-API max per SearchItems request
GET_ITEMS_BATCH_SIZE = 10  # PA-API max ItemIds per GetItems request

# Spacing between category fan-out calls (PA-API allows ~1 request/second)
CATEGORY_DELAY_SECONDS = 1.0

TARGETS: dict[str, str] = {
    SEARCH_ITEMS_PATH: "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.SearchItems",
    GET_ITEMS_PATH: "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.GetItems",
}

# Search indices used by the optional multi-category fan-out
FANOUT_CATEGORIES: tuple[str, ...] = (
    "All",
    "ToysAndGames",
    "HomeAndKitchen",
    "OfficeProducts",
    "ArtsAndCrafts",
)

SEARCH_RESOURCES = [
    "ItemInfo.Title",
    "ItemInfo.Features",
    "ItemInfo.ByLineInfo",
    "Images.Primary.Medium",
    "Images.Primary.Large",
    "Offers.Listings.Price",
    "CustomerReviews.Count",
    "CustomerReviews.StarRating",
]

ENRICHMENT_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "Offers.Listings.Price",
    "CustomerReviews.Count",
    "CustomerReviews.StarRating",
]


# ======================================================================
# HMAC-SHA256 Signing Helpers
# ======================================================================

def _sign(key: bytes, msg: str) -> bytes:
    """Create HMAC-SHA256 signature."""
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _get_signature_key(
    secret_key: str, date_stamp: str, region: str, service: str
) -> bytes:
    """Derive the signing key for AWS Signature Version 4."""
    k_date = _sign(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _sign(k_date, region)
    k_service = _sign(k_region, service)
    k_signing = _sign(k_service, "aws4_request")
    return k_signing


def _build_authorization_header(
    access_key: str,
    secret_key: str,
    payload: str,
    host: str,
    path: str,
    amz_date: str,
    date_stamp: str,
) -> dict[str, str]:
    """
    Build AWS Signature V4 authorization headers for a PA-API 5.0 operation.

    The operation (SearchItems / GetItems) is derived from the request path.
    Returns dict of headers including Authorization, X-Amz-Date and X-Amz-Target.
    """
    method = "POST"
    content_type = "application/json; charset=UTF-8"
    amz_target = TARGETS[path]

    canonical_headers = (
        f"content-encoding:amz-1.0\n"
        f"content-type:{content_type}\n"
        f"host:{host}\n"
        f"x-amz-date:{amz_date}\n"
        f"x-amz-target:{amz_target}\n"
    )
    signed_headers = "content-encoding;content-type;host;x-amz-date;x-amz-target"

    payload_hash = hashlib.sha256(payload.encode("utf-8")).hexdigest()

    canonical_request = (
        f"{method}\n"
        f"{path}\n"
        f"\n"
        f"{canonical_headers}\n"
        f"{signed_headers}\n"
        f"{payload_hash}"
    )

    algorithm = "AWS4-HMAC-SHA256"
    credential_scope = f"{date_stamp}/{REGION}/{SERVICE}/aws4_request"
    string_to_sign = (
        f"{algorithm}\n"
        f"{amz_date}\n"
        f"{credential_scope}\n"
        f"{hashlib.sha256(canonical_request.encode('utf-8')).hexdigest()}"
    )

    signing_key = _get_signature_key(secret_key, date_stamp, REGION, SERVICE)
    signature = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    authorization = (
        f"{algorithm} "
        f"Credential={access_key}/{credential_scope}, "
        f"SignedHeaders={signed_headers}, "
        f"Signature={signature}"
    )

    return {
        "Authorization": authorization,
        "Content-Encoding": "amz-1.0",
        "Content-Type": content_type,
        "Host": host,
        "X-Amz-Date": amz_date,
        "X-Amz-Target": amz_target,
    }


def _build_affiliate_url(url: str, tag: str) -> str:
    """
    Ensure the affiliate tag is present in an Amazon product URL.

    If the URL already contains the tag parameter, it is left unchanged.
    Otherwise, the tag is appended as a query parameter.
    """
    if not url:
        return url
    if not tag:
        return url

    if f"tag={tag}" in url:
        return url

    separator = "&" if "?" in url else "?"
    return f"{url}{separator}tag={tag}"


def _extract_price(item: dict[str, Any]) -> tuple[Optional[float], Optional[str]]:
    listings = item.get("Offers", {}).get("Listings", [])
    if not listings:
        return None, None
    price_info = listings[0].get("Price", {})
    amount = price_info.get("Amount")
    price = float(amount) if amount is not None else None
    return price, price_info.get("Currency")


def _extract_image(item: dict[str, Any]) -> str:
    primary = item.get("Images", {}).get("Primary", {})
    return (
        primary.get("Large", {}).get("URL")
        or primary.get("Medium", {}).get("URL")
        or ""
    )


def _extract_reviews(item: dict[str, Any]) -> tuple[Optional[float], Optional[int]]:
    reviews = item.get("CustomerReviews", {})
    rating = reviews.get("StarRating", {}).get("Value")
    count = reviews.get("Count")
    return (
        float(rating) if rating is not None else None,
        int(count) if count is not None else None,
    )


# ======================================================================
# AmazonProductSource
# ======================================================================

class AmazonProductSource:
    """Async PA-API 5.0 client implementing the ProductSource contract."""

    source_tag = "amazon"

    def __init__(
        self,
        settings: Settings,
        retrying: Optional[RetryingCaller] = None,
        category_delay_seconds: float = CATEGORY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._access_key = settings.amazon_access_key
        self._secret_key = settings.amazon_secret_key
        self._associate_tag = settings.amazon_associate_tag
        self._configured = settings.is_amazon_configured
        self._multi_category = settings.enable_multi_category_search
        self._retrying = retrying or RetryingCaller(max_attempts=settings.max_retry_attempts)
        self._category_delay = category_delay_seconds
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return self._configured

    # ------------------------------------------------------------------
    # SearchItems
    # ------------------------------------------------------------------

    async def search(
        self,
        keywords: str,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        """
        Search Amazon for the keywords within a dollar price band.

        With multi-category search enabled, the same keywords are searched
        across FANOUT_CATEGORIES one call at a time.

        Returns:
            Deduplicated products with a price and an image, ranked by the
            relevance heuristic. [] on missing credentials or any error.
        """
        if not self._configured:
            logger.warning("Amazon API credentials not configured — skipping Amazon search")
            return []

        if not keywords or not keywords.strip():
            logger.warning("Empty keywords provided — skipping Amazon search")
            return []

        categories = FANOUT_CATEGORIES if self._multi_category else ("All",)

        combined: list[Product] = []
        seen: set[str] = set()
        for index, category in enumerate(categories):
            if index > 0:
                await self._sleep(self._category_delay)
            for product in await self._search_index(keywords.strip(), category, min_price, max_price):
                if product.id not in seen:
                    seen.add(product.id)
                    combined.append(product)

        return score_and_sort_products(combined)

    async def _search_index(
        self,
        keywords: str,
        category: str,
        min_price: float,
        max_price: float,
    ) -> list[Product]:
        payload: dict[str, Any] = {
            "Keywords": keywords,
            "SearchIndex": category,
            "ItemCount": ITEM_COUNT,
            "PartnerTag": self._associate_tag,
            "PartnerType": "Associates",
            "Marketplace": MARKETPLACE,
            "Resources": SEARCH_RESOURCES,
        }
        # PA-API accepts prices in cents
        if min_price > 0:
            payload["MinPrice"] = int(min_price * 100)
        if max_price > 0:
            payload["MaxPrice"] = int(max_price * 100)

        try:
            data = await self._retrying.call(self._post, SEARCH_ITEMS_PATH, payload)
        except RateLimitError:
            logger.warning(
                "Amazon PA-API rate limit not cleared for '%s' (%s) — treating as empty",
                keywords[:80], category,
            )
            return []
        except httpx.TimeoutException:
            logger.warning("Amazon PA-API timeout for '%s' (%s)", keywords[:80], category)
            return []
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Amazon PA-API HTTP error %d: %s",
                exc.response.status_code, exc.response.text,
            )
            return []
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Amazon PA-API request error: %s", exc)
            return []

        items = data.get("SearchResult", {}).get("Items", [])

        results: list[Product] = []
        for item in items:
            product = self._normalize_product(item, self._associate_tag)
            if product is None:
                continue
            if product.price <= 0 or not has_image(product):
                continue
            results.append(product)

        logger.info(
            "Amazon search '%s' (%s): %d items, %d usable",
            keywords[:80], category, len(items), len(results),
        )
        return results

    # ------------------------------------------------------------------
    # GetItems (enrichment)
    # ------------------------------------------------------------------

    async def get_items(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        """
        Look up authoritative data for the given ASINs.

        Returns a mapping of ASIN → partial fields (price, currency, rating,
        review_count, image_url); fields missing upstream are omitted.

        Raises:
            RateLimitError, httpx.HTTPError: on failure — callers decide
            whether to degrade.
        """
        if not self._configured:
            raise RuntimeError("Amazon API credentials not configured")

        found: dict[str, dict[str, Any]] = {}
        batches = [
            asins[i:i + GET_ITEMS_BATCH_SIZE]
            for i in range(0, len(asins), GET_ITEMS_BATCH_SIZE)
        ]
        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(self._category_delay)
            payload = {
                "ItemIds": batch,
                "ItemIdType": "ASIN",
                "PartnerTag": self._associate_tag,
                "PartnerType": "Associates",
                "Marketplace": MARKETPLACE,
                "Resources": ENRICHMENT_RESOURCES,
            }
            data = await self._retrying.call(self._post, GET_ITEMS_PATH, payload)
            for item in data.get("ItemsResult", {}).get("Items", []):
                asin = item.get("ASIN")
                if asin:
                    found[asin] = self._partial_fields(item)

        return found

    @staticmethod
    def _partial_fields(item: dict[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        price, currency = _extract_price(item)
        if price is not None and price > 0:
            fields["price"] = price
            if currency:
                fields["currency"] = currency
        rating, review_count = _extract_reviews(item)
        if rating is not None:
            fields["rating"] = rating
        if review_count is not None:
            fields["review_count"] = review_count
        image_url = _extract_image(item)
        if image_url:
            fields["image_url"] = image_url
        return fields

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Make one HMAC-SHA256 signed POST to PA-API 5.0.

        Raises:
            RateLimitError: on HTTP 429 / 503 (retried by RetryingCaller).
            httpx.HTTPError: on any other transport or status failure.
        """
        payload_str = json.dumps(payload)

        # Fresh timestamp per attempt, signatures expire
        now = datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = now.strftime("%Y%m%d")

        headers = _build_authorization_header(
            access_key=self._access_key,
            secret_key=self._secret_key,
            payload=payload_str,
            host=HOST,
            path=path,
            amz_date=amz_date,
            date_stamp=date_stamp,
        )

        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            response = await client.post(
                f"{BASE_URL}{path}",
                headers=headers,
                content=payload_str,
            )

        if response.status_code in (429, 503):
            raise RateLimitError(
                f"Amazon PA-API rate limited ({response.status_code})",
                status_code=response.status_code,
            )

        response.raise_for_status()
        return response.json()

    @staticmethod
    def _normalize_product(item: dict[str, Any], associate_tag: str) -> Optional[Product]:
        """
        Convert a PA-API 5.0 item to a Product.

        Returns None when the item has no ASIN (no identity to deduplicate on).
        Missing price is 0.0 and missing image is "" — callers filter those.
        """
        asin = item.get("ASIN")
        if not asin:
            return None

        title = (
            item.get("ItemInfo", {}).get("Title", {}).get("DisplayValue")
            or "Untitled Product"
        )
        price, currency = _extract_price(item)
        rating, review_count = _extract_reviews(item)

        detail_url = item.get("DetailPageURL") or f"https://{MARKETPLACE}/dp/{asin}"

        return Product(
            id=asin,
            title=title,
            price=price or 0.0,
            currency=currency or "USD",
            image_url=_extract_image(item),
            affiliate_url=_build_affiliate_url(detail_url, associate_tag),
            source=AmazonProductSource.source_tag,
            rating=rating,
            review_count=review_count,
        )
