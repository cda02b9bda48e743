"""
Application Configuration

Loads environment variables once and exposes them as an immutable Settings
object. Uses python-dotenv to load from the .env file next to the project
root. Every service receives the Settings instance through its constructor;
nothing else in the package reads the environment.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

# .env lives at the repository root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"

# --- App Settings ---
API_V1_PREFIX = "/api/v1"
PROJECT_NAME = "Gift Bundles"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be a number, got {raw!r}")


class Settings(BaseModel):
    """Process-wide configuration, read once at startup."""

    model_config = ConfigDict(frozen=True)

    # --- Anthropic (concept generation + product selection) ---
    anthropic_api_key: str = ""

    # --- Amazon Product Advertising API 5.0 ---
    amazon_access_key: str = ""
    amazon_secret_key: str = ""
    amazon_associate_tag: str = ""

    # --- Brave Search (web-search product source) ---
    brave_search_api_key: str = ""

    # --- Supabase (bundle persistence) ---
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # --- Vertex AI (bundle embeddings) ---
    google_cloud_project: str = ""

    # --- Search behaviour ---
    product_provider: Literal["amazon", "web_search"] = "amazon"
    enable_full_search: bool = False
    enable_multi_category_search: bool = False
    enable_enrichment: bool = False
    web_search_best_seller: bool = False

    # --- Generation sizing ---
    gift_concepts_count: int = 3
    products_per_bundle: int = 4
    queries_per_concept: int = 4
    max_products_before_selection: int = 12
    max_concurrent_searches: int = 6
    inter_query_delay_seconds: float = 1.5
    max_retry_attempts: int = 3
    generation_timeout_seconds: float = 60.0

    public_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from the process environment (and .env, if present)."""
        load_dotenv(dotenv_path=_env_path)

        provider = os.getenv("PRODUCT_PROVIDER", "amazon").strip().lower() or "amazon"
        if provider not in ("amazon", "web_search"):
            raise EnvironmentError(
                f"PRODUCT_PROVIDER must be 'amazon' or 'web_search', got {provider!r}"
            )

        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            amazon_access_key=os.getenv("AMAZON_ACCESS_KEY", ""),
            amazon_secret_key=os.getenv("AMAZON_SECRET_KEY", ""),
            amazon_associate_tag=os.getenv("AMAZON_ASSOCIATE_TAG", ""),
            brave_search_api_key=os.getenv("BRAVE_SEARCH_API_KEY", ""),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            google_cloud_project=os.getenv("GOOGLE_CLOUD_PROJECT", ""),
            product_provider=provider,
            enable_full_search=_env_bool("ENABLE_FULL_SEARCH"),
            enable_multi_category_search=_env_bool("ENABLE_MULTI_CATEGORY_SEARCH"),
            enable_enrichment=_env_bool("ENABLE_AMAZON_ENRICHMENT"),
            web_search_best_seller=_env_bool("WEB_SEARCH_BEST_SELLER"),
            gift_concepts_count=_env_int("GIFT_CONCEPTS_COUNT", 3),
            products_per_bundle=_env_int("PRODUCTS_PER_BUNDLE", 4),
            queries_per_concept=_env_int("QUERIES_PER_CONCEPT", 4),
            max_products_before_selection=_env_int("MAX_PRODUCTS_BEFORE_SELECTION", 12),
            max_concurrent_searches=_env_int("MAX_CONCURRENT_SEARCHES", 6),
            inter_query_delay_seconds=_env_float("INTER_QUERY_DELAY_SECONDS", 1.5),
            max_retry_attempts=_env_int("MAX_RETRY_ATTEMPTS", 3),
            generation_timeout_seconds=_env_float("GENERATION_TIMEOUT_SECONDS", 60.0),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    # --- Credential checks ---

    @property
    def is_anthropic_configured(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def is_amazon_configured(self) -> bool:
        return bool(
            self.amazon_access_key
            and self.amazon_secret_key
            and self.amazon_associate_tag
        )

    @property
    def is_brave_search_configured(self) -> bool:
        return bool(self.brave_search_api_key)

    @property
    def is_supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def is_vertex_ai_configured(self) -> bool:
        """
        Only GOOGLE_CLOUD_PROJECT is required. When GOOGLE_APPLICATION_CREDENTIALS
        is absent the Vertex AI SDK falls back to Application Default Credentials.
        """
        return bool(self.google_cloud_project)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    return Settings.from_env()
