"""
Configuration Verification

Tests that:
1. Settings.from_env() applies the documented defaults
2. Environment values are parsed (booleans, integers, floats, provider)
3. Invalid values raise EnvironmentError
4. Credential predicates reflect which services are configured

Run with: pytest tests/test_config.py -v
"""

from unittest.mock import patch

import pytest

from giftbundle.core.config import Settings

ENV_VARS = [
    "ANTHROPIC_API_KEY", "AMAZON_ACCESS_KEY", "AMAZON_SECRET_KEY", "AMAZON_ASSOCIATE_TAG",
    "BRAVE_SEARCH_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "GOOGLE_CLOUD_PROJECT",
    "PRODUCT_PROVIDER", "ENABLE_FULL_SEARCH", "ENABLE_MULTI_CATEGORY_SEARCH",
    "ENABLE_AMAZON_ENRICHMENT", "WEB_SEARCH_BEST_SELLER", "GIFT_CONCEPTS_COUNT",
    "PRODUCTS_PER_BUNDLE", "QUERIES_PER_CONCEPT", "MAX_PRODUCTS_BEFORE_SELECTION",
    "MAX_CONCURRENT_SEARCHES", "INTER_QUERY_DELAY_SECONDS", "MAX_RETRY_ATTEMPTS",
    "GENERATION_TIMEOUT_SECONDS", "PUBLIC_BASE_URL", "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of these tests
    with patch("giftbundle.core.config.load_dotenv"):
        yield monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.product_provider == "amazon"
        assert settings.gift_concepts_count == 3
        assert settings.products_per_bundle == 4
        assert settings.queries_per_concept == 4
        assert settings.max_products_before_selection == 12
        assert settings.max_concurrent_searches == 6
        assert settings.inter_query_delay_seconds == 1.5
        assert settings.max_retry_attempts == 3
        assert settings.generation_timeout_seconds == 60.0
        assert settings.enable_full_search is False
        assert settings.enable_enrichment is False
        assert settings.log_level == "INFO"

    def test_parses_values(self, clean_env):
        clean_env.setenv("PRODUCT_PROVIDER", " Web_Search ")
        clean_env.setenv("ENABLE_FULL_SEARCH", "true")
        clean_env.setenv("ENABLE_AMAZON_ENRICHMENT", "1")
        clean_env.setenv("WEB_SEARCH_BEST_SELLER", "no")
        clean_env.setenv("PRODUCTS_PER_BUNDLE", "3")
        clean_env.setenv("GENERATION_TIMEOUT_SECONDS", "45.5")
        clean_env.setenv("PUBLIC_BASE_URL", "https://gifts.example.com/")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.product_provider == "web_search"
        assert settings.enable_full_search is True
        assert settings.enable_enrichment is True
        assert settings.web_search_best_seller is False
        assert settings.products_per_bundle == 3
        assert settings.generation_timeout_seconds == 45.5
        assert settings.public_base_url == "https://gifts.example.com"
        assert settings.log_level == "DEBUG"

    def test_unknown_provider_raises(self, clean_env):
        clean_env.setenv("PRODUCT_PROVIDER", "ebay")
        with pytest.raises(EnvironmentError):
            Settings.from_env()

    @pytest.mark.parametrize("name,value", [
        ("PRODUCTS_PER_BUNDLE", "four"),
        ("GENERATION_TIMEOUT_SECONDS", "soon"),
    ])
    def test_bad_numbers_raise(self, clean_env, name, value):
        clean_env.setenv(name, value)
        with pytest.raises(EnvironmentError):
            Settings.from_env()


class TestCredentialChecks:

    def test_nothing_configured(self):
        settings = Settings()
        assert not settings.is_anthropic_configured
        assert not settings.is_amazon_configured
        assert not settings.is_brave_search_configured
        assert not settings.is_supabase_configured
        assert not settings.is_vertex_ai_configured

    def test_amazon_needs_all_three(self):
        assert not Settings(amazon_access_key="a", amazon_secret_key="s").is_amazon_configured
        assert Settings(
            amazon_access_key="a", amazon_secret_key="s", amazon_associate_tag="t-20",
        ).is_amazon_configured

    def test_supabase_needs_url_and_key(self):
        assert not Settings(supabase_url="https://x.supabase.co").is_supabase_configured
        assert Settings(
            supabase_url="https://x.supabase.co", supabase_service_role_key="key",
        ).is_supabase_configured

    def test_settings_are_immutable(self):
        with pytest.raises(Exception):
            Settings().products_per_bundle = 2
