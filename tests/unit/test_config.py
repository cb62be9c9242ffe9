"""
Tests for the configuration module.
"""

import pytest
from pydantic import ValidationError


class TestSettings:
    """Tests for Settings class."""

    def test_settings_defaults(self):
        """Test that defaults apply without any environment."""
        from config.settings import Settings

        settings = Settings(_env_file=None)

        assert settings.host == "0.0.0.0"
        assert settings.port == 8080
        assert settings.products_collection == "products"
        assert settings.categories_collection == "categories"
        assert settings.search_default_limit == 20
        assert settings.search_debounce_ms == 300

    def test_is_development_property(self):
        """Test is_development property."""
        from config.settings import Settings

        for env in ["development", "dev", "local"]:
            settings = Settings(environment=env)
            assert settings.is_development is True

        settings = Settings(environment="production")
        assert settings.is_development is False

    def test_is_production_property(self):
        """Test is_production property."""
        from config.settings import Settings

        for env in ["production", "prod"]:
            settings = Settings(environment=env)
            assert settings.is_production is True

        settings = Settings(environment="development")
        assert settings.is_production is False

    def test_cors_origins_parsing(self):
        """Test that CORS origins can be parsed from comma-separated string."""
        from config.settings import Settings

        settings = Settings(cors_origins="http://localhost:3000,http://localhost:5173")

        assert len(settings.cors_origins) == 2
        assert "http://localhost:3000" in settings.cors_origins
        assert "http://localhost:5173" in settings.cors_origins

    def test_supabase_backend_requires_credentials(self):
        """Selecting supabase without URL/key is rejected at load time."""
        from config.settings import Settings

        with pytest.raises(ValidationError):
            Settings(store_backend="supabase", supabase_url="", supabase_service_key="")

        settings = Settings(
            store_backend="supabase",
            supabase_url="https://test.supabase.co",
            supabase_service_key="test-key",
        )
        assert settings.store_backend == "supabase"

    def test_page_size_must_be_supported(self):
        from config.settings import Settings

        with pytest.raises(ValidationError):
            Settings(search_default_limit=25)

    def test_settings_for_testing(self):
        """Test get_settings_for_testing function."""
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(facet_scan_limit=50)

        assert settings.environment == "testing"
        assert settings.debug is True
        assert settings.store_backend == "memory"
        assert settings.realtime_count_sync_enabled is False
        assert settings.facet_scan_limit == 50


class TestDatabase:
    """Tests for the document store singleton."""

    def test_memory_store_singleton(self):
        from config.database import get_document_store, reset_document_store
        from store.memory import InMemoryDocumentStore

        reset_document_store()
        try:
            store1 = get_document_store()
            store2 = get_document_store()
            assert store1 is store2
            assert isinstance(store1, InMemoryDocumentStore)
        finally:
            reset_document_store()

    def test_reset_installs_given_store(self, memory_store):
        from config.database import get_document_store, reset_document_store

        reset_document_store(memory_store)
        try:
            assert get_document_store() is memory_store
        finally:
            reset_document_store()

    def test_create_supabase_store(self):
        """The supabase backend is built lazily; no connection is made here."""
        from config.database import create_document_store
        from config.settings import get_settings_for_testing
        from store.supabase_store import SupabaseDocumentStore

        settings = get_settings_for_testing(
            store_backend="supabase",
            supabase_url="https://test.supabase.co",
            supabase_service_key="test-key",
        )
        store = create_document_store(settings)

        assert isinstance(store, SupabaseDocumentStore)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
