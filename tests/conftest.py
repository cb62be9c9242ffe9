"""
Pytest configuration and shared fixtures for the catalog search engine tests.
"""
import os
import sys
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))

# Unit tests always run against the in-memory store
os.environ["STORE_BACKEND"] = "memory"


def _ts(day: int) -> datetime:
    return datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

@pytest.fixture
def sample_products() -> dict:
    """Product documents as stored (camelCase, some legacy field types)."""
    return {
        "p1": {
            "title": "Gaming Laptop",
            "description": "15 inch laptop with a fast GPU",
            "price": 999.99,
            "category": "electronics",
            "categoryId": "electronics",
            "condition": "used",
            "tags": ["computer", "portable"],
            "status": "active",
            "sellerId": "user123",
            "imageUrls": ["https://example.com/p1.jpg"],
            "viewCount": 50,
            "quantity": 2,
            "isOnSale": False,
            "createdAt": _ts(10),
            "updatedAt": _ts(10),
        },
        "p2": {
            "title": "Smartphone",
            "description": "Unlocked phone, 128GB",
            "price": 499.0,
            "category": "electronics",
            "categoryId": "electronics",
            "condition": "new",
            "tags": ["mobile"],
            "status": "active",
            "sellerId": "user456",
            "viewCount": 120,
            "quantity": 0,
            "isOnSale": True,
            "salePrice": 449.0,
            "createdAt": _ts(12),
            "updatedAt": _ts(12),
        },
        "p3": {
            "title": "Paperback Novel",
            "description": "A mystery novel",
            "price": "15.50",
            "category": "books",
            "categoryId": "books",
            "condition": "used",
            "tags": ["fiction"],
            "status": "active",
            "createdBy": "user123",
            "sellerId": "user123",
            "viewCount": 10,
            "quantity": 5,
            "createdAt": _ts(5),
            "updatedAt": _ts(5),
        },
        "p4": {
            "title": "Winter Jacket",
            "price": 80.0,
            "category": "clothing",
            "categoryId": "clothing",
            "condition": "new",
            "status": "inactive",
            "sellerId": "user789",
            "quantity": 1,
            "createdAt": _ts(15),
            "updatedAt": _ts(15),
        },
        "p5": {
            "title": "Wireless Headphones",
            "description": "Noise cancelling",
            "price": 150.0,
            "category": "electronics",
            "categoryId": "electronics",
            "condition": "like-new",
            "tags": ["audio", "portable"],
            "status": "active",
            "sellerId": "user456",
            "viewCount": 75,
            "quantity": 1,
            "isOnSale": True,
            "salePrice": 120.0,
            "createdAt": _ts(8),
            "updatedAt": _ts(8),
        },
        "p6": {
            "title": "Mountain Bike",
            "price": 300.0,
            "category": "sports",
            "categoryId": "sports",
            "condition": "used",
            "status": "blocked",
            "sellerId": "user789",
            "createdAt": _ts(3),
            "updatedAt": _ts(3),
        },
    }


@pytest.fixture
def sample_categories() -> dict:
    """Category documents with stale counts."""
    return {
        "electronics": {"name": "Electronics", "productCount": 7},
        "books": {"name": "Books", "productCount": 0},
        "clothing": {"name": "Clothing", "productCount": 4},
        "sports": {"name": "Sports", "productCount": 1},
        "furniture": {"name": "Furniture", "productCount": 2},
    }


# ============================================================================
# Fixtures: Store and Services
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings isolated from the environment."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing()


@pytest.fixture
def memory_store(sample_products, sample_categories):
    """In-memory store seeded with the sample catalog."""
    from store.memory import InMemoryDocumentStore
    return InMemoryDocumentStore({
        "products": sample_products,
        "categories": sample_categories,
    })


@pytest.fixture
def empty_store():
    from store.memory import InMemoryDocumentStore
    return InMemoryDocumentStore()


@pytest.fixture
def search_service(memory_store, test_settings):
    from search.service import SearchService
    return SearchService(memory_store, settings=test_settings)


@pytest.fixture
def realtime_service(memory_store, test_settings):
    from realtime_sync.subscriber import RealtimeProductService
    service = RealtimeProductService(memory_store, settings=test_settings)
    yield service
    service.unsubscribe_all()


@pytest.fixture
def reconciler(memory_store, test_settings):
    from realtime_sync.reconciler import CategoryCountReconciler
    return CategoryCountReconciler(memory_store, settings=test_settings)


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(memory_store, search_service, reconciler, realtime_service):
    """FastAPI application wired to the seeded in-memory store."""
    from api.app import create_app
    from config.database import reset_document_store
    from realtime_sync.reconciler import get_category_count_reconciler
    from realtime_sync import subscriber
    from search.service import get_search_service

    reset_document_store(memory_store)
    subscriber._service = realtime_service

    application = create_app()
    application.dependency_overrides[get_search_service] = lambda: search_service
    application.dependency_overrides[get_category_count_reconciler] = lambda: reconciler
    yield application

    application.dependency_overrides.clear()
    subscriber._service = None
    reset_document_store()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ============================================================================
# Markers auto-use
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")


# ============================================================================
# Skip conditions
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Auto-skip Supabase tests if no credentials are configured."""
    skip_supabase = pytest.mark.skip(reason="Supabase tests require credentials")

    supabase_url = os.getenv("SUPABASE_URL")

    for item in items:
        if "supabase" in item.keywords and not supabase_url:
            item.add_marker(skip_supabase)
