"""
Pydantic models for catalog search, live subscriptions and category counts.

Models accept both camelCase (as sent by the UI and stored in documents)
and snake_case field names.
"""

import base64
import binascii
import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from search.errors import InvalidFilterError
from store.base import Cursor


DEFAULT_IMAGE = "/default-image.jpg"
DEFAULT_CATEGORY = "uncategorized"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _dedupe(values: List[Any]) -> List[Any]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


# ============================================================================
# Enums
# ============================================================================

class SortField(str, Enum):
    """Fields a search result may be ordered by."""
    CREATED_AT = "createdAt"
    PRICE = "price"
    VIEW_COUNT = "viewCount"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ItemStatus(str, Enum):
    """Lifecycle state of a catalog item. Only active items are searchable."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"
    REMOVED = "removed"


# ============================================================================
# Search state
# ============================================================================

class PriceRange(CamelModel):
    min: Optional[float] = None
    max: Optional[float] = None


class DateRange(CamelModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SearchFilters(CamelModel):
    """
    Complete filter state. Empty lists, None and False mean "unset" and are
    never turned into store predicates.
    """
    query: str = Field("", max_length=500, description="Free-text search, matched client-side")
    categories: List[str] = Field(default_factory=list, description="Category ids (any of)")
    price_range: PriceRange = Field(default_factory=PriceRange)
    condition: List[str] = Field(default_factory=list, description="Condition tags (any of)")
    tags: List[str] = Field(default_factory=list, description="Tags (item has any of)")
    seller_id: Optional[str] = None
    date_range: DateRange = Field(default_factory=DateRange)
    in_stock: bool = False
    on_sale: bool = False

    @field_validator("categories", "condition", "tags", mode="before")
    @classmethod
    def coerce_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("categories", "condition", "tags")
    @classmethod
    def dedupe_list(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    @field_validator("seller_id", mode="before")
    @classmethod
    def blank_seller_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SortSpec(CamelModel):
    field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC


class PageCursor(CamelModel):
    """
    Keyset cursor: resume after the document `doc_id` whose sort values were
    `sort_values`. `fingerprint` ties the cursor to the (filters, sort, limit)
    that produced it.
    """
    doc_id: str
    sort_values: List[Any] = Field(default_factory=list)
    fingerprint: str

    def to_store_cursor(self) -> Cursor:
        return Cursor(values=tuple(self.sort_values), doc_id=self.doc_id)

    def encode(self) -> str:
        """Encode cursor as opaque base64 string for API response."""
        data = {
            "doc_id": self.doc_id,
            "sort_values": [_encode_value(v) for v in self.sort_values],
            "fingerprint": self.fingerprint,
        }
        json_str = json.dumps(data)
        return base64.urlsafe_b64encode(json_str.encode("utf-8")).decode("utf-8")

    @classmethod
    def decode(cls, encoded: str) -> "PageCursor":
        """
        Decode a cursor token from an API request.

        Raises:
            InvalidFilterError: If the token is not a cursor we issued
        """
        try:
            json_str = base64.urlsafe_b64decode(encoded.encode("utf-8")).decode("utf-8")
            data = json.loads(json_str)
            return cls(
                doc_id=data["doc_id"],
                sort_values=[_decode_value(v) for v in data["sort_values"]],
                fingerprint=data["fingerprint"],
            )
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise InvalidFilterError("Malformed page cursor") from e


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$dt": value.isoformat()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and "$dt" in value:
        return datetime.fromisoformat(value["$dt"])
    return value


class PageState(CamelModel):
    page: int = Field(1, ge=1)
    limit: Literal[10, 20, 50] = 20
    cursor: Optional[PageCursor] = None


def compute_fingerprint(filters: SearchFilters, sort: SortSpec, limit: int) -> str:
    """Stable hash of the inputs that determine a result ordering."""
    payload = {
        "filters": filters.model_dump(mode="json"),
        "sort": sort.model_dump(mode="json"),
        "limit": limit,
    }
    filters_str = json.dumps(payload, sort_keys=True)
    return hashlib.md5(filters_str.encode()).hexdigest()[:16]


def merge_model(model: BaseModel, partial: Any) -> BaseModel:
    """
    Return a validated copy of `model` with the fields in `partial` replaced.

    `partial` may be a dict (camelCase or snake_case keys) or a model of the
    same type, in which case only its explicitly set fields are applied.

    Raises:
        InvalidFilterError: On unknown fields or values that fail validation
    """
    if isinstance(partial, BaseModel):
        partial = partial.model_dump(exclude_unset=True)

    model_cls = type(model)
    names: Dict[str, str] = {}
    for name, info in model_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name

    data = model.model_dump()
    for key, value in (partial or {}).items():
        if key not in names:
            raise InvalidFilterError(f"Unknown {model_cls.__name__} field: {key}")
        data[names[key]] = value

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise InvalidFilterError(str(e)) from e


# ============================================================================
# Catalog items
# ============================================================================

class CatalogItem(CamelModel):
    """A normalized catalog item as shown to users."""
    id: str
    title: str = "Untitled Product"
    description: str = ""
    price: float = 0.0
    category: str = DEFAULT_CATEGORY
    category_id: Optional[str] = None
    condition: str = "new"
    tags: List[str] = Field(default_factory=list)
    status: ItemStatus = ItemStatus.INACTIVE
    seller_id: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    image: str = DEFAULT_IMAGE
    view_count: int = 0
    inquiry_count: int = 0
    favorite_count: int = 0
    quantity: int = 0
    is_on_sale: bool = False
    sale_price: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SearchResult(CamelModel):
    items: List[CatalogItem] = Field(default_factory=list)
    total_count: int = 0
    has_next_page: bool = False
    next_cursor: Optional[PageCursor] = None


# ============================================================================
# Facets
# ============================================================================

class PriceBounds(CamelModel):
    min: float = 0.0
    max: float = 0.0


class FacetCounts(CamelModel):
    """Refinement counts over the currently filtered population."""
    categories: Dict[str, int] = Field(default_factory=dict)
    conditions: Dict[str, int] = Field(default_factory=dict)
    price_range: PriceBounds = Field(default_factory=PriceBounds)


# ============================================================================
# Category counts
# ============================================================================

class CategoryCount(CamelModel):
    """Persisted per-category count of active items."""
    category_id: str
    name: Optional[str] = None
    product_count: int = Field(0, ge=0)
    updated_at: Optional[datetime] = None


class CategoryDelta(CamelModel):
    category_id: str
    delta: Literal[-1, 1]


class CategorySummary(CamelModel):
    category_id: str
    count: int


class ZeroCountCategory(CamelModel):
    id: str
    name: Optional[str] = None


class SyncResult(CamelModel):
    """Outcome of a batch category count recomputation."""
    success: bool = True
    message: str = ""
    updated_categories: int = 0
    summary: List[CategorySummary] = Field(default_factory=list)
    zero_count_categories: List[ZeroCountCategory] = Field(default_factory=list)


# ============================================================================
# API Models
# ============================================================================

class PageRequest(CamelModel):
    limit: Literal[10, 20, 50] = 20
    cursor: Optional[str] = Field(None, description="Opaque token from a previous nextCursor")


class SearchProductsRequest(CamelModel):
    """Request body for product search."""
    filters: SearchFilters = Field(default_factory=SearchFilters)
    sort: SortSpec = Field(default_factory=SortSpec)
    page: PageRequest = Field(default_factory=PageRequest)


class SearchProductsResponse(CamelModel):
    items: List[CatalogItem]
    total_count: int
    has_next_page: bool
    next_cursor: Optional[str] = None


class SuggestionsResponse(CamelModel):
    query: str
    suggestions: List[str]
