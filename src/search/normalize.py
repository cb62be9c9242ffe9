"""
Raw document -> CatalogItem normalization.

Stored documents come from several generations of listing forms, so any
field may be missing or carry a legacy type (prices as strings, a single
image URL instead of a list, Firestore-style timestamp maps). Normalization
never fails: every field has a fallback. It is idempotent, so normalizing
a dumped CatalogItem yields the same item.
"""

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from search.models import (
    DEFAULT_CATEGORY,
    DEFAULT_IMAGE,
    CatalogItem,
    ItemStatus,
)
from store.base import DocumentSnapshot


_STATUSES = {s.value for s in ItemStatus}


def to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def to_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return default
    return default


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Accept datetime, ISO-8601 string, epoch seconds (or milliseconds) and
    {seconds, nanoseconds} maps. Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    elif isinstance(value, Mapping) and "seconds" in value:
        seconds = to_float(value.get("seconds"))
        nanos = to_float(value.get("nanoseconds", value.get("nanos", 0)))
        try:
            dt = datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str) and v]
    return []


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def normalize_product(raw: Mapping[str, Any], doc_id: Optional[str] = None) -> CatalogItem:
    """
    Build a CatalogItem from a stored product document.

    Args:
        raw: Document data (camelCase keys as stored)
        doc_id: Document id; falls back to raw["id"]
    """
    status = raw.get("status")
    if isinstance(status, ItemStatus):
        status = status.value
    if not isinstance(status, str) or status.lower() not in _STATUSES:
        status = ItemStatus.INACTIVE.value

    category_names = _str_list(raw.get("categoryNames"))
    category = _text(raw.get("category"), category_names[0] if category_names else DEFAULT_CATEGORY)
    category_id = raw.get("categoryId")
    if not isinstance(category_id, str) or not category_id:
        category_id = category

    image_urls = _str_list(raw.get("imageUrls"))
    image = image_urls[0] if image_urls else _text(raw.get("image"), DEFAULT_IMAGE)
    seller_id = raw.get("sellerId") or raw.get("createdBy") or None

    sale_price = raw.get("salePrice")

    return CatalogItem(
        id=str(doc_id if doc_id is not None else raw.get("id", "")),
        title=_text(raw.get("title"), _text(raw.get("name"), "Untitled Product")),
        description=raw.get("description") if isinstance(raw.get("description"), str) else "",
        price=to_float(raw.get("price")),
        category=category,
        category_id=category_id,
        condition=_text(raw.get("condition"), "new"),
        tags=_str_list(raw.get("tags")),
        status=status.lower(),
        seller_id=str(seller_id) if seller_id is not None else None,
        image_urls=image_urls,
        image=image,
        view_count=to_int(raw.get("viewCount")),
        inquiry_count=to_int(raw.get("inquiryCount")),
        favorite_count=to_int(raw.get("favoriteCount")),
        quantity=to_int(raw.get("quantity")),
        is_on_sale=bool(raw.get("isOnSale", False)),
        sale_price=to_float(sale_price) if sale_price is not None else None,
        created_at=to_datetime(raw.get("createdAt")),
        updated_at=to_datetime(raw.get("updatedAt")),
    )


def normalize_snapshot(doc: DocumentSnapshot) -> CatalogItem:
    return normalize_product(doc.data or {}, doc_id=doc.id)
