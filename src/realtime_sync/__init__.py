"""
Realtime consistency module.

Provides:
- RealtimeProductService: Live product subscriptions with release handles
- CategoryCountReconciler: Incremental and batch category count maintenance
"""

from realtime_sync.subscriber import (
    RealtimeProductService,
    SubscriptionHandle,
    derive_category_deltas,
    get_realtime_product_service,
)
from realtime_sync.reconciler import CategoryCountReconciler, get_category_count_reconciler

__all__ = [
    "RealtimeProductService",
    "SubscriptionHandle",
    "derive_category_deltas",
    "get_realtime_product_service",
    "CategoryCountReconciler",
    "get_category_count_reconciler",
]
