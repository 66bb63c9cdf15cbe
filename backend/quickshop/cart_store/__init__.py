# Overview: Client-held shopping cart with guest/user merge and server mirroring.

from .items import (
    CartItem,
    CartError,
    OutOfStockError,
    InsufficientStockError,
    merge_carts,
    PLACEHOLDER_IMAGE,
)
from .remote import CartRemote, CartSyncError, HttpCartRemote
from .storage import JsonFileCartStorage, MemoryCartStorage
from .store import CartStore, SyncTask, SyncOutcome, log_notifier

__all__ = [
    "CartItem",
    "CartError",
    "OutOfStockError",
    "InsufficientStockError",
    "merge_carts",
    "PLACEHOLDER_IMAGE",
    "CartRemote",
    "CartSyncError",
    "HttpCartRemote",
    "JsonFileCartStorage",
    "MemoryCartStorage",
    "CartStore",
    "SyncTask",
    "SyncOutcome",
    "log_notifier",
]
