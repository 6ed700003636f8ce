"""Pairing store, approval transactions and request watcher."""

from pairgate.pairing.approval import (
    FoldResult,
    approve,
    find_request,
    fold_allow_from,
    is_approved,
    remove_allow_from,
    revoke,
)
from pairgate.pairing.manager import PairingManager
from pairgate.pairing.store import AllowFromAccessor, PairingStoreAccessor, StoreLock, WriteReport
from pairgate.pairing.types import AllowFromList, ApprovedEntry, PairingRequest, PairingStore
from pairgate.pairing.watcher import PairingWatcher

__all__ = [
    "PairingRequest",
    "ApprovedEntry",
    "PairingStore",
    "AllowFromList",
    "PairingStoreAccessor",
    "AllowFromAccessor",
    "StoreLock",
    "WriteReport",
    "FoldResult",
    "approve",
    "fold_allow_from",
    "revoke",
    "remove_allow_from",
    "is_approved",
    "find_request",
    "PairingWatcher",
    "PairingManager",
]
