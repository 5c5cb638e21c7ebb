"""Key-value storage the upload simulator writes into.

Modelled on browser local storage: string keys, string values, a fixed
capacity and a distinguishable error when a write would go past it.
"""

import json
import logging
from typing import Any, Iterable, Protocol

from pydantic import BaseModel

from domain.models import Bytes, StorageUsage


logger = logging.getLogger(__name__)


MiB = 1024 * 1024
DEFAULT_QUOTA: Bytes = 5 * MiB


class QuotaExceededError(Exception):
    """A write was rejected because the store is full."""


class KeyValueStore(Protocol):
    def set_item(self, key: str, value: str) -> None: ...

    def get_item(self, key: str) -> str | None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> Iterable[str]: ...

    def clear(self) -> None: ...


def entry_size(key: str, value: str) -> Bytes:
    return len(key) + len(value)


class MemoryKeyValueStore:
    """Process-local store with a hard capacity."""

    def __init__(self, quota: Bytes = DEFAULT_QUOTA) -> None:
        self.quota = quota
        self._items: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"<MemoryKeyValueStore(entries={len(self._items)}, used={self.used})>"

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def used(self) -> Bytes:
        return sum(entry_size(k, v) for k, v in self._items.items())

    def set_item(self, key: str, value: str) -> None:
        current = self._items.get(key)
        freed = 0 if current is None else entry_size(key, current)
        if self.used - freed + entry_size(key, value) > self.quota:
            raise QuotaExceededError(f"Setting '{key}' exceeds the {self.quota} byte quota.")
        self._items[key] = value

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


def serialize(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    return json.dumps(value)


def safe_set(store: KeyValueStore, key: str, value: Any) -> bool:
    """Store `value` as JSON. False when the store is full, other errors propagate."""
    try:
        store.set_item(key, serialize(value))
    except QuotaExceededError:
        logger.error("Storage quota exceeded while setting key '%s'.", key)
        return False
    return True


def safe_get(store: KeyValueStore, key: str) -> Any:
    """Parsed JSON stored under `key`, None when missing or unreadable."""
    try:
        item = store.get_item(key)
        return json.loads(item) if item else None
    except Exception:
        logger.exception("Error reading storage key '%s'.", key)
        return None


def safe_remove(store: KeyValueStore, key: str) -> None:
    try:
        store.remove_item(key)
    except Exception:
        logger.exception("Error removing storage key '%s'.", key)


def clear_storage(store: KeyValueStore, confirm: bool = False) -> bool:
    """Remove everything from the store. Does nothing unless `confirm` is set."""
    if not confirm:
        logger.warning("clear_storage called without confirmation, nothing removed.")
        return False

    try:
        store.clear()
    except Exception:
        logger.exception("Error clearing storage.")
        return False
    logger.info("Storage cleared.")
    return True


def measure_storage_usage(
    store: KeyValueStore | None,
    budget: Bytes = DEFAULT_QUOTA,
) -> StorageUsage:
    """Approximate usage of `store` against `budget`. Never raises."""
    if store is None:
        return StorageUsage.empty(budget)

    try:
        used = 0
        for key in store.keys():
            value = store.get_item(key)
            if value is not None:
                used += entry_size(key, value)
        return StorageUsage(
            used=used,
            available=max(0, budget - used),
            percentage=min(100, used / budget * 100),
        )
    except Exception:
        logger.exception("Error calculating storage usage.")
        return StorageUsage.empty(budget)
