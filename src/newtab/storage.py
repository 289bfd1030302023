"""Two-area key/value storage consumed by the providers and the session manager.

Each area is isolated and has its own capacity ceiling: a small "synced" area
for preferences and a larger "local" area for cached snapshots and tokens.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional, Protocol, TypeVar

from .errors import ValidationError

logger = logging.getLogger(__name__)

AreaName = Literal["synced", "local"]

SYNCED_QUOTA_BYTES = 100 * 1024
LOCAL_QUOTA_BYTES = 10 * 1024 * 1024

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class StorageChange:
    """Old and new value of a single key."""

    old_value: Any = None
    new_value: Any = None


StorageChangeCallback = Callable[[Dict[str, StorageChange], str], None]


class StorageQuotaError(RuntimeError):
    """Raised when a write would exceed the capacity of a storage area."""

    def __init__(self, message: str, area_name: str) -> None:
        super().__init__(message)
        self.area_name = area_name


class StorageArea(Protocol):
    """Async key/value area with default-value fallback and change events."""

    area_name: str

    async def get(self, key: str, default: T) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    def on_change(self, callback: StorageChangeCallback) -> Callable[[], None]: ...


class MemoryStorage:
    """In-process storage area.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, area_name: str = "local", quota_bytes: Optional[int] = None) -> None:
        self.area_name = area_name
        self._quota_bytes = quota_bytes
        self._items: dict[str, Any] = {}
        self._listeners: list[StorageChangeCallback] = []

    async def get(self, key: str, default: T) -> Any:
        if key in self._items:
            return copy.deepcopy(self._items[key])
        return default

    async def set(self, key: str, value: Any) -> None:
        candidate = dict(self._items)
        candidate[key] = copy.deepcopy(value)
        _check_quota(candidate, self._quota_bytes, self.area_name)
        old_value = self._items.get(key)
        self._items = candidate
        self._notify({key: StorageChange(old_value, copy.deepcopy(value))})

    async def remove(self, key: str) -> None:
        if key not in self._items:
            return
        old_value = self._items.pop(key)
        self._notify({key: StorageChange(old_value, None)})

    async def clear(self) -> None:
        logger.warning("Clearing all data from %s storage", self.area_name)
        changes = {key: StorageChange(value, None) for key, value in self._items.items()}
        self._items = {}
        if changes:
            self._notify(changes)

    def on_change(self, callback: StorageChangeCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, changes: Dict[str, StorageChange]) -> None:
        for listener in list(self._listeners):
            try:
                listener(changes, self.area_name)
            except Exception as exc:  # pragma: no cover - listener bug
                logger.warning("Storage change listener failed: %s", exc)


class JsonFileStorage(MemoryStorage):
    """Storage area persisted as a single JSON document on disk."""

    def __init__(
        self,
        path: Path,
        area_name: str = "local",
        quota_bytes: Optional[int] = None,
    ) -> None:
        super().__init__(area_name, quota_bytes)
        self._path = path
        self._lock = asyncio.Lock()
        self._loaded = False

    def _load_from_disk(self) -> None:
        if self._loaded:
            return
        if not self._path.exists():
            self._items = {}
            self._loaded = True
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError.parse_error(
                f"Storage operation failed: read {self._path}", exc
            ) from exc
        if not isinstance(raw, dict):
            raise ValidationError.parse_error(
                f"Storage file {self._path} does not contain an object"
            )
        self._items = raw
        self._loaded = True

    def _save_to_disk(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(self._items, indent=2, sort_keys=True)
        self._path.write_text(serialized + "\n", encoding="utf-8")

    async def get(self, key: str, default: T) -> Any:
        async with self._lock:
            self._load_from_disk()
            return await super().get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._load_from_disk()
            await super().set(key, value)
            self._save_to_disk()

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._load_from_disk()
            await super().remove(key)
            self._save_to_disk()

    async def clear(self) -> None:
        async with self._lock:
            # A corrupt file is still clearable.
            self._loaded = True
            await super().clear()
            self._save_to_disk()


@dataclass(slots=True)
class StorageAreas:
    """The two isolated storage areas."""

    synced: StorageArea
    local: StorageArea


def create_storage_areas(
    data_dir: Optional[Path],
    *,
    synced_quota_bytes: int = SYNCED_QUOTA_BYTES,
    local_quota_bytes: int = LOCAL_QUOTA_BYTES,
) -> StorageAreas:
    """Build file-backed areas under ``data_dir`` or in-memory ones."""

    if data_dir is None:
        return StorageAreas(
            synced=MemoryStorage("synced", synced_quota_bytes),
            local=MemoryStorage("local", local_quota_bytes),
        )
    return StorageAreas(
        synced=JsonFileStorage(data_dir / "synced_storage.json", "synced", synced_quota_bytes),
        local=JsonFileStorage(data_dir / "local_storage.json", "local", local_quota_bytes),
    )


def _check_quota(items: dict[str, Any], quota_bytes: Optional[int], area_name: str) -> None:
    if quota_bytes is None:
        return
    try:
        size = len(json.dumps(items).encode("utf-8"))
    except (TypeError, ValueError) as exc:
        raise ValidationError.parse_error(
            f"Storage operation failed: value in {area_name} is not serializable", exc
        ) from exc
    if size > quota_bytes:
        raise StorageQuotaError(
            f"Storage quota exceeded for {area_name} storage. Limit: {quota_bytes} bytes",
            area_name,
        )


__all__ = [
    "StorageArea",
    "StorageAreas",
    "StorageChange",
    "StorageQuotaError",
    "MemoryStorage",
    "JsonFileStorage",
    "create_storage_areas",
    "SYNCED_QUOTA_BYTES",
    "LOCAL_QUOTA_BYTES",
]
