"""In-memory keyed storage used by the operation registry."""

from __future__ import annotations

from typing import Generic, Iterator, List, MutableMapping, Optional, TypeVar

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when a key is already taken."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[T]):
    """Insertion-ordered records that live for the lifetime of the process."""

    def __init__(self) -> None:
        self._items: MutableMapping[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        # iterates over a snapshot
        return iter(list(self._items.values()))

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = item

    def find(self, item_id: str) -> Optional[T]:
        return self._items.get(item_id)

    def pop(self, item_id: str) -> T:
        try:
            return self._items.pop(item_id)
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def list(self) -> List[T]:
        return list(self._items.values())


__all__ = [
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
