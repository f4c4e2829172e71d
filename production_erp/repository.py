"""In-memory repositories and paging helpers used by the inventory stores."""

from __future__ import annotations

from typing import (
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterator,
    List,
    MutableMapping,
    TypeVar,
)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[K, T]):
    """Generic repository backed by a simple dictionary."""

    def __init__(self) -> None:
        self._items: MutableMapping[K, T] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, key: K, item: T) -> None:
        if key in self._items:
            raise DuplicateRecordError(f"Record with key {key!r} already exists")
        self._items[key] = item

    def upsert(self, key: K, item: T) -> None:
        self._items[key] = item

    def get(self, key: K) -> T:
        try:
            return self._items[key]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with key {key!r} not found") from exc

    def remove(self, key: K) -> None:
        if key not in self._items:
            raise RecordNotFoundError(f"Record with key {key!r} not found")
        del self._items[key]

    def list(self) -> List[T]:
        return list(self._items.values())

    def snapshot(self) -> Dict[K, T]:
        return dict(self._items)

    def restore(self, items: Dict[K, T]) -> None:
        self._items = dict(items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))


class PagedQuery(Generic[T]):
    """Lazy, finite and restartable sequence fetched one page at a time.

    ``fetch_page(offset, limit)`` is called with growing offsets until it
    returns fewer than ``page_size`` rows. Iterating again restarts from the
    first page.
    """

    def __init__(
        self, fetch_page: Callable[[int, int], List[T]], *, page_size: int = 200
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._fetch_page = fetch_page
        self.page_size = page_size

    def __iter__(self) -> Iterator[T]:
        offset = 0
        while True:
            page = self._fetch_page(offset, self.page_size)
            yield from page
            if len(page) < self.page_size:
                return
            offset += len(page)

    def pages(self) -> Iterator[List[T]]:
        offset = 0
        while True:
            page = self._fetch_page(offset, self.page_size)
            if page:
                yield page
            if len(page) < self.page_size:
                return
            offset += len(page)

    def all(self) -> List[T]:
        return list(self)


__all__ = [
    "InMemoryRepository",
    "PagedQuery",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
