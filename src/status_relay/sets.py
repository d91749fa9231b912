"""
A minimal set that enumerates its elements in sorted order.

Rendering is stable (``[a b c]``) so that it can be embedded in error messages
and compared in tests.
"""

from typing import Generic, Iterable, Iterator, TypeVar

T = TypeVar("T")


class Set(Generic[T]):
    def __init__(self, items: Iterable[T] = ()):
        self._items: set[T] = set(items)

    @classmethod
    def of(cls, *items: T) -> "Set[T]":
        return cls(items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self.ordered_list())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Set):
            return NotImplemented
        return self._items == other._items

    def __str__(self) -> str:
        return "[" + " ".join(str(item) for item in self.ordered_list()) + "]"

    def __repr__(self) -> str:
        return f"Set({self.ordered_list()!r})"

    def size(self) -> int:
        return len(self._items)

    def ordered_list(self) -> list[T]:
        return sorted(self._items)  # type: ignore[type-var]

    def contains(self, item: T) -> bool:
        return item in self._items

    def add(self, item: T) -> None:
        self._items.add(item)

    def remove(self, item: T) -> bool:
        """Remove item. Return True if it was present."""
        if item not in self._items:
            return False
        self._items.discard(item)
        return True

    def difference(self, other: "Set[T]") -> "Set[T]":
        return Set(self._items - other._items)

    def intersection(self, other: "Set[T]") -> "Set[T]":
        return Set(self._items & other._items)

    def union(self, other: "Set[T]") -> "Set[T]":
        return Set(self._items | other._items)
