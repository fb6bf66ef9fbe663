#!/usr/bin/env python3
"""Object pools reused across candidate positions.

A pool keeps a slab of objects and a logical length. ``acquire`` hands out the
next slot (creating it only above the high-water mark), ``reset_all`` sets the
logical length back to zero and bumps the generation. Objects handed out in an
earlier generation must not be used after a reset; holders can compare the
generation they recorded with ``pool.generation`` to detect this.
"""

from collections.abc import Callable
from typing import Generic, TypeVar

from cellpileup.core.errors import AllocationFailure

T = TypeVar("T")


class _Slab(Generic[T]):
    """Slot storage, logical length and generation shared by the pools."""

    def __init__(self, max_size: int | None = None) -> None:
        self._items: list[T] | None = []
        self._n = 0
        self.generation = 0
        self.max_size = max_size

    def _next_slot(self) -> tuple[list[T], bool]:
        """Storage and whether the next slot already holds an object; advances the length."""
        items = self._items
        if items is None:
            raise AllocationFailure(f"acquire() on a destroyed {type(self).__name__}")
        reuse = self._n < len(items)
        if not reuse and self.max_size is not None and len(items) >= self.max_size:
            raise AllocationFailure(f"{type(self).__name__} limit of {self.max_size} reached")
        self._n += 1
        return items, reuse

    def reset_all(self) -> None:
        """Invalidate everything acquired so far; storage is kept for the next generation."""
        self._n = 0
        self.generation += 1

    def destroy(self) -> None:
        """Release the slab. The pool cannot be used afterwards."""
        self._items = None
        self._n = 0
        self.generation += 1

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    @property
    def size(self) -> int:
        """Number of slots acquired in the current generation."""
        return self._n

    @property
    def capacity(self) -> int:
        """High-water mark: number of slots held in the slab."""
        return len(self._items) if self._items is not None else 0

    def __len__(self) -> int:
        return self._n


class ObjectPool(_Slab[T]):
    """Slab of reusable objects.

    Args:
        factory: Creates a new object when the slab has to grow.
        reset: Called on a reused object to make it logically fresh.
        max_size: Optional upper bound on the slab size.
    """

    def __init__(
        self,
        factory: Callable[[], T],
        reset: Callable[[T], None] | None = None,
        max_size: int | None = None,
    ) -> None:
        super().__init__(max_size)
        self._factory = factory
        self._reset = reset

    def acquire(self) -> T:
        """Return a fresh object, reusing a slot from an earlier generation if possible."""
        items, reuse = self._next_slot()
        if reuse:
            obj = items[self._n - 1]
            if self._reset is not None:
                self._reset(obj)
            return obj
        try:
            obj = self._factory()
        except MemoryError as e:
            self._n -= 1
            raise AllocationFailure("could not allocate pooled object") from e
        items.append(obj)
        return obj


class KeyPool(_Slab[str]):
    """Pool of duplicate-molecule key strings.

    Keys are copied into the pool on insertion so the map never refers to
    memory owned by the read source. Byte keys (as some BAM readers return
    them) are decoded as ASCII.
    """

    def acquire(self, key: str | bytes) -> str:
        """Store a copy of ``key`` in the next slot and return it."""
        items, reuse = self._next_slot()
        owned = key.decode("ascii") if isinstance(key, bytes) else str(key)
        if reuse:
            items[self._n - 1] = owned
        else:
            items.append(owned)
        return owned
