"""Unit tests for cellpileup.core.pool module."""

import pytest

from cellpileup.core.errors import AllocationFailure
from cellpileup.core.pool import KeyPool, ObjectPool


class Box:
    def __init__(self):
        self.value = 0


def reset_box(box):
    box.value = 0


class TestObjectPool:
    """Tests for the reusable object slab."""

    def test_acquire_creates_objects(self):
        """New objects come from the factory until the slab is exhausted."""
        pool = ObjectPool(Box, reset_box)
        a = pool.acquire()
        b = pool.acquire()
        assert a is not b
        assert len(pool) == 2
        assert pool.capacity == 2

    def test_reset_all_reuses_and_resets(self):
        """After reset_all the same objects are handed out again, reset."""
        pool = ObjectPool(Box, reset_box)
        a = pool.acquire()
        a.value = 42
        pool.reset_all()
        assert len(pool) == 0
        again = pool.acquire()
        assert again is a
        assert again.value == 0

    def test_generation_advances(self):
        """Every reset starts a new generation."""
        pool = ObjectPool(Box, reset_box)
        gen = pool.generation
        pool.reset_all()
        assert not pool.is_current(gen)
        assert pool.is_current(gen + 1)

    def test_capacity_stable_over_many_cycles(self):
        """Repeated fill/reset cycles of the same size never grow the slab."""
        pool = ObjectPool(Box, reset_box)
        for _ in range(1000):
            for _ in range(10):
                pool.acquire()
            pool.reset_all()
        assert pool.capacity == 10
        assert pool.size == 0

    def test_max_size(self):
        """Growing beyond max_size fails."""
        pool = ObjectPool(Box, reset_box, max_size=2)
        pool.acquire()
        pool.acquire()
        with pytest.raises(AllocationFailure):
            pool.acquire()

    def test_max_size_allows_reuse(self):
        """A full pool can still hand out its slots after a reset."""
        pool = ObjectPool(Box, reset_box, max_size=1)
        pool.acquire()
        pool.reset_all()
        assert pool.acquire() is not None

    def test_destroyed_pool(self):
        """A destroyed pool refuses to hand out objects."""
        pool = ObjectPool(Box, reset_box)
        pool.acquire()
        pool.destroy()
        assert pool.capacity == 0
        with pytest.raises(AllocationFailure):
            pool.acquire()

    def test_allocation_failure_is_memory_error(self):
        """AllocationFailure can be caught as MemoryError."""
        pool = ObjectPool(Box, max_size=0)
        with pytest.raises(MemoryError):
            pool.acquire()


class TestKeyPool:
    """Tests for the UMI key string pool."""

    def test_bytes_are_decoded(self):
        """Byte keys are stored as ASCII strings."""
        pool = KeyPool()
        assert pool.acquire(b"ACGT") == "ACGT"

    def test_slots_are_reused(self):
        """Keys from a previous generation are overwritten in place."""
        pool = KeyPool()
        pool.acquire("AAAA")
        pool.acquire("CCCC")
        pool.reset_all()
        assert pool.acquire("GGGG") == "GGGG"
        assert pool.capacity == 2
        assert len(pool) == 1

    def test_limit_and_destroy(self):
        """Key pools share the limit and destroy behaviour of object pools."""
        pool = KeyPool(max_size=1)
        pool.acquire("A")
        with pytest.raises(AllocationFailure):
            pool.acquire("C")
        pool.destroy()
        with pytest.raises(AllocationFailure):
            pool.acquire("G")

    def test_generation_matches_object_pool(self):
        """Key and object pools advance their generation the same way."""
        keys = KeyPool()
        objects = ObjectPool(Box, reset_box)
        for pool in (keys, objects):
            gen = pool.generation
            pool.reset_all()
            pool.destroy()
            assert pool.generation == gen + 2
            assert pool.size == 0
