#!/usr/bin/env python3
"""UMI grouping and duplicate collapsing for one sample group at one position."""

from collections.abc import Iterator
from dataclasses import dataclass, field

from cellpileup.core.constants import N_BASES, N_INDEX, UMIKey
from cellpileup.core.errors import StaleHandleError
from cellpileup.core.pool import KeyPool, ObjectPool


@dataclass
class UMIUnit:
    """Base and quality contributed by one read to its UMI group."""

    base: int = N_INDEX
    qual: int = 0


@dataclass
class UMIGroup:
    """Reads sharing one UMI, in the order they were seen."""

    units: list[UMIUnit] = field(default_factory=list)

    def add(self, unit: UMIUnit) -> None:
        self.units.append(unit)

    def clear(self) -> None:
        del self.units[:]

    def __len__(self) -> int:
        return len(self.units)


def reset_unit(unit: UMIUnit) -> None:
    unit.base = N_INDEX
    unit.qual = 0


def reset_group(group: UMIGroup) -> None:
    group.clear()


def new_unit_pool(max_size: int | None = None) -> ObjectPool[UMIUnit]:
    return ObjectPool(UMIUnit, reset_unit, max_size)


def new_group_pool(max_size: int | None = None) -> ObjectPool[UMIGroup]:
    return ObjectPool(UMIGroup, reset_group, max_size)


def collapse_group(units: list[UMIUnit]) -> tuple[int, int]:
    """Collapse the reads of one UMI group into a single (base, quality) call.

    The base seen most often wins. Ties go to the base with the higher best
    quality, then to the lower index in 'ACGTN'. The retained quality is the
    best quality among reads carrying the retained base. The result does not
    depend on read order.
    """
    counts = [0] * N_BASES
    best_qual = [-1] * N_BASES
    for unit in units:
        counts[unit.base] += 1
        if unit.qual > best_qual[unit.base]:
            best_qual[unit.base] = unit.qual
    base = max(range(N_BASES), key=lambda i: (counts[i], best_qual[i], -i))
    return base, best_qual[base]


class DuplicateMoleculeMap:
    """Maps UMI -> UMIGroup for one sample group at one position.

    Groups, units and key strings are borrowed from the pools owned by the
    multi-sample pileup; ``reset`` only forgets them, the owner resets the
    pools.
    """

    def __init__(self, unit_pool: ObjectPool[UMIUnit], group_pool: ObjectPool[UMIGroup], key_pool: KeyPool) -> None:
        self._unit_pool = unit_pool
        self._group_pool = group_pool
        self._key_pool = key_pool
        self._groups: dict[UMIKey, UMIGroup] = {}
        self._singletons: list[UMIUnit] = []
        self._generation = unit_pool.generation

    def add_observation(self, key: str | bytes | None, base: int, qual: int) -> None:
        """Add one read's evidence under its UMI; reads without a UMI stand alone."""
        if self._generation != self._unit_pool.generation:
            if self._groups or self._singletons:
                raise StaleHandleError("UMI map holds objects from a previous position; reset() it first")
            self._generation = self._unit_pool.generation

        unit = self._unit_pool.acquire()
        unit.base = base
        unit.qual = qual

        if not key:
            self._singletons.append(unit)
            return

        if isinstance(key, bytes):
            key = key.decode("ascii")
        group = self._groups.get(key)
        if group is None:
            group = self._group_pool.acquire()
            self._groups[self._key_pool.acquire(key)] = group
        group.add(unit)

    def reset(self) -> None:
        self._groups.clear()
        del self._singletons[:]
        self._generation = self._unit_pool.generation

    def groups(self) -> Iterator[tuple[UMIKey, UMIGroup]]:
        """Each UMI exactly once, in first-seen order."""
        return iter(self._groups.items())

    @property
    def n_singletons(self) -> int:
        return len(self._singletons)

    def collapse(self) -> Iterator[tuple[int, int]]:
        """One (base, quality) per UMI group, followed by the reads without UMI."""
        for group in self._groups.values():
            yield collapse_group(group.units)
        for unit in self._singletons:
            yield unit.base, unit.qual

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, key: str) -> bool:
        return key in self._groups
