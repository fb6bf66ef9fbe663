#!/usr/bin/env python3
"""Exception types raised by the pileup engine.

Allocation and configuration problems are fatal and propagate to the caller.
Degenerate model input and malformed observations are handled where they occur
(logged and skipped); the exception types exist so strict callers can ask for
them to be raised instead.
"""


class PileupError(Exception):
    """Base class for pileup engine errors."""


class AllocationFailure(PileupError, MemoryError):
    """A pool or structure could not grow, or was used after being destroyed."""


class ConfigurationError(PileupError, ValueError):
    """Invalid sample-group setup or engine parameters."""


class DegenerateModelInput(PileupError, ValueError):
    """Reference and alternate allele resolve to the same base symbol."""

    def __init__(self, ref_idx: int, alt_idx: int) -> None:
        super().__init__(f"ref and alt allele share base index {ref_idx}")
        self.ref_idx = ref_idx
        self.alt_idx = alt_idx


class MalformedObservation(PileupError, ValueError):
    """A read observation carries no sample-group tag known to the engine."""

    def __init__(self, tag: str | None) -> None:
        super().__init__(f"unknown sample group tag: {tag!r}")
        self.tag = tag


class StaleHandleError(PileupError, RuntimeError):
    """Pooled objects from an earlier position were used after the pools were reset."""
