#!/usr/bin/env python3
"""Pileup accumulation for one position across a fixed set of sample groups.

``MultiSamplePileup`` is built once per worker and reused for every candidate
position: ``reset`` -> ``ingest`` for each read -> ``finalize`` -> format.
"""

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from cellpileup.core.constants import (
    BASE_SYMBOLS,
    DEFAULT_CAP_BQ,
    DEFAULT_MIN_BQ,
    MAX_GENOTYPES,
    N_BASES,
    N_QUAL_HYPOTHESES,
    PHRED_TABLE_SIZE,
    UNSET_INDEX,
    SampleGroupName,
)
from cellpileup.core.errors import ConfigurationError, DegenerateModelInput, MalformedObservation
from cellpileup.core.logging_config import get_logger
from cellpileup.core.pool import KeyPool, ObjectPool
from cellpileup.core.quality import (
    allele_to_index,
    base_to_index,
    infer_ref_alt,
    qual_matrix_to_geno,
    quality_table,
)
from cellpileup.core.umi_group import DuplicateMoleculeMap, UMIGroup, UMIUnit, new_group_pool, new_unit_pool

if TYPE_CHECKING:
    from cellpileup.core.read_source import ReadObservation

logger = get_logger(__name__)

_MAX_QUAL = PHRED_TABLE_SIZE - 1


def count_alleles(bc: NDArray[np.int64], tc: int, ref_idx: int, alt_idx: int) -> tuple[int, int, int]:
    """AD, DP and OTH from base counts.

    DP counts ref and alt reads; when both resolve to the same symbol its
    reads are counted once.
    """
    ad = int(bc[alt_idx])
    dp = int(bc[ref_idx]) if ref_idx == alt_idx else int(bc[ref_idx]) + ad
    return ad, dp, tc - dp


class SampleGroupPileup:
    """Base counts, quality matrix and genotype likelihoods of one sample group."""

    def __init__(self, name: str, qtable: NDArray[np.float64], umis: DuplicateMoleculeMap | None = None) -> None:
        self.name = name
        self.qtable = qtable
        self.umis = umis
        self.bc = np.zeros(N_BASES, dtype=np.int64)
        self.tc = 0
        self.ad = 0
        self.dp = 0
        self.oth = 0
        self.qmat = np.zeros((N_BASES, N_QUAL_HYPOTHESES), dtype=np.float64)
        self.gl = np.zeros(MAX_GENOTYPES, dtype=np.float64)
        self.ngl = 0
        self.nskip = 0

    def push(self, base: int, qual: int, umi: str | bytes | None = None) -> None:
        """Record one read; with UMI grouping the read is held until ``stat``."""
        if self.umis is not None:
            self.umis.add_observation(umi, base, qual)
        else:
            self.add_evidence(base, qual)

    def add_evidence(self, base: int, qual: int) -> None:
        self.bc[base] += 1
        self.tc += 1
        self.qmat[base] += self.qtable[min(max(qual, 0), _MAX_QUAL)]

    def stat(self) -> None:
        """Collapse UMI groups into one contribution each."""
        if self.umis is None:
            return
        for base, qual in self.umis.collapse():
            self.add_evidence(base, qual)

    def count_alleles(self, ref_idx: int, alt_idx: int) -> None:
        self.ad, self.dp, self.oth = count_alleles(self.bc, self.tc, ref_idx, alt_idx)

    def compute_genotype(self, ref_idx: int, alt_idx: int, doublet: bool = False) -> bool:
        """Fill ``gl``/``ngl``. Returns False, leaving ``ngl`` at 0, for degenerate alleles."""
        try:
            gl = qual_matrix_to_geno(self.qmat, self.bc, ref_idx, alt_idx, doublet)
        except DegenerateModelInput:
            self.ngl = 0
            return False
        self.gl[: len(gl)] = gl
        self.ngl = len(gl)
        return True

    def reset(self) -> None:
        self.bc.fill(0)
        self.tc = self.ad = self.dp = self.oth = 0
        self.qmat.fill(0.0)
        self.gl.fill(0.0)
        self.ngl = 0
        self.nskip = 0
        if self.umis is not None:
            self.umis.reset()


class MultiSamplePileup:
    """Pileup of all sample groups at one candidate position.

    Owns the per-group pileups and the three pools (UMI units, UMI groups and
    UMI key strings) the groups borrow from.

    Args:
        cap_bq: Base qualities above this are capped.
        min_bq: Base qualities below this are raised to it.
        use_umi: Collapse reads sharing a UMI into one contribution.
        doublet_gl: Also compute the two doublet genotype likelihoods.
        pool_limit: Optional upper bound for each pool.
    """

    def __init__(
        self,
        cap_bq: int = DEFAULT_CAP_BQ,
        min_bq: int = DEFAULT_MIN_BQ,
        use_umi: bool = True,
        doublet_gl: bool = False,
        pool_limit: int | None = None,
    ) -> None:
        if min_bq < 1:
            raise ConfigurationError(f"min_bq must be at least 1, got {min_bq}")
        if min_bq > cap_bq:
            raise ConfigurationError(f"min_bq ({min_bq}) must not exceed cap_bq ({cap_bq})")
        self.cap_bq = cap_bq
        self.min_bq = min_bq
        self.use_umi = use_umi
        self.doublet_gl = doublet_gl
        self.qtable = quality_table(cap_bq, min_bq)

        self.unit_pool: ObjectPool[UMIUnit] = new_unit_pool(pool_limit)
        self.group_pool: ObjectPool[UMIGroup] = new_group_pool(pool_limit)
        self.key_pool = KeyPool(pool_limit)

        self.ref_idx = UNSET_INDEX
        self.alt_idx = UNSET_INDEX
        self.inf_rid = UNSET_INDEX
        self.inf_aid = UNSET_INDEX
        self.bc = np.zeros(N_BASES, dtype=np.int64)
        self.tc = 0
        self.ad = 0
        self.dp = 0
        self.oth = 0
        self.nr_ad = 0
        self.nr_dp = 0
        self.nr_oth = 0
        self.n_unmatched = 0
        self.is_degenerate = False
        self.finalized = False

        self._index: Mapping[str, int] | None = None
        self._names: tuple[str, ...] = ()
        self._groups: list[SampleGroupPileup] = []

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_sample_groups(self, names: Iterable[SampleGroupName]) -> None:
        """Fix the sample groups and their output order. May be called once."""
        if self._index is not None:
            raise ConfigurationError("sample groups have already been set")
        if names is None:
            raise ConfigurationError("sample group names must not be None")
        names = tuple(names)
        if not names:
            raise ConfigurationError("at least one sample group is required")

        index: dict[str, int] = {}
        for i, name in enumerate(names):
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"invalid sample group name at position {i}: {name!r}")
            if name in index:
                raise ConfigurationError(f"duplicated sample group name: {name}")
            index[name] = i

        self._groups = [
            SampleGroupPileup(
                name,
                self.qtable,
                DuplicateMoleculeMap(self.unit_pool, self.group_pool, self.key_pool) if self.use_umi else None,
            )
            for name in names
        ]
        self._names = names
        self._index = MappingProxyType(index)

    @property
    def sample_names(self) -> tuple[SampleGroupName, ...]:
        return self._names

    @property
    def nsg(self) -> int:
        return len(self._groups)

    def index_of(self, name: str) -> int | None:
        if self._index is None:
            return None
        return self._index.get(name)

    def group(self, i: int) -> SampleGroupPileup:
        return self._groups[i]

    def sample_groups(self) -> Iterator[tuple[str, SampleGroupPileup]]:
        """(name, pileup) pairs in output order."""
        return zip(self._names, self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    # ------------------------------------------------------------------
    # Per position
    # ------------------------------------------------------------------

    def reset(self, ref: str | None = None, alt: str | None = None) -> None:
        """Prepare for a new position. Known ref/alt alleles may be given as letters."""
        self.ref_idx = allele_to_index(ref)
        self.alt_idx = allele_to_index(alt)
        self.inf_rid = self.inf_aid = UNSET_INDEX
        self.bc.fill(0)
        self.tc = self.ad = self.dp = self.oth = 0
        self.nr_ad = self.nr_dp = self.nr_oth = 0
        self.n_unmatched = 0
        self.is_degenerate = False
        self.finalized = False
        for plp in self._groups:
            plp.reset()
        self.unit_pool.reset_all()
        self.group_pool.reset_all()
        self.key_pool.reset_all()

    def ingest(self, obs: "ReadObservation", strict: bool = False) -> bool:
        """Add one read to the sample group named by its tag.

        Returns False when the read was not counted: unknown or missing tag
        (counted in ``n_unmatched``), deletion or reference skip.

        Raises:
            MalformedObservation: unknown tag and ``strict`` is set.
        """
        if self._index is None:
            raise ConfigurationError("set_sample_groups() must be called before ingest()")
        self._require_open()
        i = self._index.get(obs.cell) if obs.cell else None
        if i is None:
            self.n_unmatched += 1
            if strict:
                raise MalformedObservation(obs.cell)
            return False
        return self.ingest_index(i, obs)

    def ingest_index(self, i: int, obs: "ReadObservation") -> bool:
        """Add one read to the sample group at ordinal ``i``."""
        self._require_open()
        plp = self._groups[i]
        if obs.is_del or obs.is_refskip:
            plp.nskip += 1
            return False
        plp.push(base_to_index(obs.base), obs.qual, obs.umi if self.use_umi else None)
        return True

    def finalize(self) -> None:
        """Collapse UMIs, aggregate counts, resolve alleles and compute likelihoods."""
        if self.finalized:
            raise RuntimeError("finalize() already ran for this position; call reset() first")
        for plp in self._groups:
            plp.stat()
            self.bc += plp.bc
            self.tc += plp.tc

        if self.ref_idx < 0 or self.alt_idx < 0:
            self.inf_rid, self.inf_aid = infer_ref_alt(self.bc)
            if self.ref_idx < 0 and self.alt_idx < 0:
                self.ref_idx, self.alt_idx = self.inf_rid, self.inf_aid
            elif self.ref_idx < 0:
                self.ref_idx = self.inf_rid if self.inf_rid != self.alt_idx else self.inf_aid
            else:
                self.alt_idx = self.inf_rid if self.inf_rid != self.ref_idx else self.inf_aid

        self.is_degenerate = self.ref_idx == self.alt_idx
        if self.is_degenerate:
            logger.warning(
                f"ref and alt are both {BASE_SYMBOLS[self.ref_idx]}; skipping genotype likelihoods for this position"
            )

        for plp in self._groups:
            plp.count_alleles(self.ref_idx, self.alt_idx)
            if plp.tc > 0 and not self.is_degenerate:
                plp.compute_genotype(self.ref_idx, self.alt_idx, self.doublet_gl)
            else:
                plp.ngl = 0

        self.ad, self.dp, self.oth = count_alleles(self.bc, self.tc, self.ref_idx, self.alt_idx)
        self.finalized = True

    def passes_filters(self, min_count: int, min_maf: float) -> bool:
        """Whether the aggregated counts reach the minimum depth and alt fraction."""
        if self.tc < min_count:
            return False
        return self.ad >= min_maf * self.tc

    @property
    def ref_base(self) -> str:
        return BASE_SYMBOLS[self.ref_idx] if self.ref_idx >= 0 else "."

    @property
    def alt_base(self) -> str:
        return BASE_SYMBOLS[self.alt_idx] if self.alt_idx >= 0 else "."

    def _require_open(self) -> None:
        if self.finalized:
            raise RuntimeError("position is finalized; call reset() before adding reads")

    def require_finalized(self) -> None:
        if not self.finalized:
            raise RuntimeError("finalize() must be called before formatting the pileup")

    def destroy(self) -> None:
        """Release pooled storage; the instance cannot be used afterwards."""
        self.unit_pool.destroy()
        self.group_pool.destroy()
        self.key_pool.destroy()
        self._groups = []
