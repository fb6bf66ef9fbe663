#!/usr/bin/env python3
"""Base-quality model and genotype likelihoods.

The quality model follows the Demuxlet online methods: a base call with error
probability ``p`` contributes, for the symbol it reports, the log-probabilities
of being seen under four dosage hypotheses (columns of the quality matrix):

    0: 1 - p            homozygous for the observed symbol
    1: 3/4 - 2/3 p      three of four copies (doublet RR+RA / RA+AA)
    2: 1/2 - 1/3 p      heterozygous
    3: p                sequencing error

The log argument of column 1 turns negative for ``p > 9/8`` (negative
qualities) and column 0 is undefined at ``p == 1`` (quality 0). These cases
come from the model itself; they are not clamped away here, so ``min_bq`` must
be at least 1.
"""

from functools import lru_cache
from math import log

import numpy as np
from numpy.typing import NDArray

from cellpileup.core.constants import (
    BASE_SYMBOLS,
    MAX_GENOTYPES,
    N_BASES,
    N_INDEX,
    N_QUAL_HYPOTHESES,
    PHRED_TABLE_SIZE,
    BaseIndex,
)
from cellpileup.core.errors import DegenerateModelInput

_LOG_2_3 = log(2.0 / 3)
_LOG_1_3 = log(1.0 / 3)
_LOG_1_4 = log(1.0 / 4)

_BASE_INDEX = {b: i for i, b in enumerate(BASE_SYMBOLS)}
_BASE_INDEX.update({b.lower(): i for i, b in enumerate(BASE_SYMBOLS)})


def base_to_index(base: str | int | None) -> BaseIndex:
    """Index of a base symbol in 'ACGTN'; anything unrecognised counts as N."""
    if isinstance(base, int):
        return base if 0 <= base < N_BASES else N_INDEX
    if not base:
        return N_INDEX
    return _BASE_INDEX.get(base, N_INDEX)


def allele_to_index(allele: str | None) -> BaseIndex:
    """Index for a known allele letter, -1 when the allele is unknown."""
    if not allele or allele == ".":
        return -1
    return base_to_index(allele[0])


def quality_to_log_probs(quality: float, cap: float, floor: float) -> tuple[float, float, float, float]:
    """Convert a base quality into log-probabilities for the four dosage hypotheses.

    The quality is clamped to ``[floor, cap]`` first. ``floor <= cap`` is the
    caller's responsibility.

    Raises:
        ValueError: from ``math.log`` when the clamped quality is 0.
    """
    bq = max(min(cap, quality), floor)
    p = 0.1 ** (bq / 10)
    return (log(1 - p), log(0.75 - 2.0 / 3 * p), log(0.5 - 1.0 / 3 * p), log(p))


@lru_cache(maxsize=8)
def quality_table(cap: int, floor: int) -> NDArray[np.float64]:
    """Lookup table of ``quality_to_log_probs`` for phred 0-93.

    The table is read-only; qualities above 93 should be looked up at row 93.
    """
    table = np.empty((PHRED_TABLE_SIZE, N_QUAL_HYPOTHESES), dtype=np.float64)
    for q in range(PHRED_TABLE_SIZE):
        table[q] = quality_to_log_probs(q, cap, floor)
    table.setflags(write=False)
    return table


def qual_matrix_to_geno(
    qmat: NDArray[np.float64],
    bc: NDArray[np.int64] | list[int],
    ref_idx: int,
    alt_idx: int,
    doublet: bool = False,
) -> list[float]:
    """Genotype log-likelihoods from a 5x4 quality matrix and base counts.

    Bases other than ref and alt are modelled as sequencing errors towards one
    of the two remaining non-ref/alt symbols.

    Args:
        qmat: Quality matrix, rows in 'ACGTN' order.
        bc: Base counts in 'ACGTN' order.
        ref_idx: Index of the reference allele.
        alt_idx: Index of the alternate allele.
        doublet: Also return the RR+RA and RA+AA doublet likelihoods.

    Returns:
        [GL_RR, GL_RA, GL_AA] or, with doublet, [GL_RR, GL_RA, GL_AA, GL_RRRA, GL_RAAA].

    Raises:
        DegenerateModelInput: ref and alt are the same symbol.
    """
    if ref_idx == alt_idx:
        raise DegenerateModelInput(ref_idx, alt_idx)

    oth_qual = 0.0
    oth_read = 0
    for i in range(N_BASES):
        if i != ref_idx and i != alt_idx:
            oth_qual += float(qmat[i][3])
            oth_read += int(bc[i])
    oth_qual += _LOG_2_3 * oth_read

    ref_read = int(bc[ref_idx])
    alt_read = int(bc[alt_idx])
    ref_qual = qmat[ref_idx]
    alt_qual = qmat[alt_idx]

    gl = [
        oth_qual + ref_qual[0] + alt_qual[3] + _LOG_1_3 * alt_read,
        oth_qual + ref_qual[2] + alt_qual[2],
        oth_qual + ref_qual[3] + alt_qual[0] + _LOG_1_3 * ref_read,
    ]
    if doublet:
        gl.append(oth_qual + ref_qual[1] + _LOG_1_4 * alt_read)
        gl.append(oth_qual + alt_qual[1] + _LOG_1_4 * ref_read)
    return [float(x) for x in gl[:MAX_GENOTYPES]]


def infer_ref_alt(bc: NDArray[np.int64] | list[int]) -> tuple[int, int]:
    """Pick the two most frequent symbols as (ref, alt).

    One left-to-right scan keeps the running top two; a later symbol only
    replaces one with a strictly greater count, so the lowest index wins ties.
    """
    if bc[0] < bc[1]:
        m1, m2, k1, k2 = bc[1], bc[0], 1, 0
    else:
        m1, m2, k1, k2 = bc[0], bc[1], 0, 1
    for i in range(2, N_BASES):
        if bc[i] > m1:
            m2, k2 = m1, k1
            m1, k1 = bc[i], i
        elif bc[i] > m2:
            m2, k2 = bc[i], i
    return k1, k2
