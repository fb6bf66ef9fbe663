#!/usr/bin/env python3
"""Per-read observations at one reference position, extracted with pysam."""

from collections.abc import Iterator
from dataclasses import dataclass

import pysam
from pydantic import BaseModel

from cellpileup.core.constants import (
    DEFAULT_EXCL_FLAG_NO_UMI,
    DEFAULT_EXCL_FLAG_UMI,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MIN_LEN,
    DEFAULT_MIN_MAPQ,
)


@dataclass
class ReadObservation:
    """What one read shows at the queried position.

    Attributes:
        base: Aligned base ('A', 'C', 'G', 'T', 'N'); None on a deletion/skip.
        qual: Base quality (phred).
        is_del: The position falls in a deletion of the read.
        is_refskip: The position falls in a reference skip (N in CIGAR).
        laln: Number of query bases aligned to the reference.
        umi: UMI tag value, None if not requested or absent.
        cell: Sample group tag (cell barcode, or sample ID in bulk mode).
    """

    base: str | None
    qual: int
    is_del: bool = False
    is_refskip: bool = False
    laln: int = 0
    umi: str | None = None
    cell: str | None = None


class ReadFilter(BaseModel):
    """Read-level filters applied before a read reaches the pileup."""

    min_mapq: int = DEFAULT_MIN_MAPQ
    min_len: int = DEFAULT_MIN_LEN
    excl_flag: int = DEFAULT_EXCL_FLAG_UMI
    incl_flag: int = 0
    no_orphan: bool = True
    max_depth: int = DEFAULT_MAX_DEPTH

    @classmethod
    def for_umi_mode(cls, use_umi: bool, **kwargs) -> "ReadFilter":
        """Default filter; duplicates are only excluded when UMIs are not collapsed."""
        kwargs.setdefault("excl_flag", DEFAULT_EXCL_FLAG_UMI if use_umi else DEFAULT_EXCL_FLAG_NO_UMI)
        return cls(**kwargs)

    def keep(self, read: pysam.AlignedSegment) -> bool:
        """Whether the alignment passes the flag, mapping quality and length filters."""
        flag = read.flag
        if flag & self.excl_flag:
            return False
        if self.incl_flag and not flag & self.incl_flag:
            return False
        if self.no_orphan and read.is_paired and not read.is_proper_pair:
            return False
        if read.mapping_quality < self.min_mapq:
            return False
        return read.query_alignment_length >= self.min_len


def _get_str_tag(read: pysam.AlignedSegment, tag: str) -> str | None:
    if not read.has_tag(tag):
        return None
    value = read.get_tag(tag)
    return str(value) if value != "" else None


def fetch_observations(
    bam: pysam.AlignmentFile,
    chrom: str,
    pos: int,
    rfilter: ReadFilter,
    umi_tag: str | None = None,
    cell_tag: str | None = None,
    sample: str | None = None,
) -> Iterator[ReadObservation]:
    """Yield one observation per filtered read covering ``chrom:pos`` (0-based).

    In cell mode (``cell_tag`` set) reads without the cell tag are skipped and
    the tag becomes the sample group; in bulk mode every read is assigned to
    ``sample``. Reads without the requested UMI tag are skipped.
    """
    if chrom not in bam.references:
        return

    columns = bam.pileup(
        chrom,
        pos,
        pos + 1,
        truncate=True,
        stepper="nofilter",
        ignore_overlaps=False,
        ignore_orphans=False,
        min_base_quality=0,
        max_depth=rfilter.max_depth if rfilter.max_depth > 0 else 2**31 - 1,
    )
    for column in columns:
        if column.reference_pos != pos:
            continue
        for pr in column.pileups:
            read = pr.alignment
            if not rfilter.keep(read):
                continue

            if cell_tag:
                cell = _get_str_tag(read, cell_tag)
                if cell is None:
                    continue
            else:
                cell = sample

            umi = None
            if umi_tag:
                umi = _get_str_tag(read, umi_tag)
                if umi is None:
                    continue

            if pr.is_del or pr.is_refskip:
                yield ReadObservation(
                    None, 0, bool(pr.is_del), bool(pr.is_refskip), read.query_alignment_length, umi, cell
                )
                continue

            qpos = pr.query_position
            seq = read.query_sequence
            quals = read.query_qualities
            if qpos is None or seq is None:
                continue
            yield ReadObservation(
                seq[qpos],
                quals[qpos] if quals is not None else 0,
                False,
                False,
                read.query_alignment_length,
                umi,
                cell,
            )
