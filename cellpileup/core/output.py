#!/usr/bin/env python3
"""Rendering of finalized pileups into VCF records and sparse matrix lines."""

from collections.abc import Iterable, Sequence
from math import log
from pathlib import Path
from typing import TextIO

import numpy as np

from cellpileup.core.constants import EMPTY_SAMPLE_FIELD, GENOTYPE_STRINGS, MTX_HEADER, SAMPLE_FORMAT
from cellpileup.core.pileup import MultiSamplePileup, SampleGroupPileup
from cellpileup.version import __version__

PHRED_SCALE = -10 / log(10)
"""Converts a natural-log likelihood into a phred-scaled value."""


def format_sample_field(plp: SampleGroupPileup) -> str:
    """The ``GT:AD:DP:OTH:GL:BC`` field of one sample group."""
    if plp.tc <= 0:
        return EMPTY_SAMPLE_FIELD
    bc = ",".join(str(int(x)) for x in plp.bc)
    if plp.ngl == 0:
        return f"./.:{plp.ad}:{plp.dp}:{plp.oth}:.:{bc}"
    gt = GENOTYPE_STRINGS[int(np.argmax(plp.gl[:3]))]
    gl = ",".join(str(round(float(x) * PHRED_SCALE)) for x in plp.gl[: plp.ngl])
    return f"{gt}:{plp.ad}:{plp.dp}:{plp.oth}:{gl}:{bc}"


def format_vcf_fields(mplp: MultiSamplePileup) -> str:
    """Tab-prefixed sample fields of all sample groups, in setup order."""
    mplp.require_finalized()
    return "".join("\t" + format_sample_field(plp) for _, plp in mplp.sample_groups())


def format_base_record(chrom: str, pos1: int, mplp: MultiSamplePileup) -> str:
    """Site-level VCF record (no FORMAT/sample columns), without newline."""
    mplp.require_finalized()
    return f"{chrom}\t{pos1}\t.\t{mplp.ref_base}\t{mplp.alt_base}\t.\tPASS\tAD={mplp.ad};DP={mplp.dp};OTH={mplp.oth}"


def format_cell_record(chrom: str, pos1: int, mplp: MultiSamplePileup) -> str:
    """Full per-sample VCF record, without newline."""
    return f"{format_base_record(chrom, pos1, mplp)}\t{SAMPLE_FORMAT}{format_vcf_fields(mplp)}"


def format_matrix_rows(mplp: MultiSamplePileup, idx: int) -> tuple[str, str, str]:
    """AD, DP and OTH triplet lines (``idx sample count``) for non-zero values.

    ``idx`` is the 1-based position index. ``nr_ad``/``nr_dp``/``nr_oth`` on
    the pileup are set to the number of lines produced.
    """
    mplp.require_finalized()
    ad: list[str] = []
    dp: list[str] = []
    oth: list[str] = []
    for i, (_, plp) in enumerate(mplp.sample_groups(), start=1):
        if plp.ad:
            ad.append(f"{idx}\t{i}\t{plp.ad}\n")
        if plp.dp:
            dp.append(f"{idx}\t{i}\t{plp.dp}\n")
        if plp.oth:
            oth.append(f"{idx}\t{i}\t{plp.oth}\n")
    mplp.nr_ad, mplp.nr_dp, mplp.nr_oth = len(ad), len(dp), len(oth)
    return "".join(ad), "".join(dp), "".join(oth)


def format_matrix_rows_tmp(mplp: MultiSamplePileup) -> tuple[str, str, str]:
    """Chunk-file variant of ``format_matrix_rows``.

    The position index is left out; every stream ends with a blank line that
    marks the end of the position so a later merge can number positions.
    """
    mplp.require_finalized()
    ad: list[str] = []
    dp: list[str] = []
    oth: list[str] = []
    for i, (_, plp) in enumerate(mplp.sample_groups(), start=1):
        if plp.ad:
            ad.append(f"{i}\t{plp.ad}\n")
        if plp.dp:
            dp.append(f"{i}\t{plp.dp}\n")
        if plp.oth:
            oth.append(f"{i}\t{plp.oth}\n")
    mplp.nr_ad, mplp.nr_dp, mplp.nr_oth = len(ad), len(dp), len(oth)
    ad.append("\n")
    dp.append("\n")
    oth.append("\n")
    return "".join(ad), "".join(dp), "".join(oth)


# =============================================================================
# Headers
# =============================================================================


def _vcf_meta(contigs: Iterable[tuple[str, int | None]]) -> list[str]:
    lines = ["##fileformat=VCFv4.2", f"##source=cellpileup-{__version__}"]
    for name, length in contigs:
        lines.append(f"##contig=<ID={name},length={length}>" if length else f"##contig=<ID={name}>")
    lines.extend(
        [
            '##INFO=<ID=AD,Number=1,Type=Integer,Description="Total counts for ALT allele">',
            '##INFO=<ID=DP,Number=1,Type=Integer,Description="Total counts for ALT and REF allele">',
            '##INFO=<ID=OTH,Number=1,Type=Integer,Description="Total counts for other alleles">',
        ]
    )
    return lines


def base_vcf_header(contigs: Iterable[tuple[str, int | None]] = ()) -> str:
    lines = _vcf_meta(contigs)
    lines.append("#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO")
    return "\n".join(lines) + "\n"


def cells_vcf_header(sample_names: Sequence[str], contigs: Iterable[tuple[str, int | None]] = ()) -> str:
    lines = _vcf_meta(contigs)
    lines.extend(
        [
            '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
            '##FORMAT=<ID=AD,Number=1,Type=Integer,Description="Num of ALT allele">',
            '##FORMAT=<ID=DP,Number=1,Type=Integer,Description="Num of ALT and REF alleles">',
            '##FORMAT=<ID=OTH,Number=1,Type=Integer,Description="Num of other alleles">',
            '##FORMAT=<ID=GL,Number=G,Type=Integer,Description="Phred-scaled genotype likelihoods '
            'for RR,RA,AA (and RR+RA,RA+AA with doublets)">',
            '##FORMAT=<ID=BC,Number=5,Type=Integer,Description="Base counts for A,C,G,T,N">',
        ]
    )
    lines.append("#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\t" + "\t".join(sample_names))
    return "\n".join(lines) + "\n"


def matrix_header(nsnp: int, nsample: int, nnz: int) -> str:
    return f"{MTX_HEADER}{nsnp}\t{nsample}\t{nnz}\n"


# =============================================================================
# Merging chunk files
# =============================================================================


def merge_tmp_matrix(g: TextIO, tmp_files: Sequence[str | Path], start_index: int = 1) -> int:
    """Append chunk matrix files to ``g``, restoring global position indices.

    Returns:
        Number of positions (blank-line terminated blocks) read.
    """
    idx = start_index
    for filename in tmp_files:
        with Path(filename).open() as f:
            for line in f:
                if line == "\n":
                    idx += 1
                else:
                    g.write(f"{idx}\t{line}")
    return idx - start_index


def merge_tmp_matrices(
    out_file: str | Path,
    tmp_files: Sequence[str | Path],
    nsnp: int,
    nsample: int,
    nnz: int,
    remove: bool = True,
) -> None:
    """Write a MatrixMarket file from chunk files and optionally remove them."""
    with Path(out_file).open("w") as g:
        g.write(matrix_header(nsnp, nsample, nnz))
        nread = merge_tmp_matrix(g, tmp_files)
    if nread != nsnp:
        raise ValueError(f"Expected {nsnp} positions in chunk files for {out_file}, found {nread}")
    if remove:
        for filename in tmp_files:
            Path(filename).unlink()


def merge_text_files(out_file: str | Path, header: str, tmp_files: Sequence[str | Path], remove: bool = True) -> None:
    """Concatenate chunk files behind a header, e.g. VCF bodies."""
    with Path(out_file).open("w") as g:
        g.write(header)
        for filename in tmp_files:
            with Path(filename).open() as f:
                for line in f:
                    g.write(line)
    if remove:
        for filename in tmp_files:
            Path(filename).unlink()
