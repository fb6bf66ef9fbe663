#!/usr/bin/env python3
"""Pileup of candidate SNPs across cells or bulk samples.

Candidate positions are split into chunks that are processed in parallel.
Every worker writes its part of the VCF bodies and sparse matrices to
temporary files, which are merged in chunk order once all workers are done.
"""

from __future__ import annotations

from dataclasses import dataclass
from multiprocessing import Pool, cpu_count
from pathlib import Path

import pysam

from cellpileup.core.constants import BASE_VCF, CELLS_VCF, MTX_TAGS, SAMPLES_TSV, mtx_filename
from cellpileup.core.logging_config import get_logger
from cellpileup.core.output import (
    base_vcf_header,
    cells_vcf_header,
    format_base_record,
    format_cell_record,
    format_matrix_rows_tmp,
    merge_text_files,
    merge_tmp_matrices,
)
from cellpileup.core.pileup import MultiSamplePileup
from cellpileup.core.read_source import ReadFilter, fetch_observations
from cellpileup.core.snp import SNP, load_snps
from cellpileup.core.utils import split_into_chunks
from cellpileup.models.models import PileupConfig

logger = get_logger(__name__)


@dataclass
class ChunkResult:
    """What one worker produced for its chunk of positions."""

    chunk_id: int
    npos: int = 0
    nskip: int = 0
    nnz_ad: int = 0
    nnz_dp: int = 0
    nnz_oth: int = 0
    n_unmatched: int = 0


def tmp_filenames(output_path: str | Path, chunk_id: int) -> dict[str, str]:
    """Temporary file names of one chunk, keyed by output kind."""
    prefix = f"{output_path}/tmp_{chunk_id}"
    names = {"base": f"{prefix}.base.vcf", "cells": f"{prefix}.cells.vcf"}
    for tag in MTX_TAGS:
        names[tag] = f"{prefix}.{tag}.mtx"
    return names


def pileup_snp(
    mplp: MultiSamplePileup,
    bams: list[pysam.AlignmentFile],
    snp: SNP,
    rfilter: ReadFilter,
    cell_tag: str | None,
    umi_tag: str | None,
) -> None:
    """Collect and finalize the pileup of one candidate position.

    In cell mode reads from every BAM are routed by their cell tag. In bulk
    mode BAM ``i`` feeds sample group ``i``.
    """
    mplp.reset(snp.ref, snp.alt)
    for i, bam in enumerate(bams):
        if cell_tag:
            for obs in fetch_observations(bam, snp.chrom, snp.pos, rfilter, umi_tag=umi_tag, cell_tag=cell_tag):
                mplp.ingest(obs)
        else:
            name = mplp.sample_names[i]
            for obs in fetch_observations(bam, snp.chrom, snp.pos, rfilter, umi_tag=umi_tag, sample=name):
                mplp.ingest_index(i, obs)
    mplp.finalize()


def pileup_worker(args: tuple) -> ChunkResult:
    """Run the pileup on one chunk of candidate positions."""
    (
        chunk_id,
        snps,
        bam_files,
        sample_names,
        output_path,
        rfilter,
        cell_tag,
        umi_tag,
        cap_bq,
        min_bq,
        doublet_gl,
        min_count,
        min_maf,
    ) = args

    result = ChunkResult(chunk_id)
    names = tmp_filenames(output_path, chunk_id)

    mplp = MultiSamplePileup(cap_bq=cap_bq, min_bq=min_bq, use_umi=umi_tag is not None, doublet_gl=doublet_gl)
    mplp.set_sample_groups(sample_names)

    bams = [pysam.AlignmentFile(str(f), "rb") for f in bam_files]
    try:
        with (
            Path(names["base"]).open("w") as base_out,
            Path(names["cells"]).open("w") as cells_out,
            Path(names["AD"]).open("w") as ad_out,
            Path(names["DP"]).open("w") as dp_out,
            Path(names["OTH"]).open("w") as oth_out,
        ):
            for snp in snps:
                pileup_snp(mplp, bams, snp, rfilter, cell_tag, umi_tag)
                result.n_unmatched += mplp.n_unmatched
                if not mplp.passes_filters(min_count, min_maf):
                    result.nskip += 1
                    continue

                base_out.write(format_base_record(snp.chrom, snp.pos1, mplp) + "\n")
                cells_out.write(format_cell_record(snp.chrom, snp.pos1, mplp) + "\n")
                ad, dp, oth = format_matrix_rows_tmp(mplp)
                ad_out.write(ad)
                dp_out.write(dp)
                oth_out.write(oth)

                result.npos += 1
                result.nnz_ad += mplp.nr_ad
                result.nnz_dp += mplp.nr_dp
                result.nnz_oth += mplp.nr_oth
    finally:
        for bam in bams:
            bam.close()
        mplp.destroy()

    logger.debug(f"Chunk {chunk_id}: {result.npos} positions written, {result.nskip} filtered")
    return result


def get_contigs(bam_file: str | Path) -> list[tuple[str, int]]:
    """Contig names and lengths from a BAM header, for the VCF meta lines."""
    with pysam.AlignmentFile(str(bam_file), "rb") as f:
        return list(zip(f.references, f.lengths))


def write_sample_names(filename: str | Path, sample_names: list[str]) -> None:
    with Path(filename).open("w") as g:
        for name in sample_names:
            g.write(name + "\n")


def compress_vcf(filename: str | Path) -> Path:
    """Compress a VCF with bgzip and remove the uncompressed file."""
    gz_name = Path(f"{filename}.gz")
    pysam.tabix_compress(str(filename), str(gz_name), force=True)
    Path(filename).unlink()
    return gz_name


def run_pileup(config: PileupConfig) -> dict[str, int]:
    """Run the pileup for all candidate positions and write the outputs.

    Args:
        config: Configuration object containing all parameters for the pileup.

    Returns:
        Summary counts: candidate positions, positions written and nnz per matrix.
    """
    output_path = config.output_path
    mode = "cell" if config.cell_tag else "bulk"
    logger.info(f"Mode: {mode}, {len(config.sample_names)} sample groups, {len(config.bam_files)} BAM files")
    if config.use_umi:
        logger.info(f"Collapsing reads by UMI tag {config.umi_tag}")

    snps = load_snps(config.snp_file, config.print_skip_snp)
    logger.info(f"Number of candidate SNPs: {len(snps)}")

    num_cpus = config.num_threads if config.num_threads else cpu_count()
    chunks = split_into_chunks(snps, config.chunk_size) if snps else []
    rfilter = config.read_filter()

    argvec = [
        (
            i,
            list(chunk),
            [str(f) for f in config.bam_files],
            config.sample_names,
            str(output_path),
            rfilter,
            config.cell_tag,
            config.umi_tag,
            config.cap_bq,
            config.min_bq,
            config.doublet_gl,
            config.min_count,
            config.min_maf,
        )
        for i, chunk in enumerate(chunks)
    ]

    logger.info(f"Starting pileup of {len(chunks)} chunks on {num_cpus} threads")
    if num_cpus > 1 and len(argvec) > 1:
        with Pool(int(num_cpus)) as p:
            results = p.map(pileup_worker, argvec)
    else:
        results = [pileup_worker(args) for args in argvec]

    npos = sum(r.npos for r in results)
    nnz = {
        "AD": sum(r.nnz_ad for r in results),
        "DP": sum(r.nnz_dp for r in results),
        "OTH": sum(r.nnz_oth for r in results),
    }
    n_unmatched = sum(r.n_unmatched for r in results)
    if n_unmatched:
        logger.debug(f"{n_unmatched} reads had a cell tag outside the barcode list")

    # Merge chunk files in chunk order
    tmp = [tmp_filenames(output_path, r.chunk_id) for r in sorted(results, key=lambda r: r.chunk_id)]
    contigs = get_contigs(config.bam_files[0])

    base_vcf = output_path / BASE_VCF
    cells_vcf = output_path / CELLS_VCF
    merge_text_files(base_vcf, base_vcf_header(contigs), [t["base"] for t in tmp])
    merge_text_files(cells_vcf, cells_vcf_header(config.sample_names, contigs), [t["cells"] for t in tmp])
    for tag in MTX_TAGS:
        merge_tmp_matrices(
            output_path / mtx_filename(tag), [t[tag] for t in tmp], npos, len(config.sample_names), nnz[tag]
        )
    write_sample_names(output_path / SAMPLES_TSV, config.sample_names)

    if config.gzip:
        base_vcf = compress_vcf(base_vcf)
        cells_vcf = compress_vcf(cells_vcf)

    logger.info(f"Pileup complete, {npos} of {len(snps)} positions passed filters")
    logger.info(f"Output written to {base_vcf}, {cells_vcf} and {output_path}/{mtx_filename('*')}")
    return {
        "n_candidates": len(snps),
        "n_positions": npos,
        "nnz_ad": nnz["AD"],
        "nnz_dp": nnz["DP"],
        "nnz_oth": nnz["OTH"],
    }


def main(config: PileupConfig) -> None:
    """Main entry point for the pileup."""
    run_pileup(config)
