#!/usr/bin/env python3
"""Command line interface for cellpileup using Typer."""

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from cellpileup.core.constants import (
    DEFAULT_CAP_BQ,
    DEFAULT_CELL_TAG,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MIN_BQ,
    DEFAULT_MIN_COUNT,
    DEFAULT_MIN_LEN,
    DEFAULT_MIN_MAF,
    DEFAULT_MIN_MAPQ,
)
from cellpileup.core.logging_config import add_file_handler, get_log_path, get_logger, setup_logging
from cellpileup.version import __version__

app = typer.Typer(
    name="cellpileup",
    help="Pileup and genotype likelihoods of candidate SNPs in single cells or bulk samples.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
logger = get_logger("cellpileup.cli")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold green]cellpileup[/bold green] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Enable verbose output (DEBUG level)."),
    ] = False,
) -> None:
    """cellpileup - allele counts and genotype likelihoods per cell or sample."""
    log_level = "DEBUG" if verbose else "INFO"
    setup_logging(level=log_level, console=console)  # type: ignore


@app.command()
def pileup(
    bam: Annotated[list[Path], typer.Option("-s", "--sam-file", help="Input BAM file; repeat for several files.")],
    snp_file: Annotated[Path, typer.Option("-R", "--regions-vcf", help="VCF or TSV file of candidate SNPs.")],
    output: Annotated[Path, typer.Option("-O", "--out-dir", help="Path to output directory.")],
    barcode_file: Annotated[
        Optional[Path], typer.Option("-b", "--barcode-file", help="Cell barcodes to keep, one per line.")
    ] = None,
    sample_ids: Annotated[
        Optional[str],
        typer.Option("-I", "--sample-ids", help="Comma separated sample IDs, one per BAM file (bulk mode)."),
    ] = None,
    cell_tag: Annotated[
        str, typer.Option("--cell-tag", help="Tag for cell barcodes; 'None' for bulk samples.")
    ] = DEFAULT_CELL_TAG,
    umi_tag: Annotated[
        str, typer.Option("--umi-tag", help="Tag for UMIs; 'Auto' picks UB with cell barcodes, 'None' disables.")
    ] = "Auto",
    threads: Annotated[int, typer.Option("-p", "--nproc", help="Number of processes.")] = 1,
    min_count: Annotated[int, typer.Option("--min-count", help="Minimum aggregated count per SNP.")] = DEFAULT_MIN_COUNT,
    min_maf: Annotated[float, typer.Option("--min-maf", help="Minimum minor allele frequency.")] = DEFAULT_MIN_MAF,
    cap_bq: Annotated[int, typer.Option("--cap-bq", help="Cap base quality at this value.")] = DEFAULT_CAP_BQ,
    min_bq: Annotated[int, typer.Option("--min-bq", help="Raise base quality to at least this value.")] = DEFAULT_MIN_BQ,
    doublet_gl: Annotated[bool, typer.Option("--doublet-gl", help="Also output doublet genotype likelihoods.")] = False,
    min_mapq: Annotated[int, typer.Option("--min-mapq", help="Minimum mapping quality.")] = DEFAULT_MIN_MAPQ,
    min_len: Annotated[int, typer.Option("--min-len", help="Minimum aligned read length.")] = DEFAULT_MIN_LEN,
    excl_flag: Annotated[
        Optional[int], typer.Option("--excl-flag", help="Skip reads with any of these FLAG bits.")
    ] = None,
    incl_flag: Annotated[int, typer.Option("--incl-flag", help="Require reads to have these FLAG bits.")] = 0,
    count_orphan: Annotated[bool, typer.Option("--count-orphan", help="Keep reads whose mate is not mapped.")] = False,
    max_depth: Annotated[int, typer.Option("--max-depth", help="Maximum depth per position, 0 for no limit.")] = (
        DEFAULT_MAX_DEPTH
    ),
    chunk_size: Annotated[int, typer.Option("--chunk-size", help="Positions per worker task.")] = DEFAULT_CHUNK_SIZE,
    gzip: Annotated[bool, typer.Option("--gzip", help="Compress the VCF outputs with bgzip.")] = False,
    print_skip_snp: Annotated[bool, typer.Option("--print-skip-snp", help="Log skipped candidate SNPs.")] = False,
) -> None:
    """Count alleles and compute genotype likelihoods at candidate SNPs."""
    from cellpileup.models.models import PileupConfig
    from cellpileup.run_pileup import run_pileup

    # Set up file logging
    output.mkdir(parents=True, exist_ok=True)
    log_path = get_log_path(output)
    add_file_handler(log_path)
    logger.info(f"Logging to {log_path}")

    config = PileupConfig(
        bam_files=bam,
        snp_file=snp_file,
        output_path=output,
        barcode_file=barcode_file,
        sample_ids=[s.strip() for s in sample_ids.split(",")] if sample_ids else None,
        cell_tag=cell_tag,
        umi_tag=umi_tag,
        num_threads=threads,
        min_count=min_count,
        min_maf=min_maf,
        cap_bq=cap_bq,
        min_bq=min_bq,
        doublet_gl=doublet_gl,
        min_mapq=min_mapq,
        min_len=min_len,
        excl_flag=excl_flag,
        incl_flag=incl_flag,
        no_orphan=not count_orphan,
        max_depth=max_depth,
        chunk_size=chunk_size,
        gzip=gzip,
        print_skip_snp=print_skip_snp,
    )

    logger.info("Starting pileup")
    summary = run_pileup(config)
    logger.info(f"Pileup complete! {summary['n_positions']} SNPs written.")


if __name__ == "__main__":
    app()
