#!/usr/bin/env python3
"""Utility functions shared by the runner, the CLI and the config model."""

import gzip
from collections.abc import Sequence
from pathlib import Path
from typing import TypeVar

T = TypeVar("T")


def check_output_directory(outdir: str) -> str:
    """Check if outdir exists, otherwise create it.

    Args:
        outdir: Path to the output directory.

    Returns:
        The output directory path as a string.
    """
    outdir_path = Path(outdir)
    if outdir_path.is_dir():
        return outdir
    else:
        outdir_path.mkdir(parents=True, exist_ok=True)
        return outdir


def get_sample_name(filename: str) -> str:
    """Get the sample name as the basename of a BAM file."""
    sample_name = Path(filename).name
    if ".sorted" in sample_name:
        sample_name = sample_name.replace(".sorted", "")
    sample_name = sample_name.replace(".bam", "")
    return sample_name


def read_lines(filename: str | Path) -> list[str]:
    """Non-empty, stripped lines of a (possibly gzipped) text file."""
    path = Path(filename)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rt") as f:
        return [line.strip() for line in f if line.strip()]


def read_barcodes(filename: str | Path) -> list[str]:
    """Cell barcodes, one per line (first column), in file order."""
    return [line.split()[0] for line in read_lines(filename)]


def split_into_chunks(items: Sequence[T], chunk_size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive chunks of at most ``chunk_size``."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]
