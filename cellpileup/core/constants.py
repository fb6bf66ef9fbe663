#!/usr/bin/env python3
"""Constants and type aliases used throughout the cellpileup package."""

from typing import TypeAlias

import pysam

# =============================================================================
# Type Aliases
# =============================================================================
Contig: TypeAlias = str
Position: TypeAlias = int
BaseIndex: TypeAlias = int
SampleGroupName: TypeAlias = str
UMIKey: TypeAlias = str

# =============================================================================
# Base Symbols
# =============================================================================
BASE_SYMBOLS = "ACGTN"
"""Base symbols in the fixed order used by base counts and the quality matrix."""

N_BASES = len(BASE_SYMBOLS)

N_INDEX = 4
"""Index of N; also used for every symbol outside A/C/G/T."""

UNSET_INDEX = -1
"""Allele index meaning 'not known yet'."""

# =============================================================================
# Phred Score Constants
# =============================================================================
PHRED_TABLE_SIZE = 94
"""Size of phred lookup tables (ASCII 33-126)."""

DEFAULT_CAP_BQ = 40
"""Base qualities above this value are capped."""

DEFAULT_MIN_BQ = 20
"""Base qualities below this value are raised to it."""

N_QUAL_HYPOTHESES = 4
"""Columns of the quality matrix: 1-Q, 3/4-2/3Q, 1/2-1/3Q, Q."""

MAX_GENOTYPES = 5
"""RR, RA, AA plus the two doublet hypotheses RR+RA and RA+AA."""

# =============================================================================
# Read Filter Defaults
# =============================================================================
DEFAULT_MIN_MAPQ = 20
DEFAULT_MIN_LEN = 30
DEFAULT_MIN_COUNT = 20
DEFAULT_MIN_MAF = 0.0

FLAG_UNMAP = pysam.FUNMAP
FLAG_SECONDARY = pysam.FSECONDARY
FLAG_QCFAIL = pysam.FQCFAIL
FLAG_DUP = pysam.FDUP

DEFAULT_EXCL_FLAG_UMI = FLAG_UNMAP | FLAG_SECONDARY | FLAG_QCFAIL
"""Flags excluded when UMIs are used; duplicates are collapsed by UMI instead."""

DEFAULT_EXCL_FLAG_NO_UMI = DEFAULT_EXCL_FLAG_UMI | FLAG_DUP
"""Flags excluded when UMIs are not used."""

DEFAULT_MAX_DEPTH = 0
"""Maximum pileup depth per position, 0 means unlimited."""

# =============================================================================
# BAM Tags
# =============================================================================
DEFAULT_CELL_TAG = "CB"
DEFAULT_UMI_TAG = "UB"

# =============================================================================
# Output Formatting
# =============================================================================
GENOTYPE_STRINGS = ("0/0", "1/0", "1/1")
"""Genotypes for the arg-max over GL_RR, GL_RA, GL_AA."""

EMPTY_SAMPLE_FIELD = ".:.:.:.:.:."
"""Sample field written for a sample group without reads."""

SAMPLE_FORMAT = "GT:AD:DP:OTH:GL:BC"

MTX_HEADER = "%%MatrixMarket matrix coordinate integer general\n%\n"

# =============================================================================
# File Names
# =============================================================================
OUT_PREFIX = "cellSNP"
BASE_VCF = f"{OUT_PREFIX}.base.vcf"
CELLS_VCF = f"{OUT_PREFIX}.cells.vcf"
SAMPLES_TSV = f"{OUT_PREFIX}.samples.tsv"
MTX_TAGS = ("AD", "DP", "OTH")


def mtx_filename(tag: str) -> str:
    """Name of the sparse matrix file for one of AD, DP or OTH."""
    return f"{OUT_PREFIX}.tag.{tag}.mtx"


DEFAULT_CHUNK_SIZE = 1000
"""Number of candidate positions handed to one worker task."""
