"""Shared pytest fixtures for cellpileup tests."""

import shutil
import tempfile
from pathlib import Path

import pysam
import pytest

CONTIG = "chr1"
CONTIG_LENGTH = 1000
READ_LENGTH = 40
SNP_POS = 100  # 0-based
READ_START = 80


def make_read_sequence(base_at_snp: str) -> str:
    """A 40 bp read starting at READ_START with ``base_at_snp`` over SNP_POS."""
    seq = ["C"] * READ_LENGTH
    seq[SNP_POS - READ_START] = base_at_snp
    return "".join(seq)


def write_bam(path: Path, reads: list[dict]) -> Path:
    """Write, sort and index a BAM file on chr1.

    Each read is a dict with ``base`` (the base over SNP_POS) and optional
    ``qual`` (default 30), ``tags`` (dict), ``flag`` (default 0), ``mapq``
    (default 60) and ``start`` (default READ_START).
    """
    header = {"HD": {"VN": "1.6", "SO": "unsorted"}, "SQ": [{"SN": CONTIG, "LN": CONTIG_LENGTH}]}
    unsorted = path.with_suffix(".unsorted.bam")
    with pysam.AlignmentFile(str(unsorted), "wb", header=header) as out:
        for i, r in enumerate(reads):
            a = pysam.AlignedSegment(out.header)
            a.query_name = r.get("name", f"read{i}")
            a.query_sequence = make_read_sequence(r["base"])
            a.flag = r.get("flag", 0)
            a.reference_id = 0
            a.reference_start = r.get("start", READ_START)
            a.mapping_quality = r.get("mapq", 60)
            a.cigar = [(0, READ_LENGTH)]
            quals = [30] * READ_LENGTH
            quals[SNP_POS - READ_START] = r.get("qual", 30)
            a.query_qualities = pysam.qualitystring_to_array("".join(chr(q + 33) for q in quals))
            for tag, value in r.get("tags", {}).items():
                a.set_tag(tag, value)
            out.write(a)
    pysam.sort("-o", str(path), str(unsorted))
    pysam.index(str(path))
    unsorted.unlink()
    return path


def write_vcf(path: Path, records: list[tuple[str, int, str, str]]) -> Path:
    """Write a minimal sites-only VCF of (chrom, pos1, ref, alt) records."""
    lines = [
        "##fileformat=VCFv4.2",
        f"##contig=<ID={CONTIG},length={CONTIG_LENGTH}>",
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO",
    ]
    for chrom, pos1, ref, alt in records:
        lines.append(f"{chrom}\t{pos1}\t.\t{ref}\t{alt}\t.\tPASS\t.")
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def temp_output_dir():
    """Create a temporary directory for test outputs."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir)


@pytest.fixture
def cell_bam(temp_output_dir):
    """BAM with reads from two cells at SNP_POS.

    - AAACCC: A, A, G at q30 from three distinct UMIs
    - GGGTTT: two reads of UMI U1 (G q30, G q20) and one of U2 (A q30)
    - TTTTTT: one read from a cell outside the barcode list
    - one G read without a cell barcode
    """
    reads = [
        {"base": "A", "tags": {"CB": "AAACCC", "UB": "U1"}},
        {"base": "A", "tags": {"CB": "AAACCC", "UB": "U2"}},
        {"base": "G", "tags": {"CB": "AAACCC", "UB": "U3"}},
        {"base": "G", "tags": {"CB": "GGGTTT", "UB": "U1"}},
        {"base": "G", "qual": 20, "tags": {"CB": "GGGTTT", "UB": "U1"}},
        {"base": "A", "tags": {"CB": "GGGTTT", "UB": "U2"}},
        {"base": "A", "tags": {"CB": "TTTTTT", "UB": "U1"}},
        {"base": "G", "tags": {"UB": "U9"}},
    ]
    return write_bam(temp_output_dir / "cells.bam", reads)


@pytest.fixture
def barcode_file(temp_output_dir):
    """Barcode list with the two known cells and one cell without reads."""
    path = temp_output_dir / "barcodes.tsv"
    path.write_text("AAACCC\nGGGTTT\nCCCCCC\n")
    return path


@pytest.fixture
def snp_vcf(temp_output_dir):
    """Candidate SNPs: one covered A>G site and one site without reads."""
    return write_vcf(temp_output_dir / "snps.vcf", [(CONTIG, SNP_POS + 1, "A", "G"), (CONTIG, 500, "C", "T")])


@pytest.fixture
def make_bam():
    """The ``write_bam`` builder, for tests that need their own reads."""
    return write_bam


@pytest.fixture
def make_vcf():
    """The ``write_vcf`` builder, for tests that need their own records."""
    return write_vcf
