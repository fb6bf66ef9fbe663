#!/usr/bin/env python3
"""Candidate SNP positions loaded from VCF/BCF or a plain position list."""

from dataclasses import dataclass
from pathlib import Path

import pysam

from cellpileup.core.constants import Contig, Position
from cellpileup.core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SNP:
    """One candidate position.

    Attributes:
        chrom: Contig name as present in the BAM/VCF.
        pos: 0-based reference coordinate.
        ref: Reference base, None when it should be inferred from the reads.
        alt: Alternate base, None when it should be inferred from the reads.
    """

    chrom: Contig
    pos: Position
    ref: str | None = None
    alt: str | None = None

    @property
    def pos1(self) -> int:
        return self.pos + 1


def _clean_allele(allele: str | None) -> str | None:
    if allele is None or allele in ("", "."):
        return None
    return allele.upper()


def _check_alleles(ref: str | None, alts: tuple[str, ...] | None) -> tuple[str | None, str | None, str | None]:
    """Validate alleles; returns (ref, alt, skip_reason)."""
    ref = _clean_allele(ref)
    if ref is not None and len(ref) > 1:
        return None, None, "ref_len > 1"
    alts = tuple(alts or ())
    if len(alts) > 1:
        return None, None, "n_allele > 2"
    alt = _clean_allele(alts[0]) if alts else None
    if alt is not None and len(alt) > 1:
        return None, None, "alt_len > 1"
    return ref, alt, None


def load_snps_from_vcf(vcf_file: str | Path, print_skip: bool = False) -> list[SNP]:
    """Read candidate SNPs from a VCF/BCF file.

    Records with multi-base ref or alt, or more than one alt allele, are
    skipped. Missing alleles are kept as unknown and inferred during pileup.

    Args:
        vcf_file: Path to a VCF, VCF.gz or BCF file.
        print_skip: Log every skipped record.
    """
    snps: list[SNP] = []
    nskip = 0
    with pysam.VariantFile(str(vcf_file)) as f:
        for m, rec in enumerate(f, start=1):
            ref, alt, reason = _check_alleles(rec.ref, rec.alts)
            if reason:
                nskip += 1
                if print_skip:
                    logger.warning(f"skip No.{m} SNP ({rec.chrom}:{rec.pos}): {reason}")
                continue
            snps.append(SNP(rec.chrom, rec.start, ref, alt))
    logger.debug(f"Loaded {len(snps)} SNPs from {vcf_file}, skipped {nskip}")
    return snps


def load_snps_from_tsv(tsv_file: str | Path, print_skip: bool = False) -> list[SNP]:
    """Read candidate SNPs from ``chrom<TAB>pos[<TAB>ref[<TAB>alt]]`` lines (1-based pos)."""
    snps: list[SNP] = []
    with Path(tsv_file).open() as f:
        for m, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) < 2:
                raise ValueError(f"Line {m} of {tsv_file} needs at least chrom and pos: {line}")
            alts = tuple(parts[3].split(",")) if len(parts) > 3 else None
            ref, alt, reason = _check_alleles(parts[2] if len(parts) > 2 else None, alts)
            if reason:
                if print_skip:
                    logger.warning(f"skip No.{m} SNP ({parts[0]}:{parts[1]}): {reason}")
                continue
            snps.append(SNP(parts[0], int(parts[1]) - 1, ref, alt))
    return snps


def load_snps(snp_file: str | Path, print_skip: bool = False) -> list[SNP]:
    """Load SNPs, choosing the parser from the file extension."""
    name = Path(snp_file).name.lower()
    if name.endswith((".vcf", ".vcf.gz", ".bcf")):
        return load_snps_from_vcf(snp_file, print_skip)
    return load_snps_from_tsv(snp_file, print_skip)
