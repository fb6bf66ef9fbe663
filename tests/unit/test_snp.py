"""Unit tests for cellpileup.core.snp module."""

import pytest

from cellpileup.core.snp import SNP, load_snps, load_snps_from_tsv, load_snps_from_vcf


class TestLoadVcf:
    """Tests for reading candidate SNPs from VCF."""

    def test_positions_are_zero_based(self, temp_output_dir, make_vcf):
        """VCF POS is converted to a 0-based position."""
        vcf = make_vcf(temp_output_dir / "a.vcf", [("chr1", 101, "A", "G")])
        snps = load_snps_from_vcf(vcf)
        assert snps == [SNP("chr1", 100, "A", "G")]
        assert snps[0].pos1 == 101

    def test_skips_unsupported_records(self, temp_output_dir, make_vcf):
        """Multi-base and multi-allelic records are skipped."""
        vcf = make_vcf(
            temp_output_dir / "a.vcf",
            [
                ("chr1", 10, "AT", "A"),
                ("chr1", 20, "A", "G,T"),
                ("chr1", 30, "C", "CT"),
                ("chr1", 40, "C", "T"),
            ],
        )
        snps = load_snps_from_vcf(vcf, print_skip=True)
        assert snps == [SNP("chr1", 39, "C", "T")]

    def test_missing_alt(self, temp_output_dir, make_vcf):
        """A missing ALT is left for inference."""
        vcf = make_vcf(temp_output_dir / "a.vcf", [("chr1", 5, "g", ".")])
        assert load_snps_from_vcf(vcf) == [SNP("chr1", 4, "G", None)]

    def test_missing_second_alt_is_multi_allelic(self, temp_output_dir, make_vcf):
        """An ALT of ``A,.`` still lists two alleles and is skipped."""
        vcf = make_vcf(temp_output_dir / "a.vcf", [("chr1", 10, "C", "A,."), ("chr1", 40, "C", "T")])
        assert load_snps_from_vcf(vcf) == [SNP("chr1", 39, "C", "T")]


class TestLoadTsv:
    """Tests for reading candidate SNPs from a position list."""

    def test_columns(self, temp_output_dir):
        """Chrom and 1-based pos are required, alleles optional."""
        tsv = temp_output_dir / "snps.tsv"
        tsv.write_text("#chrom\tpos\nchr1\t101\tA\tG\nchr2\t5\nchr1\t7\tT\n\n")
        assert load_snps_from_tsv(tsv) == [
            SNP("chr1", 100, "A", "G"),
            SNP("chr2", 4, None, None),
            SNP("chr1", 6, "T", None),
        ]

    def test_skips_multi_base(self, temp_output_dir):
        tsv = temp_output_dir / "snps.tsv"
        tsv.write_text("chr1\t10\tAC\tG\nchr1\t11\tA\tG\n")
        assert load_snps_from_tsv(tsv) == [SNP("chr1", 10, "A", "G")]

    def test_skips_multi_allelic_with_missing_alt(self, temp_output_dir):
        """Every comma separated alt counts, missing ones included."""
        tsv = temp_output_dir / "snps.tsv"
        tsv.write_text("chr1\t10\tA\tG,.\nchr1\t11\tA\t.\n")
        assert load_snps_from_tsv(tsv) == [SNP("chr1", 10, "A", None)]

    def test_malformed_line(self, temp_output_dir):
        tsv = temp_output_dir / "snps.tsv"
        tsv.write_text("chr1\n")
        with pytest.raises(ValueError):
            load_snps_from_tsv(tsv)


class TestLoadSnps:
    def test_dispatch_on_extension(self, temp_output_dir, make_vcf):
        """VCF files go through pysam, anything else is read as a list."""
        vcf = make_vcf(temp_output_dir / "a.vcf", [("chr1", 101, "A", "G")])
        tsv = temp_output_dir / "a.txt"
        tsv.write_text("chr1\t101\tA\tG\n")
        assert load_snps(vcf) == load_snps(tsv)
