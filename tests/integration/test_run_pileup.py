"""End-to-end tests of the pileup runner and CLI on generated BAM files."""

import pysam
import pytest
from typer.testing import CliRunner

from cellpileup.cli import app
from cellpileup.core.constants import BASE_VCF, CELLS_VCF, SAMPLES_TSV, mtx_filename
from cellpileup.models.models import PileupConfig
from cellpileup.run_pileup import run_pileup
from cellpileup.version import __version__


def body(path):
    """Non-header lines of a VCF or matrix file."""
    return [line for line in path.read_text().splitlines() if not line.startswith(("#", "%"))]


@pytest.fixture
def cell_config(cell_bam, barcode_file, snp_vcf, temp_output_dir):
    return PileupConfig(
        bam_files=[cell_bam],
        snp_file=snp_vcf,
        output_path=temp_output_dir / "out",
        barcode_file=barcode_file,
        min_count=1,
        num_threads=1,
    )


@pytest.mark.integration
class TestCellMode:
    """Pileup of two cells with UMI collapsing."""

    def test_outputs(self, cell_config):
        summary = run_pileup(cell_config)
        out = cell_config.output_path
        assert summary["n_candidates"] == 2
        assert summary["n_positions"] == 1

        assert body(out / BASE_VCF) == ["chr1\t101\t.\tA\tG\t.\tPASS\tAD=2;DP=5;OTH=0"]

        cells = body(out / CELLS_VCF)
        assert len(cells) == 1
        fields = cells[0].split("\t")
        assert fields[8] == "GT:AD:DP:OTH:GL:BC"
        assert fields[9] == "1/0:1:3:0:35,9,70:2,0,1,0,0"
        assert fields[10].split(":")[1:4] == ["1", "2", "0"]
        assert fields[10].endswith(":1,0,1,0,0")
        assert fields[11] == ".:.:.:.:.:."

        header = (out / CELLS_VCF).read_text().splitlines()
        assert header[-2].endswith("FORMAT\tAAACCC\tGGGTTT\tCCCCCC")
        assert (out / SAMPLES_TSV).read_text() == "AAACCC\nGGGTTT\nCCCCCC\n"

    def test_matrices(self, cell_config):
        run_pileup(cell_config)
        out = cell_config.output_path
        ad = (out / mtx_filename("AD")).read_text().splitlines()
        assert ad[0] == "%%MatrixMarket matrix coordinate integer general"
        assert ad[2] == "1\t3\t2"
        assert ad[3:] == ["1\t1\t1", "1\t2\t1"]
        assert body(out / mtx_filename("DP")) == ["1\t3\t2", "1\t1\t3", "1\t2\t2"]
        assert body(out / mtx_filename("OTH")) == ["1\t3\t0"]

    def test_no_temporary_files_left(self, cell_config):
        run_pileup(cell_config)
        assert not list(cell_config.output_path.glob("tmp_*"))

    def test_parallel_chunks_match_serial(self, cell_config, temp_output_dir):
        """Several workers and small chunks give the same output as one worker."""
        run_pileup(cell_config)
        serial = (cell_config.output_path / CELLS_VCF).read_text()
        parallel_config = cell_config.model_copy(
            update={"output_path": temp_output_dir / "par", "num_threads": 2, "chunk_size": 1}
        )
        parallel_config.output_path.mkdir()
        run_pileup(parallel_config)
        assert (parallel_config.output_path / CELLS_VCF).read_text() == serial

    def test_min_count_filters_positions(self, cell_config):
        config = cell_config.model_copy(update={"min_count": 10})
        summary = run_pileup(config)
        assert summary["n_positions"] == 0
        assert body(config.output_path / BASE_VCF) == []
        assert body(config.output_path / mtx_filename("AD")) == ["0\t3\t0"]

    def test_gzip(self, cell_config):
        config = cell_config.model_copy(update={"gzip": True})
        run_pileup(config)
        gz = config.output_path / f"{BASE_VCF}.gz"
        assert gz.exists()
        assert not (config.output_path / BASE_VCF).exists()
        with pysam.VariantFile(str(gz)) as f:
            assert [rec.pos for rec in f] == [101]


@pytest.mark.integration
def test_bulk_mode(temp_output_dir, make_bam):
    """Two BAM files as two samples, duplicates removed by flag."""
    bam1 = make_bam(temp_output_dir / "s1.bam", [{"base": "A"}, {"base": "T"}, {"base": "T", "flag": 1024}])
    bam2 = make_bam(temp_output_dir / "s2.bam", [{"base": "T"}])
    snps = temp_output_dir / "snps.tsv"
    snps.write_text("chr1\t101\n")
    config = PileupConfig(
        bam_files=[bam1, bam2],
        snp_file=snps,
        output_path=temp_output_dir / "out",
        cell_tag=None,
        sample_ids=["s1", "s2"],
        min_count=1,
        num_threads=1,
    )
    run_pileup(config)
    base = body(config.output_path / BASE_VCF)
    assert base == ["chr1\t101\t.\tT\tA\t.\tPASS\tAD=1;DP=3;OTH=0"]
    fields = body(config.output_path / CELLS_VCF)[0].split("\t")
    assert fields[9].split(":")[1:4] == ["1", "2", "0"]
    assert fields[10].split(":")[1:4] == ["0", "1", "0"]


@pytest.mark.integration
class TestCli:
    """Tests for the typer command line."""

    def test_version(self):
        result = CliRunner().invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_pileup_command(self, cell_bam, barcode_file, snp_vcf, temp_output_dir):
        out = temp_output_dir / "cli"
        result = CliRunner().invoke(
            app,
            [
                "pileup",
                "-s",
                str(cell_bam),
                "-R",
                str(snp_vcf),
                "-O",
                str(out),
                "-b",
                str(barcode_file),
                "--min-count",
                "1",
            ],
        )
        assert result.exit_code == 0, result.output
        assert body(out / BASE_VCF) == ["chr1\t101\t.\tA\tG\t.\tPASS\tAD=2;DP=5;OTH=0"]
        assert list(out.glob("cellpileup_*.log"))

    def test_invalid_config(self, cell_bam, snp_vcf, temp_output_dir):
        """Cell mode without a barcode file fails."""
        result = CliRunner().invoke(
            app, ["pileup", "-s", str(cell_bam), "-R", str(snp_vcf), "-O", str(temp_output_dir / "x")]
        )
        assert result.exit_code != 0
