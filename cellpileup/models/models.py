from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

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
    DEFAULT_UMI_TAG,
)
from cellpileup.core.read_source import ReadFilter
from cellpileup.core.utils import check_output_directory, get_sample_name, read_barcodes

AUTO_TAG = "Auto"
"""UMI tag placeholder: UB in cell mode, no UMI in bulk mode."""


def _normalize_tag(tag: str | None) -> str | None:
    if tag is None or tag.strip() == "" or tag.lower() == "none":
        return None
    return tag


class PileupConfig(BaseModel):
    """Configuration for pileup of candidate SNPs across cells or bulk samples.

    Cell mode (``cell_tag`` set) reads one or more BAM files and splits reads
    by the cell barcode tag; ``barcode_file`` lists the barcodes to keep and
    fixes the output column order. Bulk mode (``cell_tag`` None) treats every
    BAM file as one sample, named by ``sample_ids`` or the BAM file name.
    """

    # Required
    bam_files: list[Path]
    snp_file: Path
    output_path: Path

    # Sample groups
    barcode_file: Path | None = None
    sample_ids: list[str] | None = None
    cell_tag: str | None = DEFAULT_CELL_TAG
    umi_tag: str | None = AUTO_TAG

    # Processing
    num_threads: int | None = None  # None = use cpu_count()
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Position filters
    min_count: int = DEFAULT_MIN_COUNT
    min_maf: float = DEFAULT_MIN_MAF

    # Quality model
    cap_bq: int = DEFAULT_CAP_BQ
    min_bq: int = DEFAULT_MIN_BQ
    doublet_gl: bool = False

    # Read filters
    min_mapq: int = DEFAULT_MIN_MAPQ
    min_len: int = DEFAULT_MIN_LEN
    excl_flag: int | None = None  # None = default for the UMI mode
    incl_flag: int = 0
    no_orphan: bool = True
    max_depth: int = DEFAULT_MAX_DEPTH

    # Output options
    gzip: bool = False
    print_skip_snp: bool = False

    # Derived fields
    sample_names: list[str] = []

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("cell_tag", "umi_tag")
    @classmethod
    def validate_tag(cls, v: str | None) -> str | None:
        return _normalize_tag(v)

    @field_validator("min_maf")
    @classmethod
    def validate_min_maf(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"min_maf must be between 0 and 1, got {v}")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"chunk_size must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def validate_and_configure(self) -> PileupConfig:
        self.output_path = Path(check_output_directory(str(self.output_path)))

        if not self.bam_files:
            raise ValueError("At least one BAM file is required.")
        for bam in self.bam_files:
            if not bam.is_file():
                raise ValueError(f"The BAM file {bam} does not exist.")
        if not self.snp_file.is_file():
            raise ValueError(f"The SNP file {self.snp_file} does not exist.")

        if self.min_bq < 1:
            raise ValueError("min_bq must be at least 1; quality 0 has no defined likelihood.")
        if self.min_bq > self.cap_bq:
            raise ValueError(f"min_bq ({self.min_bq}) must not exceed cap_bq ({self.cap_bq}).")

        if self.umi_tag is not None and self.umi_tag.lower() == AUTO_TAG.lower():
            self.umi_tag = DEFAULT_UMI_TAG if self.cell_tag else None

        if self.cell_tag:
            if self.barcode_file is None:
                raise ValueError("A barcode file is required when reads are split by cell tag.")
            if not self.barcode_file.is_file():
                raise ValueError(f"The barcode file {self.barcode_file} does not exist.")
            if self.sample_ids:
                raise ValueError("sample_ids can only be used in bulk mode (cell_tag=None).")
            self.sample_names = read_barcodes(self.barcode_file)
        else:
            if self.sample_ids is None:
                self.sample_ids = [get_sample_name(str(bam)) for bam in self.bam_files]
            if len(self.sample_ids) != len(self.bam_files):
                raise ValueError(
                    f"Got {len(self.sample_ids)} sample IDs for {len(self.bam_files)} BAM files; "
                    "bulk mode needs one sample ID per BAM file."
                )
            self.sample_names = list(self.sample_ids)

        if not self.sample_names:
            raise ValueError("No sample groups found.")
        if len(set(self.sample_names)) != len(self.sample_names):
            raise ValueError("Sample group names must be unique.")

        return self

    @property
    def use_umi(self) -> bool:
        return self.umi_tag is not None

    def read_filter(self) -> ReadFilter:
        kwargs = {
            "min_mapq": self.min_mapq,
            "min_len": self.min_len,
            "incl_flag": self.incl_flag,
            "no_orphan": self.no_orphan,
            "max_depth": self.max_depth,
        }
        if self.excl_flag is not None:
            kwargs["excl_flag"] = self.excl_flag
        return ReadFilter.for_umi_mode(self.use_umi, **kwargs)
