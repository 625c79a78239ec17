"""
Core configuration models for ugcall.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..config import AFModel, GenotypingMode, GLModel, OutputMode


class GenomicInterval(BaseModel):
    """
    Represents a 0-based, half-open genomic interval [start, end).

    This is the canonical internal representation for all coordinates.
    """
    chrom: str
    start: int = Field(ge=0, description="0-based start position (inclusive)")
    end: int = Field(ge=0, description="0-based end position (exclusive)")

    @model_validator(mode="after")
    def validate_interval(self) -> "GenomicInterval":
        if self.end < self.start:
            raise ValueError(f"End position ({self.end}) must be >= start position ({self.start})")
        return self

    def __len__(self) -> int:
        return self.end - self.start


class CallerConfig(BaseModel):
    """
    Settings that drive the genotyping engine.

    Validated once, then shared read-only by every worker.
    """
    # Population priors
    heterozygosity: float = Field(default=1e-3, gt=0.0, lt=1.0)
    indel_heterozygosity: float = Field(default=1.0 / 8000, gt=0.0, lt=1.0)
    ploidy: int = Field(default=2, ge=1)

    # Base and read filters
    min_base_quality: int = Field(default=17, ge=0)
    min_mapping_quality: int = Field(default=20, ge=0)
    max_deletion_fraction: float = 0.05  # values outside [0, 1] disable the filter
    max_mismatches: int = Field(default=3, ge=0)
    use_badly_mated_reads: bool = False
    coverage_abort: int = -1  # <= 0 disables
    assume_single_sample: str | None = None

    # Thresholds (Phred scale)
    standard_confidence_for_calling: float = Field(default=30.0, ge=0.0)
    standard_confidence_for_emitting: float = Field(default=30.0, ge=0.0)

    # Modes
    output_mode: OutputMode = OutputMode.EMIT_VARIANTS_ONLY
    genotyping_mode: GenotypingMode = GenotypingMode.DISCOVERY
    af_model: AFModel = AFModel.EXACT
    gl_model: GLModel = GLModel.SNP
    no_slod: bool = False

    # Grid search tuning: stop once a posterior falls this far (log10) below the max
    grid_search_log10_epsilon: float = Field(default=8.0, gt=0.0)

    model_config = {"frozen": True}

    @property
    def effective_min_mapping_quality(self) -> int:
        # base qualities are capped by mapping quality, so MQ cannot sit below BQ
        return max(self.min_mapping_quality, self.min_base_quality)

    @property
    def prior_heterozygosity(self) -> float:
        if self.gl_model == GLModel.INDEL:
            return self.indel_heterozygosity
        return self.heterozygosity


class PipelineConfig(BaseModel):
    """
    Global configuration for an end-to-end ugcall run.
    """
    # Input
    bam_files: dict[str, Path]  # sample_name -> bam_path
    reference_fasta: Path
    known_sites_vcf: Path | None = None
    regions: list[str] = Field(default_factory=list)

    # Output
    output_vcf: Path
    verbose_log: Path | None = None

    # Performance
    threads: int = Field(default=1, ge=1)
    chunk_size: int = Field(default=100_000, ge=1)
    max_depth: int = Field(default=8000, ge=1)
    backend: Literal["threading", "sequential"] = "threading"  # workers share the engine and verbose log

    caller: CallerConfig = Field(default_factory=CallerConfig)

    @field_validator("reference_fasta", "known_sites_vcf")
    @classmethod
    def validate_file_exists(cls, v: Path | None) -> Path | None:
        if v is not None and not v.exists():
            raise ValueError(f"File not found: {v}")
        return v

    @field_validator("output_vcf")
    @classmethod
    def validate_output_path(cls, v: Path) -> Path:
        if v.is_dir():
            raise ValueError(f"Output path must be a file, not a directory: {v}")
        return v

    @model_validator(mode="after")
    def validate_bams(self) -> "PipelineConfig":
        if not self.bam_files:
            raise ValueError("At least one BAM file is required")
        for name, path in self.bam_files.items():
            if not path.exists():
                raise ValueError(f"BAM file for sample '{name}' not found: {path}")
        if (
            self.caller.genotyping_mode == GenotypingMode.GENOTYPE_GIVEN_ALLELES
            and self.known_sites_vcf is None
        ):
            raise ValueError("Genotyping given alleles requires a known sites VCF")
        return self
