"""
ugcall - Bayesian SNP and indel genotyping from aligned reads.

This package provides a per-locus genotyping engine (genotype likelihoods,
exact or grid-search allele frequency posteriors, confidence and strand bias
scoring) plus a pysam-based pipeline and command-line interface.

Example usage:
    $ ugcall call -b NA12878=sample.bam -f reference.fa -o calls.vcf -L chr20:1-1000000
"""

__version__ = "0.1.0"

from .engine import CallerWorkspace, GenotypingEngine, VariantAnnotator
from .exceptions import ConfigurationError, InternalConsistencyError, ReferenceFileError, UgcallError
from .models.core import CallerConfig, PipelineConfig
from .pipeline import CallingPipeline

__all__ = [
    "__version__",
    "CallerConfig",
    "CallerWorkspace",
    "CallingPipeline",
    "ConfigurationError",
    "GenotypingEngine",
    "InternalConsistencyError",
    "PipelineConfig",
    "ReferenceFileError",
    "UgcallError",
    "VariantAnnotator",
]
