"""
Data models for ugcall.

Provides pydantic configuration models plus the pileup and call structures
passed between the likelihood model, the frequency model and the engine.
"""

from .calls import (
    LOW_QUAL_FILTER_NAME,
    NO_CALL,
    Allele,
    Genotype,
    GenotypeLikelihoods,
    VariantCallContext,
    VariantContext,
)
from .core import CallerConfig, GenomicInterval, PipelineConfig
from .pileup import (
    AlignedRead,
    LocusData,
    PileupElement,
    ReadBackedPileup,
    ReferenceContext,
)

__all__ = [
    "LOW_QUAL_FILTER_NAME",
    "NO_CALL",
    "AlignedRead",
    "Allele",
    "CallerConfig",
    "GenomicInterval",
    "Genotype",
    "GenotypeLikelihoods",
    "LocusData",
    "PileupElement",
    "PipelineConfig",
    "ReadBackedPileup",
    "ReferenceContext",
    "VariantCallContext",
    "VariantContext",
]
