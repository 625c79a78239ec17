"""
Call-level data structures: alleles, likelihoods, genotypes and variant calls.
"""

from dataclasses import dataclass, field
from typing import Any

from ..config import DiploidGenotype

NO_NEG_LOG10_PERROR = -1.0
LOW_QUAL_FILTER_NAME = "LowQual"

# attribute keys
DEPTH_KEY = "DP"
DOWNSAMPLED_KEY = "DS"
STRAND_BIAS_KEY = "SB"
PHRED_LIKELIHOODS_KEY = "PL"


@dataclass(frozen=True)
class Allele:
    """A (possibly multi-base) allele, flagged when it is the reference."""

    bases: str
    is_reference: bool = False

    @property
    def is_no_call(self) -> bool:
        return self.bases == "."

    def __len__(self) -> int:
        return len(self.bases)

    def __str__(self) -> str:
        return f"{self.bases}*" if self.is_reference else self.bases


NO_CALL = Allele(".")


@dataclass(frozen=True)
class GenotypeLikelihoods:
    """
    Log10 likelihoods of one sample's data under the three biallelic genotypes.

    Values are relative within the sample; only their differences matter.
    """

    sample: str
    allele_a: Allele  # reference
    allele_b: Allele  # alternate
    log10_likelihoods: tuple[float, float, float]  # AA, AB, BB
    depth: int

    @property
    def hom_ref(self) -> float:
        return self.log10_likelihoods[DiploidGenotype.HOM_REF]

    @property
    def het(self) -> float:
        return self.log10_likelihoods[DiploidGenotype.HET]

    @property
    def hom_var(self) -> float:
        return self.log10_likelihoods[DiploidGenotype.HOM_VAR]

    def as_pl(self) -> list[int]:
        """Phred-scaled likelihoods normalized so the best genotype is 0."""
        best = max(self.log10_likelihoods)
        return [int(round(-10.0 * (value - best))) for value in self.log10_likelihoods]


@dataclass
class Genotype:
    """A sample's called genotype."""

    sample: str
    alleles: list[Allele]
    neg_log10_p_error: float = NO_NEG_LOG10_PERROR
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def is_no_call(self) -> bool:
        return all(a.is_no_call for a in self.alleles)

    @property
    def genotype_type(self) -> str:
        if self.is_no_call:
            return "NO_CALL"
        n_ref = sum(1 for a in self.alleles if a.is_reference)
        if n_ref == len(self.alleles):
            return "HOM_REF"
        if n_ref == 0:
            return "HOM_VAR" if len(set(self.alleles)) == 1 else "HET"
        return "HET"

    @property
    def gq(self) -> int | None:
        if self.neg_log10_p_error == NO_NEG_LOG10_PERROR:
            return None
        return min(99, int(round(10.0 * self.neg_log10_p_error)))

    @classmethod
    def no_call(cls, sample: str, ploidy: int = 2) -> "Genotype":
        return cls(sample, [NO_CALL] * ploidy)


@dataclass
class VariantContext:
    """
    A site and its alleles, genotypes and annotations.

    ``start`` is 0-based; ``stop`` is the 0-based inclusive last reference
    base the record spans.
    """

    source: str
    contig: str
    start: int
    stop: int
    alleles: list[Allele]
    genotypes: dict[str, Genotype] = field(default_factory=dict)
    neg_log10_p_error: float = NO_NEG_LOG10_PERROR
    filters: set[str] | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    likelihoods: dict[str, GenotypeLikelihoods] = field(default_factory=dict)

    @property
    def reference(self) -> Allele:
        for allele in self.alleles:
            if allele.is_reference:
                return allele
        raise ValueError(f"No reference allele at {self.contig}:{self.start}")

    @property
    def alternate_alleles(self) -> list[Allele]:
        return [a for a in self.alleles if not a.is_reference]

    @property
    def n_samples(self) -> int:
        return len(self.genotypes)

    @property
    def is_variant(self) -> bool:
        return bool(self.alternate_alleles)

    @property
    def is_snp(self) -> bool:
        return self.is_variant and all(len(a) == 1 for a in self.alleles)

    @property
    def is_filtered(self) -> bool:
        return bool(self.filters)

    @property
    def phred_scaled_qual(self) -> float | None:
        if self.neg_log10_p_error == NO_NEG_LOG10_PERROR:
            return None
        return 10.0 * self.neg_log10_p_error


@dataclass
class VariantCallContext:
    """The engine's decision for one locus."""

    vc: VariantContext | None
    confidently_called: bool
    should_emit: bool = True
    ref_base: str | None = None
    confidence: float | None = None  # Phred-scaled; reference confidence when nothing is emitted
