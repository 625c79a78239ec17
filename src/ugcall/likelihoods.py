"""
Genotype likelihood models.

Each model turns one locus' stratified pileups into per-sample log10
likelihoods for the three biallelic diploid genotypes (AA, AB, BB) against a
single chosen alternate allele.

**Key Classes:**
- SNPGenotypeLikelihoodsModel: base-quality error model for substitutions
- IndelGenotypeLikelihoodsModel: read-level model for insertions/deletions

Instances keep per-locus scratch state (the chosen alternate allele), so a
model belongs to exactly one worker.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Mapping, MutableMapping

import numpy as np

from .config import GenotypingMode, GLModel, OutputMode, ReadOrientation
from .exceptions import ConfigurationError
from .models.calls import Allele, GenotypeLikelihoods
from .models.core import CallerConfig
from .models.pileup import BASES, ReadBackedPileup, ReferenceContext, is_regular_base
from .models.sites import KnownSitesTracker

logger = logging.getLogger(__name__)

__all__ = [
    "DiploidIndelGenotypePriors",
    "DiploidSNPGenotypePriors",
    "GenotypeLikelihoodsModel",
    "GenotypePriors",
    "IndelGenotypeLikelihoodsModel",
    "SNPGenotypeLikelihoodsModel",
    "create_genotype_likelihoods_model",
    "create_genotype_priors",
]


class GenotypePriors:
    """Per-genotype priors; the likelihood models use them flat."""

    def __init__(self, heterozygosity: float):
        self.heterozygosity = heterozygosity


class DiploidSNPGenotypePriors(GenotypePriors):
    pass


class DiploidIndelGenotypePriors(GenotypePriors):
    pass


def create_genotype_priors(config: CallerConfig) -> GenotypePriors:
    if config.gl_model == GLModel.SNP:
        return DiploidSNPGenotypePriors(config.heterozygosity)
    if config.gl_model == GLModel.INDEL:
        return DiploidIndelGenotypePriors(config.indel_heterozygosity)
    raise ConfigurationError(f"Unexpected genotype likelihood model: {config.gl_model}")


def _diploid_log10_likelihoods(
    p_given_a: np.ndarray, p_given_b: np.ndarray
) -> tuple[float, float, float]:
    """Sum per-observation log10 probabilities under AA, AB and BB."""
    hom_ref = float(np.log10(p_given_a).sum())
    het = float(np.log10((p_given_a + p_given_b) / 2.0).sum())
    hom_var = float(np.log10(p_given_b).sum())
    return hom_ref, het, hom_var


class GenotypeLikelihoodsModel(ABC):
    """Interface shared by the SNP and indel likelihood models."""

    def __init__(self, config: CallerConfig):
        self.config = config
        self.use_allele_from_vcf = config.genotyping_mode == GenotypingMode.GENOTYPE_GIVEN_ALLELES

    @abstractmethod
    def get_likelihoods(
        self,
        tracker: KnownSitesTracker | None,
        ref_context: ReferenceContext,
        contexts: Mapping[str, ReadBackedPileup],
        orientation: ReadOrientation,
        priors: GenotypePriors,
        likelihoods_out: MutableMapping[str, GenotypeLikelihoods],
        alternate_allele: Allele | None = None,
        reference_allele: Allele | None = None,
    ) -> Allele | None:
        """
        Fill ``likelihoods_out`` with one entry per sample that has usable data.

        Args:
            tracker: Known-sites lookup, used when genotyping given alleles.
            ref_context: Reference base and window at the locus.
            contexts: Filtered pileups keyed by sample.
            orientation: Which strand's reads to use.
            priors: Genotype priors matching this model.
            likelihoods_out: Receives the per-sample likelihoods.
            alternate_allele: Genotype against this allele instead of choosing one.
            reference_allele: Reference allele paired with ``alternate_allele``
                (only needed for deletions).

        Returns:
            The reference allele, or None when no call can be made here.
        """


class SNPGenotypeLikelihoodsModel(GenotypeLikelihoodsModel):
    """
    Diploid SNP likelihoods from base qualities.

    With error probability ``e = 10^(-q/10)`` an observed base equal to the
    hypothesized allele has probability ``1 - e``, any other specific base
    ``e / 3``. Heterozygous genotypes average the two alleles.
    """

    def __init__(self, config: CallerConfig):
        super().__init__(config)
        # the alternate allele with the largest sum of quality scores
        self.best_alternate_allele: str | None = None

    def get_likelihoods(
        self,
        tracker,
        ref_context,
        contexts,
        orientation,
        priors,
        likelihoods_out,
        alternate_allele=None,
        reference_allele=None,
    ):
        if not isinstance(priors, DiploidSNPGenotypePriors):
            raise ConfigurationError("Only diploid-based SNP priors are supported in the SNP GL model")

        ref_base = ref_context.base
        if not is_regular_base(ref_base):
            return None
        ref_allele = Allele(ref_base, is_reference=True)

        if alternate_allele is not None:
            if len(alternate_allele) != 1 or not is_regular_base(alternate_allele.bases):
                logger.debug(
                    "Allele %s at %s:%d is not a SNP allele; skipping",
                    alternate_allele, ref_context.contig, ref_context.position,
                )
                return None
            self.best_alternate_allele = alternate_allele.bases.upper()
        elif self.use_allele_from_vcf:
            site = tracker.get_site(ref_context.contig, ref_context.position) if tracker else None
            if site is None:
                return None
            if not site.is_snp:
                logger.info(
                    "Record at position %s:%d is not a SNP; skipping...",
                    ref_context.contig, ref_context.position + 1,
                )
                return None
            if not site.is_biallelic:
                logger.info(
                    "Record at position %s:%d is not bi-allelic; choosing the first allele...",
                    ref_context.contig, ref_context.position + 1,
                )
            self.best_alternate_allele = site.alternates[0].upper()
        else:
            self.best_alternate_allele = self._find_best_alternate_allele(ref_base, contexts)

        # if there are no non-ref bases...
        if self.best_alternate_allele is None:
            # if we only want variants, then we don't need to calculate genotype likelihoods
            if self.config.output_mode == OutputMode.EMIT_VARIANTS_ONLY:
                return ref_allele
            # otherwise, choose any alternate allele (it doesn't really matter)
            self.best_alternate_allele = "A" if ref_base != "A" else "C"

        alt_allele = Allele(self.best_alternate_allele)

        for sample, pileup in contexts.items():
            result = self._sample_likelihoods(
                pileup.get_orientation(orientation), ref_base, self.best_alternate_allele
            )
            if result is None:
                continue
            log10_likelihoods, depth = result
            likelihoods_out[sample] = GenotypeLikelihoods(
                sample=sample,
                allele_a=ref_allele,
                allele_b=alt_allele,
                log10_likelihoods=log10_likelihoods,
                depth=depth,
            )

        return ref_allele

    @staticmethod
    def _find_best_alternate_allele(
        ref_base: str, contexts: Mapping[str, ReadBackedPileup]
    ) -> str | None:
        qual_sums = dict.fromkeys(BASES, 0)
        for pileup in contexts.values():
            for element in pileup:
                # ignore deletions and filtered bases
                if element.is_deletion or not element.good:
                    continue
                base = element.base
                if base in qual_sums:
                    qual_sums[base] += element.qual

        best, max_count = None, 0
        for base in BASES:
            if base == ref_base:
                continue
            if qual_sums[base] > max_count:
                max_count = qual_sums[base]
                best = base
        return best

    @staticmethod
    def _sample_likelihoods(
        pileup: ReadBackedPileup, ref_base: str, alt_base: str
    ) -> tuple[tuple[float, float, float], int] | None:
        bases = []
        quals = []
        for element in pileup:
            if element.is_deletion or not element.good:
                continue
            base = element.base
            qual = min(element.qual, element.mapping_quality)
            if not is_regular_base(base) or qual <= 0:
                continue
            bases.append(base)
            quals.append(qual)

        if not bases:
            return None

        observed = np.array(bases)
        error = np.power(10.0, -np.array(quals, dtype=float) / 10.0)
        p_ref = np.where(observed == ref_base, 1.0 - error, error / 3.0)
        p_alt = np.where(observed == alt_base, 1.0 - error, error / 3.0)
        return _diploid_log10_likelihoods(p_ref, p_alt), len(bases)


class IndelGenotypeLikelihoodsModel(GenotypeLikelihoodsModel):
    """
    Diploid indel likelihoods from read support.

    A read supports the event allele when its element carries the same indel
    event, the reference otherwise; its error rate is ``10^(-mapq/10)``.
    """

    def __init__(self, config: CallerConfig):
        super().__init__(config)
        self.best_event: str | None = None

    def get_likelihoods(
        self,
        tracker,
        ref_context,
        contexts,
        orientation,
        priors,
        likelihoods_out,
        alternate_allele=None,
        reference_allele=None,
    ):
        if not isinstance(priors, DiploidIndelGenotypePriors):
            raise ConfigurationError("Only diploid-based indel priors are supported in the indel GL model")

        ref_base = ref_context.base
        if not is_regular_base(ref_base):
            return None

        if alternate_allele is not None:
            self.best_event = self._event_from_alleles(reference_allele, alternate_allele)
        elif self.use_allele_from_vcf:
            site = tracker.get_site(ref_context.contig, ref_context.position) if tracker else None
            if site is None or site.is_snp or not site.alternates:
                return None
            self.best_event = self._event_from_alleles(
                Allele(site.ref, is_reference=True), Allele(site.alternates[0])
            )
        else:
            self.best_event = self._find_best_event(contexts)

        if self.best_event is None:
            return Allele(ref_base, is_reference=True)

        alleles = self._alleles_for_event(ref_context, self.best_event)
        if alleles is None:
            return None
        ref_allele, alt_allele = alleles

        for sample, pileup in contexts.items():
            result = self._sample_likelihoods(pileup.get_orientation(orientation), self.best_event)
            if result is None:
                continue
            log10_likelihoods, depth = result
            likelihoods_out[sample] = GenotypeLikelihoods(
                sample=sample,
                allele_a=ref_allele,
                allele_b=alt_allele,
                log10_likelihoods=log10_likelihoods,
                depth=depth,
            )

        return ref_allele

    @staticmethod
    def _event_from_alleles(ref: Allele | None, alt: Allele) -> str | None:
        if len(alt) > 1:
            return "+" + alt.bases[1:].upper()
        if ref is not None and len(ref) > 1:
            return f"-{len(ref) - 1}"
        return None

    @staticmethod
    def _alleles_for_event(ref_context: ReferenceContext, event: str) -> tuple[Allele, Allele] | None:
        ref_base = ref_context.base
        if event.startswith("+"):
            return Allele(ref_base, is_reference=True), Allele(ref_base + event[1:])
        length = int(event[1:])
        start = ref_context.position + 1
        deleted = ref_context.sequence(start, start + length)
        if len(deleted) != length:
            return None
        return Allele(ref_base + deleted, is_reference=True), Allele(ref_base)

    @staticmethod
    def _find_best_event(contexts: Mapping[str, ReadBackedPileup]) -> str | None:
        events: Counter[str] = Counter()
        for pileup in contexts.values():
            for element in pileup:
                if element.good and not element.is_deletion and element.indel_event:
                    events[element.indel_event] += 1
        if not events:
            return None
        return events.most_common(1)[0][0]

    @staticmethod
    def _sample_likelihoods(
        pileup: ReadBackedPileup, event: str
    ) -> tuple[tuple[float, float, float], int] | None:
        supports = []
        mapqs = []
        for element in pileup:
            if element.is_deletion or not element.good or element.mapping_quality <= 0:
                continue
            supports.append(element.indel_event == event)
            mapqs.append(element.mapping_quality)

        if not supports:
            return None

        has_event = np.array(supports)
        error = np.power(10.0, -np.array(mapqs, dtype=float) / 10.0)
        p_ref = np.where(has_event, error, 1.0 - error)
        p_alt = np.where(has_event, 1.0 - error, error)
        return _diploid_log10_likelihoods(p_ref, p_alt), len(supports)


def create_genotype_likelihoods_model(config: CallerConfig) -> GenotypeLikelihoodsModel:
    if config.gl_model == GLModel.SNP:
        return SNPGenotypeLikelihoodsModel(config)
    if config.gl_model == GLModel.INDEL:
        return IndelGenotypeLikelihoodsModel(config)
    raise ConfigurationError(f"Unexpected genotype likelihood model: {config.gl_model}")
