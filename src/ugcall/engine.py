"""
Genotyping Engine: per-locus Bayesian variant calling.

For each locus the engine:
1. Skips loci whose raw depth exceeds the coverage abort threshold.
2. Marks bad bases and splits the pileup by sample.
3. Computes per-sample genotype likelihoods.
4. Computes the allele-count posterior.
5. Derives the best allele count and a Phred-scaled confidence.
6. Applies the emission policy, falling back to a reference-confidence estimate.
7. Assigns genotypes, estimates strand bias and assembles the call.

All mutable per-locus state lives in a :class:`CallerWorkspace`; build one
per worker with :meth:`GenotypingEngine.new_workspace`. The engine itself is
read-only after construction and may be shared across threads.
"""

import io
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol, TextIO

import numpy as np

from .afcalc import (
    AlleleFrequencyModel,
    clear_af_array,
    compute_allele_frequency_priors,
    create_allele_frequency_model,
)
from .config import GenotypingMode, GLModel, OutputMode, ReadOrientation
from .exceptions import ConfigurationError, InternalConsistencyError
from .likelihoods import (
    GenotypeLikelihoodsModel,
    create_genotype_likelihoods_model,
    create_genotype_priors,
)
from .models.calls import (
    DOWNSAMPLED_KEY,
    LOW_QUAL_FILTER_NAME,
    STRAND_BIAS_KEY,
    Allele,
    Genotype,
    GenotypeLikelihoods,
    VariantCallContext,
    VariantContext,
)
from .models.core import CallerConfig
from .models.pileup import (
    AlignedRead,
    LocusData,
    PileupElement,
    ReadBackedPileup,
    ReferenceContext,
    is_regular_base,
)
from .models.sites import KnownSitesTracker
from .utils.mathutils import (
    VALUE_NOT_CALCULATED,
    binomial_probability,
    log10_sum_log10,
    max_element_index,
    normalize_from_log10,
    phred_scale_error_rate,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MISMATCH_WINDOW_SIZE",
    "CallerWorkspace",
    "GenotypingEngine",
    "VariantAnnotator",
]

SOURCE_NAME = "UG_call"

# read offsets on each side of a base searched for reference mismatches
MISMATCH_WINDOW_SIZE = 20


class VariantAnnotator(Protocol):
    """Attaches auxiliary attributes to a call."""

    def annotate(
        self,
        tracker: KnownSitesTracker | None,
        ref_context: ReferenceContext,
        stratified_contexts: Mapping[str, ReadBackedPileup],
        vc: VariantContext,
    ) -> VariantContext: ...


@dataclass
class CallerWorkspace:
    """Models and scratch buffers owned by a single worker."""

    gl_model: GenotypeLikelihoodsModel
    af_model: AlleleFrequencyModel
    log10_posteriors: np.ndarray


class GenotypingEngine:
    """
    Calls variants and genotypes one locus at a time.

    Args:
        config: Caller settings.
        samples: Every sample in the population, covered or not.
        known_sites: Site list, required when genotyping given alleles.
        annotator: Optional annotation collaborator.
        verbose_writer: Optional text stream for per-locus posterior dumps.

    Raises:
        ConfigurationError: on non-diploid ploidy, missing known sites in
            genotype-given-alleles mode, an empty sample set or priors that
            cannot be normalized.
    """

    def __init__(
        self,
        config: CallerConfig,
        samples: Iterable[str],
        known_sites: KnownSitesTracker | None = None,
        annotator: VariantAnnotator | None = None,
        verbose_writer: TextIO | None = None,
    ):
        if config.ploidy != 2:
            raise ConfigurationError(f"Only diploid calling is supported, got ploidy {config.ploidy}")
        if config.genotyping_mode == GenotypingMode.GENOTYPE_GIVEN_ALLELES and known_sites is None:
            raise ConfigurationError("Genotyping given alleles requires a known sites source")

        self.config = config
        self.known_sites = known_sites
        self.annotator = annotator
        self.verbose_writer = verbose_writer

        if config.assume_single_sample is not None:
            self.samples = [config.assume_single_sample]
        else:
            self.samples = sorted(set(samples))
        if not self.samples:
            raise ConfigurationError("At least one sample is required")

        self.n_chromosomes = 2 * len(self.samples)
        self.log10_af_priors = compute_allele_frequency_priors(
            self.n_chromosomes, config.prior_heterozygosity
        )
        self.genotype_priors = create_genotype_priors(config)

        logger.debug(
            "Engine ready: %d samples, %s/%s models, output mode %s",
            len(self.samples), config.gl_model.value, config.af_model.value, config.output_mode.value,
        )

    def new_workspace(self) -> CallerWorkspace:
        """Fresh models and scratch buffers for one worker."""
        return CallerWorkspace(
            gl_model=create_genotype_likelihoods_model(self.config),
            af_model=create_allele_frequency_model(self.config, self.n_chromosomes),
            log10_posteriors=np.full(self.n_chromosomes + 1, VALUE_NOT_CALCULATED),
        )

    @property
    def _emit_all_sites(self) -> bool:
        return self.config.output_mode == OutputMode.EMIT_ALL_SITES

    @property
    def _given_alleles(self) -> bool:
        return self.config.genotyping_mode == GenotypingMode.GENOTYPE_GIVEN_ALLELES

    # ------------------------------------------------------------------
    # public entry points
    # ------------------------------------------------------------------

    def calculate_likelihoods_and_genotypes(
        self,
        ref_context: ReferenceContext,
        locus: LocusData,
        workspace: CallerWorkspace,
    ) -> VariantCallContext | None:
        """
        Compute the full call at a locus.

        Returns:
            The call, a non-emitting reference-confidence result, or None
            when no call can be made.
        """
        if 0 < self.config.coverage_abort < locus.size:
            logger.debug(
                "Skipping %s:%d, depth %d exceeds %d",
                locus.contig, locus.position + 1, locus.size, self.config.coverage_abort,
            )
            return None

        stratified = self._get_filtered_and_stratified_contexts(ref_context, locus)
        if stratified is None:
            return self._empty_call(ref_context, locus) if self._emit_all_sites else None

        vc = self._calculate_likelihoods(ref_context, stratified, ReadOrientation.COMPLETE, workspace)
        if vc is None:
            return self._empty_call(ref_context, locus) if self._emit_all_sites else None

        return self._calculate_genotypes(ref_context, locus, stratified, vc, workspace)

    def calculate_likelihoods(
        self,
        ref_context: ReferenceContext,
        locus: LocusData,
        workspace: CallerWorkspace,
        alternate_allele: Allele | None = None,
        reference_allele: Allele | None = None,
    ) -> VariantContext | None:
        """
        Compute genotype likelihoods at a locus without calling genotypes.

        Args:
            alternate_allele: Genotype against this allele instead of choosing one.
            reference_allele: Reference allele for ``alternate_allele``; only
                needed for deletions under the indel model.
        """
        stratified = self._get_filtered_and_stratified_contexts(ref_context, locus)
        if stratified is None:
            return None
        return self._calculate_likelihoods(
            ref_context, stratified, ReadOrientation.COMPLETE, workspace,
            alternate_allele, reference_allele,
        )

    def calculate_genotypes(
        self,
        ref_context: ReferenceContext,
        locus: LocusData,
        vc: VariantContext,
        workspace: CallerWorkspace,
    ) -> VariantCallContext | None:
        """Compute the call for likelihoods produced by :meth:`calculate_likelihoods`."""
        stratified = self._get_filtered_and_stratified_contexts(ref_context, locus)
        if stratified is None:
            return self._empty_call(ref_context, locus) if self._emit_all_sites else None
        return self._calculate_genotypes(ref_context, locus, stratified, vc, workspace)

    # ------------------------------------------------------------------
    # likelihoods
    # ------------------------------------------------------------------

    def _calculate_likelihoods(
        self,
        ref_context: ReferenceContext,
        stratified: Mapping[str, ReadBackedPileup],
        orientation: ReadOrientation,
        workspace: CallerWorkspace,
        alternate_allele: Allele | None = None,
        reference_allele: Allele | None = None,
    ) -> VariantContext | None:
        likelihoods: dict[str, GenotypeLikelihoods] = {}
        ref_allele = workspace.gl_model.get_likelihoods(
            self.known_sites,
            ref_context,
            stratified,
            orientation,
            self.genotype_priors,
            likelihoods,
            alternate_allele,
            reference_allele,
        )
        if ref_allele is None:
            return None
        return self._create_variant_context_from_likelihoods(ref_context, ref_allele, likelihoods)

    @staticmethod
    def _create_variant_context_from_likelihoods(
        ref_context: ReferenceContext,
        ref_allele: Allele,
        likelihoods: dict[str, GenotypeLikelihoods],
    ) -> VariantContext:
        alleles = [ref_allele]
        genotypes = {}
        for gl in likelihoods.values():
            if len(alleles) == 1:
                alleles.append(gl.allele_b)
            # no-call everyone for now
            no_call = Genotype.no_call(gl.sample)
            no_call.attributes.update({"DP": gl.depth, "PL": gl.as_pl()})
            genotypes[gl.sample] = no_call

        return VariantContext(
            source=SOURCE_NAME,
            contig=ref_context.contig,
            start=ref_context.position,
            stop=ref_context.position + len(ref_allele) - 1,
            alleles=alleles,
            genotypes=genotypes,
            likelihoods=dict(likelihoods),
        )

    # ------------------------------------------------------------------
    # genotypes
    # ------------------------------------------------------------------

    def _calculate_genotypes(
        self,
        ref_context: ReferenceContext,
        locus: LocusData,
        stratified: Mapping[str, ReadBackedPileup],
        vc: VariantContext,
        workspace: CallerWorkspace,
    ) -> VariantCallContext | None:
        # estimate our confidence in a reference call and return
        if vc.n_samples == 0:
            if self._emit_all_sites:
                return self._empty_call(ref_context, locus)
            return self._estimate_reference_confidence(
                vc, stratified, self.genotype_priors.heterozygosity, False, 1.0, ref_context.base
            )

        posteriors = workspace.log10_posteriors
        clear_af_array(posteriors)
        workspace.af_model.get_log10_posteriors(vc.likelihoods, self.log10_af_priors, posteriors)

        # find the most likely frequency
        best_af_guess = max_element_index(posteriors)

        # calculate p(f>0)
        normalized = normalize_from_log10(posteriors)
        p_of_f = min(float(normalized[1:].sum()), 1.0)  # deal with precision errors

        confidence = self._phred_scaled_confidence(posteriors, normalized, p_of_f, best_af_guess)

        # a null call if we don't pass the confidence cutoff or the most likely allele frequency is zero
        if not self._emit_all_sites and not self._passes_emit_threshold(confidence, best_af_guess):
            # samples with no data were ignored so far, so re-estimate with them
            return self._estimate_reference_confidence(
                vc, stratified, self.genotype_priors.heterozygosity, True, 1.0 - p_of_f,
                ref_context.base,
            )

        genotypes = workspace.af_model.assign_genotypes(vc, posteriors, best_af_guess, self.samples)

        if self.verbose_writer is not None:
            self._print_verbose_data(
                f"{ref_context.contig}:{ref_context.position + 1}",
                vc, p_of_f, confidence, normalized, posteriors,
            )

        # strand bias overwrites the posterior scratch array, so it goes last
        attributes: dict = {}
        if locus.downsampled:
            attributes[DOWNSAMPLED_KEY] = True

        if not self.config.no_slod and best_af_guess != 0:
            strand_score = self._strand_score(ref_context, stratified, vc, workspace)
            if strand_score is not None:
                attributes[STRAND_BIAS_KEY] = strand_score

        alleles = list(vc.alleles)
        # strip out the alternate allele if it's a ref call
        if best_af_guess == 0 and not self._given_alleles:
            alleles = [vc.reference]

        call = VariantContext(
            source=SOURCE_NAME,
            contig=ref_context.contig,
            start=ref_context.position,
            stop=ref_context.position + len(vc.reference) - 1,
            alleles=alleles,
            genotypes=genotypes,
            neg_log10_p_error=confidence / 10.0,
            filters=None if self._passes_call_threshold(confidence) else {LOW_QUAL_FILTER_NAME},
            attributes=attributes,
            likelihoods=vc.likelihoods,
        )

        if self.annotator is not None:
            # annotations see the unfiltered reads
            raw_contexts = locus.pileup.split_by_sample(self.config.assume_single_sample)
            call = self.annotator.annotate(self.known_sites, ref_context, raw_contexts, call)

        return VariantCallContext(
            vc=call,
            confidently_called=self._confidently_called(confidence, p_of_f),
            should_emit=True,
            ref_base=ref_context.base,
            confidence=confidence,
        )

    def _phred_scaled_confidence(
        self,
        posteriors: np.ndarray,
        normalized: np.ndarray,
        p_of_f: float,
        best_af_guess: int,
    ) -> float:
        if best_af_guess != 0 or self._given_alleles:
            confidence = phred_scale_error_rate(float(normalized[0]))
            if math.isinf(confidence):
                confidence = -10.0 * float(posteriors[0])
            return confidence

        confidence = phred_scale_error_rate(p_of_f)
        if math.isinf(confidence):
            total = 0.0
            for value in posteriors[1:]:
                if value == VALUE_NOT_CALCULATED:
                    break
                total += float(value)
            confidence = 0.0 if math.isclose(total, 0.0, abs_tol=1e-6) else -10.0 * total
        return confidence

    def _strand_score(
        self,
        ref_context: ReferenceContext,
        stratified: Mapping[str, ReadBackedPileup],
        vc: VariantContext,
        workspace: CallerWorkspace,
    ) -> float | None:
        posteriors = workspace.log10_posteriors
        overall_log10_p_of_f = log10_sum_log10(posteriors, 1)
        alt_allele = vc.alternate_alleles[0]

        def strand_posteriors(orientation: ReadOrientation) -> tuple[float, float]:
            stranded = self._calculate_likelihoods(
                ref_context, stratified, orientation, workspace, alt_allele, vc.reference
            )
            clear_af_array(posteriors)
            workspace.af_model.get_log10_posteriors(
                stranded.likelihoods if stranded is not None else {},
                self.log10_af_priors,
                posteriors,
            )
            return float(posteriors[0]), log10_sum_log10(posteriors, 1)

        forward_log10_p_of_null, forward_log10_p_of_f = strand_posteriors(ReadOrientation.FORWARD)
        reverse_log10_p_of_null, reverse_log10_p_of_f = strand_posteriors(ReadOrientation.REVERSE)

        forward_lod = forward_log10_p_of_f + reverse_log10_p_of_null - overall_log10_p_of_f
        reverse_lod = reverse_log10_p_of_f + forward_log10_p_of_null - overall_log10_p_of_f
        logger.debug("forward lod=%f, reverse lod=%f", forward_lod, reverse_lod)

        # strand score is max bias between forward and reverse strands, rescaled by 10
        strand_score = 10.0 * max(forward_lod, reverse_lod)
        return strand_score if math.isfinite(strand_score) else None

    # ------------------------------------------------------------------
    # reference confidence and empty calls
    # ------------------------------------------------------------------

    def _estimate_reference_confidence(
        self,
        vc: VariantContext,
        contexts: Mapping[str, ReadBackedPileup] | None,
        theta: float,
        ignore_covered_samples: bool,
        initial_p_of_ref: float,
        ref_base: str | None = None,
    ) -> VariantCallContext | None:
        if contexts is None:
            return None

        p_of_ref = initial_p_of_ref

        # for each sample that we haven't examined yet
        for sample in self.samples:
            is_covered = sample in contexts
            if ignore_covered_samples and is_covered:
                continue
            depth = len(contexts[sample]) if is_covered else 0
            p_of_ref *= 1.0 - (theta / 2.0) * binomial_probability(0, depth, 0.5)

        confidence = phred_scale_error_rate(1.0 - p_of_ref)
        return VariantCallContext(
            vc=vc,
            confidently_called=confidence >= self.config.standard_confidence_for_calling,
            should_emit=False,
            ref_base=ref_base,
            confidence=confidence,
        )

    def _generate_empty_context(
        self, ref_context: ReferenceContext, locus: LocusData
    ) -> VariantContext | None:
        if self._given_alleles:
            site = self.known_sites.get_site(ref_context.contig, ref_context.position)
            if site is None or site.filtered:
                return None
            alleles = [Allele(site.ref, is_reference=True)] + [Allele(a) for a in site.alternates]
        else:
            alleles = [Allele(ref_context.base, is_reference=True)]

        vc = VariantContext(
            source=SOURCE_NAME,
            contig=ref_context.contig,
            start=ref_context.position,
            stop=ref_context.position + len(alleles[0]) - 1,
            alleles=alleles,
        )

        if self.annotator is not None:
            raw_contexts = locus.pileup.split_by_sample(self.config.assume_single_sample)
            vc = self.annotator.annotate(self.known_sites, ref_context, raw_contexts, vc)

        return vc

    def _empty_call(self, ref_context: ReferenceContext, locus: LocusData) -> VariantCallContext | None:
        vc = self._generate_empty_context(ref_context, locus)
        if vc is None:
            return None
        return VariantCallContext(vc=vc, confidently_called=False, ref_base=ref_context.base)

    # ------------------------------------------------------------------
    # filtering
    # ------------------------------------------------------------------

    def _get_filtered_and_stratified_contexts(
        self, ref_context: ReferenceContext, locus: LocusData
    ) -> dict[str, ReadBackedPileup] | None:
        if self.config.gl_model == GLModel.INDEL:
            min_mq = self.config.effective_min_mapping_quality
            pileup = ReadBackedPileup(e.with_good(e.mapping_quality >= min_mq) for e in locus.pileup)
            # don't call when there is no coverage
            if not pileup.good_bases() and not self._emit_all_sites:
                return None
            return pileup.split_by_sample(self.config.assume_single_sample)

        if not is_regular_base(ref_context.base):
            return None

        stratified = locus.pileup.split_by_sample(self.config.assume_single_sample)
        return self._filter_pileup(stratified, ref_context)

    def _filter_pileup(
        self,
        stratified: Mapping[str, ReadBackedPileup],
        ref_context: ReferenceContext,
    ) -> dict[str, ReadBackedPileup] | None:
        num_deletions = 0
        pileup_size = 0
        filtered: dict[str, ReadBackedPileup] = {}
        # grows to cover every base the mismatch windows reach
        mismatch_context = ref_context

        for sample, pileup in stratified.items():
            marked: list[PileupElement] = []
            for element in pileup:
                if element.is_deletion:
                    good = self._is_good_read(element.read)
                    if good:
                        num_deletions += 1
                else:
                    if not isinstance(element.read, AlignedRead):
                        raise InternalConsistencyError(
                            f"Base filtering expects AlignedRead records, but saw {type(element.read).__name__}"
                        )
                    span = self._mismatch_span(element)
                    if span is not None:
                        mismatch_context = mismatch_context.covering(*span)
                    good = self._is_good_base(element, mismatch_context)
                    if good:
                        pileup_size += 1
                marked.append(element.with_good(good))
            filtered[sample] = ReadBackedPileup(marked)

        # in all-sites mode bad pileups are still processed
        if self._emit_all_sites:
            return filtered

        if pileup_size == 0:
            return None

        max_fraction = self.config.max_deletion_fraction
        if 0.0 <= max_fraction <= 1.0 and num_deletions / (pileup_size + num_deletions) > max_fraction:
            return None

        return filtered

    def _is_good_read(self, read: AlignedRead) -> bool:
        if read.mapping_quality < self.config.effective_min_mapping_quality:
            return False
        return self.config.use_badly_mated_reads or not read.has_bad_mate

    def _is_good_base(self, element: PileupElement, ref_context: ReferenceContext) -> bool:
        if not self._is_good_read(element.read):
            return False
        if element.qual < self.config.min_base_quality:
            return False
        return self._count_mismatches(element, ref_context) <= self.config.max_mismatches

    @staticmethod
    def _mismatch_offsets(element: PileupElement) -> range:
        """Read offsets within MISMATCH_WINDOW_SIZE of the element's base."""
        return range(
            max(0, element.offset - MISMATCH_WINDOW_SIZE),
            min(len(element.read.bases), element.offset + MISMATCH_WINDOW_SIZE + 1),
        )

    @classmethod
    def _mismatch_span(cls, element: PileupElement) -> tuple[int, int] | None:
        """Reference interval [start, end) aligned to the element's mismatch window."""
        positions = element.read.reference_positions
        aligned = [positions[o] for o in cls._mismatch_offsets(element) if positions[o] is not None]
        if not aligned:
            return None
        return min(aligned), max(aligned) + 1

    @classmethod
    def _count_mismatches(cls, element: PileupElement, ref_context: ReferenceContext) -> int:
        read = element.read
        mismatches = 0
        for offset in cls._mismatch_offsets(element):
            ref_position = read.reference_positions[offset]
            if ref_position is None:
                continue
            ref_base = ref_context.base_at(ref_position)
            if ref_base is None or not is_regular_base(ref_base):
                continue
            if read.bases[offset].upper() != ref_base:
                mismatches += 1
        return mismatches

    # ------------------------------------------------------------------
    # thresholds and reporting
    # ------------------------------------------------------------------

    def _passes_emit_threshold(self, confidence: float, best_af_guess: int) -> bool:
        config = self.config
        return (
            config.output_mode == OutputMode.EMIT_ALL_CONFIDENT_SITES or best_af_guess != 0
        ) and confidence >= min(
            config.standard_confidence_for_calling, config.standard_confidence_for_emitting
        )

    def _passes_call_threshold(self, confidence: float) -> bool:
        return confidence >= self.config.standard_confidence_for_calling

    def _confidently_called(self, confidence: float, p_of_f: float) -> bool:
        threshold = self.config.standard_confidence_for_calling
        return confidence >= threshold or (
            self._given_alleles and phred_scale_error_rate(p_of_f) >= threshold
        )

    def _print_verbose_data(
        self,
        position: str,
        vc: VariantContext,
        p_of_f: float,
        confidence: float,
        normalized: np.ndarray,
        posteriors: np.ndarray,
    ) -> None:
        ref_allele = vc.reference
        alternates = vc.alternate_alleles
        alt_label = str(alternates[0]) if alternates else "N/A"
        n = self.n_chromosomes

        buffer = io.StringIO()
        for i in range(n + 1):
            posterior = posteriors[i]
            posterior_str = "0.00000000" if posterior == VALUE_NOT_CALCULATED else f"{posterior:.8f}"
            buffer.write(
                f"AFINFO\t{position}\t{ref_allele}\t{alt_label}\t{i}/{n}\t{i / n:.2f}\t"
                f"{self.log10_af_priors[i]:.8f}\t{posterior_str}\t{normalized[i]:.8f}\n"
            )
        buffer.write(f"P(f>0) = {p_of_f}\n")
        buffer.write(f"Qscore = {confidence}\n\n")
        # one write per locus keeps blocks from different workers intact
        self.verbose_writer.write(buffer.getvalue())
