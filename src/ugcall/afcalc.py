"""
Allele frequency calculation models.

Given every sample's genotype likelihoods and the population priors, compute
the log10 posterior of each possible alternate allele count ``0..N`` (``N`` =
number of chromosomes) and assign final genotypes.

**Key Classes:**
- ExactAFModel: exact marginalization by dynamic programming over samples
- GridSearchAFModel: places alternate alleles greedily, one per allele count,
  and stops once the posterior has fallen far enough below its running maximum

Posterior arrays are caller-owned scratch buffers. Entries a model does not
compute keep :data:`~ugcall.utils.mathutils.VALUE_NOT_CALCULATED`.
"""

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from itertools import islice

import numpy as np
from scipy.special import logsumexp

from .config import AFModel, DiploidGenotype
from .exceptions import ConfigurationError
from .models.calls import Allele, Genotype, GenotypeLikelihoods, VariantContext
from .models.core import CallerConfig
from .utils.mathutils import VALUE_NOT_CALCULATED

logger = logging.getLogger(__name__)

__all__ = [
    "AlleleFrequencyModel",
    "ExactAFModel",
    "GridSearchAFModel",
    "clear_af_array",
    "compute_allele_frequency_priors",
    "create_allele_frequency_model",
]

_LN10 = math.log(10.0)

# genotype quality (log10) reported when only one genotype is possible
MAX_NEG_LOG10_GENOTYPE_ERROR = 9.9


def compute_allele_frequency_priors(n_chromosomes: int, heterozygosity: float) -> np.ndarray:
    """
    log10 P(i alternate alleles) for ``i = 0..n_chromosomes``.

    ``P(i) = heterozygosity / i`` for ``i >= 1``; ``P(0)`` takes the rest of
    the mass. The returned array is read-only.

    Raises:
        ConfigurationError: if the non-reference mass reaches 1.
    """
    if n_chromosomes < 0:
        raise ConfigurationError(f"Number of chromosomes must be non-negative, got {n_chromosomes}")

    counts = np.arange(1, n_chromosomes + 1, dtype=float)
    values = heterozygosity / counts
    remainder = 1.0 - values.sum()
    if not remainder > 0.0:
        raise ConfigurationError(
            f"Heterozygosity {heterozygosity} is too large for {n_chromosomes} chromosomes: "
            f"allele frequency priors cannot sum to 1"
        )

    priors = np.empty(n_chromosomes + 1, dtype=float)
    priors[0] = math.log10(remainder)
    priors[1:] = np.log10(values)
    priors.flags.writeable = False
    return priors


def clear_af_array(log10_posteriors: np.ndarray) -> None:
    """Reset a posterior scratch array to the not-calculated sentinel."""
    log10_posteriors.fill(VALUE_NOT_CALCULATED)


def _log10_sum(values: np.ndarray, axis: int | None = None) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return logsumexp(values * _LN10, axis=axis) / _LN10


def _normalized_likelihoods(likelihoods: Iterable[GenotypeLikelihoods]) -> np.ndarray:
    """Stack per-sample log10 triples, each shifted so its best genotype is 0."""
    rows = np.array([gl.log10_likelihoods for gl in likelihoods], dtype=float).reshape(-1, 3)
    if rows.size:
        rows = rows - rows.max(axis=1, keepdims=True)
    return rows


def _genotype_neg_log10_error(scores: np.ndarray, best: int) -> float:
    others = np.delete(scores, best)
    others = others[np.isfinite(others)]
    if others.size == 0:
        return MAX_NEG_LOG10_GENOTYPE_ERROR
    return min(float(scores[best] - others.max()), MAX_NEG_LOG10_GENOTYPE_ERROR)


def _genotype_alleles(genotype: int, ref: Allele, alt: Allele) -> list[Allele]:
    if genotype == DiploidGenotype.HOM_REF:
        return [ref, ref]
    if genotype == DiploidGenotype.HET:
        return [ref, alt]
    return [alt, alt]


def _genotype_attributes(gl: GenotypeLikelihoods) -> dict:
    return {"DP": gl.depth, "PL": gl.as_pl()}


class AlleleFrequencyModel(ABC):
    """Interface shared by the exact and grid-search frequency models."""

    def __init__(self, config: CallerConfig, n_chromosomes: int):
        self.config = config
        self.n_chromosomes = n_chromosomes

    @abstractmethod
    def get_log10_posteriors(
        self,
        likelihoods: Mapping[str, GenotypeLikelihoods],
        log10_priors: np.ndarray,
        log10_posteriors: np.ndarray,
    ) -> None:
        """Write log10 P(i alternate alleles | data) into ``log10_posteriors``."""

    @abstractmethod
    def _assign(
        self,
        likelihoods: list[GenotypeLikelihoods],
        best_af_guess: int,
    ) -> list[tuple[int, float]]:
        """Return (genotype index, neg log10 error) per sample, in input order."""

    def assign_genotypes(
        self,
        vc: VariantContext,
        log10_posteriors: np.ndarray,
        best_af_guess: int,
        samples: Iterable[str] | None = None,
    ) -> dict[str, Genotype]:
        """
        Give every sample exactly one genotype.

        Samples listed in ``samples`` without likelihoods in ``vc`` receive a
        no-call genotype.
        """
        ordered = list(vc.likelihoods.values())
        genotypes: dict[str, Genotype] = {}

        if ordered:
            ref = vc.reference
            for gl, (index, qual) in zip(ordered, self._assign(ordered, best_af_guess)):
                genotypes[gl.sample] = Genotype(
                    sample=gl.sample,
                    alleles=_genotype_alleles(index, ref, gl.allele_b),
                    neg_log10_p_error=qual,
                    attributes=_genotype_attributes(gl),
                )

        for sample in samples or ():
            if sample not in genotypes:
                genotypes[sample] = Genotype.no_call(sample)

        return genotypes


class ExactAFModel(AlleleFrequencyModel):
    """
    Exact posterior over allele counts under Hardy-Weinberg.

    ``Y[j][k]`` is the log10 probability of the first ``j`` samples' data
    jointly with ``k`` alternate alleles among their ``2j`` chromosomes,
    normalized by the number of orderings. Cost is O(samples * N).
    """

    @staticmethod
    def _log_y_matrix(gls: np.ndarray) -> np.ndarray:
        n_samples = gls.shape[0]
        width = 2 * n_samples + 1
        log_y = np.full((n_samples + 1, width), -np.inf)
        log_y[0, 0] = 0.0

        for j in range(1, n_samples + 1):
            two_j = 2 * j
            k = np.arange(two_j + 1, dtype=float)
            prev = log_y[j - 1]

            shifted_1 = np.full(two_j + 1, -np.inf)
            shifted_1[1:] = prev[: two_j]
            shifted_2 = np.full(two_j + 1, -np.inf)
            shifted_2[2:] = prev[: two_j - 1]

            with np.errstate(divide="ignore"):
                coeff_aa = np.log10((two_j - k) * (two_j - k - 1))
                coeff_ab = np.log10(2.0 * k * (two_j - k))
                coeff_bb = np.log10(k * (k - 1))

            aa, ab, bb = gls[j - 1]
            terms = np.vstack(
                [
                    coeff_aa + prev[: two_j + 1] + aa,
                    coeff_ab + shifted_1 + ab,
                    coeff_bb + shifted_2 + bb,
                ]
            )
            log_y[j, : two_j + 1] = _log10_sum(terms, axis=0) - math.log10(two_j * (two_j - 1))

        return log_y

    def get_log10_posteriors(self, likelihoods, log10_priors, log10_posteriors):
        gls = _normalized_likelihoods(likelihoods.values())
        log_y = self._log_y_matrix(gls)
        last = log_y[-1]
        count = min(last.size, log10_posteriors.size)
        log10_posteriors[:count] = last[:count] + log10_priors[:count]

    def _assign(self, likelihoods, best_af_guess):
        gls = _normalized_likelihoods(likelihoods)
        log_y = self._log_y_matrix(gls)
        n_samples = gls.shape[0]

        k = min(best_af_guess, 2 * n_samples)
        assignments: list[tuple[int, float]] = [(0, 0.0)] * n_samples

        # trace back from the last sample, removing each sample's alleles from k
        for j in range(n_samples, 0, -1):
            two_j = 2 * j
            scores = np.full(3, -np.inf)
            coefficients = (
                (two_j - k) * (two_j - k - 1),
                2 * k * (two_j - k),
                k * (k - 1),
            )
            for g in range(3):
                remaining = k - g
                if remaining < 0 or remaining > 2 * (j - 1) or coefficients[g] <= 0:
                    continue
                scores[g] = math.log10(coefficients[g]) + log_y[j - 1, remaining] + gls[j - 1, g]

            best = int(np.argmax(scores))
            assignments[j - 1] = (best, _genotype_neg_log10_error(scores, best))
            k -= best

        return assignments


class GridSearchAFModel(AlleleFrequencyModel):
    """
    Approximate posterior by scanning allele counts from zero.

    Count ``i`` is scored by the best greedy placement of ``i`` alternate
    alleles: each step from ``i`` to ``i + 1`` adds one alternate allele to
    the sample whose likelihood drops least (AA to AB, or AB to BB). The scan
    stops once a score falls more than ``grid_search_log10_epsilon`` below
    the best seen so far.
    """

    @staticmethod
    def _greedy_steps(gls: np.ndarray) -> Iterator[tuple[int, float]]:
        """Yield (sample index, log10 likelihood change) for each added alternate allele."""
        current = np.zeros(gls.shape[0], dtype=int)
        for _ in range(2 * gls.shape[0]):
            open_rows = np.flatnonzero(current < 2)
            with np.errstate(invalid="ignore"):
                gains = gls[open_rows, current[open_rows] + 1] - gls[open_rows, current[open_rows]]
            gains[np.isnan(gains)] = -np.inf
            pick = int(np.argmax(gains))
            sample = int(open_rows[pick])
            current[sample] += 1
            yield sample, float(gains[pick])

    def get_log10_posteriors(self, likelihoods, log10_priors, log10_posteriors):
        gls = _normalized_likelihoods(likelihoods.values())
        epsilon = self.config.grid_search_log10_epsilon
        last = min(self.n_chromosomes, 2 * gls.shape[0], log10_posteriors.size - 1)

        steps = self._greedy_steps(gls)
        log10_likelihood = float(gls[:, 0].sum())
        max_value = -math.inf
        for i in range(last + 1):
            if i:
                _sample, gain = next(steps)
                log10_likelihood += gain
            value = log10_likelihood + float(log10_priors[i])
            log10_posteriors[i] = value
            if value > max_value:
                max_value = value
            elif value < max_value - epsilon:
                break

    def _assign(self, likelihoods, best_af_guess):
        gls = _normalized_likelihoods(likelihoods)
        assigned = np.zeros(gls.shape[0], dtype=int)
        for sample, _gain in islice(self._greedy_steps(gls), best_af_guess):
            assigned[sample] += 1

        # a greedy genotype can be less likely than another one for its sample
        return [
            (int(genotype), max(_genotype_neg_log10_error(row, genotype), 0.0))
            for row, genotype in zip(gls, assigned)
        ]


def create_allele_frequency_model(config: CallerConfig, n_chromosomes: int) -> AlleleFrequencyModel:
    if config.af_model == AFModel.EXACT:
        return ExactAFModel(config, n_chromosomes)
    if config.af_model == AFModel.GRID_SEARCH:
        return GridSearchAFModel(config, n_chromosomes)
    raise ConfigurationError(f"Unexpected allele frequency model: {config.af_model}")
