"""Tests for allele frequency priors and models."""

import math

import numpy as np
import pytest

from ugcall.afcalc import (
    ExactAFModel,
    GridSearchAFModel,
    clear_af_array,
    compute_allele_frequency_priors,
    create_allele_frequency_model,
)
from ugcall.config import AFModel
from ugcall.exceptions import ConfigurationError
from ugcall.models.calls import Allele, GenotypeLikelihoods, VariantContext
from ugcall.models.core import CallerConfig
from ugcall.utils.mathutils import VALUE_NOT_CALCULATED, max_element_index

REF = Allele("A", is_reference=True)
ALT = Allele("T")

# log10 likelihoods for ten q30 reads
HET = (-17.39, -3.01, -17.39)
HOM_REF = (0.0, -3.01, -34.77)
HOM_VAR = (-34.77, -3.01, 0.0)


def likelihoods(*triples):
    return {
        f"S{i}": GenotypeLikelihoods(f"S{i}", REF, ALT, triple, depth=10)
        for i, triple in enumerate(triples)
    }


def posteriors_for(model_cls, gls, config=None):
    n = 2 * len(gls)
    model = model_cls(config or CallerConfig(), n)
    priors = compute_allele_frequency_priors(n, 1e-3)
    posteriors = np.empty(n + 1)
    clear_af_array(posteriors)
    model.get_log10_posteriors(gls, priors, posteriors)
    return model, priors, posteriors


class TestPriors:
    @pytest.mark.parametrize("n_chromosomes", [0, 2, 10, 200])
    def test_priors_sum_to_one(self, n_chromosomes):
        priors = compute_allele_frequency_priors(n_chromosomes, 1e-3)

        assert len(priors) == n_chromosomes + 1
        assert np.sum(10.0**priors) == pytest.approx(1.0)

    def test_non_reference_priors_scale_with_one_over_i(self):
        priors = compute_allele_frequency_priors(6, 1e-3)

        for i in range(1, 7):
            assert priors[i] == pytest.approx(math.log10(1e-3 / i))

    def test_priors_are_read_only(self):
        priors = compute_allele_frequency_priors(4, 1e-3)

        with pytest.raises(ValueError):
            priors[0] = 0.0

    def test_excessive_heterozygosity_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            compute_allele_frequency_priors(16, 0.5)


class TestExactModel:
    def test_single_sample_matches_closed_form(self):
        _model, priors, posteriors = posteriors_for(ExactAFModel, likelihoods(HET))
        shifted = np.array(HET) - max(HET)

        assert posteriors == pytest.approx(shifted + priors)

    @pytest.mark.parametrize("triple,expected", [(HOM_REF, 0), (HET, 1), (HOM_VAR, 2)])
    def test_single_sample_best_guess(self, triple, expected):
        _model, _priors, posteriors = posteriors_for(ExactAFModel, likelihoods(triple))

        assert max_element_index(posteriors) == expected

    def test_four_hets_and_four_refs(self):
        gls = likelihoods(*([HET] * 4 + [HOM_REF] * 4))
        model, _priors, posteriors = posteriors_for(ExactAFModel, gls)

        assert max_element_index(posteriors) == 4
        assert np.all(posteriors != VALUE_NOT_CALCULATED)

    def test_no_samples_leaves_only_prior(self):
        model = ExactAFModel(CallerConfig(), 4)
        priors = compute_allele_frequency_priors(4, 1e-3)
        posteriors = np.empty(5)
        clear_af_array(posteriors)
        model.get_log10_posteriors({}, priors, posteriors)

        assert posteriors[0] == pytest.approx(priors[0])
        assert np.all(posteriors[1:] == VALUE_NOT_CALCULATED)

    def test_assign_genotypes(self):
        gls = likelihoods(*([HET] * 2 + [HOM_REF] * 2))
        model, _priors, posteriors = posteriors_for(ExactAFModel, gls)
        vc = VariantContext("test", "chr1", 100, 100, [REF, ALT], likelihoods=gls)

        genotypes = model.assign_genotypes(vc, posteriors, 2, samples=["S0", "S1", "S2", "S3", "S9"])

        assert genotypes["S0"].genotype_type == "HET"
        assert genotypes["S1"].genotype_type == "HET"
        assert genotypes["S2"].genotype_type == "HOM_REF"
        assert genotypes["S3"].genotype_type == "HOM_REF"
        assert genotypes["S9"].is_no_call
        assert 0 < genotypes["S0"].neg_log10_p_error <= 9.9
        assert genotypes["S0"].attributes == {"DP": 10, "PL": [144, 0, 144]}


class TestGridSearchModel:
    @pytest.mark.parametrize("triple", [HOM_REF, HET, HOM_VAR])
    def test_agrees_with_exact_on_single_sample(self, triple):
        gls = likelihoods(triple)
        _m, _p, exact = posteriors_for(ExactAFModel, gls)
        _m, _p, grid = posteriors_for(GridSearchAFModel, gls)

        assert max_element_index(grid) == max_element_index(exact)

    @pytest.mark.parametrize(
        "triples",
        [
            [HET] * 4 + [HOM_REF] * 4,
            [HET] * 2 + [HOM_REF] * 6,
            [HOM_VAR] * 2 + [HET] * 3 + [HOM_REF] * 3,
            [HOM_VAR] * 3 + [HOM_REF] * 5,
        ],
    )
    def test_agrees_with_exact_on_several_samples(self, triples):
        gls = likelihoods(*triples)
        _m, _p, exact = posteriors_for(ExactAFModel, gls)
        _m, _p, grid = posteriors_for(GridSearchAFModel, gls)

        assert max_element_index(grid) == max_element_index(exact)

    def test_four_hets_and_four_refs(self):
        gls = likelihoods(*([HET] * 4 + [HOM_REF] * 4))
        _model, _priors, posteriors = posteriors_for(GridSearchAFModel, gls)

        assert max_element_index(posteriors) == 4
        assert posteriors[4] > posteriors[3]
        assert posteriors[4] > posteriors[5]

    def test_stops_once_far_below_maximum(self):
        gls = likelihoods(*([HOM_REF] * 4))
        _model, _priors, posteriors = posteriors_for(GridSearchAFModel, gls)

        assert max_element_index(posteriors) == 0
        assert posteriors[1] != VALUE_NOT_CALCULATED
        assert posteriors[-1] == VALUE_NOT_CALCULATED

    def test_larger_epsilon_scans_further(self):
        gls = likelihoods(*([HOM_REF] * 4))
        config = CallerConfig(grid_search_log10_epsilon=1000.0)
        _model, _priors, posteriors = posteriors_for(GridSearchAFModel, gls, config)

        assert np.all(posteriors != VALUE_NOT_CALCULATED)

    def test_no_samples_leaves_only_prior(self):
        model = GridSearchAFModel(CallerConfig(), 4)
        priors = compute_allele_frequency_priors(4, 1e-3)
        posteriors = np.empty(5)
        clear_af_array(posteriors)
        model.get_log10_posteriors({}, priors, posteriors)

        assert posteriors[0] == pytest.approx(priors[0])
        assert np.all(posteriors[1:] == VALUE_NOT_CALCULATED)

    def test_assign_genotypes_places_best_guess_alleles(self):
        gls = likelihoods(*([HET] * 4 + [HOM_REF] * 4))
        model = GridSearchAFModel(CallerConfig(), 16)
        vc = VariantContext("test", "chr1", 100, 100, [REF, ALT], likelihoods=gls)

        genotypes = model.assign_genotypes(vc, np.zeros(17), 4)

        assert [genotypes[f"S{i}"].genotype_type for i in range(8)] == ["HET"] * 4 + ["HOM_REF"] * 4
        assert genotypes["S0"].neg_log10_p_error == pytest.approx(9.9)

    def test_forced_genotype_has_zero_quality(self):
        gls = likelihoods(HOM_REF)
        model = GridSearchAFModel(CallerConfig(), 2)
        vc = VariantContext("test", "chr1", 100, 100, [REF, ALT], likelihoods=gls)

        genotypes = model.assign_genotypes(vc, np.zeros(3), 1)

        assert genotypes["S0"].genotype_type == "HET"
        assert genotypes["S0"].neg_log10_p_error == 0.0


def test_factory_selects_model():
    assert isinstance(create_allele_frequency_model(CallerConfig(), 4), ExactAFModel)
    grid = create_allele_frequency_model(CallerConfig(af_model=AFModel.GRID_SEARCH), 4)
    assert isinstance(grid, GridSearchAFModel)
    assert grid.n_chromosomes == 4
