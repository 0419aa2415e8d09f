"""Tests for gene-wise dispersions and the dispersion trend."""

import numpy as np
import pytest

from deseq2_rlog import InvalidInputError, estimate_dispersion_trend, fit_dispersion_trend
from deseq2_rlog.dispersion import (MIN_DISP, estimate_dispersions_gene_est,
                                    fit_local_dispersion_trend, fit_mean_dispersion,
                                    fit_parametric_dispersion_trend,
                                    get_base_means_and_variances)


class TestBaseMeans:

    def test_means_and_variances(self):
        counts = np.array([[2.0, 4.0, 6.0], [0.0, 0.0, 0.0]])
        nf = np.array([[1.0, 2.0, 3.0]] * 2)
        mean, var, all_zero = get_base_means_and_variances(counts, nf)
        np.testing.assert_allclose(mean, [2.0, 0.0])
        np.testing.assert_allclose(var, [0.0, 0.0])
        np.testing.assert_array_equal(all_zero, [False, True])

    def test_single_sample_variance(self):
        _, var, _ = get_base_means_and_variances(np.ones((3, 1)), np.ones((3, 1)))
        assert np.all(np.isnan(var))


class TestGeneWiseEstimates:

    def test_recovers_simulated_dispersion(self, nb_sim):
        counts = nb_sim(200, 20, mean_range=(100, 1000), dispersion=0.2)
        est = estimate_dispersions_gene_est(counts, np.ones_like(counts), quiet=True)
        assert np.median(est) == pytest.approx(0.2, rel=0.25)

    def test_all_zero_gene_is_nan(self, counts_df):
        counts = counts_df.values
        est = estimate_dispersions_gene_est(counts, np.ones_like(counts), quiet=True)
        assert np.isnan(est[3]) and np.isnan(est[17])
        finite = est[np.isfinite(est)]
        assert np.all(finite >= MIN_DISP) and np.all(finite <= 10)

    def test_progress_message(self, counts_10x8, capsys):
        estimate_dispersions_gene_est(counts_10x8, np.ones_like(counts_10x8))
        assert "Cox-Reid" in capsys.readouterr().out


class TestTrendFits:

    @pytest.fixture
    def trend_data(self, rng):
        means = np.exp(rng.uniform(np.log(5), np.log(5000), 400))
        disp = (2.0 / means + 0.05) * np.exp(rng.normal(0, 0.1, means.size))
        return means, disp

    def test_parametric_recovers_coefficients(self, trend_data):
        means, disp = trend_data
        fn, (a, b) = fit_parametric_dispersion_trend(means, disp)
        assert fn is not None
        assert a == pytest.approx(2.0, rel=0.2)
        assert b == pytest.approx(0.05, rel=0.2)
        np.testing.assert_allclose(fn(np.array([10.0])), a / 10 + b)

    def test_parametric_needs_genes(self):
        fn, coefs = fit_parametric_dispersion_trend([10.0, 20.0], [0.1, 0.1])
        assert fn is None
        assert np.all(np.isnan(coefs))

    def test_local_trend_follows_data(self, trend_data):
        means, disp = trend_data
        fn = fit_local_dispersion_trend(means, disp)
        fitted = fn(np.array([10.0, 1000.0]))
        assert fitted[0] > fitted[1]
        assert fitted[1] == pytest.approx(2.0 / 1000 + 0.05, rel=0.2)

    def test_local_with_few_genes_uses_median(self):
        fn = fit_local_dispersion_trend([1.0, 2.0, 3.0], [0.1, 0.2, 0.3])
        np.testing.assert_allclose(fn(np.array([5.0, 50.0])), 0.2)

    def test_mean_trend(self):
        fn, mean_disp = fit_mean_dispersion(np.array([0.1, 0.2, 0.3, np.nan]))
        assert mean_disp == pytest.approx(0.2)
        np.testing.assert_allclose(fn(np.arange(1.0, 4.0)), 0.2)

    @pytest.mark.parametrize("fit_type", ["parametric", "local", "mean"])
    def test_fit_types(self, trend_data, fit_type):
        means, disp = trend_data
        fn = fit_dispersion_trend(means, disp, fit_type=fit_type, quiet=True)
        fitted = fn(means)
        assert np.all(np.isfinite(fitted)) and np.all(fitted > 0)

    def test_unknown_fit_type(self, trend_data):
        means, disp = trend_data
        with pytest.raises(InvalidInputError, match="fit_type"):
            fit_dispersion_trend(means, disp, fit_type="glmGamPoi")

    def test_estimates_at_minimum_use_mean(self, capsys):
        means = np.array([10.0, 100.0, 1000.0])
        disp = np.full(3, MIN_DISP)
        fn = fit_dispersion_trend(means, disp)
        np.testing.assert_allclose(fn(means), MIN_DISP)
        assert "mean of the estimates" in capsys.readouterr().out


class TestEstimateDispersionTrend:

    def test_result_keys(self, counts_df):
        counts = counts_df.values
        fit = estimate_dispersion_trend(counts, np.ones_like(counts), quiet=True)
        assert set(fit) == {'baseMean', 'baseVar', 'allZero', 'dispGeneEst',
                            'dispFit', 'dispersionFunction'}
        assert np.isnan(fit['dispFit'][3]) and np.isnan(fit['dispFit'][17])
        others = ~fit['allZero']
        assert np.all(fit['dispFit'][others] > 0)
        np.testing.assert_allclose(fit['dispFit'][others],
                                   fit['dispersionFunction'](fit['baseMean'][others]))

    def test_with_design(self, counts_df, coldata6):
        from deseq2_rlog import create_design_matrix
        counts = counts_df.values
        X, _ = create_design_matrix(coldata6, "~ condition")
        fit = estimate_dispersion_trend(counts, np.ones_like(counts), X, quiet=True)
        assert np.all(np.isfinite(fit['dispFit'][~fit['allZero']]))
