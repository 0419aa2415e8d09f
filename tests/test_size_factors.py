"""Tests for size factor estimation and normalization matrices."""

import numpy as np
import pytest

from deseq2_rlog import InvalidInputError, estimate_size_factors, normalization_matrix
from deseq2_rlog.size_factors import normalize_counts


class TestEstimateSizeFactors:
    """Median-of-ratios and positive-count size factors."""

    def test_scaled_columns(self, counts_10x8):
        base = counts_10x8[:, :1]
        counts = base * np.array([[1.0, 2.0, 4.0]])
        sf = estimate_size_factors(counts)
        np.testing.assert_allclose(sf, [0.5, 1.0, 2.0])

    def test_geometric_mean_near_one(self, counts_200x6):
        sf = estimate_size_factors(counts_200x6)
        assert np.exp(np.mean(np.log(sf))) == pytest.approx(1.0, abs=0.1)
        # simulated library sizes increase across samples
        assert sf[0] < sf[2] < sf[5]

    def test_poscounts_with_zero_in_every_gene(self, counts_10x8):
        counts = counts_10x8.copy()
        counts[np.arange(10), np.arange(10) % 8] = 0
        with pytest.raises(InvalidInputError, match="zero"):
            estimate_size_factors(counts)
        sf = estimate_size_factors(counts, type="poscounts")
        assert np.all(np.isfinite(sf)) and np.all(sf > 0)
        assert np.exp(np.mean(np.log(sf))) == pytest.approx(1.0)

    def test_unknown_type(self, counts_10x8):
        with pytest.raises(InvalidInputError, match="type"):
            estimate_size_factors(counts_10x8, type="iterate")

    def test_control_genes(self, counts_10x8):
        counts = counts_10x8.copy()
        counts[5:, 0] *= 100
        sf_all = estimate_size_factors(counts)
        sf_ctrl = estimate_size_factors(counts, control_genes=np.arange(5))
        np.testing.assert_allclose(sf_ctrl, estimate_size_factors(counts_10x8[:5]))
        assert not np.allclose(sf_all, sf_ctrl)

    def test_geo_means_are_normalized(self, counts_10x8):
        geo = np.exp(np.log(counts_10x8).mean(axis=1)) * 3
        sf = estimate_size_factors(counts_10x8, geo_means=geo)
        assert np.exp(np.mean(np.log(sf))) == pytest.approx(1.0)

    def test_geo_means_length(self, counts_10x8):
        with pytest.raises(InvalidInputError, match="geo_means"):
            estimate_size_factors(counts_10x8, geo_means=np.ones(3))


class TestNormalizationMatrix:

    def test_broadcast_size_factors(self):
        nf = normalization_matrix((3, 2), size_factors=[0.5, 2.0])
        np.testing.assert_array_equal(nf, [[0.5, 2.0]] * 3)

    def test_normalization_factors_win(self):
        nf_in = np.full((3, 2), 1.5)
        nf = normalization_matrix((3, 2), size_factors=[0.5, 2.0], normalization_factors=nf_in)
        np.testing.assert_array_equal(nf, nf_in)

    def test_requires_one(self):
        with pytest.raises(InvalidInputError):
            normalization_matrix((3, 2))

    @pytest.mark.parametrize("sf", [[1.0], [1.0, 0.0], [1.0, np.nan]])
    def test_invalid_size_factors(self, sf):
        with pytest.raises(InvalidInputError):
            normalization_matrix((3, 2), size_factors=sf)

    def test_wrong_shape(self):
        with pytest.raises(InvalidInputError, match="normalization_factors"):
            normalization_matrix((3, 2), normalization_factors=np.ones((2, 3)))

    def test_normalize_counts(self):
        counts = np.array([[2.0, 8.0], [4.0, 4.0]])
        np.testing.assert_allclose(normalize_counts(counts, size_factors=[0.5, 2.0]),
                                   [[4.0, 4.0], [8.0, 2.0]])
