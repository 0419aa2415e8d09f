"""Tests for the rlog design matrix and formula-based designs."""

import numpy as np
import pytest

from deseq2_rlog import InvalidInputError, create_design_matrix, rlog_design_matrix
from deseq2_rlog.design import check_full_rank


class TestRlogDesignMatrix:
    """Blind and frozen per-sample designs."""

    def test_blind_layout(self):
        X, names = rlog_design_matrix(3)
        assert names == ['Intercept', 'samples1', 'samples2', 'samples3']
        np.testing.assert_array_equal(X, [[1, 1, 0, 0],
                                          [1, 0, 1, 0],
                                          [1, 0, 0, 1]])

    def test_blind_is_rank_deficient(self):
        X, _ = rlog_design_matrix(5)
        assert X.shape == (5, 6)
        assert not check_full_rank(X)

    def test_frozen_layout(self):
        X, names = rlog_design_matrix(4, frozen_intercept=True)
        assert names == ['samples1', 'samples2', 'samples3', 'samples4']
        np.testing.assert_array_equal(X, np.eye(4))
        assert check_full_rank(X)

    def test_frozen_single_sample(self):
        X, names = rlog_design_matrix(1, frozen_intercept=True)
        assert X.shape == (1, 1)
        assert X[0, 0] == 1
        assert names == ['samples1']

    def test_blind_single_sample(self):
        X, names = rlog_design_matrix(1)
        np.testing.assert_array_equal(X, [[1, 1]])
        assert names == ['Intercept', 'samples1']

    def test_many_samples_keep_order(self):
        X, names = rlog_design_matrix(12)
        assert names[1:] == [f"samples{i}" for i in range(1, 13)]
        np.testing.assert_array_equal(X[:, 1:], np.eye(12))

    def test_zero_samples(self):
        with pytest.raises(InvalidInputError):
            rlog_design_matrix(0)


class TestCreateDesignMatrix:
    """Formula designs used for dispersion estimation."""

    def test_condition(self, coldata6):
        X, names = create_design_matrix(coldata6, "~ condition")
        assert names == ['Intercept', 'condition[T.treat]']
        np.testing.assert_array_equal(X[:, 1], [0, 0, 0, 1, 1, 1])

    def test_intercept_only(self, coldata6):
        X, names = create_design_matrix(coldata6, "~ 1")
        assert names == ['Intercept']
        assert X.shape == (6, 1)

    def test_requires_dataframe(self):
        with pytest.raises(TypeError):
            create_design_matrix({'condition': ['a', 'b']}, "~ condition")
