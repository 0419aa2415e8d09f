"""Shared fixtures for deseq2_rlog tests."""

import numpy as np
import pandas as pd
import pytest


def simulate_nb_counts(rng, n_genes, n_samples, mean_range=(5, 500), dispersion=0.1,
                       size_factors=None):
    """Negative binomial counts with log-uniform gene means."""
    if size_factors is None:
        size_factors = np.ones(n_samples)
    means = np.exp(rng.uniform(np.log(mean_range[0]), np.log(mean_range[1]), n_genes))
    mu = means[:, None] * np.asarray(size_factors)[None, :]
    n = 1.0 / dispersion
    p = n / (n + mu)
    return rng.negative_binomial(n, p).astype(np.float64)


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def counts_10x8(rng):
    """10 genes x 8 samples, every count nonzero."""
    counts = simulate_nb_counts(rng, 10, 8, mean_range=(50, 1000))
    return np.maximum(counts, 1.0)


@pytest.fixture
def counts_200x6(rng):
    """200 genes x 6 samples with unequal library sizes."""
    sf = np.array([0.5, 0.8, 1.0, 1.2, 1.5, 2.0])
    return simulate_nb_counts(rng, 200, 6, size_factors=sf)


@pytest.fixture
def counts_df(counts_200x6):
    """Labelled version of counts_200x6 with two all-zero genes."""
    counts = counts_200x6.copy()
    counts[[3, 17], :] = 0
    genes = [f"ENSG{i:05d}" for i in range(counts.shape[0])]
    samples = [f"S{j + 1}" for j in range(counts.shape[1])]
    return pd.DataFrame(counts, index=genes, columns=samples)


@pytest.fixture
def coldata6():
    """Sample metadata for 6 samples (3+3)."""
    return pd.DataFrame({'condition': ['ctrl'] * 3 + ['treat'] * 3,
                         'batch': ['a', 'b', 'c'] * 2},
                        index=[f"S{j + 1}" for j in range(6)])


@pytest.fixture
def nb_sim(rng):
    """Factory for simulated negative binomial count matrices."""
    def make(n_genes, n_samples, **kwargs):
        return simulate_nb_counts(rng, n_genes, n_samples, **kwargs)
    return make
