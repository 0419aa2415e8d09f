"""
Sample normalization: size factors and normalization-factor matrices.

Counts are normalized either by one size factor per sample or by a full
gene x sample matrix of normalization factors. When both are present the
matrix wins.
"""

import numpy as np

from .errors import InvalidInputError


def estimate_size_factors(counts, type="ratio", loc_func=np.median,
                          geo_means=None, control_genes=None):
    """
    Median-of-ratios size factors for a genes x samples count matrix.

    Parameters
    ----------
    counts : np.ndarray
        2D (genes x samples) raw counts.
    loc_func : callable, default np.median
        Location function applied to the per-sample log ratios.
    geo_means : np.ndarray, optional
        Precomputed geometric means per gene (e.g. from a reference dataset).
    control_genes : array-like, optional
        Subset of genes (indices or boolean mask) to compute the factors on.
    type : {"ratio", "poscounts"}
        "ratio" uses genes without zeros only; "poscounts" takes the
        geometric mean over positive counts, which works when every gene
        has a zero.

    Returns
    -------
    np.ndarray
        Size factor per sample.
    """
    counts = np.asarray(counts, dtype=float)

    if geo_means is None:
        if type == "ratio":
            with np.errstate(divide="ignore"):
                log_geomeans = np.mean(np.log(counts), axis=1)
        elif type == "poscounts":
            lc = np.log(counts, where=(counts > 0), out=np.zeros_like(counts))
            log_geomeans = lc.sum(axis=1) / counts.shape[1]
            log_geomeans[counts.sum(axis=1) == 0] = -np.inf
        else:
            raise InvalidInputError(f"Unknown size factor type: {type}")
    else:
        geo_means = np.asarray(geo_means, dtype=float)
        if geo_means.shape[0] != counts.shape[0]:
            raise InvalidInputError("geo_means should be as long as the number of genes")
        with np.errstate(divide="ignore"):
            log_geomeans = np.log(geo_means)

    if np.all(np.isinf(log_geomeans)):
        raise InvalidInputError(
            "every gene contains at least one zero, cannot compute log geometric means")

    if control_genes is not None:
        log_geomeans = log_geomeans[control_genes]
        counts = counts[control_genes, :]

    size_factors = np.zeros(counts.shape[1])
    for j in range(counts.shape[1]):
        c = counts[:, j]
        mask = np.isfinite(log_geomeans) & (c > 0)
        size_factors[j] = np.exp(loc_func(np.log(c[mask]) - log_geomeans[mask]))

    if geo_means is not None or type == "poscounts":
        # stabilize to a geometric mean of one
        size_factors = size_factors / np.exp(np.mean(np.log(size_factors)))

    return size_factors


def normalization_matrix(shape, size_factors=None, normalization_factors=None):
    """
    Resolve the gene x sample normalization matrix.

    ``normalization_factors`` take precedence over ``size_factors``;
    size factors are broadcast across genes.

    Raises
    ------
    InvalidInputError
        If neither is given, a shape does not match, or a factor is not
        strictly positive and finite.
    """
    G, S = shape
    if normalization_factors is not None:
        nf = np.asarray(normalization_factors, dtype=float)
        if nf.shape != (G, S):
            raise InvalidInputError(
                f"normalization_factors must be a {G} x {S} matrix, got {nf.shape}")
    elif size_factors is not None:
        sf = np.asarray(size_factors, dtype=float).ravel()
        if sf.shape != (S,):
            raise InvalidInputError(
                f"size_factors must have one value per sample ({sf.size} != {S})")
        nf = np.tile(sf, (G, 1))
    else:
        raise InvalidInputError("either size_factors or normalization_factors is required")

    if not np.all(np.isfinite(nf)) or np.any(nf <= 0):
        raise InvalidInputError("size and normalization factors must be finite and positive")
    return nf


def normalize_counts(counts, size_factors=None, normalization_factors=None):
    """Raw counts divided by the resolved normalization matrix."""
    counts = np.asarray(counts, dtype=float)
    return counts / normalization_matrix(counts.shape, size_factors, normalization_factors)
