"""
Prior variance estimation for the rlog sample coefficients.

The rlog shrinks every per-sample log fold change towards zero with a
normal prior. Its variance is estimated by matching an upper quantile of
the observed (weighted) log fold changes to the same quantile of a
zero-centred normal distribution.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import numpy as np
from scipy.stats import norm

from .errors import InvalidInputError

MIN_PRIOR_VAR = 1e-8


def weighted_quantile(x, weights, probs):
    """
    Weighted sample quantiles.

    Weights are rescaled to sum to ``len(x)`` and the quantile is
    interpolated between the order statistics bracketing position
    ``1 + (n - 1) * prob`` of the weighted empirical distribution, so that
    equal weights give the usual type-7 sample quantile.

    Parameters
    ----------
    x : array-like
        Observations.
    weights : array-like
        Positive weights, same length as ``x``.
    probs : float or array-like
        Probabilities in [0, 1].

    Returns
    -------
    float or np.ndarray
        Quantile(s), scalar if ``probs`` is scalar.
    """
    x = np.asarray(x, dtype=float).ravel()
    weights = np.asarray(weights, dtype=float).ravel()
    probs_arr = np.atleast_1d(np.asarray(probs, dtype=float))

    if x.size == 0:
        raise InvalidInputError("x must contain at least one value")
    if np.any((probs_arr < 0) | (probs_arr > 1)):
        raise InvalidInputError("probs must lie in [0, 1]")

    # normalize weights to sum to the number of observations
    w = weights * x.size / weights.sum()

    # collapse ties into a weighted frequency table
    values, inverse = np.unique(x, return_inverse=True)
    freq = np.bincount(inverse, weights=w)
    cum = np.cumsum(freq)
    n = cum[-1]

    order = 1.0 + (n - 1.0) * probs_arr
    low = np.maximum(np.floor(order), 1.0)
    high = np.minimum(low + 1.0, n)
    frac = order % 1

    # step function of the cumulative weights, continuous from the right
    idx_low = np.minimum(np.searchsorted(cum, low - 1e-10, side="left"), values.size - 1)
    idx_high = np.minimum(np.searchsorted(cum, high - 1e-10, side="left"), values.size - 1)
    q = (1.0 - frac) * values[idx_low] + frac * values[idx_high]

    if np.ndim(probs) == 0:
        return float(q[0])
    return q


def match_weighted_upper_quantile_for_variance(x, weights, upper_quantile=0.05):
    """
    Estimate a normal prior variance by quantile matching.

    The ``1 - upper_quantile`` weighted quantile of ``|x|`` is matched to
    the ``1 - upper_quantile / 2`` quantile of a standard normal, i.e. the
    two-sided upper tail of a zero-mean normal:

        sd = q_w(|x|, 1 - upper_quantile) / z(1 - upper_quantile / 2)

    Parameters
    ----------
    x : array-like
        Log fold change residuals (flattened).
    weights : array-like
        Strictly positive weights, typically inverse variances.
    upper_quantile : float, default 0.05
        Size of the upper tail being matched.

    Returns
    -------
    float
        Prior variance ``sd ** 2``, floored at ``MIN_PRIOR_VAR``.

    Examples
    --------
    >>> rng = np.random.RandomState(0)
    >>> x = rng.normal(0, 2, 100000)
    >>> round(match_weighted_upper_quantile_for_variance(x, np.ones_like(x)))
    4
    """
    x = np.asarray(x, dtype=float).ravel()
    weights = np.asarray(weights, dtype=float).ravel()

    if x.shape != weights.shape:
        raise InvalidInputError(
            f"weights must be as long as x ({weights.size} != {x.size})")
    if x.size == 0:
        raise InvalidInputError("x must contain at least one residual")
    if not np.all(np.isfinite(weights)) or np.any(weights <= 0):
        raise InvalidInputError("weights must be finite and strictly positive")
    if not np.all(np.isfinite(x)):
        raise InvalidInputError("x must contain only finite residuals")
    if not 0 < upper_quantile < 1:
        raise InvalidInputError("upper_quantile must lie in (0, 1)")

    observed = weighted_quantile(np.abs(x), weights, 1.0 - upper_quantile)
    sd_est = observed / norm.ppf(1.0 - upper_quantile / 2.0)
    return max(float(sd_est ** 2), MIN_PRIOR_VAR)
