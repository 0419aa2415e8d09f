"""
Count concentration check for the rlog.

The rlog assumes counts that are close to negative binomial. Datasets in
which many genes have almost all of their counts in a single sample break
that assumption; for those a shifted log or a VST is the better choice.
"""

import warnings

import numpy as np
import pandas as pd

from .errors import SparsityWarning


def sparsity_data(x):
    """
    Row sums and max/sum ratios for genes with a positive sum.

    This is the data behind a sparsity plot: genes with a large sum and a
    ratio close to one have their counts concentrated in one sample.

    Parameters
    ----------
    x : np.ndarray or pd.DataFrame
        Normalized counts (genes x samples).

    Returns
    -------
    pd.DataFrame
        Columns ``rowSum`` and ``maxOverSum``.
    """
    index = x.index if isinstance(x, pd.DataFrame) else None
    x = np.asarray(x, dtype=float)
    rs = x.sum(axis=1)
    rmx = x.max(axis=1)
    keep = rs > 0
    return pd.DataFrame(
        {'rowSum': rs[keep], 'maxOverSum': rmx[keep] / rs[keep]},
        index=None if index is None else index[keep])


def sparse_test(x, p=0.9, t1=100, t2=0.1):
    """
    Warn when counts are too concentrated for the rlog.

    Among genes whose sum of normalized counts exceeds ``t1``, compute the
    fraction for which a single sample holds more than ``p`` of the sum.
    If that fraction exceeds ``t2`` a :class:`SparsityWarning` is emitted.
    The input is not modified.

    Parameters
    ----------
    x : np.ndarray or pd.DataFrame
        Normalized counts (genes x samples).
    p : float, default 0.9
        Proportion of the row sum held by the largest sample.
    t1 : float, default 100
        Minimum row sum for a gene to be considered.
    t2 : float, default 0.1
        Fraction of considered genes above which the warning fires.

    Returns
    -------
    float or None
        The fraction of considered genes exceeding ``p``, or None when no
        gene has a sum above ``t1``.
    """
    x = np.asarray(x, dtype=float)
    rs = x.sum(axis=1)
    rmx = x.max(axis=1)
    if np.all(rs <= t1):
        return None
    considered = rs > t1
    prop = rmx[considered] / rs[considered]
    total = float(np.mean(prop > p))
    if total > t2:
        warnings.warn(
            "the rlog assumes that data is close to a negative binomial distribution, "
            "an assumption which is sometimes not compatible with datasets where many "
            "genes have many zero counts despite a few very large counts.\n"
            f"In this data, for {round(total, 3) * 100:.1f}% of genes with a sum of "
            f"normalized counts above {t1}, it was the case that a single sample's "
            f"normalized count made up more than {p * 100:g}% of the sum over all samples.\n"
            f"the threshold for this warning is {t2 * 100:g}% of genes. "
            "See sparsity_data() for the underlying values.\n"
            "We recommend instead using a variance stabilizing transformation or the "
            "shifted log (norm_transform).",
            SparsityWarning, stacklevel=2)
    return total
