"""
Design matrix construction for the rlog transformation.

The rlog model gives every sample its own coefficient. In the blind
(unfrozen) case this is expressed as an intercept plus one indicator per
sample, contrasted against a synthetic ``null_level`` that is dropped
after building the matrix; the design is therefore rank deficient and only
identifiable thanks to the ridge penalty on the sample terms. When an
intercept is supplied from a previous fit, the intercept column is dropped
and each sample gets a plain indicator column.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import numpy as np
import pandas as pd
from patsy import dmatrix

from .errors import InvalidInputError

NULL_LEVEL = "null_level"
INTERCEPT_NAME = "Intercept"


def create_design_matrix(coldata, formula="~ 1"):
    """
    Create a design matrix from sample metadata and a formula.

    Parameters
    ----------
    coldata : pd.DataFrame
        Sample metadata with experimental variables as columns.
    formula : str, default "~ 1"
        R-style formula, evaluated by patsy.

    Returns
    -------
    np.ndarray
        Design matrix (samples x parameters).
    list
        Column names for the design matrix.

    Examples
    --------
    >>> coldata = pd.DataFrame({'condition': ['ctrl', 'ctrl', 'treat', 'treat']})
    >>> X, names = create_design_matrix(coldata, "~ condition")
    >>> names
    ['Intercept', 'condition[T.treat]']
    """
    if not isinstance(coldata, pd.DataFrame):
        raise TypeError("coldata must be a pandas DataFrame")

    design = dmatrix(formula, data=coldata, return_type='dataframe')
    return design.values, list(design.columns)


def rlog_design_matrix(n_samples, frozen_intercept=False):
    """
    Build the per-sample design matrix used by the rlog GLM.

    Parameters
    ----------
    n_samples : int
        Number of samples (columns of the count matrix).
    frozen_intercept : bool, default False
        If False (blind mode), return an ``Intercept`` column plus one
        column per sample. If True, the intercept is supplied externally
        and only the per-sample indicator columns are returned.

    Returns
    -------
    np.ndarray
        Design matrix of shape (n_samples, n_samples + 1) in blind mode,
        (n_samples, n_samples) in frozen mode.
    list of str
        Column labels: ``'Intercept'`` and ``'samples1'`` ... ``'samplesN'``.

    Examples
    --------
    >>> X, names = rlog_design_matrix(3)
    >>> names
    ['Intercept', 'samples1', 'samples2', 'samples3']
    >>> X.astype(int).tolist()
    [[1, 1, 0, 0], [1, 0, 1, 0], [1, 0, 0, 1]]
    """
    n_samples = int(n_samples)
    if n_samples < 1:
        raise InvalidInputError("n_samples must be at least 1")

    levels = [str(i) for i in range(1, n_samples + 1)]
    sample_names = [f"samples{level}" for level in levels]

    if not frozen_intercept:
        # prepend a reference row so that every real sample gets a
        # treatment-coded column, then drop it again
        samples = pd.Categorical([NULL_LEVEL] + levels, categories=[NULL_LEVEL] + levels)
        X = np.asarray(dmatrix("~ samples", {"samples": samples}), dtype=float)[1:, :]
        return X, [INTERCEPT_NAME] + sample_names

    if n_samples == 1:
        return np.ones((1, 1)), sample_names

    samples = pd.Categorical(levels, categories=levels)
    X = np.asarray(dmatrix("~ 0 + samples", {"samples": samples}), dtype=float)
    return X, sample_names


def check_full_rank(X):
    """
    Check if a design matrix has full column rank.

    Parameters
    ----------
    X : np.ndarray
        Design matrix (samples x parameters).

    Returns
    -------
    bool
    """
    X = np.asarray(X, dtype=float)
    return np.linalg.matrix_rank(X) == X.shape[1]
