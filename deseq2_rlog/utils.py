"""
Helpers for reassembling gene-level results and collapsing replicates.
"""

import warnings

import numpy as np
import pandas as pd

from .errors import InvalidInputError


def build_matrix_with_zero_rows(mat_nz, zero_rows):
    """
    Expand a matrix fitted on a subset of rows back to all rows.

    Parameters
    ----------
    mat_nz : np.ndarray
        Values for the rows where ``zero_rows`` is False, in order.
    zero_rows : np.ndarray of bool
        Rows that were excluded; they are filled with zeros.

    Returns
    -------
    np.ndarray
        Matrix with ``len(zero_rows)`` rows.
    """
    zero_rows = np.asarray(zero_rows, dtype=bool)
    mat_nz = np.asarray(mat_nz, dtype=float)
    out = np.zeros((zero_rows.size,) + mat_nz.shape[1:])
    out[~zero_rows] = mat_nz
    return out


def build_matrix_with_na_rows(mat_nz, na_rows):
    """Same as :func:`build_matrix_with_zero_rows` but fills with NaN."""
    na_rows = np.asarray(na_rows, dtype=bool)
    mat_nz = np.asarray(mat_nz, dtype=float)
    out = np.full((na_rows.size,) + mat_nz.shape[1:], np.nan)
    out[~na_rows] = mat_nz
    return out


def collapse_replicates(dds, groupby, run=None, rename_cols=True):
    """
    Sum the counts of technical replicates.

    Parameters
    ----------
    dds : DESeqDataSet
        Dataset to collapse.
    groupby : array-like
        One label per sample; samples sharing a label are summed.
    run : array-like, optional
        One run identifier per sample, recorded in the ``runsCollapsed``
        column of the new sample metadata.
    rename_cols : bool, default True
        Name the collapsed samples after the ``groupby`` levels.

    Returns
    -------
    DESeqDataSet
        New dataset with one sample per ``groupby`` level, in order of
        first appearance. Size factors and dispersion estimates are not
        carried over.

    Examples
    --------
    >>> dds2 = collapse_replicates(dds, groupby=[1, 1, 2, 2])
    >>> dds2.counts().shape[1]
    2
    """
    from .deseq_dataset import DESeqDataSet

    groupby = pd.Series(np.asarray(groupby)).astype(str)
    if len(groupby) != len(dds.sample_names):
        raise InvalidInputError("groupby should be as long as the number of samples")
    if run is not None and len(run) != len(dds.sample_names):
        raise InvalidInputError("run should be as long as the number of samples")
    if dds.normalization_factors is not None:
        warnings.warn("collapse_replicates only sums the counts; "
                      "normalization factors were dropped", UserWarning, stacklevel=2)

    levels = list(dict.fromkeys(groupby))
    counts = dds.counts_raw
    collapsed = np.column_stack(
        [counts[:, (groupby == level).values].sum(axis=1) for level in levels])

    first = [int(np.where(groupby == level)[0][0]) for level in levels]
    coldata = dds.coldata.iloc[first].copy()
    if run is not None:
        run = np.asarray(run).astype(str)
        coldata['runsCollapsed'] = [
            ",".join(run[(groupby == level).values]) for level in levels]

    sample_names = levels if rename_cols else list(dds.sample_names[first])
    coldata.index = sample_names
    counts_df = pd.DataFrame(collapsed, index=dds.gene_names, columns=sample_names)
    return DESeqDataSet(counts_df, coldata, design=dds.design)
