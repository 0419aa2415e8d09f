"""
Data behind the standard diagnostic plots.

These helpers compute the tables a plotting layer needs (sample PCA
coordinates, per-gene counts by group, dispersion estimates) without
drawing anything.
"""

import numpy as np
import pandas as pd

from .deseq_dataset import DESeqDataSet, DESeqTransform


def _intgroup_frame(coldata, intgroup):
    if isinstance(intgroup, str):
        intgroup = [intgroup]
    intgroup = list(intgroup)
    missing = [v for v in intgroup if v not in coldata.columns]
    if missing:
        raise ValueError(f"the argument 'intgroup' should specify columns of coldata, "
                         f"missing: {missing}")
    return coldata[intgroup], intgroup


def pca_data(transform, intgroup="condition", ntop=500, pcs_to_use=(1, 2)):
    """
    Principal components of the samples.

    Uses the ``ntop`` genes with the highest variance across samples,
    centred per gene.

    Parameters
    ----------
    transform : DESeqTransform
        Output of :func:`rlog` or :func:`norm_transform`.
    intgroup : str or list of str, default "condition"
        Sample metadata columns to attach. With several columns the
        ``group`` column joins them with ":".
    ntop : int, default 500
        Number of most variable genes to use.
    pcs_to_use : tuple of int, default (1, 2)
        1-based indices of the components to return.

    Returns
    -------
    pd.DataFrame
        One row per sample with the two PC columns, ``group``, the
        ``intgroup`` columns and ``name``. ``attrs['percentVar']`` holds
        the fraction of variance explained by the returned components.

    Examples
    --------
    >>> rld = rlog(dds)
    >>> d = pca_data(rld, intgroup="condition")
    >>> d.attrs['percentVar']
    """
    if not isinstance(transform, DESeqTransform):
        raise TypeError("transform must be a DESeqTransform")
    data = transform.values
    intgroup_df, intgroup = _intgroup_frame(transform.coldata, intgroup)

    rv = data.var(axis=1, ddof=1)
    select = np.argsort(-rv, kind='stable')[:min(ntop, len(rv))]
    x = data[select, :].T
    x = x - x.mean(axis=0)

    U, s, _ = np.linalg.svd(x, full_matrices=False)
    scores = U * s
    percent_var = s ** 2 / np.sum(s ** 2)

    if len(intgroup) > 1:
        group = intgroup_df.astype(str).apply(":".join, axis=1).values
    else:
        group = intgroup_df[intgroup[0]].values

    pcs = [f"PC{i}" for i in pcs_to_use]
    d = pd.DataFrame({pcs[0]: scores[:, pcs_to_use[0] - 1],
                      pcs[1]: scores[:, pcs_to_use[1] - 1],
                      'group': group},
                     index=transform.assay.columns)
    for col in intgroup:
        d[col] = intgroup_df[col].values
    d['name'] = transform.assay.columns
    d.attrs['percentVar'] = percent_var[[i - 1 for i in pcs_to_use]]
    return d


def counts_data(dds, gene, intgroup="condition", normalized=True, transform=True, pc=None):
    """
    Counts of a single gene per sample, with grouping metadata.

    Parameters
    ----------
    dds : DESeqDataSet
    gene : str or int
        Gene name or 0-based row index.
    intgroup : str or list of str, default "condition"
        Sample metadata columns to attach.
    normalized : bool, default True
        Use normalized counts.
    transform : bool, default True
        Add a pseudocount suitable for a log axis.
    pc : float, optional
        Pseudocount; 0.5 when ``transform`` else 0.

    Returns
    -------
    pd.DataFrame
        Column ``count`` plus the ``intgroup`` columns, one row per sample.
    """
    if not isinstance(dds, DESeqDataSet):
        raise TypeError("dds must be a DESeqDataSet")
    intgroup_df, intgroup = _intgroup_frame(dds.coldata, intgroup)
    if pc is None:
        pc = 0.5 if transform else 0.0

    cnts = dds.counts(normalized=normalized)
    if isinstance(gene, str):
        if gene not in cnts.index:
            raise KeyError(f"gene {gene!r} not found")
        row = cnts.loc[gene]
    else:
        if not 0 <= int(gene) < cnts.shape[0]:
            raise IndexError("gene index out of range")
        row = cnts.iloc[int(gene)]

    d = pd.DataFrame({'count': row.values + pc}, index=cnts.columns)
    for col in intgroup:
        d[col] = intgroup_df[col].values
    return d


def disp_ests_data(dds):
    """
    Dispersion estimates for genes with a positive base mean.

    Returns
    -------
    pd.DataFrame
        Columns ``baseMean``, ``dispGeneEst`` and ``dispFit``.
    """
    if dds.disp_fit is None:
        raise ValueError("Must estimate dispersions first")
    sel = dds.base_means > 0
    gene_est = dds.dispersions_gw if dds.dispersions_gw is not None \
        else np.full(len(sel), np.nan)
    return pd.DataFrame({'baseMean': dds.base_means[sel],
                         'dispGeneEst': gene_est[sel],
                         'dispFit': dds.disp_fit[sel]},
                        index=dds.gene_names[sel])
