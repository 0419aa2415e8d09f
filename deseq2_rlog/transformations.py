"""
Regularized log and shifted log transformations for RNA-seq count data.

The rlog transforms counts to the log2 scale in a way which minimizes
differences between samples for genes with small counts and normalizes
with respect to library size. For each gene a negative binomial GLM with
one coefficient per sample is fitted; the sample coefficients are shrunk
towards zero by a normal prior whose variance is estimated from the data,
so that low-count genes, whose fold changes are mostly noise, are pulled
strongly towards the gene's intercept:

    rlog(K_ij) = log2(q_ij) = beta_i0 + beta_ij

The parameters of a fit (dispersion trend, prior variance and intercepts)
can be frozen and reapplied to new samples with ``blind=False``.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import copy

import numpy as np
import pandas as pd

from .deseq_dataset import DESeqDataSet, DESeqTransform
from .design import INTERCEPT_NAME, rlog_design_matrix
from .errors import InvalidInputError, PreconditionError
from .glm import BETA_TOL, MAXIT, fit_nbinom_glms
from .prior import match_weighted_upper_quantile_for_variance
from .sparsity import sparse_test
from .utils import build_matrix_with_na_rows, build_matrix_with_zero_rows

# log2-scale penalty on the intercept: a wide prior, effectively unpenalized
INTERCEPT_LAMBDA = 1e-6
# log2-scale value standing in for a non-finite frozen intercept
MIN_FROZEN_INTERCEPT = -10.0


def _check_intercept(intercept, n_genes):
    intercept = np.asarray(intercept, dtype=float).ravel()
    if intercept.size != n_genes:
        raise InvalidInputError(
            f"intercept should be as long as the number of rows of object "
            f"({intercept.size} != {n_genes})")
    return intercept


def rlog_data(counts, normalization_factors, disp_fit, base_mean=None,
              intercept=None, beta_prior_var=None, beta_tol=BETA_TOL, maxit=MAXIT,
              n_jobs=1, quiet=True):
    """
    Regularized log transformation of a plain count matrix.

    Parameters
    ----------
    counts : np.ndarray
        Raw counts (genes x samples).
    normalization_factors : np.ndarray
        Gene x sample normalization factors.
    disp_fit : np.ndarray or None
        Fitted dispersion trend value per gene. NaN is allowed only for
        genes that are excluded from the fit (all zero).
    base_mean : np.ndarray, optional
        Mean normalized count per gene; computed when missing.
    intercept : array-like, optional
        Frozen log2 intercept per gene from a previous fit. Non-finite
        entries mark genes that were all zero in that fit.
    beta_prior_var : float, optional
        Prior variance of the sample coefficients; estimated by quantile
        matching when missing.
    beta_tol, maxit : float, int
        IRLS convergence tolerance and iteration cap.
    n_jobs : int, default 1
        Worker processes for the per-gene fits.
    quiet : bool, default True
        Suppress the non-convergence message.

    Returns
    -------
    dict
        ``'rlog'``: transformed matrix (genes x samples, log2 scale);
        ``'betaPriorVar'``: prior variance used;
        ``'intercept'``: fitted intercept per gene (``-inf`` for all-zero
        genes) or None when the intercept was supplied;
        ``'allZero'``: genes excluded from the fit;
        ``'betaConv'``, ``'betaIter'``: per-gene convergence bookkeeping.

    Raises
    ------
    PreconditionError
        If ``disp_fit`` is missing or not estimated (NaN) for a gene that
        has to be fitted.
    InvalidInputError
        On a wrong-length ``intercept``, invalid dispersions or an invalid
        ``beta_prior_var``.
    """
    counts = np.asarray(counts, dtype=float)
    nf = np.asarray(normalization_factors, dtype=float)
    G, S = counts.shape

    if disp_fit is None:
        raise PreconditionError("first estimate dispersion")
    disp_fit = np.asarray(disp_fit, dtype=float).ravel()
    if disp_fit.size != G:
        raise InvalidInputError(
            f"disp_fit should be as long as the number of rows of object ({disp_fit.size} != {G})")
    if nf.shape != counts.shape:
        raise InvalidInputError(
            f"normalization_factors shape {nf.shape} does not match counts {counts.shape}")
    frozen = intercept is not None
    if frozen:
        intercept = _check_intercept(intercept, G)

    norm_counts = counts / nf
    if base_mean is None:
        base_mean = norm_counts.mean(axis=1)
    base_mean = np.asarray(base_mean, dtype=float)
    all_zero = norm_counts.sum(axis=1) == 0

    model_matrix, model_matrix_names = rlog_design_matrix(S, frozen_intercept=frozen)

    if frozen:
        # non-finite intercepts come from genes that were all zero in the
        # reference fit; keep them excluded
        infinite_intercept = ~np.isfinite(intercept)
        intercept = np.where(infinite_intercept, MIN_FROZEN_INTERCEPT, intercept)
        nf = nf * 2 ** intercept[:, None]
        all_zero = all_zero | infinite_intercept

    nz = ~all_zero
    counts_nz = counts[nz]
    nf_nz = nf[nz]
    disp_nz = disp_fit[nz]
    if np.any(np.isnan(disp_nz)):
        raise PreconditionError("first estimate dispersion")
    if not np.all(np.isfinite(disp_nz)) or np.any(disp_nz < 0):
        raise InvalidInputError("disp_fit must be finite and non-negative for every fitted gene")

    if beta_prior_var is None:
        # log fold changes over an intercept-only fit, weighted by the
        # inverse of their approximate sampling variance
        keep = base_mean[nz] > 0
        if not keep.any():
            raise InvalidInputError(
                "cannot estimate beta_prior_var: no gene has a positive mean count")
        log_counts = np.log2(norm_counts[nz][keep] + 0.5)
        lfc_matrix = log_counts - np.log2(base_mean[nz][keep] + 0.5)[:, None]
        varlogk = 1.0 / base_mean[nz][keep] + disp_nz[keep]
        weights = 1.0 / varlogk
        beta_prior_var = match_weighted_upper_quantile_for_variance(
            lfc_matrix.ravel(order='F'), np.tile(weights, S))

    beta_prior_var = np.asarray(beta_prior_var, dtype=float)
    if beta_prior_var.size != 1:
        raise InvalidInputError("beta_prior_var must be a single value")
    beta_prior_var = float(beta_prior_var)
    if not np.isfinite(beta_prior_var) or beta_prior_var <= 0:
        raise InvalidInputError("beta_prior_var must be finite and positive")

    lambda_ = np.full(len(model_matrix_names), 1.0 / beta_prior_var)
    intercept_col = None
    if INTERCEPT_NAME in model_matrix_names:
        intercept_col = model_matrix_names.index(INTERCEPT_NAME)
        lambda_[intercept_col] = INTERCEPT_LAMBDA

    fit = fit_nbinom_glms(counts_nz, nf_nz, model_matrix, lambda_, disp_nz,
                          intercept_col=intercept_col, beta_tol=beta_tol,
                          maxit=maxit, n_jobs=n_jobs)

    normalized_nz = fit['beta_matrix'] @ model_matrix.T
    normalized = build_matrix_with_zero_rows(normalized_nz, all_zero)

    if frozen:
        # excluded genes keep a finite frozen intercept as their value
        normalized = normalized + np.where(infinite_intercept, 0.0, intercept)[:, None]

    beta_conv = np.ones(G, dtype=bool)
    beta_conv[nz] = fit['beta_conv']
    beta_iter = np.zeros(G, dtype=int)
    beta_iter[nz] = fit['beta_iter']
    if not quiet and not beta_conv.all():
        print(f"{int((~beta_conv).sum())} rows did not converge in beta, "
              f"labelled in beta_conv. Use a larger maxit argument")

    fitted_intercept = None
    if intercept_col is not None:
        fitted_intercept = build_matrix_with_na_rows(
            fit['beta_matrix'][:, intercept_col], all_zero)
        fitted_intercept[np.isnan(fitted_intercept)] = -np.inf

    return {
        'rlog': normalized,
        'betaPriorVar': beta_prior_var,
        'intercept': fitted_intercept,
        'allZero': all_zero,
        'betaConv': beta_conv,
        'betaIter': beta_iter,
    }


def _as_dataset(data, size_factors=None, normalization_factors=None):
    if isinstance(data, DESeqDataSet):
        # work on a copy; the caller's dataset is left untouched
        dds = copy.copy(data)
    else:
        dds = DESeqDataSet(data)
    if size_factors is not None:
        dds.set_size_factors(size_factors)
    if normalization_factors is not None:
        dds.set_normalization_factors(normalization_factors)
    return dds


def rlog(data, blind=True, intercept=None, beta_prior_var=None,
         fit_type='parametric', dispersion_function=None, size_factors=None,
         normalization_factors=None, n_jobs=1, quiet=False):
    """
    Regularized Log Transformation.

    Parameters
    ----------
    data : DESeqDataSet, np.ndarray or pd.DataFrame
        Dataset or raw count matrix (genes x samples). Labels of a
        DataFrame are kept on the output.
    blind : bool, default True
        Ignore the experimental design: the design is reset to ``~ 1`` and
        the dispersion trend is always re-estimated. Use ``blind=False``
        for downstream analysis and to reapply frozen parameters.
    intercept : array-like, optional
        Frozen per-gene log2 intercept from a previous fit (see
        :meth:`DESeqTransform.frozen_parameters`). Requires a dispersion
        trend, either already on the dataset or via
        ``dispersion_function``.
    beta_prior_var : float, optional
        Prior variance of the sample coefficients; estimated when missing.
    fit_type : {'parametric', 'local', 'mean'}
        Dispersion trend type used when the trend has to be estimated.
    dispersion_function : callable, optional
        Frozen dispersion trend; ignored when ``blind=True``.
    size_factors, normalization_factors : array-like, optional
        Normalization of the counts. Size factors are estimated when
        neither is present.
    n_jobs : int, default 1
        Worker processes for the per-gene fits.
    quiet : bool, default False
        Suppress progress messages.

    Returns
    -------
    DESeqTransform
        Transformed values in ``.assay`` with the prior variance in
        ``.beta_prior_var`` and, when fitted, the intercept in
        ``.rlog_intercept``.

    Examples
    --------
    >>> rld = rlog(counts_df)
    >>> params = rld.frozen_parameters()
    >>> rld_new = rlog(new_counts_df, blind=False, **params)

    Notes
    -----
    Genes with no counts in any sample are not fitted; their transformed
    values are zero (or the frozen intercept when one is supplied).
    """
    dds = _as_dataset(data, size_factors, normalization_factors)
    G, S = dds.shape

    if not quiet:
        if 30 <= S < 50:
            print("rlog() may take a few minutes with 30 or more samples, "
                  "vst() is a much faster transformation")
        elif S >= 50:
            print("rlog() may take a long time with 50 or more samples, "
                  "vst() is a much faster transformation")

    if intercept is not None:
        intercept = _check_intercept(intercept, G)

    if not dds.has_normalization():
        dds.estimate_size_factors()
    if blind:
        dds = dds.with_design("~ 1")

    if intercept is None:
        sparse_test(dds.counts(normalized=True).values, 0.9, 100, 0.1)

    if not blind and dispersion_function is not None:
        dds.set_dispersion_function(dispersion_function)
    if blind or dds.disp_fit is None:
        dds.estimate_dispersions(fit_type=fit_type, quiet=True)
    if dds.base_means is None:
        dds.get_base_means_and_variances()

    rld = rlog_data(dds.counts_raw, dds.normalization_matrix(), dds.disp_fit,
                    base_mean=dds.base_means, intercept=intercept,
                    beta_prior_var=beta_prior_var, n_jobs=n_jobs, quiet=quiet)

    rlog_intercept = None
    if rld['intercept'] is not None:
        rlog_intercept = pd.Series(rld['intercept'], index=dds.gene_names,
                                   name='rlogIntercept')

    return DESeqTransform(
        pd.DataFrame(rld['rlog'], index=dds.gene_names, columns=dds.sample_names),
        coldata=dds.coldata,
        beta_prior_var=rld['betaPriorVar'],
        rlog_intercept=rlog_intercept,
        dispersion_function=dds.dispersion_function,
        beta_conv=pd.Series(rld['betaConv'], index=dds.gene_names, name='betaConv'),
        beta_iter=pd.Series(rld['betaIter'], index=dds.gene_names, name='betaIter'),
    )


rlog_transformation = rlog


def norm_transform(data, pseudocount=1.0, size_factors=None,
                   normalization_factors=None):
    """
    Shifted log: log2(normalized counts + pseudocount).

    The fastest transformation and the recommended alternative when the
    counts are too concentrated for the rlog (see
    :func:`deseq2_rlog.sparsity.sparse_test`).

    Parameters
    ----------
    data : DESeqDataSet, np.ndarray or pd.DataFrame
        Dataset or raw count matrix (genes x samples).
    pseudocount : float, default 1.0
        Value added before the log to avoid log(0).

    Returns
    -------
    DESeqTransform
    """
    dds = _as_dataset(data, size_factors, normalization_factors)
    transformed = np.log2(dds.counts(normalized=True) + pseudocount)
    return DESeqTransform(transformed, coldata=dds.coldata)
