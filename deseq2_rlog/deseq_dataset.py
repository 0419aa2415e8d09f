"""
Container classes for count data and transformed values.

``DESeqDataSet`` holds a count matrix with its sample metadata and the
normalization and dispersion state needed by the rlog. ``DESeqTransform``
is what the transformations return: the transformed matrix with row and
column labels preserved plus the parameters that produced it, so a fit on
one dataset can be frozen and reapplied to new samples.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

import copy

import numpy as np
import pandas as pd

from .errors import InvalidInputError


class DESeqDataSet:
    """
    Count matrix, sample metadata and per-gene state for the rlog.

    Parameters
    ----------
    counts : np.ndarray or pd.DataFrame
        Raw count matrix (genes x samples), non-negative.
    coldata : pd.DataFrame, optional
        Sample metadata, one row per sample. Defaults to an empty frame
        indexed by sample name.
    design : str, default "~ 1"
        R-style formula, used when dispersions are estimated with the
        experimental design (``blind=False``).
    size_factors : array-like, optional
        One size factor per sample.
    normalization_factors : array-like, optional
        Gene x sample normalization factors; take precedence over
        ``size_factors``.

    Attributes
    ----------
    counts_raw : np.ndarray
        Raw count matrix.
    gene_names, sample_names : np.ndarray
        Row and column labels. Unlabelled input gets ``gene_1 ...`` and
        ``1 ... n``.
    base_means, base_vars : np.ndarray or None
        Mean and variance of the normalized counts.
    all_zero : np.ndarray or None
        Genes with no counts in any sample.
    dispersions_gw : np.ndarray or None
        Gene-wise dispersion estimates.
    disp_fit : np.ndarray or None
        Fitted dispersion trend evaluated at each gene's base mean.
    dispersion_function : callable or None
        The fitted trend.

    Examples
    --------
    >>> dds = DESeqDataSet(counts_df, coldata_df, design="~ condition")
    >>> rld = dds.rlog(blind=False)
    >>> rld.assay.head()
    """

    def __init__(self, counts, coldata=None, design="~ 1", size_factors=None,
                 normalization_factors=None):
        if isinstance(counts, pd.DataFrame):
            self.gene_names = np.array(counts.index)
            self.sample_names = np.array(counts.columns)
            self.counts_raw = counts.values.astype(float)
        else:
            self.counts_raw = np.asarray(counts, dtype=float)
            if self.counts_raw.ndim != 2:
                raise InvalidInputError("counts must be a genes x samples matrix")
            G, S = self.counts_raw.shape
            self.gene_names = np.array([f"gene_{i + 1}" for i in range(G)])
            self.sample_names = np.array([str(j + 1) for j in range(S)])

        if np.any(self.counts_raw < 0) or not np.all(np.isfinite(self.counts_raw)):
            raise InvalidInputError("counts must be finite and non-negative")

        G, S = self.counts_raw.shape
        if coldata is None:
            coldata = pd.DataFrame(index=self.sample_names)
        if not isinstance(coldata, pd.DataFrame):
            raise TypeError("coldata must be a pandas DataFrame")
        if len(coldata) != S:
            raise InvalidInputError(f"Number of samples in coldata ({len(coldata)}) "
                                    f"doesn't match counts ({S})")
        self.coldata = coldata
        self.design = design

        self.base_means = None
        self.base_vars = None
        self.all_zero = None
        self.dispersions_gw = None
        self.disp_fit = None
        self.dispersion_function = None

        self.size_factors = None
        self.normalization_factors = None
        if size_factors is not None:
            self.set_size_factors(size_factors)
        if normalization_factors is not None:
            self.set_normalization_factors(normalization_factors)

    @property
    def shape(self):
        return self.counts_raw.shape

    def set_size_factors(self, size_factors):
        sf = np.asarray(size_factors, dtype=float).ravel()
        if sf.shape != (self.shape[1],):
            raise InvalidInputError(
                f"size_factors must have one value per sample ({sf.size} != {self.shape[1]})")
        self.size_factors = sf
        return self._normalization_changed()

    def set_normalization_factors(self, normalization_factors):
        nf = np.asarray(normalization_factors, dtype=float)
        if nf.shape != self.shape:
            raise InvalidInputError(
                f"normalization_factors must be a {self.shape[0]} x {self.shape[1]} "
                f"matrix, got {nf.shape}")
        self.normalization_factors = nf
        return self._normalization_changed()

    def _normalization_changed(self):
        # per-gene state computed from the old normalized counts is stale;
        # an installed dispersion trend is re-evaluated at the new base means
        self.base_means = None
        self.base_vars = None
        self.all_zero = None
        self.dispersions_gw = None
        self.disp_fit = None
        if self.dispersion_function is not None:
            self.set_dispersion_function(self.dispersion_function)
        return self

    def has_normalization(self):
        return self.size_factors is not None or self.normalization_factors is not None

    def estimate_size_factors(self, type='ratio', control_genes=None):
        """
        Estimate median-of-ratios size factors.

        Returns
        -------
        DESeqDataSet
            Self, for method chaining.
        """
        from .size_factors import estimate_size_factors as est_sf

        self.size_factors = est_sf(self.counts_raw, type=type, control_genes=control_genes)
        return self._normalization_changed()

    def normalization_matrix(self):
        """Gene x sample normalization factors (size factors broadcast if needed)."""
        from .size_factors import normalization_matrix

        if not self.has_normalization():
            self.estimate_size_factors()
        return normalization_matrix(self.shape, self.size_factors,
                                    self.normalization_factors)

    def counts(self, normalized=False):
        """
        Count matrix as a labelled DataFrame.

        Parameters
        ----------
        normalized : bool, default False
            Divide by the normalization factors.
        """
        from .size_factors import normalize_counts

        data = self.counts_raw
        if normalized:
            if not self.has_normalization():
                self.estimate_size_factors()
            data = normalize_counts(data, self.size_factors, self.normalization_factors)
        return pd.DataFrame(data, index=self.gene_names, columns=self.sample_names)

    def design_matrix(self):
        from .design import create_design_matrix
        return create_design_matrix(self.coldata, self.design)

    def get_base_means_and_variances(self):
        from .dispersion import get_base_means_and_variances

        self.base_means, self.base_vars, self.all_zero = get_base_means_and_variances(
            self.counts_raw, self.normalization_matrix())
        return self

    def estimate_dispersions(self, fit_type='parametric', quiet=False):
        """
        Estimate gene-wise dispersions and fit the dispersion trend.

        Returns
        -------
        DESeqDataSet
            Self, for method chaining.
        """
        from .dispersion import estimate_dispersion_trend

        X, _ = self.design_matrix()
        fit = estimate_dispersion_trend(self.counts_raw, self.normalization_matrix(),
                                        X, fit_type=fit_type, quiet=quiet)
        self.base_means = fit['baseMean']
        self.base_vars = fit['baseVar']
        self.all_zero = fit['allZero']
        self.dispersions_gw = fit['dispGeneEst']
        self.disp_fit = fit['dispFit']
        self.dispersion_function = fit['dispersionFunction']
        return self

    def set_dispersion_function(self, dispersion_function):
        """
        Install a dispersion trend, e.g. one frozen from a previous dataset.

        ``disp_fit`` is evaluated at the current base means; all-zero genes
        get NaN.
        """
        if not callable(dispersion_function):
            raise InvalidInputError("dispersion_function must be callable")
        if self.base_means is None:
            self.get_base_means_and_variances()
        disp_fit = np.full(self.shape[0], np.nan)
        nz = ~self.all_zero
        disp_fit[nz] = np.asarray(dispersion_function(self.base_means[nz]), dtype=float)
        self.dispersion_function = dispersion_function
        self.disp_fit = disp_fit
        return self

    def with_design(self, design):
        """Shallow copy of the dataset with a different design formula."""
        dds = copy.copy(self)
        dds.design = design
        return dds

    def rlog(self, **kwargs):
        """Regularized log transformation, see :func:`deseq2_rlog.rlog`."""
        from .transformations import rlog
        return rlog(self, **kwargs)

    def __repr__(self):
        G, S = self.shape
        disp = "dispersion trend fitted" if self.disp_fit is not None else "no dispersion trend"
        return f"DESeqDataSet with {G} genes and {S} samples ({disp})"


class DESeqTransform:
    """
    Transformed values plus the parameters that produced them.

    Parameters
    ----------
    assay : pd.DataFrame
        Transformed matrix (genes x samples).
    coldata : pd.DataFrame
        Sample metadata carried over from the input.
    beta_prior_var : float, optional
        Prior variance of the rlog sample coefficients.
    rlog_intercept : pd.Series, optional
        Fitted per-gene intercept (log2 scale), ``-inf`` for all-zero
        genes. Only present when the intercept was fitted.
    dispersion_function : callable, optional
        Dispersion trend used for the fit.
    beta_conv : pd.Series, optional
        Per-gene convergence flag of the penalized fit; genes that were not
        fitted (all zero) are reported as converged.
    beta_iter : pd.Series, optional
        Per-gene IRLS iteration count (0 for genes that were not fitted).
    """

    def __init__(self, assay, coldata=None, beta_prior_var=None, rlog_intercept=None,
                 dispersion_function=None, beta_conv=None, beta_iter=None):
        if not isinstance(assay, pd.DataFrame):
            raise TypeError("assay must be a pandas DataFrame")
        self.assay = assay
        self.coldata = coldata if coldata is not None else pd.DataFrame(index=assay.columns)
        self.beta_prior_var = beta_prior_var
        self.rlog_intercept = rlog_intercept
        self.dispersion_function = dispersion_function
        self.beta_conv = beta_conv
        self.beta_iter = beta_iter

    @property
    def shape(self):
        return self.assay.shape

    @property
    def values(self):
        return self.assay.values

    def n_not_converged(self):
        if self.beta_conv is None:
            return 0
        return int((~self.beta_conv).sum())

    def frozen_parameters(self):
        """
        Parameters to reapply this fit to new samples.

        Returns
        -------
        dict
            ``intercept``, ``beta_prior_var`` and ``dispersion_function``,
            suitable for ``rlog(new_data, blind=False, **params)``.

        Raises
        ------
        InvalidInputError
            If the intercept was not fitted (the transform was itself frozen).
        """
        if self.rlog_intercept is None:
            raise InvalidInputError("intercept was not fitted by this transformation")
        return {
            'intercept': self.rlog_intercept.values.copy(),
            'beta_prior_var': self.beta_prior_var,
            'dispersion_function': self.dispersion_function,
        }

    def __repr__(self):
        G, S = self.shape
        bpv = "" if self.beta_prior_var is None else f", betaPriorVar={self.beta_prior_var:.4g}"
        return f"DESeqTransform with {G} genes and {S} samples{bpv}"
