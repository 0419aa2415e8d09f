"""
Dispersion estimation used when the rlog has to (re)estimate the trend.

The rlog only needs the fitted dispersion trend (``dispFit``): the value of
a smooth mean-dispersion function at each gene's base mean. This module
provides the pieces to get there from raw counts:

1. base means and variances of the normalized counts,
2. gene-wise dispersion estimates by Cox-Reid adjusted profile likelihood,
3. a trend fitted through them, either parametric (a/mean + b), local
   (LOWESS on the log-log scale) or constant (mean).

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
    - Cleveland WS (1979). Robust Locally Weighted Regression and Smoothing
      Scatterplots. JASA 74:829-836
"""

import numpy as np
from scipy.optimize import minimize, minimize_scalar
from scipy.stats import trim_mean
from statsmodels.nonparametric.smoothers_lowess import lowess

from .errors import InvalidInputError
from .glm import MIN_MU, nbinom_loglike

MIN_DISP = 1e-8
FIT_TYPES = ('parametric', 'local', 'mean')


def get_base_means_and_variances(counts, normalization_factors):
    """
    Row means and variances of the normalized counts.

    Returns
    -------
    base_mean : np.ndarray
    base_var : np.ndarray
    all_zero : np.ndarray of bool
        Genes whose normalized counts sum to zero.
    """
    norm_counts = np.asarray(counts, dtype=float) / normalization_factors
    base_mean = norm_counts.mean(axis=1)
    if norm_counts.shape[1] > 1:
        base_var = norm_counts.var(axis=1, ddof=1)
    else:
        base_var = np.full(norm_counts.shape[0], np.nan)
    all_zero = norm_counts.sum(axis=1) == 0
    return base_mean, base_var, all_zero


def linear_model_mu(counts, normalization_factors, design_matrix, min_mu=MIN_MU):
    """Fitted means from a least-squares fit of the normalized counts."""
    norm_counts = np.asarray(counts, dtype=float) / normalization_factors
    X = np.asarray(design_matrix, dtype=float)
    q, r = np.linalg.qr(X)
    hat = X @ np.linalg.solve(r, q.T)
    mu = (hat @ norm_counts.T).T * normalization_factors
    return np.maximum(mu, min_mu)


def cox_reid_adjustment(mu, alpha, X):
    """
    Cox-Reid bias adjustment: -0.5 * log(det(X^T W X))
    """
    w = mu / (1.0 + alpha * mu)
    XtWX = (X.T * w) @ X
    sign, logdet = np.linalg.slogdet(XtWX)
    if sign <= 0:
        return -np.inf
    return -0.5 * logdet


def get_crap_objective(counts, mu_hat, X):
    """Negative Cox-Reid adjusted profile likelihood as a function of log(alpha)."""
    def objective(log_alpha):
        alpha = np.exp(log_alpha)
        ll = nbinom_loglike(counts, mu_hat, alpha)
        cr = cox_reid_adjustment(mu_hat, alpha, X)
        return -(ll + cr)
    return objective


def estimate_dispersions_gene_est(counts, normalization_factors, design_matrix=None,
                                  min_disp=MIN_DISP, max_disp=None, quiet=False):
    """
    Gene-wise dispersion estimates (maximum Cox-Reid adjusted profile likelihood).

    Parameters
    ----------
    counts : np.ndarray
        Raw counts (genes x samples).
    normalization_factors : np.ndarray
        Gene x sample normalization factors.
    design_matrix : np.ndarray, optional
        Samples x parameters. Defaults to an intercept-only design.
    min_disp : float, default 1e-8
        Lower bound of the search interval.
    max_disp : float, optional
        Upper bound, by default ``max(10, n_samples)``.
    quiet : bool, default False
        Suppress progress messages.

    Returns
    -------
    np.ndarray
        Dispersion per gene, NaN for all-zero genes.
    """
    counts = np.asarray(counts, dtype=float)
    G, S = counts.shape
    if design_matrix is None:
        design_matrix = np.ones((S, 1))
    X = np.asarray(design_matrix, dtype=float)
    if max_disp is None:
        max_disp = max(10.0, S)

    mu_hat = linear_model_mu(counts, normalization_factors, X)
    all_zero = counts.sum(axis=1) == 0
    disp_gw = np.full(G, np.nan)

    genes_to_fit = np.where(~all_zero)[0]
    if not quiet:
        print(f"Running Cox-Reid APL for {len(genes_to_fit)} genes...")

    for i, idx in enumerate(genes_to_fit):
        if not quiet and i % 5000 == 0:
            print(f"  ... processing gene {i}/{len(genes_to_fit)}")
        obj_fn = get_crap_objective(counts[idx], mu_hat[idx], X)
        res = minimize_scalar(obj_fn, bounds=(np.log(min_disp), np.log(max_disp)),
                              method='bounded')
        disp_gw[idx] = np.exp(res.x)

    return np.clip(disp_gw, min_disp, max_disp)


def fit_parametric_dispersion_trend(base_means, disp_gw):
    """
    Fit the trend ``a / mean + b`` with a gamma-family deviance.

    Returns
    -------
    callable or None
        Trend function, or None if the fit failed (too few usable genes or
        the optimizer did not converge).
    tuple
        Coefficients (a, b).
    """
    base_means = np.asarray(base_means, dtype=float)
    disp_gw = np.asarray(disp_gw, dtype=float)
    mask = np.isfinite(disp_gw) & (base_means > 0)

    x_clean = base_means[mask]
    y_clean = disp_gw[mask]
    if len(x_clean) < 3:
        return None, (np.nan, np.nan)

    def gamma_deviance(params):
        a, b = params
        pred = a / x_clean + b
        # Deviance = sum( (y-mu)/mu - log(y/mu) )
        term = (y_clean - pred) / pred - np.log(y_clean / pred)
        return np.sum(term)

    res = minimize(gamma_deviance, x0=[1.0, 0.1],
                   bounds=[(0.0, None), (1e-8, None)], method='L-BFGS-B')
    a, b = res.x
    if not res.success or not np.all(np.isfinite(res.x)):
        return None, (a, b)

    def trend_fn(mu):
        return a / np.maximum(np.asarray(mu, dtype=float), 1e-8) + b

    return trend_fn, (a, b)


def fit_local_dispersion_trend(base_means, disp_gw, frac=0.2, it=3):
    """
    Fit the trend by LOWESS on log10(mean) vs log10(dispersion).

    Falls back to a constant at the median dispersion with fewer than ten
    usable genes.
    """
    base_means = np.asarray(base_means, dtype=float)
    disp_gw = np.asarray(disp_gw, dtype=float)
    mask = (base_means > 0) & np.isfinite(disp_gw)

    if mask.sum() < 10:
        median_disp = np.median(disp_gw[mask]) if mask.any() else 0.1
        return lambda x: np.full(np.shape(x), median_disp, dtype=float)

    x = np.log10(base_means[mask])
    y = np.log10(disp_gw[mask])
    order = np.argsort(x)
    smoothed = lowess(y[order], x[order], frac=frac, it=it, return_sorted=True)
    x_smooth = smoothed[:, 0]
    y_smooth = smoothed[:, 1]

    def trend_fn(means):
        log_means = np.log10(np.maximum(np.asarray(means, dtype=float), 1e-8))
        log_disp = np.interp(log_means, x_smooth, y_smooth,
                             left=y_smooth[0], right=y_smooth[-1])
        return 10 ** log_disp

    return trend_fn


def fit_mean_dispersion(disp_gw, min_disp=MIN_DISP):
    """Constant trend at the (0.1% trimmed) mean of the usable estimates."""
    disp_gw = np.asarray(disp_gw, dtype=float)
    usable = disp_gw[np.isfinite(disp_gw) & (disp_gw > 10 * min_disp)]
    if usable.size == 0:
        usable = disp_gw[np.isfinite(disp_gw)]
    mean_disp = trim_mean(usable, 0.001) if usable.size else min_disp

    def trend_fn(means):
        return np.full(np.shape(means), mean_disp, dtype=float)

    return trend_fn, mean_disp


def fit_dispersion_trend(base_means, disp_gw, fit_type='parametric',
                         min_disp=MIN_DISP, quiet=False):
    """
    Fit a mean-dispersion trend.

    Parameters
    ----------
    base_means : np.ndarray
        Mean normalized counts per gene.
    disp_gw : np.ndarray
        Gene-wise dispersion estimates (NaN for genes to ignore).
    fit_type : {'parametric', 'local', 'mean'}
        Trend family. A failed parametric fit is replaced by a local fit.
    min_disp : float, default 1e-8
        Estimates within two orders of magnitude of this value are not
        used for the fit.

    Returns
    -------
    callable
        Function mapping base means to fitted dispersions.
    """
    if fit_type not in FIT_TYPES:
        raise InvalidInputError(
            f"Unknown fit_type: {fit_type}. Use one of {', '.join(FIT_TYPES)}.")

    base_means = np.asarray(base_means, dtype=float)
    disp_gw = np.asarray(disp_gw, dtype=float)
    use_for_fit = np.isfinite(disp_gw) & (disp_gw > 100 * min_disp)

    if not use_for_fit.any():
        if not quiet:
            print("all gene-wise dispersion estimates are within 2 orders of magnitude "
                  "from the minimum value; using the mean of the estimates as the trend")
        return fit_mean_dispersion(disp_gw, min_disp)[0]

    x = base_means[use_for_fit]
    y = disp_gw[use_for_fit]

    if fit_type == 'parametric':
        if not quiet:
            print(f"Fitting Dispersion Trend on {len(x)} genes...")
        trend_fn, (a, b) = fit_parametric_dispersion_trend(x, y)
        if trend_fn is not None:
            if not quiet:
                print(f"Trend Coefficients: a={a:.4f}, b={b:.4f}")
            return trend_fn
        if not quiet:
            print("-- note: fit_type='parametric', but the dispersion trend was not well "
                  "captured by the function: y = a/x + b, and a local regression fit "
                  "was automatically substituted.")
        return fit_local_dispersion_trend(x, y)
    elif fit_type == 'local':
        return fit_local_dispersion_trend(x, y)
    return fit_mean_dispersion(y, min_disp)[0]


def estimate_dispersion_trend(counts, normalization_factors, design_matrix=None,
                              fit_type='parametric', quiet=False):
    """
    Estimate the fitted dispersion trend from raw counts.

    Returns
    -------
    dict
        ``'baseMean'``, ``'baseVar'``, ``'allZero'``, ``'dispGeneEst'``,
        ``'dispFit'`` (trend at each base mean, NaN for all-zero genes) and
        ``'dispersionFunction'``.
    """
    base_mean, base_var, all_zero = get_base_means_and_variances(
        counts, normalization_factors)
    disp_gw = estimate_dispersions_gene_est(
        counts, normalization_factors, design_matrix, quiet=quiet)
    trend_fn = fit_dispersion_trend(base_mean, disp_gw, fit_type=fit_type, quiet=quiet)

    disp_fit = np.full(len(base_mean), np.nan)
    disp_fit[~all_zero] = trend_fn(base_mean[~all_zero])

    return {
        'baseMean': base_mean,
        'baseVar': base_var,
        'allZero': all_zero,
        'dispGeneEst': disp_gw,
        'dispFit': disp_fit,
        'dispersionFunction': trend_fn,
    }
