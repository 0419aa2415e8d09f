"""
Ridge-penalized negative binomial GLM fitting.

Each gene is fitted independently by iteratively reweighted least squares.
At every iteration the weighted design is stacked on top of the square
root of the ridge penalty matrix and solved through a QR decomposition,
which keeps the rank-deficient rlog design (intercept + one term per
sample) numerically well posed.

The penalty is specified on the log2 scale, the scale of the reported
coefficients; the fit itself runs on the natural log scale.

References:
    - Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
      and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
    - McCullagh P, Nelder JA (1989). Generalized Linear Models. Chapman & Hall
"""

import os
from concurrent.futures import ProcessPoolExecutor

import numpy as np
from scipy.linalg import solve_triangular
from scipy.special import gammaln

from .design import check_full_rank
from .errors import FatalNumericalError, InvalidInputError

BETA_TOL = 1e-4
MAXIT = 100
MIN_MU = 0.5
# natural-log scale; a coefficient this large means the fit is diverging
LARGE_BETA = 30.0


def nbinom_loglike(counts, mu, alpha):
    """
    Log-likelihood of NBinom(mu, alpha), summed over samples.

    ``alpha == 0`` gives the Poisson limit.
    """
    if alpha < 1e-8:
        return np.sum(counts * np.log(mu) - mu - gammaln(counts + 1.0))
    r = 1.0 / alpha

    # LL = log Gamma(y+r) - log Gamma(r) - log y! + r log(r/(r+mu)) + y log(mu/(r+mu))
    ll = gammaln(counts + r) - gammaln(r) - gammaln(counts + 1.0) \
         + r * np.log(r / (r + mu)) + counts * np.log(mu / (r + mu))
    return np.sum(ll)


def fit_beta_ridge(y, nf, alpha, X, ridge_sqrt, beta_start,
                   beta_tol=BETA_TOL, maxit=MAXIT, min_mu=MIN_MU,
                   large=LARGE_BETA):
    """
    Fit one gene by penalized IRLS with a QR solve.

    Parameters
    ----------
    y : np.ndarray
        Counts for one gene (length S).
    nf : np.ndarray
        Normalization factors for the gene (length S).
    alpha : float
        Dispersion.
    X : np.ndarray
        Design matrix (S x P).
    ridge_sqrt : np.ndarray
        Square root of the diagonal ridge penalty, natural log scale (P x P).
    beta_start : np.ndarray
        Starting coefficients, natural log scale (length P).

    Returns
    -------
    beta : np.ndarray
        Final iterate, natural log scale.
    converged : bool
        False if ``maxit`` was reached, a coefficient exceeded ``large``
        or the deviance became undefined.
    n_iter : int
        Number of iterations performed.
    deviance : float
        Deviance of the final iterate.

    Raises
    ------
    FatalNumericalError
        If the stacked least-squares system is singular.
    """
    n_coef = X.shape[1]
    beta = np.array(beta_start, dtype=float)
    mu = nf * np.exp(X @ beta)
    dev = np.nan
    dev_old = 0.0
    converged = False
    n_iter = 0
    zeros = np.zeros(n_coef)

    for t in range(maxit):
        n_iter += 1
        w = mu / (1.0 + alpha * mu)
        w_sqrt = np.sqrt(w)

        weighted_x_ridge = np.vstack([X * w_sqrt[:, None], ridge_sqrt])
        q, r = np.linalg.qr(weighted_x_ridge)
        r_diag = np.abs(np.diag(r))
        if not np.all(np.isfinite(r)) or \
                r_diag.min() <= np.finfo(float).eps * r_diag.max() * max(weighted_x_ridge.shape):
            raise FatalNumericalError(
                "penalized design is singular; every coefficient needs a positive ridge penalty")

        # working response on the link scale
        z = np.log(mu / nf) + (y - mu) / mu
        gamma = q.T @ np.concatenate([z * w_sqrt, zeros])
        beta = solve_triangular(r, gamma)

        if np.any(np.abs(beta) > large):
            break

        mu = np.maximum(nf * np.exp(X @ beta), min_mu)
        dev = -2.0 * nbinom_loglike(y, mu, alpha)
        conv_test = abs(dev - dev_old) / (abs(dev) + 0.1)
        if np.isnan(conv_test):
            break
        if t > 0 and conv_test < beta_tol:
            converged = True
            break
        dev_old = dev

    return beta, converged, n_iter, dev


def _fit_chunk(args):
    """Fit a block of genes; module level so worker processes can import it."""
    counts, nf, alphas, X, ridge_sqrt, beta_start, beta_tol, maxit, min_mu = args
    n_genes, n_coef = beta_start.shape
    betas = np.zeros((n_genes, n_coef))
    conv = np.zeros(n_genes, dtype=bool)
    iters = np.zeros(n_genes, dtype=int)
    devs = np.zeros(n_genes)
    for i in range(n_genes):
        betas[i], conv[i], iters[i], devs[i] = fit_beta_ridge(
            counts[i], nf[i], alphas[i], X, ridge_sqrt, beta_start[i],
            beta_tol=beta_tol, maxit=maxit, min_mu=min_mu)
    return betas, conv, iters, devs


def initial_betas(counts, normalization_factors, design_matrix, intercept_col=None):
    """
    Starting coefficients on the natural log scale.

    A full-rank design starts from the least-squares fit of
    ``log(normalized + 0.1)``. Otherwise the intercept starts at the log of
    the mean normalized count and the remaining terms at zero; without an
    intercept every coefficient starts at one.
    """
    X = np.asarray(design_matrix, dtype=float)
    norm_counts = counts / normalization_factors
    n_genes, n_coef = counts.shape[0], X.shape[1]

    if check_full_rank(X):
        q, r = np.linalg.qr(X)
        y = np.log(norm_counts + 0.1)
        return solve_triangular(r, q.T @ y.T).T

    if intercept_col is not None:
        beta = np.zeros((n_genes, n_coef))
        with np.errstate(divide='ignore'):
            beta[:, intercept_col] = np.log(norm_counts.mean(axis=1))
        return beta
    return np.ones((n_genes, n_coef))


def fit_nbinom_glms(counts, normalization_factors, design_matrix, lambda_,
                    dispersions, intercept_col=None, beta_tol=BETA_TOL,
                    maxit=MAXIT, min_mu=MIN_MU, n_jobs=1):
    """
    Fit ridge-penalized negative binomial GLMs for every gene.

    Parameters
    ----------
    counts : np.ndarray
        Raw counts (genes x samples). Rows of all zeros should be removed
        beforehand.
    normalization_factors : np.ndarray
        Gene x sample normalization factors (size factors broadcast to a
        matrix when no gene-specific factors are used).
    design_matrix : np.ndarray
        Design matrix (samples x coefficients).
    lambda_ : array-like
        Ridge penalty per coefficient on the log2 scale, i.e.
        ``1 / prior_variance``. Must be strictly positive.
    dispersions : array-like
        One finite, non-negative dispersion per gene.
    intercept_col : int, optional
        Index of the intercept column, used for starting values when the
        design is rank deficient.
    beta_tol : float, default 1e-4
        Convergence tolerance on the relative change in deviance.
    maxit : int, default 100
        Maximum IRLS iterations per gene.
    min_mu : float, default 0.5
        Lower bound on fitted means.
    n_jobs : int, default 1
        Number of worker processes. ``-1`` uses all CPUs. Genes are split
        into contiguous blocks and reassembled in their original order.

    Returns
    -------
    dict
        ``'beta_matrix'`` (genes x coefficients, log2 scale),
        ``'beta_conv'`` (bool per gene), ``'beta_iter'`` (iterations per
        gene) and ``'deviance'``.

    Raises
    ------
    InvalidInputError
        On shape mismatches, non-positive penalties or invalid dispersions.
    FatalNumericalError
        If any gene's penalized system is singular. The whole batch is
        aborted.
    """
    counts = np.asarray(counts, dtype=float)
    nf = np.asarray(normalization_factors, dtype=float)
    X = np.asarray(design_matrix, dtype=float)
    lambda_ = np.atleast_1d(np.asarray(lambda_, dtype=float))
    alphas = np.atleast_1d(np.asarray(dispersions, dtype=float))

    if counts.ndim != 2:
        raise InvalidInputError("counts must be a genes x samples matrix")
    G, S = counts.shape
    if nf.shape != counts.shape:
        raise InvalidInputError(
            f"normalization_factors shape {nf.shape} does not match counts {counts.shape}")
    if X.ndim != 2 or X.shape[0] != S:
        raise InvalidInputError("design_matrix must have one row per sample")
    P = X.shape[1]
    if lambda_.shape != (P,):
        raise InvalidInputError(
            f"lambda_ must have one penalty per design column ({lambda_.size} != {P})")
    if not np.all(np.isfinite(lambda_)) or np.any(lambda_ <= 0):
        raise InvalidInputError("lambda_ must be finite and strictly positive")
    if alphas.shape != (G,):
        raise InvalidInputError(
            f"dispersions must be as long as the number of genes ({alphas.size} != {G})")
    if not np.all(np.isfinite(alphas)) or np.any(alphas < 0):
        raise InvalidInputError("dispersions must be finite and non-negative")

    if G == 0:
        return {
            'beta_matrix': np.zeros((0, P)),
            'beta_conv': np.zeros(0, dtype=bool),
            'beta_iter': np.zeros(0, dtype=int),
            'deviance': np.zeros(0),
        }

    # the penalty is given for log2-scale betas; the fit is on the natural log scale
    lambda_nat = lambda_ / np.log(2) ** 2
    ridge_sqrt = np.diag(np.sqrt(lambda_nat))
    beta_start = initial_betas(counts, nf, X, intercept_col=intercept_col)

    if n_jobs is None or n_jobs == 0:
        n_jobs = 1
    elif n_jobs < 0:
        n_jobs = os.cpu_count() or 1
    n_jobs = min(n_jobs, G)

    blocks = np.array_split(np.arange(G), n_jobs)
    tasks = [(counts[b], nf[b], alphas[b], X, ridge_sqrt, beta_start[b],
              beta_tol, maxit, min_mu) for b in blocks]

    if n_jobs > 1:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            results = list(executor.map(_fit_chunk, tasks))
    else:
        results = [_fit_chunk(task) for task in tasks]

    betas = np.vstack([res[0] for res in results])
    return {
        'beta_matrix': betas / np.log(2),
        'beta_conv': np.concatenate([res[1] for res in results]),
        'beta_iter': np.concatenate([res[2] for res in results]),
        'deviance': np.concatenate([res[3] for res in results]),
    }
