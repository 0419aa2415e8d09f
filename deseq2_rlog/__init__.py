"""
Regularized log (rlog) transformation for RNA-seq count data in Python.

The rlog fits a ridge-penalized negative binomial GLM with one coefficient
per sample for every gene and returns the shrunken log2-scale values. It
produces a variance stabilizing effect similar to a VST while being robust
to widely varying size factors, and is useful for sample QA, clustering and
PCA.

Main Classes:
    DESeqDataSet : Counts, sample metadata and normalization/dispersion state
    DESeqTransform : Transformed values plus the parameters that produced them

Main Functions:
    rlog : Regularized log transformation
    norm_transform : Shifted log transformation
    sparse_test : Count concentration check

References:
    Love MI, Huber W, Anders S (2014). Moderated estimation of fold change
    and dispersion for RNA-seq data with DESeq2. Genome Biology 15:550
"""

# Containers
from .deseq_dataset import DESeqDataSet, DESeqTransform

# Errors
from .errors import (
    InvalidInputError,
    PreconditionError,
    FatalNumericalError,
    SparsityWarning
)

# Transformations
from .transformations import rlog, rlog_data, rlog_transformation, norm_transform

# Building blocks
from .prior import match_weighted_upper_quantile_for_variance, weighted_quantile
from .design import rlog_design_matrix, create_design_matrix
from .glm import fit_nbinom_glms
from .sparsity import sparse_test, sparsity_data

# Normalization and dispersions
from .size_factors import estimate_size_factors, normalization_matrix
from .dispersion import estimate_dispersion_trend, fit_dispersion_trend

# Diagnostics data
from .diagnostics import pca_data, counts_data, disp_ests_data

# Utilities
from .utils import collapse_replicates

__version__ = "0.1.0"

__all__ = [
    # Containers
    'DESeqDataSet',
    'DESeqTransform',

    # Errors
    'InvalidInputError',
    'PreconditionError',
    'FatalNumericalError',
    'SparsityWarning',

    # Transformations
    'rlog',
    'rlog_data',
    'rlog_transformation',
    'norm_transform',

    # Building blocks
    'match_weighted_upper_quantile_for_variance',
    'weighted_quantile',
    'rlog_design_matrix',
    'create_design_matrix',
    'fit_nbinom_glms',
    'sparse_test',
    'sparsity_data',

    # Normalization and dispersions
    'estimate_size_factors',
    'normalization_matrix',
    'estimate_dispersion_trend',
    'fit_dispersion_trend',

    # Diagnostics data
    'pca_data',
    'counts_data',
    'disp_ests_data',

    # Utilities
    'collapse_replicates',
]
