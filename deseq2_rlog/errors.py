"""
Exception and warning classes raised by the rlog transformation.

Input validation errors are raised before any fitting starts. Per-gene
convergence problems are never raised; they are reported through the
``beta_conv`` flags returned by the fitter.
"""


class InvalidInputError(ValueError):
    """Malformed argument: wrong length, wrong shape or invalid values."""


class PreconditionError(RuntimeError):
    """A required upstream quantity (the dispersion trend) is missing."""


class FatalNumericalError(ArithmeticError):
    """The penalized least-squares system became singular.

    With a strictly positive ridge penalty on every coefficient this cannot
    happen for finite data, so it indicates a construction bug and aborts
    the whole batch.
    """


class SparsityWarning(UserWarning):
    """Counts look too concentrated for the negative binomial assumption."""
