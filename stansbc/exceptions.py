"""Custom exception classes for the StanSBC package.

This module defines the exceptions raised by StanSBC. All custom exceptions
inherit from the base StanSBCError class to allow for unified exception handling
when needed.
"""


class StanSBCError(Exception):
    """Base class for all exceptions in the StanSBC package.

    :param message: Error message describing the exception
    :type message: str

    Example:
        >>> try:
        ...     results = model.sbc(data=data, M=100)
        ... except StanSBCError as e:
        ...     print(f"StanSBC error occurred: {e}")
    """


class ConventionError(StanSBCError):
    """Raised when a Stan program or its output breaks the SBC naming convention.

    This covers programs that do not declare ``pars_`` or ``ranks_`` in their
    generated quantities, programs whose ``ranks_`` array does not line up with
    ``pars_``, and sampler output missing the variables the convention requires.

    :param message: Error message listing the convention violations
    :type message: str
    """


class ReplicationError(StanSBCError):
    """Raised when the replications of an SBC run cannot be combined.

    Replications are combined along a new leading dimension, so they must agree
    on the number of parameters, the number of draws, and the set of optional
    outputs (simulated data, log-likelihood, sampler diagnostics).

    :param message: Error message describing the disagreement
    :type message: str
    """
