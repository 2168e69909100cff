# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom type definitions for StanSBC.

This module provides type aliases used throughout the StanSBC package for type
checking and documentation purposes.

All imports are conditional on TYPE_CHECKING to avoid circular imports while
maintaining proper type hints for development and documentation tools.
"""

from typing import Any, Callable, TYPE_CHECKING, Union

# Everything in this file is only imported if TYPE_CHECKING is True.
if TYPE_CHECKING:

    import numpy as np
    import numpy.typing as npt

# Scalar types
Integer = Union[int, "np.integer"]
"""Type alias for integer values.

Accepts both Python's built-in int and NumPy integer types.

:type: Union[int, np.integer]
"""

Float = Union[float, "np.floating"]
"""Type alias for floating-point values.

Accepts both Python's built-in float and NumPy floating-point types.

:type: Union[float, np.floating]
"""

StanData = dict[str, Any]
"""Type alias for the data dictionary passed to a Stan program. Values are
usually scalars, lists, or NumPy arrays.

:type: dict[str, Any]
"""

Replication = dict[str, Any]
"""Type alias for the arrays extracted from a single SBC replication. Keys are
``ranks``, ``pars``, ``Y``, ``log_lik``, ``sampler_params``, and ``seed``.

:type: dict[str, Any]
"""

# Types for the callables used by pure-Python SBC
PriorSampler = Callable[["np.random.Generator"], Any]
"""Draws one set of true parameter values from the prior.

:type: Callable[[np.random.Generator], Any]
"""

Simulator = Callable[[Any, "np.random.Generator"], Any]
"""Simulates one observation set from a set of true parameter values.

:type: Callable[[Any, np.random.Generator], Any]
"""

PosteriorSampler = Callable[[Any, "np.random.Generator", int], "npt.NDArray"]
"""Draws posterior samples given simulated data. Returns an array of shape
(n_draws,) or (n_draws, n_parameters).

:type: Callable[[Any, np.random.Generator, int], npt.NDArray]
"""

# Diagnostic output types
StrippedTestRes = dict[str, "npt.NDArray"]
"""Type alias for diagnostic test results: test name to indices of the
replications that failed the test.

:type: dict[str, npt.NDArray]
"""
