# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Utility functions for the StanSBC package.

This module provides various utility functions that support the core
functionality of StanSBC, including:

    - Lazy importing mechanisms for performance optimization
    - Reproducible generation of replication seeds
    - Reshaping of CmdStan per-chain arrays
    - Binning of rank statistics

Users will not typically need to interact with this module directly--it is designed
to be used internally by StanSBC.
"""

from __future__ import annotations

import importlib.util
import sys

from typing import Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt

import stansbc

if TYPE_CHECKING:
    from stansbc import custom_types

# CmdStan accepts seeds in [0, 2**32 - 1]
MAX_SEED = 2**32 - 1


def lazy_import(name: str):
    """Import a module only when it is first needed.

    This function implements lazy module importing to improve package import
    performance by deferring module loading until actual use.

    :param name: The fully qualified module name to import
    :type name: str

    :returns: The imported module
    :rtype: module

    :raises ImportError: If the specified module cannot be found

    .. note::
        If the module is already imported, returns the cached version
        from sys.modules for efficiency.
    """
    # Check if the module is already imported
    if name in sys.modules:
        return sys.modules[name]

    # If not, import it lazily (modified from here:
    # https://docs.python.org/3/library/importlib.html#implementing-lazy-imports)
    # Get the spec
    spec = importlib.util.find_spec(name)

    # If the spec is None, raise an ImportError
    if spec is None:
        raise ImportError(f"Module '{name}' not found.")

    # Create the module with a lazy loader
    spec.loader = importlib.util.LazyLoader(spec.loader)
    module = importlib.util.module_from_spec(spec)

    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def get_rng(seed: Optional["custom_types.Integer"] = None) -> np.random.Generator:
    """Return a generator seeded with `seed`, or the package-level generator.

    :param seed: Seed for a new generator. If None, the global ``stansbc.RNG``
        is returned so that ``stansbc.manual_seed`` controls the result.
    :type seed: Optional[custom_types.Integer]

    :returns: Random number generator
    :rtype: np.random.Generator
    """
    if seed is None:
        return stansbc.RNG
    return np.random.default_rng(seed)


def draw_seeds(
    n: "custom_types.Integer", seed: Optional["custom_types.Integer"] = None
) -> npt.NDArray[np.int64]:
    """Draw one CmdStan seed per replication.

    All seeds are drawn up front so that replication ``i`` always receives the
    same seed for a given `seed`, no matter which replications are resumed from
    disk or in which order they run.

    :param n: Number of seeds to draw
    :type n: custom_types.Integer
    :param seed: Seed for the generator of seeds. Defaults to None (global RNG).
    :type seed: Optional[custom_types.Integer]

    :returns: Array of `n` seeds in [0, 2**32 - 1)
    :rtype: npt.NDArray[np.int64]
    """
    return get_rng(seed).integers(0, MAX_SEED, size=n, dtype=np.int64)


def flatten_chains(array: npt.NDArray) -> npt.NDArray:
    """Flatten a (draw, chain, ...) array to (draw * chain, ...), chain by chain.

    CmdStanPy returns sampler diagnostics with shape (draw, chain) while
    ``stan_variable`` concatenates the chains one after the other. This puts the
    diagnostics in the same order as the variables.

    :param array: Array with draws on the first axis and chains on the second
    :type array: npt.NDArray

    :returns: Array with the first two axes merged, chain-major
    :rtype: npt.NDArray
    """
    if array.ndim == 1:
        return array
    n_draws, n_chains = array.shape[:2]
    return np.swapaxes(array, 0, 1).reshape((n_draws * n_chains, *array.shape[2:]))


def rank_bin_assignments(
    n_ranks: "custom_types.Integer", n_bins: "custom_types.Integer"
) -> npt.NDArray[np.int64]:
    """Assign each possible rank to a histogram bin.

    Ranks take the values ``0, 1, ..., n_ranks - 1``. They are split into
    `n_bins` contiguous bins whose sizes differ by at most one rank. When there
    are fewer possible ranks than requested bins, each rank gets its own bin.

    :param n_ranks: Number of possible rank values (thinned draws plus one)
    :type n_ranks: custom_types.Integer
    :param n_bins: Requested number of bins
    :type n_bins: custom_types.Integer

    :returns: Bin index for every possible rank value
    :rtype: npt.NDArray[np.int64]

    :raises ValueError: If `n_ranks` or `n_bins` is not positive

    Example:
        >>> rank_bin_assignments(5, 2)
        array([0, 0, 0, 1, 1])
    """
    if n_ranks < 1 or n_bins < 1:
        raise ValueError("`n_ranks` and `n_bins` must be positive.")
    n_bins = min(n_bins, n_ranks)
    return (np.arange(n_ranks, dtype=np.int64) * n_bins) // n_ranks
