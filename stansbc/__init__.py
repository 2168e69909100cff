# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
StanSBC: Simulation Based Calibration for Stan programs.

StanSBC checks whether a Stan program and its sampler are calibrated against
the program's own prior. The program follows a simple naming convention: "true"
parameter values are drawn in the ``transformed data`` block and suffixed with
an underscore, the ``generated quantities`` block exposes the true draws as
``pars_`` and a rank-indicator array ``ranks_``, and, optionally, a
per-observation ``log_lik`` vector and the simulated data ``y_``. Repeating
posterior inference many times over such a program and aggregating the rank
indicators gives the rank statistics of Simulation Based Calibration.

Key Features:
    - Linting of Stan programs against the SBC naming convention
    - A CmdStanPy model subclass that compiles and validates SBC programs
    - A calibration driver with resumable, optionally parallel replications
    - Rank statistics, uniformity tests, and sampler diagnostics over replications
    - NetCDF persistence of results through ArviZ

Global Variables:
    RNG: Global random number generator for reproducible computations
    __version__: Package version string

Example:
    >>> import stansbc
    >>> stansbc.manual_seed(42)
    >>> model = stansbc.SBCModel(stan_file="regression_sbc.stan")
    >>> results = model.sbc(data={"N": 25, "x": x}, M=500, refresh=0)
    >>> results.diagnose()
"""

from typing import Optional, TYPE_CHECKING

from typeguard import install_import_hook

import numpy as np

# Define the version
__version__ = "0.1.0"

# Set up type checking
install_import_hook("stansbc")

# Define the global random number generator
RNG: np.random.Generator
"""Global random number generator for StanSBC.

Replication seeds are drawn from this generator whenever a seed is not given
explicitly. It can be seeded using the manual_seed() function to ensure
consistent results across runs.

:type: np.random.Generator
"""

# Get custom types if TYPE_CHECKING is True
if TYPE_CHECKING:
    from stansbc import custom_types


def manual_seed(seed: Optional["custom_types.Integer"] = None):
    """Set the seed for the global random number generator.

    :param seed: Seed value for random number generation. If None, uses
                system entropy to generate a random seed.
    :type seed: Union[custom_types.Integer, None]

    Example:
        >>> import stansbc
        >>> stansbc.manual_seed(42)
        >>> # Replication seeds are now reproducible
        >>> seeds = stansbc.RNG.integers(0, 2**32 - 1, size=10)

    Note:
        This function modifies global state and should typically be called
        once at the beginning of a script or analysis for reproducibility.
    """
    global RNG  # pylint: disable=global-statement
    RNG = np.random.default_rng(seed)


manual_seed()  # Set the seed for the global random number generator

# Import objects that should be easily accessible from the package level
# pylint: disable=wrong-import-position
from stansbc import utils

from stansbc.model.convention import check_program
from stansbc.model.results.sbc import SBCResults
from stansbc.model.simulation import sbc, sbc_from_callables
from stansbc.model.stan.sbc_model import SBCModel

results = utils.lazy_import("stansbc.model.results")
