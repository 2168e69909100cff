# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Default configuration values for StanSBC package components.

This module centralizes default values used across the StanSBC package, including
the naming convention expected of SBC Stan programs, Stan model compilation
options, sampling settings for each replication, and thresholds used when
analyzing the results.

Default values cannot be programmatically altered. This documentation serves as a
reference for users and developers to understand the standard configuration used
by StanSBC.
"""

from typing import Any

# Naming convention for SBC Stan programs
TRUE_DRAW_SUFFIX: str = "_"
"""Suffix marking a variable as a "true" draw from the prior.

:type: str
"""

PARS_VARNAME: str = "pars_"
"""Name of the generated quantity holding the true parameter draws.

:type: str
"""

RANKS_VARNAME: str = "ranks_"
"""Name of the generated quantity holding the rank indicators, one per entry of
``pars_``. Each entry is 1 when the posterior draw exceeds the true draw.

:type: str
"""

SIMULATED_DATA_VARNAME: str = "y_"
"""Name of the (optional) generated quantity holding the simulated observations.

:type: str
"""

LOG_LIK_VARNAME: str = "log_lik"
"""Name of the (optional) generated quantity holding the per-observation
log-likelihood contributions.

:type: str
"""

SAMPLER_PARAMS: tuple[str, ...] = (
    "accept_stat__",
    "stepsize__",
    "treedepth__",
    "n_leapfrog__",
    "divergent__",
    "energy__",
)
"""Sampler diagnostics recorded for every post-warmup iteration of every
replication.

:type: tuple[str, ...]
"""

# Defaults for the Stan model
DEFAULT_FORCE_COMPILE: bool = False
"""Default setting for forcing Stan model recompilation.

When False, uses cached compiled models when available. When True,
forces recompilation even if a cached version exists.

:type: bool
"""

DEFAULT_STANC_OPTIONS: dict[str, Any] = {"O1": True}
"""Default options passed to the Stan compiler (stanc).

:type: dict[str, bool]
"""

DEFAULT_CPP_OPTIONS: dict[str, Any] = {}
"""Default C++ compilation options for Stan models. Replications run as separate
single-chain processes, so threading is left off.

:type: dict[str, bool]
"""

DEFAULT_MODEL_NAME: str = "sbc_model"
"""Default name for compiled SBC models.

:type: str
"""

# Defaults for the calibration run
DEFAULT_CHAINS: int = 1
"""Default number of chains run for each replication.

:type: int
"""

DEFAULT_CORES: int = 1
"""Default number of replications run concurrently.

:type: int
"""

DEFAULT_MAX_TREEDEPTH: int = 10
"""Maximum tree depth used by CmdStan when none is passed to the sampler.

:type: int
"""

REPLICATION_FILE_TEMPLATE: str = "replication_{:05d}.nc"
"""Template for the files written when saving the progress of an SBC run.

:type: str
"""

RESULTS_FILENAME: str = "sbc_results.nc"
"""Default name of the NetCDF file holding the results of a complete run.

:type: str
"""

# Defaults for the analysis of SBC results
DEFAULT_THIN: int = 3
"""Default thinning applied to the posterior draws before computing ranks.
Thinning reduces the autocorrelation that otherwise skews rank histograms.

:type: int
"""

DEFAULT_N_BINS: int = 20
"""Default number of bins used for rank histograms.

:type: int
"""

DEFAULT_BAND: float = 0.99
"""Default probability mass of the binomial band drawn around the expected
count of each rank-histogram bin.

:type: float
"""

DEFAULT_UNIFORMITY_ALPHA: float = 0.01
"""Default significance level below which the chi-square test rejects the
uniformity of a parameter's ranks.

:type: float
"""

DEFAULT_EBFMI_THRESH: float = 0.2
"""Default threshold for Energy Bayesian Fraction of Missing Information (E-BFMI).

Values below this threshold may indicate inefficient sampling and
potential bias in MCMC results.

:type: float
"""
