# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Simulation Based Calibration driver.

Each replication of an SBC run fits a Stan program that draws its own "true"
parameter values and simulated data in ``transformed data``. Because CmdStan
runs ``transformed data`` once per sampler call with the sampler's seed, calling
the sampler with a new seed gives a new (true parameters, simulated data) pair
and the posterior draws conditioned on it. The driver in this module:

    1. Draws one seed per replication up front.
    2. Samples the program once per seed, optionally in parallel.
    3. Extracts the rank indicators, true draws, simulated data, per-observation
       log-likelihood, and sampler diagnostics of each replication.
    4. Combines the replications into an
       :py:class:`~stansbc.model.results.sbc.SBCResults` object.

Replications can be written to disk as they finish so that an interrupted run
can be resumed, and failing replications can be skipped instead of aborting
the run.

:py:func:`sbc_from_callables` runs the same analysis for generative models
written as Python functions, without Stan.
"""

from __future__ import annotations

import contextlib
import os.path
import warnings

from typing import Literal, Optional, Sequence, TYPE_CHECKING

import dask
import numpy as np
import numpy.typing as npt
import xarray as xr

from cmdstanpy import CmdStanMCMC, CmdStanModel
from dask.diagnostics import ProgressBar
from tqdm import tqdm

from stansbc import utils
from stansbc.defaults import (
    DEFAULT_CHAINS,
    DEFAULT_CORES,
    DEFAULT_MAX_TREEDEPTH,
    LOG_LIK_VARNAME,
    PARS_VARNAME,
    RANKS_VARNAME,
    REPLICATION_FILE_TEMPLATE,
    SAMPLER_PARAMS,
    SIMULATED_DATA_VARNAME,
)
from stansbc.exceptions import ConventionError, ReplicationError
from stansbc.model.results.sbc import (
    SBCResults,
    dataset_to_replication,
    replication_to_dataset,
)

if TYPE_CHECKING:
    from stansbc import custom_types


def _get_stan_variable(fit: CmdStanMCMC, name: str) -> Optional[npt.NDArray]:
    """Get the draws of a Stan variable, or None if the program has no such
    variable."""
    try:
        return np.asarray(fit.stan_variable(name))
    except ValueError:
        return None


def _default_parameter_names(n_parameters: int) -> tuple[str, ...]:
    return tuple(f"{PARS_VARNAME}[{ind + 1}]" for ind in range(n_parameters))


def extract_replication(
    fit: CmdStanMCMC, parameter_names: Optional[Sequence[str]] = None
) -> "custom_types.Replication":
    """Extract the SBC outputs of one replication from a CmdStan fit.

    :param fit: Fit of an SBC Stan program
    :type fit: CmdStanMCMC
    :param parameter_names: Names of the entries of ``pars_``. Defaults to None,
        meaning entries are named by position (``pars_[1]``, ``pars_[2]``, ...).
    :type parameter_names: Optional[Sequence[str]]

    :returns: Dictionary with entries

        - ``ranks``: boolean array (draw, parameter), True where the posterior
          draw exceeds the true draw
        - ``pars``: true draws (parameter,)
        - ``Y``: flattened simulated data, or None if not recorded
        - ``log_lik``: per-observation log-likelihood (draw, observation), or
          None if not recorded
        - ``sampler_params``: sampler diagnostics, each of shape (draw,)
        - ``parameter_names``: names of the parameters

    :rtype: custom_types.Replication

    :raises ConventionError: If the fit has no ``ranks_`` or ``pars_`` or they
        disagree in size

    Draws of all chains are concatenated chain by chain, as in
    ``CmdStanMCMC.stan_variable``.
    """
    # Rank indicators, one column per parameter
    ranks = _get_stan_variable(fit, RANKS_VARNAME)
    if ranks is None:
        raise ConventionError(f"The fit has no '{RANKS_VARNAME}' variable.")
    n_draws = ranks.shape[0]
    ranks = ranks.reshape(n_draws, -1) > 0

    # The true draws are constant over draws, so we take the first
    pars = _get_stan_variable(fit, PARS_VARNAME)
    if pars is None:
        raise ConventionError(f"The fit has no '{PARS_VARNAME}' variable.")
    pars = pars.reshape(n_draws, -1)[0]
    if pars.size != ranks.shape[1]:
        raise ConventionError(
            f"'{RANKS_VARNAME}' has {ranks.shape[1]} entries but '{PARS_VARNAME}' "
            f"has {pars.size}."
        )

    # Name the parameters
    if parameter_names is None:
        parameter_names = _default_parameter_names(pars.size)
    elif len(parameter_names) != pars.size:
        warnings.warn(
            f"Got {len(parameter_names)} parameter names for {pars.size} entries of "
            f"'{PARS_VARNAME}'. Parameters will be named by position."
        )
        parameter_names = _default_parameter_names(pars.size)

    # Optional outputs
    simulated = _get_stan_variable(fit, SIMULATED_DATA_VARNAME)
    if simulated is not None:
        simulated = simulated.reshape(n_draws, -1)[0]
    log_lik = _get_stan_variable(fit, LOG_LIK_VARNAME)
    if log_lik is not None:
        log_lik = log_lik.reshape(n_draws, -1).astype(float)

    # Sampler diagnostics, in the same draw order as the variables
    method_variables = fit.method_variables()
    sampler_params = {
        name: utils.flatten_chains(np.asarray(method_variables[name]))
        for name in SAMPLER_PARAMS
        if name in method_variables
    }

    return {
        "ranks": ranks,
        "pars": pars,
        "Y": simulated,
        "log_lik": log_lik,
        "sampler_params": sampler_params,
        "parameter_names": tuple(parameter_names),
    }


def _replication_path(
    save_progress: str, replication_ind: "custom_types.Integer"
) -> str:
    return os.path.join(save_progress, REPLICATION_FILE_TEMPLATE.format(replication_ind))


def save_replication(replication: "custom_types.Replication", path: str) -> None:
    """Write a replication to a NetCDF file.

    :param replication: Arrays extracted from the replication
    :type replication: custom_types.Replication
    :param path: Path of the file to write
    :type path: str
    """
    replication_to_dataset(replication).to_netcdf(path, engine="h5netcdf")


def load_replication(path: str) -> "custom_types.Replication":
    """Read a replication written by :py:func:`save_replication`.

    :param path: Path of the file to read
    :type path: str

    :returns: Arrays of the replication
    :rtype: custom_types.Replication
    """
    return dataset_to_replication(xr.load_dataset(path, engine="h5netcdf"))


def sbc(
    model: CmdStanModel,
    data: "custom_types.StanData",
    M: "custom_types.Integer",  # pylint: disable=invalid-name
    refresh: Optional["custom_types.Integer"] = None,
    *,
    seed: Optional["custom_types.Integer"] = None,
    chains: "custom_types.Integer" = DEFAULT_CHAINS,
    cores: "custom_types.Integer" = DEFAULT_CORES,
    parameter_names: Optional[Sequence[str]] = None,
    save_progress: Optional[str] = None,
    on_failure: Literal["raise", "warn"] = "raise",
    show_progress: bool = True,
    **sample_kwargs,
) -> SBCResults:
    """Run Simulation Based Calibration of a Stan program.

    :param model: Compiled Stan program following the SBC convention
    :type model: CmdStanModel
    :param data: Data passed to every replication
    :type data: custom_types.StanData
    :param M: Number of replications
    :type M: custom_types.Integer
    :param refresh: Progress refresh rate of each replication's sampler.
        Defaults to None (CmdStan default). Use 0 to silence the sampler.
    :type refresh: Optional[custom_types.Integer]
    :param seed: Seed from which the replication seeds are drawn. Defaults to
        None, meaning the global ``stansbc.RNG`` is used.
    :type seed: Optional[custom_types.Integer]
    :param chains: Number of chains per replication. Defaults to 1.
    :type chains: custom_types.Integer
    :param cores: Number of replications run concurrently. Defaults to 1.
    :type cores: custom_types.Integer
    :param parameter_names: Names of the entries of ``pars_``. Defaults to None,
        meaning the names found by the convention check of an
        :py:class:`~stansbc.model.stan.sbc_model.SBCModel` when they match the
        entries one to one, or positional names otherwise.
    :type parameter_names: Optional[Sequence[str]]
    :param save_progress: Directory in which each finished replication is
        saved. Replications already saved there are loaded instead of rerun.
        Defaults to None (nothing saved).
    :type save_progress: Optional[str]
    :param on_failure: What to do when the sampler fails on a replication.
        "raise" propagates the error; "warn" warns and skips the replication.
        Defaults to "raise".
    :type on_failure: Literal["raise", "warn"]
    :param show_progress: Whether to show a progress bar over replications.
        Defaults to True.
    :type show_progress: bool
    :param sample_kwargs: Keyword arguments passed to ``model.sample`` for every
        replication (for example ``iter_warmup``, ``iter_sampling``, ``thin``,
        ``max_treedepth``, ``adapt_delta``).

    :returns: Results of the calibration run
    :rtype: SBCResults

    :raises ValueError: If `M`, `chains`, or `cores` is not positive, or
        `on_failure` is not recognized
    :raises FileNotFoundError: If `save_progress` does not exist
    :raises ReplicationError: If every replication failed

    Example:
        >>> model = stansbc.SBCModel(stan_file="regression_sbc.stan")
        >>> results = stansbc.sbc(model, data={"N": 25, "x": x}, M=200, refresh=0,
        ...                       cores=4, save_progress="sbc_progress")
    """
    # Check inputs
    if M < 1:
        raise ValueError("`M` must be a positive integer.")
    if chains < 1:
        raise ValueError("`chains` must be a positive integer.")
    if cores < 1:
        raise ValueError("`cores` must be a positive integer.")
    if on_failure not in ("raise", "warn"):
        raise ValueError("`on_failure` must be one of 'raise' and 'warn'.")
    if save_progress is not None and not os.path.isdir(save_progress):
        raise FileNotFoundError(f"Progress directory {save_progress} does not exist.")

    # Get parameter names from the convention check if they match the ranks
    report = getattr(model, "convention", None)
    if parameter_names is None and report is not None and report.exact_names:
        parameter_names = report.parameter_names or None

    # One seed per replication
    seeds = utils.draw_seeds(M, seed=seed)

    # Load any replications that were already run
    finished = {}
    if save_progress is not None:
        for replication_ind in range(M):
            path = _replication_path(save_progress, replication_ind)
            if os.path.exists(path):
                finished[replication_ind] = load_replication(path)
                if finished[replication_ind]["seed"] != seeds[replication_ind]:
                    warnings.warn(
                        f"Replication {replication_ind} was loaded from {path} but "
                        "was run with a different seed."
                    )

    def run_replication(
        replication_ind: int,
    ) -> Optional["custom_types.Replication"]:
        """Sample one replication, returning None if it fails and we warn."""
        try:
            fit = model.sample(
                data=data,
                chains=chains,
                seed=int(seeds[replication_ind]),
                refresh=refresh,
                show_progress=False,
                **sample_kwargs,
            )
        except RuntimeError as error:
            if on_failure == "raise":
                raise
            warnings.warn(
                f"Replication {replication_ind} failed and is skipped: {error}"
            )
            return None

        # Extract the outputs and record the seed
        replication = extract_replication(fit, parameter_names=parameter_names)
        replication["seed"] = int(seeds[replication_ind])

        # Save if requested
        if save_progress is not None:
            save_replication(
                replication, _replication_path(save_progress, replication_ind)
            )

        return replication

    # Run the remaining replications
    to_run = [ind for ind in range(M) if ind not in finished]
    if cores > 1:
        tasks = [dask.delayed(run_replication)(ind) for ind in to_run]
        with ProgressBar() if show_progress else contextlib.nullcontext():
            outputs = dask.compute(*tasks, scheduler="threads", num_workers=cores)
    else:
        outputs = [
            run_replication(ind)
            for ind in tqdm(to_run, desc="SBC replications", disable=not show_progress)
        ]
    finished.update(
        {ind: output for ind, output in zip(to_run, outputs) if output is not None}
    )

    # Combine the successful replications
    if not finished:
        raise ReplicationError(f"All {M} replications failed.")
    indices = sorted(finished)
    return SBCResults.from_replications(
        [finished[ind] for ind in indices],
        indices=indices,
        n_requested=M,
        max_treedepth=sample_kwargs.get("max_treedepth") or DEFAULT_MAX_TREEDEPTH,
        chains=chains,
    )


def sbc_from_callables(
    prior_sampler: "custom_types.PriorSampler",
    simulator: "custom_types.Simulator",
    posterior_sampler: "custom_types.PosteriorSampler",
    M: "custom_types.Integer",  # pylint: disable=invalid-name
    n_posterior_draws: "custom_types.Integer",
    *,
    seed: Optional["custom_types.Integer"] = None,
    parameter_names: Optional[Sequence[str]] = None,
    show_progress: bool = True,
) -> SBCResults:
    """Run Simulation Based Calibration of a generative model written in Python.

    Each replication draws true parameter values with `prior_sampler`, simulates
    data from them with `simulator`, and draws from the posterior given the
    simulated data with `posterior_sampler`.

    :param prior_sampler: Called as ``prior_sampler(rng)``; returns the true
        parameter values (scalar or 1D array)
    :type prior_sampler: custom_types.PriorSampler
    :param simulator: Called as ``simulator(theta, rng)``; returns simulated data
    :type simulator: custom_types.Simulator
    :param posterior_sampler: Called as ``posterior_sampler(y, rng, n)``;
        returns `n` posterior draws with shape (n,) or (n, n_parameters)
    :type posterior_sampler: custom_types.PosteriorSampler
    :param M: Number of replications
    :type M: custom_types.Integer
    :param n_posterior_draws: Number of posterior draws per replication
    :type n_posterior_draws: custom_types.Integer
    :param seed: Seed for the random number generator passed to the callables.
        Defaults to None (global ``stansbc.RNG``).
    :type seed: Optional[custom_types.Integer]
    :param parameter_names: Names of the parameters. Defaults to None
        (positional names).
    :type parameter_names: Optional[Sequence[str]]
    :param show_progress: Whether to show a progress bar. Defaults to True.
    :type show_progress: bool

    :returns: Results of the calibration run, without sampler diagnostics
    :rtype: SBCResults

    :raises ValueError: If `M` or `n_posterior_draws` is not positive, or the
        posterior draws do not match the true values in size

    Example:
        >>> results = stansbc.sbc_from_callables(
        ...     prior_sampler=lambda rng: rng.normal(),
        ...     simulator=lambda theta, rng: rng.normal(theta),
        ...     posterior_sampler=lambda y, rng, n: rng.normal(y / 2, np.sqrt(0.5), n),
        ...     M=1000,
        ...     n_posterior_draws=99,
        ... )
    """
    if M < 1:
        raise ValueError("`M` must be a positive integer.")
    if n_posterior_draws < 1:
        raise ValueError("`n_posterior_draws` must be a positive integer.")
    rng = utils.get_rng(seed)

    replications = []
    for replication_ind in tqdm(
        range(M), desc="SBC replications", disable=not show_progress
    ):
        # Draw the true values and simulate data from them
        theta = prior_sampler(rng)
        pars = np.atleast_1d(np.asarray(theta, dtype=float)).ravel()
        simulated = simulator(theta, rng)

        # Draw from the posterior
        draws = np.asarray(
            posterior_sampler(simulated, rng, n_posterior_draws), dtype=float
        ).reshape(n_posterior_draws, -1)
        if draws.shape[1] != pars.size:
            raise ValueError(
                f"Replication {replication_ind}: posterior draws have "
                f"{draws.shape[1]} parameters but the prior draw has {pars.size}."
            )

        # Name the parameters
        if parameter_names is not None and len(parameter_names) != pars.size:
            raise ValueError(
                f"Got {len(parameter_names)} parameter names for {pars.size} "
                "parameters."
            )

        replications.append(
            {
                "ranks": draws > pars[None],
                "pars": pars,
                "Y": np.atleast_1d(np.asarray(simulated)).ravel(),
                "log_lik": None,
                "sampler_params": {},
                "parameter_names": tuple(
                    parameter_names or _default_parameter_names(pars.size)
                ),
            }
        )

    return SBCResults.from_replications(replications)
