# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Simulation Based Calibration results analysis and diagnostics.

This module holds the results of an SBC run and the statistics computed over
them. Results are stored in an ArviZ InferenceData object with two groups:

    - ``sbc``: the calibration outputs, with variables
        - ``ranks`` (replication, draw, parameter): rank indicators, True where
          the posterior draw exceeds the true draw
        - ``pars`` (replication, parameter): the true draws
        - ``Y`` (replication, Y_dim_0): the simulated data, when recorded
        - ``log_lik`` (replication, draw, log_lik_dim_0): per-observation
          log-likelihood, when recorded
        - ``seed`` (replication): the CmdStan seed of each replication, when
          sampled with Stan
    - ``sample_stats``: sampler diagnostics (replication, draw), one variable per
      diagnostic (``accept_stat__``, ``stepsize__``, ``treedepth__``,
      ``n_leapfrog__``, ``divergent__``, ``energy__``)

With more than one chain per replication, the ``draw`` dimension holds the draws
of every chain, one chain after another. The number of chains is stored in the
``chains`` attribute of the ``sbc`` group.

The ``replication`` coordinate holds the index of each replication in the run,
so replications that failed leave gaps in it.

Rank statistics follow Talts et al. (2018): after thinning the posterior draws
of a replication, the rank of a parameter is the number of thinned draws above
its true value. If the sampler is calibrated, ranks are uniformly distributed
over ``0, 1, ..., L``, where ``L`` is the number of thinned draws.
"""

from __future__ import annotations

from typing import Optional, Sequence, TYPE_CHECKING

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr

from scipy import stats

from stansbc import utils
from stansbc.defaults import (
    DEFAULT_BAND,
    DEFAULT_CHAINS,
    DEFAULT_EBFMI_THRESH,
    DEFAULT_MAX_TREEDEPTH,
    DEFAULT_N_BINS,
    DEFAULT_THIN,
    DEFAULT_UNIFORMITY_ALPHA,
    LOG_LIK_VARNAME,
    SAMPLER_PARAMS,
)
from stansbc.exceptions import ReplicationError

if TYPE_CHECKING:
    from stansbc import custom_types

# Name of the group holding the calibration outputs
SBC_GROUP = "sbc"


def replication_to_dataset(replication: "custom_types.Replication") -> xr.Dataset:
    """Convert the arrays extracted from one replication to an xarray Dataset.

    :param replication: Arrays extracted from one replication, as returned by
        :py:func:`~stansbc.model.simulation.extract_replication`
    :type replication: custom_types.Replication

    :returns: Dataset with dimensions draw, parameter, and, when present,
        Y_dim_0 and log_lik_dim_0
    :rtype: xr.Dataset
    """
    ranks = np.asarray(replication["ranks"], dtype=bool)
    data_vars = {
        "ranks": (("draw", "parameter"), ranks),
        "pars": (("parameter",), np.asarray(replication["pars"], dtype=float)),
    }

    # Optional outputs
    if replication.get("Y") is not None:
        data_vars["Y"] = (("Y_dim_0",), np.asarray(replication["Y"]))
    if replication.get("log_lik") is not None:
        data_vars["log_lik"] = (
            ("draw", "log_lik_dim_0"),
            np.asarray(replication["log_lik"], dtype=float),
        )
    if replication.get("seed") is not None:
        data_vars["seed"] = ((), np.int64(replication["seed"]))
    for name, values in (replication.get("sampler_params") or {}).items():
        data_vars[name] = (("draw",), np.asarray(values))

    return xr.Dataset(
        data_vars,
        coords={
            "draw": np.arange(ranks.shape[0]),
            "parameter": list(replication["parameter_names"]),
        },
    )


def dataset_to_replication(dataset: xr.Dataset) -> "custom_types.Replication":
    """Invert :py:func:`replication_to_dataset`.

    :param dataset: Dataset holding a single replication
    :type dataset: xr.Dataset

    :returns: Arrays of the replication
    :rtype: custom_types.Replication
    """
    return {
        "ranks": dataset["ranks"].values.astype(bool),
        "pars": dataset["pars"].values,
        "Y": dataset["Y"].values if "Y" in dataset else None,
        "log_lik": dataset["log_lik"].values if "log_lik" in dataset else None,
        "seed": int(dataset["seed"].item()) if "seed" in dataset else None,
        "sampler_params": {
            name: dataset[name].values for name in SAMPLER_PARAMS if name in dataset
        },
        "parameter_names": tuple(str(name) for name in dataset["parameter"].values),
    }


def _check_replications(replications: Sequence["custom_types.Replication"]) -> None:
    """Make sure that replications can be combined along a new dimension."""
    reference = replications[0]
    for ind, replication in enumerate(replications[1:], start=1):
        if tuple(replication["parameter_names"]) != tuple(
            reference["parameter_names"]
        ):
            raise ReplicationError(
                f"Replication {ind} has parameters {replication['parameter_names']} "
                f"but replication 0 has {reference['parameter_names']}."
            )
        if np.shape(replication["ranks"]) != np.shape(reference["ranks"]):
            raise ReplicationError(
                f"Replication {ind} has ranks of shape {np.shape(replication['ranks'])} "
                f"but replication 0 has {np.shape(reference['ranks'])}."
            )
        for key in ("Y", "log_lik", "seed"):
            if (replication.get(key) is None) != (reference.get(key) is None):
                raise ReplicationError(
                    f"Replication {ind} and replication 0 disagree on whether "
                    f"'{key}' was recorded."
                )
        if set(replication.get("sampler_params") or {}) != set(
            reference.get("sampler_params") or {}
        ):
            raise ReplicationError(
                f"Replication {ind} and replication 0 recorded different sampler "
                "diagnostics."
            )


class SBCResults:
    """Analysis interface for Simulation Based Calibration results.

    This class should not normally be instantiated directly. It is returned by
    :py:func:`stansbc.sbc`, :py:meth:`stansbc.SBCModel.sbc`, and
    :py:func:`stansbc.sbc_from_callables`, and can be reloaded from disk with
    :py:meth:`from_disk`.

    :param inference_obj: ArviZ InferenceData object or path to saved results
    :type inference_obj: Union[az.InferenceData, str]

    :ivar inference_obj: Stored ArviZ InferenceData object with all results

    :raises ValueError: If inference_obj is neither string nor InferenceData
    :raises ValueError: If the InferenceData object has no ``sbc`` group

    Example:
        >>> results = model.sbc(data=data, M=500, refresh=0)
        >>> # Ranks of every parameter in every replication
        >>> ranks = results.rank_statistics(thin=3)
        >>> # Chi-square tests of uniformity and sampler diagnostics
        >>> sampler_failures, uniformity = results.diagnose()
        >>> results.save_netcdf("sbc_results.nc")
    """

    def __init__(self, inference_obj: az.InferenceData | str):
        # If the ArviZ object is a string, we assume it is a path to a netcdf file
        # and load it from there
        if isinstance(inference_obj, str):
            self.inference_obj = az.from_netcdf(inference_obj, engine="h5netcdf")

        # If the ArviZ object is an inference data object, we assume it is already
        # built and just assign it to the class
        elif isinstance(inference_obj, az.InferenceData):
            self.inference_obj = inference_obj

        # Otherwise, we raise an error
        else:
            raise ValueError(
                "inference_obj must be either a string or an InferenceData object"
            )

        # The arviz object must hold the calibration outputs
        if SBC_GROUP not in self.inference_obj.groups():
            raise ValueError(f"ArviZ object is missing the '{SBC_GROUP}' group.")

    @classmethod
    def from_replications(
        cls,
        replications: Sequence["custom_types.Replication"],
        indices: Optional[Sequence["custom_types.Integer"]] = None,
        n_requested: Optional["custom_types.Integer"] = None,
        max_treedepth: "custom_types.Integer" = DEFAULT_MAX_TREEDEPTH,
        chains: "custom_types.Integer" = DEFAULT_CHAINS,
    ) -> "SBCResults":
        """Assemble results from the arrays extracted from each replication.

        :param replications: Arrays extracted from each successful replication
        :type replications: Sequence[custom_types.Replication]
        :param indices: Index of each replication in the run. Defaults to None,
            meaning ``0, 1, ..., len(replications) - 1``.
        :type indices: Optional[Sequence[custom_types.Integer]]
        :param n_requested: Number of replications requested for the run,
            including failed ones. Defaults to None, meaning no failures.
        :type n_requested: Optional[custom_types.Integer]
        :param max_treedepth: Maximum tree depth the sampler was run with.
            Defaults to 10.
        :type max_treedepth: custom_types.Integer
        :param chains: Number of chains whose draws were concatenated, chain by
            chain, in each replication. Defaults to 1.
        :type chains: custom_types.Integer

        :returns: Results of the run
        :rtype: SBCResults

        :raises ReplicationError: If there are no replications or they cannot be
            combined
        :raises ValueError: If the draws cannot be split evenly into `chains`
        """
        if len(replications) == 0:
            raise ReplicationError("There are no replications to combine.")
        _check_replications(replications)
        n_draws = np.shape(replications[0]["ranks"])[0]
        if chains < 1 or n_draws % chains != 0:
            raise ValueError(
                f"{n_draws} draws per replication cannot be split into {chains} chains."
            )

        # Default indices and number of requested replications
        indices = list(range(len(replications))) if indices is None else list(indices)
        if len(indices) != len(replications):
            raise ValueError("There must be one index per replication.")
        n_requested = len(replications) if n_requested is None else n_requested

        # Stack the replications along a new dimension
        combined = xr.concat(
            [replication_to_dataset(replication) for replication in replications],
            dim=pd.Index(indices, name="replication"),
        )

        # Split the sampler diagnostics from the calibration outputs
        sampler_varnames = [name for name in SAMPLER_PARAMS if name in combined]
        sbc_group = combined.drop_vars(sampler_varnames)
        sbc_group.attrs["n_requested"] = int(n_requested)
        sbc_group.attrs["max_treedepth"] = int(max_treedepth)
        sbc_group.attrs["chains"] = int(chains)
        groups = {SBC_GROUP: sbc_group}
        if sampler_varnames:
            groups["sample_stats"] = combined[sampler_varnames]

        return cls(az.InferenceData(**groups))

    @classmethod
    def from_disk(cls, path: str) -> "SBCResults":
        """Load results from a saved NetCDF file.

        :param path: Path to NetCDF file containing saved InferenceData
        :type path: str

        :returns: Reconstructed results object
        :rtype: SBCResults
        """
        return cls(path)

    def save_netcdf(self, filename: str) -> None:
        """Save the ArviZ InferenceData object to NetCDF format.

        :param filename: Path where to save the NetCDF file
        :type filename: str
        """
        self.inference_obj.to_netcdf(filename, engine="h5netcdf")

    @property
    def sbc_group(self) -> xr.Dataset:
        """The calibration outputs."""
        return getattr(self.inference_obj, SBC_GROUP)

    @property
    def ranks(self) -> xr.DataArray:
        """Rank indicators with dimensions (replication, draw, parameter)."""
        return self.sbc_group["ranks"]

    @property
    def pars(self) -> xr.DataArray:
        """True draws with dimensions (replication, parameter)."""
        return self.sbc_group["pars"]

    @property
    def Y(self) -> Optional[xr.DataArray]:  # pylint: disable=invalid-name
        """Simulated data with dimensions (replication, Y_dim_0), or None if the
        program did not record it."""
        return self.sbc_group["Y"] if "Y" in self.sbc_group else None

    @property
    def log_lik(self) -> Optional[xr.DataArray]:
        """Per-observation log-likelihood with dimensions (replication, draw,
        log_lik_dim_0), or None if the program did not record it."""
        return self.sbc_group["log_lik"] if "log_lik" in self.sbc_group else None

    @property
    def sampler_params(self) -> Optional[xr.Dataset]:
        """Sampler diagnostics with dimensions (replication, draw), or None if the
        results do not come from a sampler that reports them."""
        return getattr(self.inference_obj, "sample_stats", None)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Names of the calibrated parameters."""
        return tuple(str(name) for name in self.sbc_group["parameter"].values)

    @property
    def replication_indices(self) -> list[int]:
        """Indices of the successful replications."""
        return [int(ind) for ind in self.sbc_group["replication"].values]

    @property
    def n_replications(self) -> int:
        """Number of successful replications."""
        return self.sbc_group.sizes["replication"]

    @property
    def n_draws(self) -> int:
        """Number of posterior draws per replication, before thinning."""
        return self.sbc_group.sizes["draw"]

    @property
    def chains(self) -> int:
        """Number of chains run per replication."""
        return int(self.sbc_group.attrs.get("chains", DEFAULT_CHAINS))

    @property
    def failed_replications(self) -> list[int]:
        """Indices of the replications that failed and were skipped."""
        n_requested = int(self.sbc_group.attrs.get("n_requested", self.n_replications))
        return sorted(set(range(n_requested)) - set(self.replication_indices))

    def n_thinned(self, thin: "custom_types.Integer" = DEFAULT_THIN) -> int:
        """Number of draws kept when keeping every `thin`-th draw."""
        if thin < 1:
            raise ValueError("`thin` must be a positive integer.")
        return len(range(0, self.n_draws, thin))

    def rank_statistics(self, thin: "custom_types.Integer" = DEFAULT_THIN) -> xr.DataArray:
        """Compute the rank of every parameter in every replication.

        :param thin: Keep every `thin`-th draw, starting with the first, before
            counting. Defaults to 3.
        :type thin: custom_types.Integer

        :returns: Ranks with dimensions (replication, parameter), integers in
            ``[0, L]`` where ``L = n_thinned(thin)``
        :rtype: xr.DataArray

        Example:
            >>> ranks = results.rank_statistics(thin=5)
            >>> ranks.sel(parameter="sigma").values
        """
        self.n_thinned(thin)
        return (
            self.ranks.isel(draw=slice(None, None, thin))
            .sum(dim="draw")
            .astype(np.int64)
            .rename("rank")
        )

    def rank_histogram(
        self,
        thin: "custom_types.Integer" = DEFAULT_THIN,
        n_bins: "custom_types.Integer" = DEFAULT_N_BINS,
    ) -> xr.Dataset:
        """Bin the rank statistics of every parameter.

        The ``L + 1`` possible ranks are split into `n_bins` contiguous bins whose
        sizes differ by at most one rank (fewer bins if there are fewer possible
        ranks). The expected count of each bin under uniformity is proportional to
        the number of ranks it covers.

        :param thin: Thinning applied before computing ranks. Defaults to 3.
        :type thin: custom_types.Integer
        :param n_bins: Number of bins. Defaults to 20.
        :type n_bins: custom_types.Integer

        :returns: Dataset with ``counts`` (parameter, bin), ``expected`` (bin),
            and the first and last rank of each bin, ``rank_start`` and
            ``rank_stop`` (bin)
        :rtype: xr.Dataset
        """
        # Assign ranks to bins
        n_ranks = self.n_thinned(thin) + 1
        assignments = utils.rank_bin_assignments(n_ranks, n_bins)
        n_bins = int(assignments[-1]) + 1
        ranks = self.rank_statistics(thin)

        # Count the ranks in each bin for each parameter
        counts = np.stack(
            [
                np.bincount(assignments[ranks.sel(parameter=name).values], minlength=n_bins)
                for name in self.parameter_names
            ]
        )

        # Ranks per bin and the expected counts under uniformity
        ranks_per_bin = np.bincount(assignments, minlength=n_bins)
        expected = self.n_replications * ranks_per_bin / n_ranks
        rank_start = np.searchsorted(assignments, np.arange(n_bins), side="left")

        return xr.Dataset(
            {
                "counts": (("parameter", "bin"), counts),
                "expected": (("bin",), expected),
                "rank_start": (("bin",), rank_start),
                "rank_stop": (("bin",), rank_start + ranks_per_bin - 1),
            },
            coords={"parameter": list(self.parameter_names), "bin": np.arange(n_bins)},
        )

    def uniformity_test(
        self,
        thin: "custom_types.Integer" = DEFAULT_THIN,
        n_bins: "custom_types.Integer" = DEFAULT_N_BINS,
        band: "custom_types.Float" = DEFAULT_BAND,
    ) -> xr.Dataset:
        """Test the rank statistics of every parameter for uniformity.

        Two checks are run on the rank histogram of each parameter:

            1. A chi-square goodness-of-fit test against the expected counts.
            2. A binomial band: under uniformity, the count of each bin follows
               ``Binomial(M, p_bin)``. Bins whose counts fall outside the central
               `band` interval of that distribution are flagged.

        :param thin: Thinning applied before computing ranks. Defaults to 3.
        :type thin: custom_types.Integer
        :param n_bins: Number of histogram bins. Defaults to 20.
        :type n_bins: custom_types.Integer
        :param band: Probability mass of the binomial band. Defaults to 0.99.
        :type band: custom_types.Float

        :returns: The rank histogram dataset extended with ``chi2`` and
            ``p_value`` (parameter), ``lower`` and ``upper`` (bin), and
            ``outside_band`` (parameter, bin)
        :rtype: xr.Dataset

        :raises ValueError: If `band` is not between 0 and 1
        """
        if not 0 < band < 1:
            raise ValueError("`band` must be between 0 and 1.")

        # Get the histogram
        histogram = self.rank_histogram(thin=thin, n_bins=n_bins)
        counts = histogram["counts"].values
        expected = histogram["expected"].values

        # Chi-square test for each parameter
        chi2, p_value = stats.chisquare(
            counts, f_exp=np.broadcast_to(expected, counts.shape), axis=1
        )

        # Binomial band for each bin
        lower, upper = stats.binom.interval(
            band, self.n_replications, expected / self.n_replications
        )

        return histogram.assign(
            chi2=(("parameter",), np.atleast_1d(chi2)),
            p_value=(("parameter",), np.atleast_1d(p_value)),
            lower=(("bin",), lower),
            upper=(("bin",), upper),
            outside_band=(
                ("parameter", "bin"),
                (counts < lower[None]) | (counts > upper[None]),
            ),
        )

    def rank_summary(self, thin: "custom_types.Integer" = DEFAULT_THIN) -> pd.DataFrame:
        """Summarize the rank statistics of every parameter.

        :param thin: Thinning applied before computing ranks. Defaults to 3.
        :type thin: custom_types.Integer

        :returns: One row per parameter with the count, mean, standard deviation,
            minimum, quartiles, and maximum of its ranks, as well as the mean
            expected under uniformity
        :rtype: pd.DataFrame
        """
        summary = self.rank_statistics(thin).to_pandas().describe().T
        summary["expected_mean"] = self.n_thinned(thin) / 2
        return summary

    def sampler_diagnostics(
        self,
        max_treedepth: Optional["custom_types.Integer"] = None,
        ebfmi_thresh: "custom_types.Float" = DEFAULT_EBFMI_THRESH,
    ) -> xr.Dataset:
        """Evaluate the sampler diagnostics of every replication.

        :param max_treedepth: Maximum tree depth of the sampler. Defaults to None,
            meaning the value recorded when the run was made.
        :type max_treedepth: Optional[custom_types.Integer]
        :param ebfmi_thresh: E-BFMI threshold for energy diagnostics. Defaults
            to 0.2.
        :type ebfmi_thresh: custom_types.Float

        :returns: Dataset over replications holding, for each diagnostic that was
            recorded, the per-replication statistic (``n_divergent``,
            ``n_max_treedepth``, and ``ebfmi`` per chain) and a boolean failure flag
            (``diverged``, ``max_treedepth_reached``, ``low_ebfmi``)
        :rtype: xr.Dataset

        :raises ValueError: If the results hold no sampler diagnostics
        """
        sample_stats = self.sampler_params
        if sample_stats is None:
            raise ValueError("These results hold no sampler diagnostics.")

        # If not provided, get the maximum tree depth from the attributes
        if max_treedepth is None:
            max_treedepth = int(
                self.sbc_group.attrs.get("max_treedepth", DEFAULT_MAX_TREEDEPTH)
            )

        # Run every test for which we have the diagnostic
        tests = {}
        if "divergent__" in sample_stats:
            tests["n_divergent"] = (sample_stats["divergent__"] > 0).sum(dim="draw")
            tests["diverged"] = tests["n_divergent"] > 0
        if "treedepth__" in sample_stats:
            tests["n_max_treedepth"] = (
                sample_stats["treedepth__"] >= max_treedepth
            ).sum(dim="draw")
            tests["max_treedepth_reached"] = tests["n_max_treedepth"] > 0
        if "energy__" in sample_stats:

            # E-BFMI is computed per chain. A replication fails if any of its
            # chains falls below the threshold.
            energy = sample_stats["energy__"].values.astype(float)
            n_replications, n_draws = energy.shape
            ebfmi = az.bfmi(
                energy.reshape(n_replications * self.chains, n_draws // self.chains)
            )
            tests["ebfmi"] = xr.DataArray(
                ebfmi.reshape(n_replications, self.chains),
                dims=("replication", "chain"),
                coords={
                    "replication": sample_stats["replication"].values,
                    "chain": np.arange(self.chains),
                },
            )
            tests["low_ebfmi"] = (tests["ebfmi"] < ebfmi_thresh).any(dim="chain")

        return xr.Dataset(tests)

    def diagnose(
        self,
        thin: "custom_types.Integer" = DEFAULT_THIN,
        n_bins: "custom_types.Integer" = DEFAULT_N_BINS,
        band: "custom_types.Float" = DEFAULT_BAND,
        alpha: "custom_types.Float" = DEFAULT_UNIFORMITY_ALPHA,
        max_treedepth: Optional["custom_types.Integer"] = None,
        ebfmi_thresh: "custom_types.Float" = DEFAULT_EBFMI_THRESH,
        silent: bool = False,
    ) -> tuple["custom_types.StrippedTestRes", xr.Dataset]:
        """Run the sampler diagnostics and uniformity tests, reporting a summary.

        :param thin: Thinning applied before computing ranks. Defaults to 3.
        :type thin: custom_types.Integer
        :param n_bins: Number of histogram bins. Defaults to 20.
        :type n_bins: custom_types.Integer
        :param band: Probability mass of the binomial band. Defaults to 0.99.
        :type band: custom_types.Float
        :param alpha: Significance level of the chi-square test. Defaults to 0.01.
        :type alpha: custom_types.Float
        :param max_treedepth: Maximum tree depth. Defaults to the recorded value.
        :type max_treedepth: Optional[custom_types.Integer]
        :param ebfmi_thresh: E-BFMI threshold. Defaults to 0.2.
        :type ebfmi_thresh: custom_types.Float
        :param silent: Whether to suppress printed output. Defaults to False.
        :type silent: bool

        :returns: Tuple of (sampler_failures, uniformity). ``sampler_failures``
            maps each sampler test (``diverged``, ``max_treedepth_reached``,
            ``low_ebfmi``) to the indices of the replications failing it;
            it is empty when no sampler diagnostics were recorded.
            ``uniformity`` is the dataset returned by :py:meth:`uniformity_test`
            extended with a boolean ``rejected`` (parameter).
        :rtype: tuple[custom_types.StrippedTestRes, xr.Dataset]
        """
        # Sampler diagnostics, if we have them
        sampler_failures = {}
        if self.sampler_params is not None:
            tests = self.sampler_diagnostics(
                max_treedepth=max_treedepth, ebfmi_thresh=ebfmi_thresh
            )
            for test in ("diverged", "max_treedepth_reached", "low_ebfmi"):
                if test in tests:
                    sampler_failures[test] = tests["replication"].values[
                        tests[test].values
                    ]

        # Uniformity of the ranks
        uniformity = self.uniformity_test(thin=thin, n_bins=n_bins, band=band)
        uniformity["rejected"] = uniformity["p_value"] < alpha

        # If silent, return the test results now
        if silent:
            return sampler_failures, uniformity

        # Report failed replications
        header = "SBC run summary:"
        print(header)
        print("-" * len(header))
        n_requested = self.n_replications + len(self.failed_replications)
        print(
            f"{self.n_replications} of {n_requested} replications completed with "
            f"{self.n_draws} draws each ({self.n_thinned(thin)} after thinning by "
            f"{thin})."
        )
        if self.failed_replications:
            print(
                "Failed replications: "
                + ", ".join(str(ind) for ind in self.failed_replications)
            )

        # Report sampler test failures
        message_map = {
            "low_ebfmi": "had a low energy",
            "max_treedepth_reached": "reached the maximum tree depth",
            "diverged": "had divergent transitions",
        }
        if sampler_failures:
            print()
            header = "Sampler diagnostic tests results' summaries:"
            print(header)
            print("-" * len(header))
            for test, failed in sampler_failures.items():
                print(
                    f"{len(failed)} of {self.n_replications} "
                    f"({len(failed) / self.n_replications:.2%}) replications "
                    f"{message_map[test]}."
                )

        # Report uniformity tests
        print()
        header = "Rank uniformity tests results' summaries:"
        print(header)
        print("-" * len(header))
        n_bins_used = uniformity.sizes["bin"]
        for name in self.parameter_names:
            res = uniformity.sel(parameter=name)
            print(
                f"{name}: chi2 = {res['chi2'].item():.2f}, "
                f"p = {res['p_value'].item():.3f}, "
                f"{int(res['outside_band'].sum().item())} of {n_bins_used} bins "
                f"outside the {band:.0%} band"
                + (" (NOT UNIFORM)." if res["rejected"].item() else ".")
            )

        return sampler_failures, uniformity

    def loo(self, replication: "custom_types.Integer", **kwargs) -> az.ELPDData:
        """Compute PSIS leave-one-out cross-validation for one replication.

        :param replication: Index of the replication (a value of the
            ``replication`` coordinate)
        :type replication: custom_types.Integer
        :param kwargs: Keyword arguments passed to `az.loo`. The relative
            efficiency ``reff`` defaults to 1.0, as posterior draws are not kept.

        :returns: Leave-one-out estimates for the replication's simulated data
        :rtype: az.ELPDData

        :raises ValueError: If the program did not record ``log_lik``
        """
        if self.log_lik is None:
            raise ValueError(
                f"The Stan program did not record '{LOG_LIK_VARNAME}'; leave-one-out "
                "cross-validation is unavailable."
            )

        # Build an InferenceData object for the replication with a single chain
        log_lik = self.log_lik.sel(replication=replication).values
        inference_obj = az.from_dict(log_likelihood={LOG_LIK_VARNAME: log_lik[None]})

        kwargs.setdefault("reff", 1.0)
        return az.loo(inference_obj, **kwargs)
