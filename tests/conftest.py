"""Shared fixtures for StanSBC tests.

CmdStan is never invoked: fits and models are replaced by mocks specced on the
CmdStanPy classes, so the suite runs without a C++ toolchain.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from cmdstanpy import CmdStanMCMC, CmdStanModel

from stansbc.model.results import SBCResults
from stansbc.model.stan import get_example_program

N_PARAMETERS = 2
N_OBSERVATIONS = 5


def make_fit(seed, n_draws=30, chains=1, extra_variables=None, drop=()):
    """Build a mock fit whose true draws and posterior draws depend on `seed`.

    The true draws are the first two normal draws of ``default_rng(seed)``.
    """
    rng = np.random.default_rng(seed)
    n_total = n_draws * chains
    pars = rng.normal(size=N_PARAMETERS)
    theta = rng.normal(size=(n_total, N_PARAMETERS))
    variables = {
        "pars_": np.tile(pars, (n_total, 1)),
        "ranks_": (theta > pars).astype(int),
        "y_": np.tile(rng.normal(size=N_OBSERVATIONS), (n_total, 1)),
        "log_lik": rng.normal(size=(n_total, N_OBSERVATIONS)),
    }
    variables.update(extra_variables or {})
    for name in drop:
        variables.pop(name)

    # Per-chain columns let tests check the chain ordering
    method_variables = {
        "lp__": rng.normal(size=(n_draws, chains)),
        "accept_stat__": rng.uniform(size=(n_draws, chains)),
        "stepsize__": np.full((n_draws, chains), 0.5),
        "treedepth__": np.tile(np.arange(chains, dtype=float) + 3, (n_draws, 1)),
        "n_leapfrog__": np.full((n_draws, chains), 7.0),
        "divergent__": np.zeros((n_draws, chains)),
        "energy__": rng.normal(size=(n_draws, chains)),
    }

    def stan_variable(name):
        if name not in variables:
            raise ValueError(f"Unknown variable name: {name}")
        return variables[name]

    fit = MagicMock(spec=CmdStanMCMC)
    fit.stan_variable.side_effect = stan_variable
    fit.method_variables.return_value = method_variables
    return fit


@pytest.fixture
def fake_model():
    """A mock CmdStanModel whose `sample` returns `make_fit(seed, ...)`."""

    def sample(**kwargs):
        return make_fit(
            kwargs["seed"],
            n_draws=kwargs.get("iter_sampling") or 30,
            chains=kwargs["chains"],
        )

    model = MagicMock(spec=CmdStanModel)
    model.sample.side_effect = sample
    return model


def make_replication(
    ranks,
    pars=None,
    names=None,
    sampler_params=None,
    Y=None,  # pylint: disable=invalid-name
    log_lik=None,
    seed=None,
):
    """Build the arrays of one replication from a (draw, parameter) indicator
    array."""
    ranks = np.asarray(ranks, dtype=bool)
    if ranks.ndim == 1:
        ranks = ranks[:, None]
    n_parameters = ranks.shape[1]
    return {
        "ranks": ranks,
        "pars": np.zeros(n_parameters) if pars is None else np.asarray(pars),
        "Y": Y,
        "log_lik": log_lik,
        "seed": seed,
        "sampler_params": sampler_params or {},
        "parameter_names": tuple(
            names or [f"theta{ind}" for ind in range(n_parameters)]
        ),
    }


@pytest.fixture
def uniform_results():
    """Ten replications of nine draws whose (thin=1) ranks are 0, 1, ..., 9."""
    replications = []
    for rank in range(10):
        indicators = np.zeros(9, dtype=bool)
        indicators[:rank] = True
        replications.append(make_replication(indicators, names=["mu"], seed=rank))
    return SBCResults.from_replications(replications)


@pytest.fixture
def regression_code():
    """Code of the bundled linear regression program."""
    with open(get_example_program("linear_regression"), "r", encoding="utf-8") as f:
        return f.read()
