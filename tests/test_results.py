"""Tests for the aggregation and analysis of SBC results."""

import arviz as az
import numpy as np
import pandas as pd
import pytest

from conftest import make_replication
from typeguard import TypeCheckError

from stansbc.exceptions import ReplicationError
from stansbc.model.results import SBCResults


class TestRankStatistics:
    """Test ranks, histograms, and summaries."""

    def test_thinning_starts_at_first_draw(self):
        """With thin=3, draws 0, 3, and 6 are counted."""
        indicators = np.zeros(9, dtype=bool)
        indicators[[0, 1, 3]] = True
        res = SBCResults.from_replications([make_replication(indicators)])
        assert res.n_thinned(3) == 3
        assert res.rank_statistics(thin=3).values.tolist() == [[2]]
        assert res.rank_statistics(thin=1).values.tolist() == [[3]]

    def test_rank_range(self, uniform_results):
        """Ranks lie in [0, L]."""
        ranks = uniform_results.rank_statistics(thin=1)
        assert ranks.dims == ("replication", "parameter")
        assert ranks.values.ravel().tolist() == list(range(10))
        assert uniform_results.n_thinned(1) == 9

    def test_invalid_thin(self, uniform_results):
        with pytest.raises(ValueError, match="thin"):
            uniform_results.rank_statistics(thin=0)

    def test_histogram(self, uniform_results):
        """Ten possible ranks in five bins of two."""
        histogram = uniform_results.rank_histogram(thin=1, n_bins=5)
        assert histogram["counts"].sel(parameter="mu").values.tolist() == [2] * 5
        np.testing.assert_allclose(histogram["expected"].values, np.full(5, 2.0))
        assert histogram["rank_start"].values.tolist() == [0, 2, 4, 6, 8]
        assert histogram["rank_stop"].values.tolist() == [1, 3, 5, 7, 9]

    def test_histogram_bins_capped(self, uniform_results):
        """There are never more bins than possible ranks."""
        histogram = uniform_results.rank_histogram(thin=3, n_bins=20)
        assert histogram.sizes["bin"] == uniform_results.n_thinned(3) + 1
        assert histogram["counts"].sum().item() == uniform_results.n_replications

    def test_uniform_ranks_pass(self, uniform_results):
        """Perfectly uniform ranks give a zero chi-square statistic."""
        uniformity = uniform_results.uniformity_test(thin=1, n_bins=5)
        assert uniformity["chi2"].sel(parameter="mu").item() == pytest.approx(0.0)
        assert uniformity["p_value"].sel(parameter="mu").item() == pytest.approx(1.0)
        assert not uniformity["outside_band"].any()

    def test_skewed_ranks_fail(self):
        """Ranks piled up at zero are rejected and fall outside the band."""
        res = SBCResults.from_replications(
            [make_replication(np.zeros(9), names=["mu"]) for _ in range(50)]
        )
        uniformity = res.uniformity_test(thin=1, n_bins=5)
        assert uniformity["p_value"].sel(parameter="mu").item() < 1e-6
        assert uniformity["outside_band"].sel(parameter="mu", bin=0).item()

    def test_invalid_band(self, uniform_results):
        with pytest.raises(ValueError, match="band"):
            uniform_results.uniformity_test(band=1.5)

    def test_rank_summary(self, uniform_results):
        summary = uniform_results.rank_summary(thin=1)
        assert isinstance(summary, pd.DataFrame)
        assert summary.loc["mu", "mean"] == pytest.approx(4.5)
        assert summary.loc["mu", "min"] == 0
        assert summary.loc["mu", "max"] == 9
        assert summary.loc["mu", "expected_mean"] == pytest.approx(4.5)


class TestAssembly:
    """Test building results from replications."""

    def test_accessors(self):
        replications = [
            make_replication(
                np.ones((4, 2)),
                pars=[1.0, 2.0],
                names=["a", "b"],
                Y=np.arange(3.0),
                log_lik=np.zeros((4, 3)),
                seed=7,
            )
            for _ in range(2)
        ]
        res = SBCResults.from_replications(replications, indices=[0, 2], n_requested=3)
        assert res.parameter_names == ("a", "b")
        assert res.n_replications == 2
        assert res.n_draws == 4
        assert res.replication_indices == [0, 2]
        assert res.failed_replications == [1]
        assert res.ranks.dims == ("replication", "draw", "parameter")
        assert res.pars.sel(parameter="b").values.tolist() == [2.0, 2.0]
        assert res.Y.shape == (2, 3)
        assert res.log_lik.shape == (2, 4, 3)
        assert res.sampler_params is None

    def test_optional_outputs_absent(self, uniform_results):
        assert uniform_results.Y is None
        assert uniform_results.log_lik is None
        assert uniform_results.failed_replications == []

    def test_empty_raises(self):
        with pytest.raises(ReplicationError):
            SBCResults.from_replications([])

    def test_mismatched_parameters_raise(self):
        with pytest.raises(ReplicationError, match="parameters"):
            SBCResults.from_replications(
                [
                    make_replication(np.ones(3), names=["a"]),
                    make_replication(np.ones(3), names=["b"]),
                ]
            )

    def test_mismatched_draws_raise(self):
        with pytest.raises(ReplicationError, match="shape"):
            SBCResults.from_replications(
                [make_replication(np.ones(3)), make_replication(np.ones(4))]
            )

    def test_mismatched_outputs_raise(self):
        with pytest.raises(ReplicationError, match="'Y'"):
            SBCResults.from_replications(
                [
                    make_replication(np.ones(3), Y=np.ones(2)),
                    make_replication(np.ones(3)),
                ]
            )

    def test_missing_group_raises(self):
        with pytest.raises(ValueError, match="sbc"):
            SBCResults(az.InferenceData())

    def test_invalid_input_raises(self):
        with pytest.raises((ValueError, TypeCheckError)):
            SBCResults(3)

    def test_netcdf_round_trip(self, tmp_path):
        replications = [
            make_replication(
                np.arange(6) % (ind + 2) == 0,
                names=["mu"],
                Y=np.arange(3.0),
                log_lik=np.full((6, 3), -1.0),
                seed=ind,
                sampler_params={
                    "divergent__": np.zeros(6),
                    "treedepth__": np.full(6, 3.0),
                    "energy__": np.linspace(0.0, 1.0, 6),
                },
            )
            for ind in range(3)
        ]
        res = SBCResults.from_replications(
            replications,
            indices=[0, 1, 3],
            n_requested=4,
            max_treedepth=12,
            chains=3,
        )
        path = str(tmp_path / "sbc_results.nc")
        res.save_netcdf(path)

        loaded = SBCResults.from_disk(path)
        assert loaded.parameter_names == ("mu",)
        assert loaded.failed_replications == [2]
        assert loaded.ranks.dtype == bool
        np.testing.assert_array_equal(loaded.ranks.values, res.ranks.values)
        np.testing.assert_array_equal(
            loaded.rank_statistics(thin=1).values, res.rank_statistics(thin=1).values
        )
        np.testing.assert_allclose(loaded.log_lik.values, res.log_lik.values)
        assert loaded.sbc_group.attrs["max_treedepth"] == 12
        assert loaded.chains == 3
        assert set(loaded.sampler_params.data_vars) == {
            "divergent__",
            "treedepth__",
            "energy__",
        }


class TestDiagnostics:
    """Test sampler diagnostics, the diagnosis report, and LOO."""

    @pytest.fixture
    def sampled_results(self):
        """Two replications: the first diverges, the second saturates the tree
        depth and has a trending energy."""
        rng = np.random.default_rng(0)
        n_draws = 50
        first = {
            "divergent__": np.zeros(n_draws),
            "treedepth__": np.full(n_draws, 4.0),
            "energy__": rng.normal(size=n_draws),
        }
        first["divergent__"][[3, 7]] = 1.0
        second = {
            "divergent__": np.zeros(n_draws),
            "treedepth__": np.full(n_draws, 10.0),
            "energy__": np.linspace(0.0, 100.0, n_draws),
        }
        return SBCResults.from_replications(
            [
                make_replication(
                    rng.uniform(size=n_draws) > 0.5,
                    names=["mu"],
                    sampler_params=params,
                    log_lik=rng.normal(-1.0, 0.1, size=(n_draws, 4)),
                )
                for params in (first, second)
            ]
        )

    def test_sampler_diagnostics(self, sampled_results):
        tests = sampled_results.sampler_diagnostics()
        assert tests["n_divergent"].values.tolist() == [2, 0]
        assert tests["diverged"].values.tolist() == [True, False]
        assert tests["n_max_treedepth"].values.tolist() == [0, 50]
        assert tests["max_treedepth_reached"].values.tolist() == [False, True]
        assert tests["low_ebfmi"].values.tolist() == [False, True]

    def test_ebfmi_per_chain(self):
        """A chain with a low E-BFMI is not hidden by a healthy one."""
        rng = np.random.default_rng(1)
        n_per_chain = 200
        energy = np.concatenate(
            [
                np.linspace(0.0, 100.0, n_per_chain),  # Trending, low E-BFMI
                rng.normal(size=n_per_chain),  # Independent draws
            ]
        )
        res = SBCResults.from_replications(
            [
                make_replication(
                    rng.uniform(size=2 * n_per_chain) > 0.5,
                    names=["mu"],
                    sampler_params={"energy__": energy},
                )
            ],
            chains=2,
        )
        assert res.chains == 2
        tests = res.sampler_diagnostics()
        assert tests["ebfmi"].dims == ("replication", "chain")
        np.testing.assert_allclose(
            tests["ebfmi"].values[0], az.bfmi(energy.reshape(2, n_per_chain))
        )
        assert tests["ebfmi"].values[0, 0] < 0.2 < tests["ebfmi"].values[0, 1]
        assert tests["low_ebfmi"].values.tolist() == [True]

    def test_draws_must_split_into_chains(self):
        with pytest.raises(ValueError, match="chains"):
            SBCResults.from_replications([make_replication(np.ones(5))], chains=2)

    def test_max_treedepth_override(self, sampled_results):
        tests = sampled_results.sampler_diagnostics(max_treedepth=4)
        assert tests["max_treedepth_reached"].values.tolist() == [True, True]

    def test_no_sampler_params(self, uniform_results):
        with pytest.raises(ValueError, match="sampler diagnostics"):
            uniform_results.sampler_diagnostics()

    def test_diagnose_silent(self, sampled_results, capsys):
        sampler_failures, uniformity = sampled_results.diagnose(thin=1, silent=True)
        assert capsys.readouterr().out == ""
        assert sampler_failures["diverged"].tolist() == [0]
        assert sampler_failures["max_treedepth_reached"].tolist() == [1]
        assert sampler_failures["low_ebfmi"].tolist() == [1]
        assert "rejected" in uniformity

    def test_diagnose_report(self, sampled_results, capsys):
        sampled_results.diagnose(thin=1)
        out = capsys.readouterr().out
        assert "2 of 2 replications completed" in out
        assert "1 of 2 (50.00%) replications had divergent transitions." in out
        assert "mu: chi2 =" in out

    def test_diagnose_without_sampler_params(self, uniform_results, capsys):
        sampler_failures, _ = uniform_results.diagnose(thin=1, n_bins=5)
        assert sampler_failures == {}
        assert "Sampler diagnostic" not in capsys.readouterr().out

    def test_loo(self, sampled_results):
        loo = sampled_results.loo(replication=0)
        assert np.isfinite(loo["elpd_loo"])

    def test_loo_without_log_lik(self, uniform_results):
        with pytest.raises(ValueError, match="log_lik"):
            uniform_results.loo(replication=0)
