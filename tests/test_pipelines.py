"""Tests for the command line pipelines."""

import json
import os

import pytest

from stansbc.defaults import RESULTS_FILENAME
from stansbc.model.stan import get_example_program
from stansbc.pipelines import check_program, run_sbc

NO_LOG_LIK = """
transformed data { real a_ = normal_rng(0, 1); }
parameters { real a; }
model { a ~ std_normal(); }
generated quantities {
  vector[1] pars_ = [a_]';
  array[1] int ranks_ = {a > a_};
  real y_ = 0;
}
"""


def write(path, text):
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return str(path)


class TestCheckProgram:
    """Test the convention linter."""

    def test_clean_program(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            check_program.main([get_example_program("linear_regression")])
        assert excinfo.value.code == 0
        assert "Parameters: alpha, beta, sigma" in capsys.readouterr().out

    def test_program_with_errors(self, tmp_path, capsys):
        path = write(tmp_path / "bad.stan", "model { }")
        with pytest.raises(SystemExit) as excinfo:
            check_program.main([get_example_program("poisson_counts"), path])
        assert excinfo.value.code == 1
        assert "ERROR:" in capsys.readouterr().out

    def test_warnings_as_errors(self, tmp_path):
        path = write(tmp_path / "no_log_lik.stan", NO_LOG_LIK)
        with pytest.raises(SystemExit) as excinfo:
            check_program.main([path])
        assert excinfo.value.code == 0
        with pytest.raises(SystemExit) as excinfo:
            check_program.main([path, "--warnings_as_errors"])
        assert excinfo.value.code == 1


class TestRunSBC:
    """Test argument handling and the run pipeline."""

    @pytest.fixture
    def argv(self, tmp_path):
        stan_file = get_example_program("linear_regression")
        data = write(tmp_path / "data.json", json.dumps({"N": 3, "x": [0.1, 0.2, 0.3]}))
        output_dir = tmp_path / "out"
        output_dir.mkdir()
        return [
            "--stan_file",
            stan_file,
            "--output_dir",
            str(output_dir),
            "--M",
            "10",
            "--data",
            data,
        ]

    def test_defaults(self, argv):
        args = run_sbc.parse_args(argv)
        assert args.M == 10
        assert args.seed == 1025
        assert args.chains == 1
        assert args.cores == 1
        assert args.thin == 3
        assert args.on_failure == "raise"
        assert not args.resume
        run_sbc.check_args(args)

    @pytest.mark.parametrize(
        "extra, match",
        [
            (["--M", "0"], "M must be"),
            (["--cores", "-1"], "cores must be"),
            (["--seed", "0"], "Seed"),
            (["--refresh", "-1"], "refresh"),
            (["--stan_file", "missing.stan"], "Stan file"),
            (["--data", "missing.json"], "Data file"),
        ],
    )
    def test_invalid_args(self, argv, extra, match):
        args = run_sbc.parse_args(argv + extra)
        with pytest.raises(ValueError, match=match):
            run_sbc.check_args(args)

    def test_previous_run_requires_resume(self, argv):
        args = run_sbc.parse_args(argv)
        progress_dir = os.path.join(args.output_dir, run_sbc.PROGRESS_DIRNAME)
        os.makedirs(progress_dir)
        write(os.path.join(progress_dir, "replication_00000.nc"), "")
        with pytest.raises(ValueError, match="--resume"):
            run_sbc.check_args(args)
        run_sbc.check_args(run_sbc.parse_args(argv + ["--resume"]))

    def test_load_data(self, tmp_path):
        assert run_sbc.load_data(None) == {}
        path = write(tmp_path / "data.json", '{"N": 2}')
        assert run_sbc.load_data(path) == {"N": 2}
        path = write(tmp_path / "list.json", "[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            run_sbc.load_data(path)

    def test_main(self, argv, monkeypatch, uniform_results, capsys):
        """The pipeline compiles, runs, diagnoses, and saves."""
        calls = {}

        class FakeModel:
            """Stands in for SBCModel."""

            def __init__(self, **kwargs):
                calls["init"] = kwargs

            def sbc(self, **kwargs):
                calls["sbc"] = kwargs
                return uniform_results

        monkeypatch.setattr(run_sbc, "SBCModel", FakeModel)
        run_sbc.main(argv + ["--n_samples", "99", "--cores", "2"])
        args = run_sbc.parse_args(argv)

        # The program is compiled in the output directory
        with open(args.stan_file, "r", encoding="utf-8") as f:
            assert calls["init"]["code"] == f.read()
        assert calls["init"]["output_dir"] == args.output_dir
        assert calls["init"]["model_name"] == "linear_regression"

        # Replications run with the requested settings
        assert calls["sbc"]["M"] == 10
        assert calls["sbc"]["data"] == {"N": 3, "x": [0.1, 0.2, 0.3]}
        assert calls["sbc"]["iter_sampling"] == 99
        assert calls["sbc"]["iter_warmup"] == 1000
        assert calls["sbc"]["cores"] == 2
        assert calls["sbc"]["seed"] == 1025
        assert calls["sbc"]["save_progress"] == os.path.join(
            args.output_dir, run_sbc.PROGRESS_DIRNAME
        )
        assert os.path.isdir(calls["sbc"]["save_progress"])

        # Diagnostics are reported and results saved
        assert "Rank uniformity tests" in capsys.readouterr().out
        assert os.path.exists(os.path.join(args.output_dir, RESULTS_FILENAME))
