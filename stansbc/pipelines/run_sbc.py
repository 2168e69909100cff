# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Runs Simulation Based Calibration for a Stan program."""

from __future__ import annotations

import argparse
import json
import os.path

from typing import Optional, Sequence, TYPE_CHECKING

from stansbc.defaults import DEFAULT_THIN, RESULTS_FILENAME
from stansbc.model.stan.sbc_model import SBCModel

if TYPE_CHECKING:
    from stansbc import custom_types
    from stansbc.model.results import SBCResults

# Name of the folder holding the replications saved during a run
PROGRESS_DIRNAME = "replications"


def define_base_parser() -> argparse.ArgumentParser:
    """Defines the arguments that identify the program and where results go."""
    # Build the base parser
    parser = argparse.ArgumentParser(add_help=False)

    # Required arguments shared by SBC pipelines
    required_group = parser.add_argument_group("required arguments")
    required_group.add_argument(
        "--stan_file",
        type=str,
        required=True,
        help="Path to the Stan program, written following the SBC convention.",
    )
    required_group.add_argument(
        "--output_dir",
        type=str,
        required=True,
        help="Path to the folder where the compiled model and results will be saved.",
    )
    required_group.add_argument(
        "--M",
        type=int,
        required=True,
        help="Number of replications.",
    )

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    # The SBC parser extends the shared required arguments
    parser = argparse.ArgumentParser(
        description="Run Simulation Based Calibration for a Stan program.",
        parents=[define_base_parser()],
    )

    # Sampling and analysis settings
    optional_group = parser.add_argument_group("optional arguments")
    optional_group.add_argument(
        "--data",
        type=str,
        default=None,
        help="Path to a JSON file holding the data passed to every replication.",
    )
    optional_group.add_argument(
        "--seed",
        type=int,
        default=1025,
        help="Random seed for reproducibility. Default = 1025.",
    )
    optional_group.add_argument(
        "--chains",
        type=int,
        default=1,
        help="Number of chains per replication. Default = 1.",
    )
    optional_group.add_argument(
        "--cores",
        type=int,
        default=1,
        help="Number of replications run concurrently. Default = 1.",
    )
    optional_group.add_argument(
        "--n_warmup",
        type=int,
        default=1000,
        help="Number of warmup iterations per replication. Default = 1000.",
    )
    optional_group.add_argument(
        "--n_samples",
        type=int,
        default=999,
        help="Number of samples drawn after warmup per replication. Default = 999.",
    )
    optional_group.add_argument(
        "--thin",
        type=int,
        default=DEFAULT_THIN,
        help=f"Thinning applied before computing ranks. Default = {DEFAULT_THIN}.",
    )
    optional_group.add_argument(
        "--refresh",
        type=int,
        default=0,
        help="Progress refresh rate of each replication's sampler. Default = 0.",
    )
    optional_group.add_argument(
        "--on_failure",
        type=str,
        choices=["raise", "warn"],
        default="raise",
        help="Whether a failed replication stops the run or is skipped.",
    )
    optional_group.add_argument(
        "--force_compile",
        action="store_true",
        help="Recompile even if the output directory holds an executable built "
        "from the same program.",
    )
    optional_group.add_argument(
        "--resume",
        action="store_true",
        help=(
            "If set, replications saved in the output directory by a previous, "
            "interrupted run are loaded instead of rerun."
        ),
    )

    return parser.parse_args(argv)


def check_args(args: argparse.Namespace) -> None:
    """Checks command line arguments for validity."""
    # The Stan program must exist
    if not os.path.exists(args.stan_file):
        raise ValueError(f"Stan file does not exist: {args.stan_file}.")

    # Data must exist if given
    if args.data is not None and not os.path.exists(args.data):
        raise ValueError(f"Data file does not exist: {args.data}.")

    # Output dir must exist
    if not os.path.exists(args.output_dir):
        raise ValueError(f"Output directory does not exist: {args.output_dir}.")

    # Seeds are positive integers
    if args.seed <= 0:
        raise ValueError("Seed must be a positive integer.")

    # Counts must be positive integers
    for arg in ("M", "chains", "cores", "n_warmup", "n_samples", "thin"):
        if getattr(args, arg) <= 0:
            raise ValueError(f"{arg} must be a positive integer.")

    # Refresh must be non-negative
    if args.refresh < 0:
        raise ValueError("refresh must be a non-negative integer.")

    # Do not mix replications of different runs unless resuming
    progress_dir = os.path.join(args.output_dir, PROGRESS_DIRNAME)
    if not args.resume and os.path.isdir(progress_dir) and os.listdir(progress_dir):
        raise ValueError(
            f"{progress_dir} holds replications from a previous run. Pass --resume "
            "to continue that run or choose another output directory."
        )


def load_data(path: Optional[str]) -> "custom_types.StanData":
    """Load the data passed to every replication from a JSON file."""
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Data file {path} must hold a JSON object.")
    return data


def run_sbc(args: argparse.Namespace) -> "SBCResults":
    """Compile the program, run the replications, and save the results."""
    # Compile the program in the output directory
    with open(args.stan_file, "r", encoding="utf-8") as f:
        code = f.read()
    model = SBCModel(
        code=code,
        output_dir=args.output_dir,
        force_compile=args.force_compile,
        model_name=os.path.splitext(os.path.basename(args.stan_file))[0],
    )

    # Run the replications, saving them as they finish
    progress_dir = os.path.join(args.output_dir, PROGRESS_DIRNAME)
    os.makedirs(progress_dir, exist_ok=True)
    res = model.sbc(
        data=load_data(args.data),
        M=args.M,
        refresh=args.refresh,
        seed=args.seed,
        chains=args.chains,
        cores=args.cores,
        save_progress=progress_dir,
        on_failure=args.on_failure,
        iter_warmup=args.n_warmup,
        iter_sampling=args.n_samples,
    )

    # Run diagnostics on the results
    print("Running diagnostics...")
    _ = res.diagnose(thin=args.thin)

    # Save the results
    print("Saving results...")
    res.save_netcdf(os.path.join(args.output_dir, RESULTS_FILENAME))

    return res


def main(argv: Optional[Sequence[str]] = None):
    """Main function to run Simulation Based Calibration."""
    # Parse command line arguments
    args = parse_args(argv)

    # Check arguments
    check_args(args)

    # Run SBC
    run_sbc(args)


if __name__ == "__main__":
    main()
