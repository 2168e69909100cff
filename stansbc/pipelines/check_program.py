# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Checks Stan programs against the SBC naming convention."""

import argparse

from typing import Optional, Sequence

from stansbc.model.convention import check_file


def main(argv: Optional[Sequence[str]] = None):
    """Runs the script. Exits with status 1 if any program has errors."""
    # Build the argument parser
    parser = argparse.ArgumentParser(
        description="Checks Stan programs against the SBC naming convention."
    )
    parser.add_argument(
        "stan_files",
        type=str,
        nargs="+",
        help="Paths to the Stan programs to check.",
    )
    parser.add_argument(
        "--warnings_as_errors",
        action="store_true",
        help="Also fail when a program has convention warnings.",
    )

    # Parse the arguments and check every program
    args = parser.parse_args(argv)
    failed = False
    for stan_file in args.stan_files:
        report = check_file(stan_file)
        print(f"{stan_file}:")
        print(str(report))
        failed |= not report.ok or (args.warnings_as_errors and bool(report.warnings))

    raise SystemExit(1 if failed else 0)


if __name__ == "__main__":
    main()
