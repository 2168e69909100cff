# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""CmdStan integration for StanSBC.

This submodule compiles Stan programs written for Simulation Based Calibration
and runs their replications through CmdStanPy. It also ships example programs
following the SBC naming convention, which can be used as templates:

    - ``linear_regression``: normal linear regression with one covariate
    - ``poisson_counts``: Poisson counts with a normal prior on the log rate
"""

import os.path

# Directory holding the example programs shipped with the package
PROGRAMS_DIR = os.path.join(os.path.abspath(os.path.dirname(__file__)), "programs")
"""
Absolute path to the directory of example SBC Stan programs bundled with StanSBC.
"""


def get_example_program(name: str) -> str:
    """Get the path to an example SBC Stan program.

    :param name: Name of the program, with or without the ``.stan`` extension
    :type name: str

    :returns: Absolute path to the program
    :rtype: str

    :raises FileNotFoundError: If there is no example program with that name
    """
    if not name.endswith(".stan"):
        name += ".stan"
    path = os.path.join(PROGRAMS_DIR, name)
    if not os.path.exists(path):
        available = sorted(
            os.path.splitext(fname)[0]
            for fname in os.listdir(PROGRAMS_DIR)
            if fname.endswith(".stan")
        )
        raise FileNotFoundError(
            f"No example program named '{name}'. Available: {', '.join(available)}"
        )
    return path
