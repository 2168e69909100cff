# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Simulation Based Calibration of Stan programs.

This module holds everything needed to calibrate a Stan program against its own
prior. It is organized in the order of a typical SBC workflow:

    1. :py:mod:`~stansbc.model.convention` checks that a program follows the
       SBC naming convention and finds the names of its calibrated parameters.
    2. :py:mod:`~stansbc.model.stan` compiles the program into an
       :py:class:`~stansbc.model.stan.sbc_model.SBCModel`.
    3. :py:mod:`~stansbc.model.simulation` runs the replications and extracts
       their rank indicators.
    4. :py:mod:`~stansbc.model.results` aggregates the replications into rank
       statistics, uniformity tests, and sampler diagnostics.

Example:
    >>> import stansbc
    >>> model = stansbc.SBCModel(stan_file="regression_sbc.stan")
    >>> results = model.sbc(data={"N": 25, "x": x}, M=500, refresh=0)
    >>> sampler_failures, uniformity = results.diagnose()
"""
