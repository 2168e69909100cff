# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Analysis of Simulation Based Calibration results.

Results of an SBC run are held by
:py:class:`~stansbc.model.results.sbc.SBCResults`, which wraps an ArviZ
InferenceData object and computes rank statistics, rank histograms, uniformity
tests, and sampler diagnostics over the replications of the run.

Users will not typically instantiate the results class directly. It is returned
by :py:func:`stansbc.sbc` and :py:meth:`stansbc.SBCModel.sbc`, and saved results
are reloaded with :py:meth:`SBCResults.from_disk`:

    >>> results = model.sbc(data=data, M=500, refresh=0)
    >>> results.save_netcdf("sbc_results.nc")
    >>> results = SBCResults.from_disk("sbc_results.nc")
    >>> results.rank_summary()
"""

from stansbc.model.results.sbc import SBCResults
