# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Compilation and sampling of Stan programs written for SBC.

This module provides :py:class:`SBCModel`, a CmdStanPy model that checks its
program against the SBC naming convention before compiling it, seeds its
samplers from the global StanSBC random number generator, and runs Simulation
Based Calibration over itself.

Users will normally build an :py:class:`SBCModel` from a ``.stan`` file and call
its :py:meth:`SBCModel.sbc` method:

    >>> import stansbc
    >>> model = stansbc.SBCModel(stan_file="regression_sbc.stan")
    >>> results = model.sbc(data={"N": 25, "x": x}, M=500, refresh=0)
"""

from __future__ import annotations

import functools
import os.path
import warnings
import weakref

from tempfile import TemporaryDirectory
from typing import Any, Callable, Optional, ParamSpec, TYPE_CHECKING, TypeVar

from cmdstanpy import CmdStanModel, format_stan_file

import stansbc

from stansbc import utils
from stansbc.defaults import (
    DEFAULT_CPP_OPTIONS,
    DEFAULT_FORCE_COMPILE,
    DEFAULT_MODEL_NAME,
    DEFAULT_STANC_OPTIONS,
)
from stansbc.model import convention, simulation

if TYPE_CHECKING:
    from stansbc import custom_types

results = utils.lazy_import("stansbc.model.results")

# Parameter and return types for decorated functions
P = ParamSpec("P")
R = TypeVar("R")


def _seed_cmdstanpy_func(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator giving CmdStanModel functions a seed from the global RNG.

    :param func: CmdStanModel function to wrap
    :type func: Callable[P, R]

    :returns: Function that draws its seed from ``stansbc.RNG`` when none is given
    :rtype: Callable[P, R]
    """

    @functools.wraps(func)
    def inner(*args: P.args, **kwargs: P.kwargs) -> R:
        """Wrapper function for seeding."""
        # Positional arguments become keywords so the seed can be checked
        stan_model = args[0]
        kwargs.update(dict(zip(func.__code__.co_varnames[1:], args[1:])))

        # Unseeded calls draw from the global RNG
        if kwargs.get("seed") is None:
            kwargs["seed"] = int(stansbc.RNG.integers(0, utils.MAX_SEED))

        return func(stan_model, **kwargs)

    return inner


class SBCModel(CmdStanModel):
    """CmdStanModel for Stan programs written for Simulation Based Calibration.

    :param stan_file: Path to a ``.stan`` file. Exactly one of `stan_file` and
        `code` must be given.
    :type stan_file: Optional[str]
    :param code: Stan program code. It is written to `output_dir` and formatted
        before compilation.
    :type code: Optional[str]
    :param output_dir: Directory for the program written from `code` and its
        executable. Defaults to None (temporary). Ignored when `stan_file` is given.
    :type output_dir: Optional[str]
    :param force_compile: Recompile even when an up-to-date executable exists.
        Defaults to False.
    :type force_compile: bool
    :param stanc_options: stanc options. Defaults to None, which uses
        `DEFAULT_STANC_OPTIONS`.
    :type stanc_options: Optional[dict[str, Any]]
    :param cpp_options: C++ build options. Defaults to None, which uses
        `DEFAULT_CPP_OPTIONS`.
    :type cpp_options: Optional[dict[str, Any]]
    :param user_header: Path to a C++ header with user-defined functions.
        Defaults to None.
    :type user_header: Optional[str]
    :param model_name: Name of the program and executable written from `code`.
        Defaults to 'sbc_model'.
    :type model_name: str
    :param strict: Whether convention errors raise. When False, they are
        reported as warnings and compilation proceeds. Defaults to True.
    :type strict: bool

    :ivar convention: Report from checking the program against the SBC convention
    :ivar output_dir: Directory containing the Stan program
    :ivar stan_executable_path: Path to the compiled Stan executable

    :raises ValueError: If neither or both of `stan_file` and `code` are given
    :raises ConventionError: If `strict` and the program breaks the SBC convention
    :raises FileNotFoundError: If `output_dir` does not exist
    """

    def __init__(
        self,
        stan_file: Optional[str] = None,
        code: Optional[str] = None,
        output_dir: Optional[str] = None,
        force_compile: bool = DEFAULT_FORCE_COMPILE,
        stanc_options: Optional[dict[str, Any]] = None,
        cpp_options: Optional[dict[str, Any]] = None,
        user_header: Optional[str] = None,
        model_name: str = DEFAULT_MODEL_NAME,
        strict: bool = True,
    ):
        # Exactly one source for the program
        if (stan_file is None) == (code is None):
            raise ValueError("Exactly one of `stan_file` and `code` must be provided.")

        # Set default options
        self._stanc_options = dict(stanc_options or DEFAULT_STANC_OPTIONS)
        cpp_options = dict(cpp_options or DEFAULT_CPP_OPTIONS)

        # Read the program if we were given a file
        if code is None:
            with open(stan_file, "r", encoding="utf-8") as f:
                code = f.read()

        # Check the program before spending time compiling it
        self.convention = convention.check_program(code)
        if strict:
            self.convention.raise_for_errors()
        else:
            for message in self.convention.errors:
                warnings.warn(message)
        self.convention.warn()

        # Programs given as code are written to the output directory. An
        # executable already there is reused only if it was built from the same
        # program. Files are compiled where they are, and CmdStanPy decides
        # whether an existing executable is up to date.
        if stan_file is None:
            self._set_output_dir(output_dir)
            self.stan_executable_path = os.path.join(self.output_dir, model_name)
            previous_program = self._read_stan_program()
            self.write_stan_program(code)
            stan_file = self.stan_program_path
            exe_file = (
                self.stan_executable_path
                if os.path.exists(self.stan_executable_path)
                and not force_compile
                and previous_program == self._read_stan_program()
                else None
            )
        else:
            self.output_dir = os.path.dirname(os.path.abspath(stan_file))
            self.stan_executable_path = os.path.splitext(os.path.abspath(stan_file))[0]
            exe_file = None

        # Compile, or load the existing executable
        super().__init__(
            stan_file=stan_file,
            exe_file=exe_file,
            force_compile=force_compile,
            stanc_options=self._stanc_options,
            cpp_options=cpp_options,
            user_header=user_header,
        )

    def _set_output_dir(self, output_dir: Optional[str]) -> None:
        """Set the directory that holds the program written from code.

        :param output_dir: Existing directory, or None for a temporary one removed
            along with the model
        :type output_dir: Optional[str]

        :raises FileNotFoundError: If `output_dir` is given but missing
        """
        # Temporary directories live as long as the model
        if output_dir is None:
            tempdir = TemporaryDirectory()
            weakref.finalize(self, tempdir.cleanup)
            output_dir = tempdir.name

        # Given directories must already exist
        if not os.path.exists(output_dir):
            raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

        self.output_dir = output_dir

    def _read_stan_program(self) -> Optional[str]:
        """Text of the program in the output directory, or None if absent."""
        if not os.path.exists(self.stan_program_path):
            return None
        with open(self.stan_program_path, "r", encoding="utf-8") as f:
            return f.read()

    def write_stan_program(self, code: str) -> None:
        """Write and format a Stan program in the output directory.

        Formatting canonicalizes the program, which also updates deprecated
        syntax (for example, old-style array declarations) before compilation.

        :param code: Stan program code
        :type code: str
        """
        # Write the raw code
        with open(self.stan_program_path, "w", encoding="utf-8") as f:
            f.write(code)

        # Format the code
        format_stan_file(
            self.stan_program_path,
            overwrite_file=True,
            canonicalize=True,
            stanc_options=self._stanc_options,
        )

    # Sampling draws its seed from the global RNG when none is given
    sample = _seed_cmdstanpy_func(CmdStanModel.sample)
    """CmdStanModel.sample, seeded from ``stansbc.RNG`` when no seed is given."""

    def sbc(
        self,
        data: "custom_types.StanData",
        M: "custom_types.Integer",  # pylint: disable=invalid-name
        refresh: Optional["custom_types.Integer"] = None,
        **kwargs,
    ) -> "results.SBCResults":
        """Run Simulation Based Calibration with this model.

        :param data: Data passed to every replication
        :type data: custom_types.StanData
        :param M: Number of replications
        :type M: custom_types.Integer
        :param refresh: Progress refresh rate of each replication's sampler.
            Defaults to None (CmdStan default). Use 0 to silence the sampler.
        :type refresh: Optional[custom_types.Integer]
        :param kwargs: Keyword arguments passed to :py:func:`stansbc.sbc`, and
            from there to :py:meth:`sample`

        :returns: Results of the calibration run
        :rtype: results.SBCResults
        """
        # Names resolved from loops or dropped entries would not line up with
        # the ranks, so those runs name parameters by position
        if self.convention.exact_names and self.parameter_names:
            kwargs.setdefault("parameter_names", self.parameter_names)
        return simulation.sbc(self, data, M, refresh=refresh, **kwargs)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Names of the calibrated parameters, as found in ``pars_``."""
        return self.convention.parameter_names

    @property
    def stan_program_path(self) -> str:
        """Get path to the Stan program file.

        :returns: Full path to .stan file
        :rtype: str
        """
        return self.stan_executable_path + ".stan"
