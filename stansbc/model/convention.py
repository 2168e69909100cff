# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Linting of Stan programs against the SBC naming convention.

Simulation Based Calibration needs each replication to draw its own "true"
parameter values, simulate data from them, fit the simulated data, and report
whether each posterior draw lies above the true value. StanSBC expects Stan
programs to do all of this themselves, following a naming convention:

    - True parameter values are drawn in ``transformed data`` with ``_rng``
      functions and carry a trailing underscore (``alpha_``, ``sigma_``).
    - The observations are simulated in ``transformed data`` from those values
      and fit in the ``model`` block with the unsuffixed parameters.
    - ``generated quantities`` declares ``pars_``, a vector of the true values,
      and ``ranks_``, an integer array with one ``theta > theta_`` comparison
      per entry of ``pars_``.
    - ``generated quantities`` optionally declares ``log_lik``, the
      per-observation log-likelihood, and ``y_``, a copy of the simulated data.

A conforming program looks like this:

.. code-block:: stan

    data {
      int<lower=1> N;
      vector[N] x;
    }
    transformed data {
      real alpha_ = normal_rng(0, 1);
      real beta_ = normal_rng(0, 1);
      real<lower=0> sigma_ = exponential_rng(1);
      vector[N] y;
      for (n in 1:N) y[n] = normal_rng(alpha_ + beta_ * x[n], sigma_);
    }
    parameters {
      real alpha;
      real beta;
      real<lower=0> sigma;
    }
    model {
      y ~ normal(alpha + beta * x, sigma);
      alpha ~ std_normal();
      beta ~ std_normal();
      sigma ~ exponential(1);
    }
    generated quantities {
      vector[3] pars_ = [alpha_, beta_, sigma_]';
      array[3] int ranks_ = {alpha > alpha_, beta > beta_, sigma > sigma_};
      vector[N] y_ = y;
      vector[N] log_lik;
      for (n in 1:N) log_lik[n] = normal_lpdf(y[n] | alpha + beta * x[n], sigma);
    }

The parser in this module is deliberately light: it strips comments, splits the
program into blocks and statements, and recognizes declarations and simple
assignments. It does not type-check Stan code; the Stan compiler does that.
"""

from __future__ import annotations

import re
import warnings

from typing import Optional

from stansbc.defaults import (
    LOG_LIK_VARNAME,
    PARS_VARNAME,
    RANKS_VARNAME,
    SIMULATED_DATA_VARNAME,
    TRUE_DRAW_SUFFIX,
)
from stansbc.exceptions import ConventionError

# Names of the Stan program blocks, in program order
BLOCK_NAMES = (
    "functions",
    "data",
    "transformed data",
    "parameters",
    "transformed parameters",
    "model",
    "generated quantities",
)

# Keywords that may begin a variable declaration
TYPE_KEYWORDS = frozenset(
    {
        "array",
        "int",
        "real",
        "complex",
        "vector",
        "row_vector",
        "matrix",
        "complex_vector",
        "complex_row_vector",
        "complex_matrix",
        "simplex",
        "unit_vector",
        "sum_to_zero_vector",
        "sum_to_zero_matrix",
        "ordered",
        "positive_ordered",
        "cholesky_factor_corr",
        "cholesky_factor_cov",
        "column_stochastic_matrix",
        "row_stochastic_matrix",
        "corr_matrix",
        "cov_matrix",
        "tuple",
    }
)

# Functions that only reshape a literal list of true draws
_LITERAL_WRAPPERS = frozenset({"to_vector", "to_row_vector", "to_array_1d"})

_BLOCK_HEADER_RE = re.compile(
    r"(?<![\w.])(functions|transformed\s+data|data|transformed\s+parameters"
    r"|parameters|model|generated\s+quantities)\s*\{"
)
_IDENTIFIER_RE = re.compile(r"[A-Za-z_]\w*")
_INT_LITERAL_RE = re.compile(r"\d+")
_TRUE_DRAW_RE = re.compile(
    r"([A-Za-z]\w*?)" + re.escape(TRUE_DRAW_SUFFIX) + r"(?:\[(.*)\])?", re.DOTALL
)
_CONTROL_FLOW_RE = re.compile(r"(for|while|if)\s*\(")
_ELSE_RE = re.compile(r"else\b")

_BRACKET_PAIRS = {"(": ")", "[": "]", "{": "}", "<": ">"}


def strip_comments(code: str) -> str:
    """Remove block comments, line comments, and preprocessor-style lines.

    :param code: Stan program code
    :type code: str

    :returns: Code without comments. Line breaks are kept.
    :rtype: str
    """
    code = re.sub(r"/\*.*?\*/", " ", code, flags=re.DOTALL)
    code = re.sub(r"//[^\n]*", "", code)
    return re.sub(r"#[^\n]*", "", code)


def _find_matching(text: str, open_ind: int) -> int:
    """Return the index of the bracket closing the one at `open_ind`."""
    stack = []
    for ind in range(open_ind, len(text)):
        char = text[ind]

        # Angle brackets only open constraint lists; elsewhere they are comparisons
        if char in _BRACKET_PAIRS and (char != "<" or not stack):
            stack.append(_BRACKET_PAIRS[char])
        elif stack and char == stack[-1]:
            stack.pop()
            if not stack:
                return ind

    raise ConventionError(f"Unbalanced '{text[open_ind]}' in Stan code: {text!r}")


def parse_blocks(code: str) -> dict[str, str]:
    """Split a Stan program into its blocks.

    :param code: Stan program code
    :type code: str

    :returns: Mapping from block name (e.g., "transformed data") to the code
        between the block's braces. Blocks absent from the program are absent
        from the mapping.
    :rtype: dict[str, str]

    :raises ConventionError: If braces are unbalanced or a block is repeated
    """
    code = strip_comments(code)
    blocks: dict[str, str] = {}
    pos = 0
    while (match := _BLOCK_HEADER_RE.search(code, pos)) is not None:

        # Find the brace that closes the block
        close_ind = _find_matching(code, match.end() - 1)

        # Record the block, normalizing whitespace in its name
        name = " ".join(match.group(1).split())
        if name in blocks:
            raise ConventionError(f"The '{name}' block appears more than once.")
        blocks[name] = code[match.end() : close_ind]

        # Continue after the block
        pos = close_ind + 1

    return blocks


def _strip_control_flow(statement: str) -> str:
    """Remove leading ``for``/``while``/``if``/``else`` headers from a statement."""
    while True:
        statement = statement.strip()
        if match := _CONTROL_FLOW_RE.match(statement):
            statement = statement[_find_matching(statement, match.end() - 1) + 1 :]
        elif match := _ELSE_RE.match(statement):
            statement = statement[match.end() :]
        else:
            return statement


def split_statements(body: str) -> list[str]:
    """Split the body of a block into statements.

    Statement blocks (the braces of loops and conditionals) are flattened, so
    statements nested in loops are returned alongside top-level ones, without
    their loop headers. Braces that delimit array expressions (``{a, b}``) are
    kept as part of their statement.

    :param body: Code between the braces of a Stan block
    :type body: str

    :returns: Statements without their terminating semicolons
    :rtype: list[str]
    """
    statements = []
    buffer: list[str] = []
    paren_depth = 0
    expr_brace_depth = 0

    def flush(keep: bool) -> None:
        text = _strip_control_flow("".join(buffer))
        if keep and text:
            statements.append(text)
        buffer.clear()

    for char in body:
        if char in "([":
            paren_depth += 1
        elif char in ")]":
            paren_depth -= 1
        elif char == "{":
            previous = "".join(buffer).rstrip()[-1:]
            if paren_depth > 0 or expr_brace_depth > 0 or previous in ("=", ","):
                expr_brace_depth += 1
                buffer.append(char)
                continue
            # Statement block: whatever precedes it is a loop or branch header
            flush(keep=False)
            continue
        elif char == "}":
            if expr_brace_depth > 0:
                expr_brace_depth -= 1
                buffer.append(char)
                continue
            flush(keep=True)
            continue
        elif char == ";" and paren_depth == 0 and expr_brace_depth == 0:
            flush(keep=True)
            continue
        buffer.append(char)

    flush(keep=True)
    return statements


class Declaration:
    """A variable declaration recognized in a Stan block.

    :param name: Name of the declared variable
    :type name: str
    :param dims: Contents of the bracketed sizes in the declaration, in order
        of appearance (e.g., ``("3",)`` for both ``vector[3] x`` and
        ``array[3] int x``)
    :type dims: tuple[str, ...]
    :param rhs: Right-hand side of an initializing assignment, if any
    :type rhs: Optional[str]
    """

    def __init__(self, name: str, dims: tuple[str, ...], rhs: Optional[str]):
        self.name = name
        self.dims = dims
        self.rhs = rhs

    @property
    def literal_size(self) -> Optional[int]:
        """Size of a one-dimensional container declared with an integer literal,
        otherwise None."""
        if len(self.dims) == 1 and _INT_LITERAL_RE.fullmatch(self.dims[0]):
            return int(self.dims[0])
        return None

    def __repr__(self) -> str:
        return f"Declaration(name={self.name!r}, dims={self.dims!r}, rhs={self.rhs!r})"


def parse_declaration(statement: str) -> Optional[Declaration]:
    """Parse a statement as a variable declaration.

    :param statement: A single statement, as returned by `split_statements`
    :type statement: str

    :returns: The declaration, or None if the statement is not a declaration
    :rtype: Optional[Declaration]
    """
    # Declarations start with a type keyword
    first_word = _IDENTIFIER_RE.match(statement.strip())
    if first_word is None or first_word.group(0) not in TYPE_KEYWORDS:
        return None

    # Walk over the type, its constraints, and its sizes until reaching the name
    dims = []
    name = None
    pos = 0
    while pos < len(statement):
        char = statement[pos]
        if char.isspace():
            pos += 1
        elif char in "<([":
            close_ind = _find_matching(statement, pos)
            if char == "[":
                dims.append(statement[pos + 1 : close_ind].strip())
            pos = close_ind + 1
        elif name is not None:
            break
        elif word := _IDENTIFIER_RE.match(statement, pos):
            pos = word.end()
            if word.group(0) not in TYPE_KEYWORDS:
                name = word.group(0)
        else:
            return None

    if name is None:
        return None

    # Anything left must be an initializing assignment
    rest = statement[pos:].strip()
    if not rest:
        return Declaration(name, tuple(dims), None)
    if rest.startswith("=") and not rest.startswith("=="):
        return Declaration(name, tuple(dims), rest[1:].strip())
    return None


def parse_assignment(statement: str) -> Optional[tuple[str, Optional[str], str]]:
    """Parse a statement as a plain (``=``) assignment.

    :param statement: A single statement, as returned by `split_statements`
    :type statement: str

    :returns: Tuple of (target name, index expression or None, right-hand side),
        or None if the statement is not a plain assignment
    :rtype: Optional[tuple[str, Optional[str], str]]
    """
    statement = statement.strip()
    target = _IDENTIFIER_RE.match(statement)
    if target is None or target.group(0) in TYPE_KEYWORDS:
        return None

    # Optional index
    pos = target.end()
    rest = statement[pos:].lstrip()
    index = None
    if rest.startswith("["):
        close_ind = _find_matching(rest, 0)
        index = rest[1:close_ind].strip()
        rest = rest[close_ind + 1 :].lstrip()

    # Must be followed by a single equals sign
    if not rest.startswith("=") or rest.startswith("=="):
        return None
    return target.group(0), index, rest[1:].strip()


def declared_variables(body: str) -> dict[str, Declaration]:
    """Collect the variables declared in the body of a Stan block.

    :param body: Code between the braces of a Stan block
    :type body: str

    :returns: Mapping from variable name to its declaration, including local
        variables declared inside loops
    :rtype: dict[str, Declaration]
    """
    declarations = {}
    for statement in split_statements(body):
        if (declaration := parse_declaration(statement)) is not None:
            declarations[declaration.name] = declaration
    return declarations


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split `text` on `sep`, ignoring separators nested in brackets."""
    parts = []
    depth = 0
    start = 0
    for ind, char in enumerate(text):
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == sep and depth == 0:
            parts.append(text[start:ind].strip())
            start = ind + 1
    parts.append(text[start:].strip())
    return [part for part in parts if part]


def literal_items(expression: str) -> list[str]:
    """Split a vector, row-vector, or array literal into its items.

    ``[a_, b_]'``, ``{a_, b_}``, and ``to_vector({a_, b_})`` all give
    ``["a_", "b_"]``. Any other expression is returned as a single item.

    :param expression: Stan expression
    :type expression: str

    :returns: Items of the literal
    :rtype: list[str]
    """
    expression = expression.strip()

    # Unwrap functions that only reshape their argument
    wrapper = _IDENTIFIER_RE.match(expression)
    if (
        wrapper is not None
        and wrapper.group(0) in _LITERAL_WRAPPERS
        and expression[wrapper.end() :].lstrip().startswith("(")
        and expression.endswith(")")
    ):
        open_ind = expression.index("(", wrapper.end())
        if _find_matching(expression, open_ind) == len(expression) - 1:
            return literal_items(expression[open_ind + 1 : -1])

    # Strip the transpose of a row-vector literal
    expression = expression.removesuffix("'").rstrip()
    if (
        expression[:1] in ("[", "{")
        and _find_matching(expression, 0) == len(expression) - 1
    ):
        return split_top_level(expression[1:-1])
    return [expression]


def true_draw_name(item: str) -> Optional[tuple[str, str, bool]]:
    """Interpret an entry of ``pars_`` as a reference to a true draw.

    :param item: Expression assigned to (an element of) ``pars_``
    :type item: str

    :returns: None if the item is not an underscore-suffixed variable (optionally
        indexed). Otherwise a tuple of (parameter name, true-draw variable name,
        whether the parameter name is exact). Literal indices are kept in the
        parameter name (``beta_[2]`` gives ``beta[2]``); any other index is
        dropped and the name is marked inexact (``beta_[k]`` gives ``beta``).
    :rtype: Optional[tuple[str, str, bool]]
    """
    match = _TRUE_DRAW_RE.fullmatch(item.strip())
    if match is None:
        return None
    base, index = match.group(1), match.group(2)
    variable = base + TRUE_DRAW_SUFFIX
    if index is None:
        return base, variable, True
    indices = [ind.strip() for ind in index.split(",")]
    if all(_INT_LITERAL_RE.fullmatch(ind) for ind in indices):
        return f"{base}[{','.join(indices)}]", variable, True
    return base, variable, False


def _collect_entries(
    statements: list[str], varname: str
) -> tuple[Optional[Declaration], list[str]]:
    """Find the declaration of `varname` and every expression stored in it.

    Element assignments with integer-literal indices are returned in index order;
    otherwise entries are returned in statement order.
    """
    declaration = None
    whole = []
    indexed = []
    for statement in statements:
        if (decl := parse_declaration(statement)) is not None:
            if decl.name == varname:
                declaration = decl
                if decl.rhs is not None:
                    whole.extend(literal_items(decl.rhs))
            continue
        if (assignment := parse_assignment(statement)) is None:
            continue
        target, index, rhs = assignment
        if target != varname:
            continue
        if index is None:
            whole.extend(literal_items(rhs))
        else:
            indexed.append((index, rhs))

    # Order indexed assignments by their literal index when possible
    if indexed and all(_INT_LITERAL_RE.fullmatch(index) for index, _ in indexed):
        indexed.sort(key=lambda entry: int(entry[0]))
    return declaration, whole + [rhs for _, rhs in indexed]


class ConventionReport:
    """Outcome of checking a Stan program against the SBC naming convention.

    :ivar parameter_names: Names of the calibrated parameters, one per entry
        of ``pars_`` (and of ``ranks_``)
    :ivar errors: Violations that make SBC impossible
    :ivar warnings: Problems that make SBC results harder to use or interpret
    :ivar has_log_lik: Whether ``log_lik`` is a generated quantity
    :ivar has_simulated_data: Whether ``y_`` is a generated quantity
    :ivar exact_names: Whether every parameter name could be resolved to a
        single entry of ``pars_``. When False, the number of names may differ
        from the number of ranks.
    """

    def __init__(self):
        self.parameter_names: tuple[str, ...] = ()
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.has_log_lik = False
        self.has_simulated_data = False
        self.exact_names = True

    @property
    def ok(self) -> bool:
        """Whether the program passed without errors."""
        return len(self.errors) == 0

    def raise_for_errors(self) -> None:
        """Raise a `ConventionError` listing every error, if there are any.

        :raises ConventionError: If the program has convention errors
        """
        if self.errors:
            raise ConventionError(
                "Stan program does not follow the SBC convention:\n  - "
                + "\n  - ".join(self.errors)
            )

    def warn(self) -> None:
        """Emit every warning through `warnings.warn`."""
        for message in self.warnings:
            warnings.warn(message)

    def __str__(self) -> str:
        lines = [f"Parameters: {', '.join(self.parameter_names) or '(none found)'}"]
        lines.extend(f"ERROR: {message}" for message in self.errors)
        lines.extend(f"WARNING: {message}" for message in self.warnings)
        return "\n".join(lines)


def check_program(code: str) -> ConventionReport:
    """Check a Stan program against the SBC naming convention.

    :param code: Stan program code
    :type code: str

    :returns: Report holding the parameter names derived from ``pars_`` and any
        errors or warnings
    :rtype: ConventionReport

    :raises ConventionError: If the program cannot be split into blocks

    Errors:
        - No ``generated quantities`` block, or no ``pars_`` or ``ranks_`` in it
        - A ``pars_`` that is declared but never given any entries
        - ``ranks_`` and ``pars_`` declared with different literal sizes

    Warnings:
        - An entry of ``pars_`` that is not an underscore-suffixed variable. The
          entry is dropped from the parameter names.
        - A true draw not declared in ``transformed data``
        - A true draw with no matching parameter
        - ``ranks_`` comparisons in a different order than ``pars_``
        - No ``log_lik`` or no ``y_`` generated quantity

    Example:
        >>> report = check_program(open("regression_sbc.stan").read())
        >>> report.parameter_names
        ('alpha', 'beta', 'sigma')
        >>> report.raise_for_errors()
    """
    report = ConventionReport()
    blocks = parse_blocks(code)

    # Everything the convention needs lives in generated quantities
    if "generated quantities" not in blocks:
        report.errors.append("There is no 'generated quantities' block.")
        return report
    gq_statements = split_statements(blocks["generated quantities"])
    gq_declarations = declared_variables(blocks["generated quantities"])

    # Declared variables of the other blocks
    td_declarations = declared_variables(blocks.get("transformed data", ""))
    param_declarations = declared_variables(blocks.get("parameters", ""))
    param_declarations.update(
        declared_variables(blocks.get("transformed parameters", ""))
    )

    # The true draws
    pars_declaration, pars_items = _collect_entries(gq_statements, PARS_VARNAME)
    if pars_declaration is None:
        report.errors.append(
            f"'{PARS_VARNAME}' is not declared in 'generated quantities'."
        )
    names = []
    for item in pars_items:
        if (resolved := true_draw_name(item)) is None:
            report.warnings.append(
                f"'{PARS_VARNAME}' entry '{item}' is not a variable ending in "
                f"'{TRUE_DRAW_SUFFIX}' and is ignored."
            )
            report.exact_names = False
            continue
        name, variable, exact = resolved
        report.exact_names &= exact
        if name in names:
            continue
        names.append(name)

        # The true draw should come from transformed data...
        if variable not in td_declarations:
            report.warnings.append(
                f"True draw '{variable}' is not declared in 'transformed data'."
            )

        # ...and be paired with a parameter
        base = name.split("[")[0]
        if base not in param_declarations:
            report.warnings.append(
                f"True draw '{variable}' has no matching parameter '{base}'."
            )
    report.parameter_names = tuple(names)
    if pars_declaration is not None and not pars_items:
        report.errors.append(
            f"No entries are stored in '{PARS_VARNAME}'; assign the true draws "
            f"when declaring it or element by element."
        )
        report.exact_names = False
    elif pars_declaration is not None and not names:
        report.warnings.append(
            f"Could not determine parameter names from '{PARS_VARNAME}'; "
            f"ranks will be labelled by position."
        )
        report.exact_names = False

    # The rank indicators
    ranks_declaration, ranks_items = _collect_entries(gq_statements, RANKS_VARNAME)
    if ranks_declaration is None:
        report.errors.append(
            f"'{RANKS_VARNAME}' is not declared in 'generated quantities'."
        )
    elif pars_declaration is not None:

        # Declared sizes must agree
        ranks_size = ranks_declaration.literal_size
        pars_size = pars_declaration.literal_size
        if pars_size is None and report.exact_names and names:
            pars_size = len(names)
        if ranks_size is not None and pars_size is not None and ranks_size != pars_size:
            report.errors.append(
                f"'{RANKS_VARNAME}' has {ranks_size} entries but '{PARS_VARNAME}' "
                f"has {pars_size}."
            )

        # Comparisons should follow the order of the true draws
        compared = []
        for item in ranks_items:
            sides = split_top_level(item, sep=">")
            if len(sides) == 2 and (resolved := true_draw_name(sides[1])) is not None:
                if resolved[0] not in compared:
                    compared.append(resolved[0])
        if compared and names and len(compared) == len(names) and compared != names:
            report.warnings.append(
                f"'{RANKS_VARNAME}' compares parameters in the order "
                f"{', '.join(compared)} but '{PARS_VARNAME}' holds "
                f"{', '.join(names)}."
            )

    # Optional outputs
    report.has_log_lik = LOG_LIK_VARNAME in gq_declarations
    if not report.has_log_lik:
        report.warnings.append(
            f"No '{LOG_LIK_VARNAME}' generated quantity; leave-one-out diagnostics "
            "will be unavailable."
        )
    report.has_simulated_data = SIMULATED_DATA_VARNAME in gq_declarations
    if not report.has_simulated_data:
        report.warnings.append(
            f"No '{SIMULATED_DATA_VARNAME}' generated quantity; simulated data will "
            "not be recorded."
        )

    return report


def check_file(path: str) -> ConventionReport:
    """Check a Stan program file against the SBC naming convention.

    :param path: Path to a ``.stan`` file
    :type path: str

    :returns: Report as returned by `check_program`
    :rtype: ConventionReport
    """
    with open(path, "r", encoding="utf-8") as f:
        return check_program(f.read())
