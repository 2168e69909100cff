# Configuration file for the Sphinx documentation builder.

# Basic information about the project.
project = "StanSBC"
copyright = "%Y, Microsoft Corporation"
author = "StanSBC developers"
release = "0.1.0"

# Extensions
extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.viewcode",  # add links to source code
    "sphinx.ext.intersphinx",  # optional cross-references
]

autosummary_generate = True  # Turn on sphinx.ext.autosummary
autodoc_mock_imports = ["cmdstanpy"]  # Documentation builds need no CmdStan

templates_path = ["_templates"]  # Path to templates
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]  # Patterns to ignore

# Cross-references to the libraries results are built on
intersphinx_mapping = {
    "arviz": ("https://python.arviz.org/en/stable/", None),
    "xarray": ("https://docs.xarray.dev/en/stable/", None),
}

# HTML output settings
html_theme = "alabaster"

# Set the maximum line length for function signatures in the documentation
maximum_signature_line_length = 100
