# Configuration file for Sphinx documentation builder

project = "spotbot"
copyright = "2026, Trading System Team"
author = "Trading System Team"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.viewcode",
    "sphinx.ext.napoleon",
    "sphinx_rtd_theme",
]

templates_path = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

html_theme = "sphinx_rtd_theme"
html_theme_options = {
    "display_version": True,
    "prev_next_buttons_location": "bottom",
}
html_static_path = ["_static"]

# Docstrings are Google style (Args/Returns/Raises)
napoleon_google_docstring = True
napoleon_numpy_docstring = False

autodoc_member_order = "bysource"
autodoc_typehints = "description"
autodoc_mock_imports = ["requests", "urllib3", "yaml", "pydantic"]
