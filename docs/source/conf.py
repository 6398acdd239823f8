import os
import sys
from datetime import date

sys.path.insert(0, os.path.abspath("../.."))

import campuslive  # noqa: E402

project = "campuslive"
author = "campuslive Contributors"
copyright = f"{date.today().year}, campuslive Contributors"

version = campuslive.__version__
release = campuslive.__version__

extensions = [
    "myst_parser",
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
]

autodoc_mock_imports = ["websockets", "httpx", "aiosqlite"]

templates_path = ["_templates"]
exclude_patterns: list[str] = []
source_suffix = [".rst", ".md"]
master_doc = "index"
language = "en"

html_theme = "sphinx_book_theme"
html_title = f"campuslive {version} Documentation"

html_theme_options = {
    "show_toc_level": 2,
    "navbar_end": ["theme-switcher", "navbar-icon-links"],
}
