import pathlib
import sys

# backend/ holds the ``app`` package.
BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.insert(0, str(BACKEND_ROOT))

project = 'CamperMap Layers API'
copyright = '2026, CamperMap contributors'
author = 'CamperMap contributors'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.autosummary',
    'sphinx.ext.intersphinx',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}
exclude_patterns = ['_build', '.venv', '.pytest_cache']

autosummary_generate = True
autodoc_member_order = 'bysource'
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}
# Only needed for the postgres cache backend.
autodoc_mock_imports = ['psycopg2']

always_document_param_types = True
typehints_use_signature_return = True

napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_private_with_doc = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'httpx': ('https://www.python-httpx.org', None),
}

html_theme = 'sphinx_rtd_theme'
html_title = 'CamperMap Layers'
html_theme_options = {
    'navigation_depth': 3,
    'collapse_navigation': False,
}
