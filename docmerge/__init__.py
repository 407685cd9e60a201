"""
docmerge - Motor de combinación de plantillas Word (.docx)

Carga una plantilla con marcadores {{ruta}} y bloques {{#lista}}...{{/lista}},
la combina con un diccionario u objeto de datos y genera un .docx nuevo.
"""

from docmerge.errors import (
    FormatError,
    MalformedTemplateError,
    PackageError,
    TemplateError,
    UnmatchedBlockError,
    UnresolvedPathError,
)
from docmerge.schema_models import Delimiters, RenderOptions
from docmerge.config_loader import load_render_options
from docmerge.template import (
    Template,
    get_template_variables,
    render_docx_file,
    validate_template,
)

__version__ = "1.0.0"

__all__ = [
    "Template",
    "RenderOptions",
    "Delimiters",
    "load_render_options",
    "render_docx_file",
    "validate_template",
    "get_template_variables",
    "TemplateError",
    "PackageError",
    "MalformedTemplateError",
    "UnmatchedBlockError",
    "UnresolvedPathError",
    "FormatError",
]
