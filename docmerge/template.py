"""
Template - API pública del motor de plantillas

Un Template se carga una sola vez y se renderiza cuantas veces haga falta,
incluso desde varios hilos: cada renderizado trabaja sobre su propia copia
de las partes y nunca modifica la plantilla.

Uso:
    template = Template.from_file(Path("factura.docx"))
    output = template.render({"cliente": {"nombre": "Ada"}})
"""

from importlib import resources
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

from docmerge.errors import TemplateError
from docmerge.merge_engine import MergeEngine
from docmerge.package import OoxmlPackage
from docmerge.run_model import drawing_ids, parse_part, renumber_drawing_ids, serialize_part
from docmerge.scanner import MergeToken, scan_part
from docmerge.schema_models import RenderOptions
from docmerge.utils import ensure_directory, safe_filename, setup_logger

logger = setup_logger(__name__)


class Template:
    """
    Plantilla .docx cargada y validada.

    Attributes:
        options: Opciones de renderizado
        main_part: Nombre de la parte principal del documento
        target_parts: Partes de texto que se combinan con los datos
    """

    def __init__(self, package: OoxmlPackage, options: Optional[RenderOptions] = None):
        self.options = options or RenderOptions()
        self._package = package
        self.main_part = package.main_part

        self.target_parts = [package.main_part]
        if self.options.process_headers_footers:
            self.target_parts.extend(package.auxiliary_parts())

        # Validación temprana: sintaxis y emparejamiento de bloques
        self._tokens: Dict[str, List[MergeToken]] = {}
        for name in self.target_parts:
            root = parse_part(package.read(name), name)
            self._tokens[name] = scan_part(root, self.options, name)

        logger.info(f"Plantilla cargada: {len(self.target_parts)} partes de texto, "
                    f"{sum(len(t) for t in self._tokens.values())} marcadores")

    # ==========================================================================
    # CARGA
    # ==========================================================================

    @classmethod
    def from_bytes(cls, data: bytes, options: Optional[RenderOptions] = None) -> "Template":
        """
        Carga una plantilla desde sus bytes.

        Raises:
            PackageError: Si no es un .docx legible
            MalformedTemplateError: XML o marcadores mal formados
            UnmatchedBlockError: Bloques sin emparejar
        """
        return cls(OoxmlPackage.from_bytes(data), options)

    @classmethod
    def from_file(cls, template_path: Path, options: Optional[RenderOptions] = None) -> "Template":
        """
        Carga una plantilla desde un archivo.

        Raises:
            FileNotFoundError: Si el archivo no existe
        """
        template_path = Path(template_path)
        if not template_path.exists():
            raise FileNotFoundError(f"Plantilla no encontrada: {template_path}")

        logger.info(f"Cargando plantilla: {template_path}")
        return cls.from_bytes(template_path.read_bytes(), options)

    @classmethod
    def from_stream(cls, stream: BinaryIO, options: Optional[RenderOptions] = None) -> "Template":
        """Carga una plantilla desde un flujo binario abierto."""
        return cls.from_bytes(stream.read(), options)

    @classmethod
    def from_resource(cls, package: str, resource: str,
                      options: Optional[RenderOptions] = None) -> "Template":
        """
        Carga una plantilla incluida como recurso de un paquete Python.

        Args:
            package: Paquete que contiene el recurso (p.ej. ``"mi_app.plantillas"``)
            resource: Nombre del archivo dentro del paquete
        """
        data = resources.files(package).joinpath(resource).read_bytes()
        return cls.from_bytes(data, options)

    # ==========================================================================
    # INSPECCIÓN
    # ==========================================================================

    @property
    def parts(self) -> List[str]:
        """Todas las partes del paquete en orden."""
        return self._package.part_names

    def tokens(self, part: Optional[str] = None) -> List[MergeToken]:
        """Marcadores de una parte, o de todas las partes de texto."""
        if part is not None:
            return list(self._tokens.get(part, []))
        return [token for name in self.target_parts for token in self._tokens[name]]

    def variables(self) -> List[str]:
        """Rutas distintas usadas en la plantilla, ordenadas."""
        return sorted({token.path for token in self.tokens()})

    # ==========================================================================
    # RENDERIZADO
    # ==========================================================================

    def render(self, data: Any = None) -> bytes:
        """
        Combina la plantilla con los datos.

        Args:
            data: Diccionario u objeto con los datos (None equivale a vacío)

        Returns:
            Bytes del .docx generado

        Raises:
            TemplateError: Cualquier fallo de combinación; no hay salida parcial
        """
        if data is None:
            data = {}

        engine = MergeEngine(self.options)
        rendered = {}
        reserved = []

        for name in self.target_parts:
            if name != self.main_part and not self._tokens[name]:
                reserved.extend(drawing_ids(parse_part(self._package.read(name), name)))
                continue
            root = parse_part(self._package.read(name), name)
            engine.merge_part(root, data, name)
            rendered[name] = root

        renumbered = renumber_drawing_ids(rendered.values(), reserved)
        if renumbered:
            logger.debug(f"Renumerados {renumbered} identificadores de dibujo")

        replacements = {name: serialize_part(root) for name, root in rendered.items()}
        output = self._package.write(replacements, self.options.compression_level)

        logger.info(f"Documento generado: {len(output)} bytes")
        return output

    def render_to_file(self, data: Any, output_path: Path) -> Path:
        """Renderiza y guarda el resultado en ``output_path``."""
        output_path = Path(output_path)
        ensure_directory(output_path.parent)
        output_path.write_bytes(self.render(data))
        logger.info(f"Documento guardado: {output_path}")
        return output_path


# ==============================================================================
# FUNCIONES DE CONVENIENCIA
# ==============================================================================

def render_docx_file(template_path: Path, data: Any, output_dir: Path,
                     output_filename: str,
                     options: Optional[RenderOptions] = None) -> Path:
    """
    Renderiza una plantilla y guarda el documento en un directorio.

    Args:
        template_path: Path a la plantilla Word (.docx)
        data: Datos de la combinación
        output_dir: Directorio de salida (se crea si no existe)
        output_filename: Nombre del archivo de salida
        options: Opciones de renderizado

    Returns:
        Path al archivo generado
    """
    logger.info(f"Renderizando documento desde: {template_path}")

    safe_name = safe_filename(output_filename)
    if not safe_name.endswith('.docx'):
        safe_name += '.docx'

    template = Template.from_file(template_path, options)
    return template.render_to_file(data, ensure_directory(output_dir) / safe_name)


def validate_template(template_path: Path, options: Optional[RenderOptions] = None) -> bool:
    """
    Valida que una plantilla Word sea accesible y esté bien formada.

    Args:
        template_path: Path a la plantilla
        options: Opciones de renderizado

    Returns:
        True si la plantilla es válida
    """
    template_path = Path(template_path)
    if not template_path.exists():
        logger.error(f"Plantilla no encontrada: {template_path}")
        return False

    if not template_path.is_file():
        logger.error(f"La ruta no es un archivo: {template_path}")
        return False

    try:
        Template.from_file(template_path, options)
    except TemplateError as e:
        logger.error(f"Plantilla inválida {template_path.name}: {e}")
        return False

    return True


def get_template_variables(template_path: Path,
                           options: Optional[RenderOptions] = None) -> List[str]:
    """
    Extrae las rutas de datos utilizadas en una plantilla.

    Args:
        template_path: Path a la plantilla

    Returns:
        Lista ordenada de rutas encontradas
    """
    return Template.from_file(template_path, options).variables()
