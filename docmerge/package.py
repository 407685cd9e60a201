"""
Package - Lectura y escritura del contenedor .docx

Un .docx es un zip de partes XML enlazadas por relaciones. Esta capa lee
todas las entradas conservando su orden y metadatos, localiza la parte
principal y las partes auxiliares (encabezados, pies, notas) y reescribe el
paquete sustituyendo solo las partes indicadas.
"""

import io
import posixpath
import zipfile
from typing import Dict, List, Optional, Tuple

from docx.opc.constants import RELATIONSHIP_TYPE as RT
from lxml import etree

from docmerge.errors import PackageError
from docmerge.utils import setup_logger

logger = setup_logger(__name__)

RELS_NS = 'http://schemas.openxmlformats.org/package/2006/relationships'
PACKAGE_RELS = '_rels/.rels'
DEFAULT_MAIN_PART = 'word/document.xml'

AUXILIARY_RELATIONSHIP_TYPES = (RT.HEADER, RT.FOOTER, RT.FOOTNOTES, RT.ENDNOTES)


def rels_name_for(part_name: str) -> str:
    """Devuelve el nombre de la parte de relaciones de ``part_name``."""
    directory, filename = posixpath.split(part_name)
    return posixpath.join(directory, '_rels', f'{filename}.rels')


def resolve_target(source_part: str, target: str) -> str:
    """Resuelve el destino de una relación respecto a la parte origen."""
    if target.startswith('/'):
        return target.lstrip('/')
    base = posixpath.dirname(source_part)
    return posixpath.normpath(posixpath.join(base, target))


class OoxmlPackage:
    """
    Paquete OOXML en memoria.

    Es de solo lectura: ``write`` genera un archivo nuevo y nunca modifica
    las entradas cargadas.
    """

    def __init__(self, entries: List[Tuple[zipfile.ZipInfo, bytes]], main_part: str):
        self._entries = entries
        self._index = {info.filename: data for info, data in entries}
        self.main_part = main_part

    @classmethod
    def from_bytes(cls, data: bytes) -> "OoxmlPackage":
        """
        Carga un paquete desde sus bytes.

        Args:
            data: Contenido del archivo .docx

        Returns:
            OoxmlPackage cargado

        Raises:
            PackageError: Si no es un zip legible o falta la parte principal
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                entries = [(info, zf.read(info)) for info in zf.infolist()]
        except (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError,
                EOFError, ValueError) as e:
            raise PackageError(f"El recurso no es un paquete .docx legible: {e}") from e

        package = cls(entries, main_part='')
        package.main_part = package._find_main_part()

        if package.main_part not in package._index:
            raise PackageError(
                f"Falta la parte principal del documento: {package.main_part}",
                path=package.main_part
            )

        logger.debug(f"Paquete cargado: {len(entries)} partes, principal {package.main_part}")
        return package

    # ==========================================================================
    # ACCESO A PARTES
    # ==========================================================================

    @property
    def part_names(self) -> List[str]:
        """Nombres de las partes en el orden del archivo."""
        return [info.filename for info, _ in self._entries]

    def has_part(self, name: str) -> bool:
        return name in self._index

    def read(self, name: str) -> bytes:
        """Devuelve los bytes de una parte."""
        try:
            return self._index[name]
        except KeyError:
            raise PackageError(f"Parte no encontrada en el paquete: {name}", path=name) from None

    def relationships(self, source_part: str) -> List[Dict[str, str]]:
        """
        Lee las relaciones de una parte.

        Args:
            source_part: Parte origen ('' para las relaciones del paquete)

        Returns:
            Lista de diccionarios con Id, Type, Target y TargetMode
        """
        rels_name = rels_name_for(source_part) if source_part else PACKAGE_RELS
        if rels_name not in self._index:
            return []

        try:
            root = etree.fromstring(self._index[rels_name],
                                    etree.XMLParser(resolve_entities=False))
        except etree.XMLSyntaxError as e:
            raise PackageError(f"Relaciones mal formadas en {rels_name}: {e}",
                               path=rels_name) from e

        rels = []
        for rel in root.iter(f'{{{RELS_NS}}}Relationship'):
            rels.append({
                'id': rel.get('Id', ''),
                'type': rel.get('Type', ''),
                'target': rel.get('Target', ''),
                'mode': rel.get('TargetMode', 'Internal'),
            })
        return rels

    def _find_main_part(self) -> str:
        for rel in self.relationships(''):
            if rel['type'] == RT.OFFICE_DOCUMENT and rel['mode'] != 'External':
                return resolve_target('', rel['target'])
        return DEFAULT_MAIN_PART

    def auxiliary_parts(self) -> List[str]:
        """
        Partes de texto referenciadas por la parte principal.

        Returns:
            Encabezados, pies de página, notas al pie y notas finales presentes
            en el paquete, en el orden de sus relaciones y sin duplicados
        """
        names = []
        for rel in self.relationships(self.main_part):
            if rel['type'] not in AUXILIARY_RELATIONSHIP_TYPES or rel['mode'] == 'External':
                continue
            name = resolve_target(self.main_part, rel['target'])
            if name in self._index and name not in names:
                names.append(name)
        return names

    # ==========================================================================
    # ESCRITURA
    # ==========================================================================

    def write(self, replacements: Optional[Dict[str, bytes]] = None,
              compression_level: Optional[int] = None) -> bytes:
        """
        Genera un archivo nuevo con las partes sustituidas.

        Las entradas conservan orden, nombre, fecha, método de compresión y
        atributos, de modo que entradas iguales producen bytes iguales.

        Args:
            replacements: Diccionario {nombre_parte: bytes_nuevos}
            compression_level: Nivel deflate (None = por defecto de zlib)

        Returns:
            Bytes del .docx resultante
        """
        replacements = replacements or {}
        unknown = set(replacements) - set(self._index)
        if unknown:
            raise PackageError(f"Partes desconocidas en el reemplazo: {sorted(unknown)}")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as zf:
            for info, data in self._entries:
                target = zipfile.ZipInfo(info.filename, date_time=info.date_time)
                target.compress_type = info.compress_type
                target.external_attr = info.external_attr
                target.create_system = info.create_system
                zf.writestr(target, replacements.get(info.filename, data),
                            compresslevel=compression_level)

        return buffer.getvalue()
