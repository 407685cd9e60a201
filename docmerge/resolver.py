"""
Resolver - Resolución de rutas contra los datos del llamador

Evalúa rutas con puntos sobre diccionarios, objetos (dataclasses, modelos
pydantic, objetos planos) y secuencias, dentro de una cadena de ámbitos que
abren los bloques repetidos.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import fields, is_dataclass
from datetime import date, time
from decimal import Decimal
from functools import cached_property
from numbers import Number
from typing import Any, List, Optional

from docmerge.errors import FormatError, UnresolvedPathError
from docmerge.scanner import CURRENT_ELEMENT, parse_path


class _Absent:
    """Marca de valor ausente, distinta de None."""

    def __bool__(self):
        return False

    def __repr__(self):
        return 'ABSENT'


ABSENT = _Absent()


def is_iterable_value(value: Any) -> bool:
    """Colecciones repetibles: iterables que no son texto ni diccionarios."""
    return (isinstance(value, Iterable)
            and not isinstance(value, (str, bytes, bytearray, Mapping)))


def _is_data_attribute(value: Any, name: str) -> bool:
    """Atributos de instancia, campos de dataclass o pydantic y propiedades."""
    owner = type(value)
    if name in getattr(value, '__dict__', {}):
        return True
    if is_dataclass(value) and name in {f.name for f in fields(value)}:
        return True
    if name in getattr(owner, 'model_fields', {}) or name in getattr(value, '_fields', ()):
        return True
    if name in getattr(owner, '__slots__', ()):
        return True
    return isinstance(getattr(owner, name, None), (property, cached_property))


def read_field(value: Any, name: str) -> Any:
    """
    Lee un campo de un valor.

    Args:
        value: Diccionario, secuencia u objeto
        name: Nombre del campo o índice decimal

    Returns:
        El valor del campo o ABSENT si no existe
    """
    if value is None or value is ABSENT:
        return ABSENT

    if isinstance(value, Mapping):
        if name in value:
            return value[name]
        if name.isdigit() and int(name) in value:
            return value[int(name)]
        return ABSENT

    if name.isdigit():
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            index = int(name)
            return value[index] if index < len(value) else ABSENT
        return ABSENT

    if name.startswith('_') or not _is_data_attribute(value, name):
        return ABSENT

    try:
        field = getattr(value, name)
    except AttributeError:
        return ABSENT

    if callable(field):
        return ABSENT

    return field


# ==============================================================================
# CONTEXTO
# ==============================================================================

class RenderContext:
    """
    Ámbito de renderizado.

    El ámbito raíz contiene los datos del llamador; cada repetición de un
    bloque abre un ámbito hijo con el elemento actual y su posición. Los
    ámbitos hijos ocultan a sus padres pero nunca los modifican.
    """

    def __init__(self, current: Any, parent: Optional["RenderContext"] = None,
                 index: Optional[int] = None, count: Optional[int] = None):
        self.current = current
        self.parent = parent
        self.index = index
        self.count = count

    def child(self, element: Any, index: Optional[int] = None,
              count: Optional[int] = None) -> "RenderContext":
        return RenderContext(element, parent=self, index=index, count=count)

    def _variable(self, name: str) -> Any:
        if self.index is None:
            return ABSENT
        if name == '$index':
            return self.index
        if name == '$number':
            return self.index + 1
        if name == '$first':
            return self.index == 0
        if name == '$last':
            return self.index == self.count - 1
        if name == '$count':
            return self.count
        return ABSENT

    def lookup(self, name: str) -> Any:
        """Busca el primer segmento de una ruta del ámbito interior al exterior."""
        scope = self
        while scope is not None:
            if name.startswith('$'):
                found = scope._variable(name)
            else:
                found = read_field(scope.current, name)
            if found is not ABSENT:
                return found
            scope = scope.parent
        return ABSENT


# ==============================================================================
# RESOLUCIÓN
# ==============================================================================

class PathResolver:
    """Resuelve rutas con semántica estricta o permisiva."""

    def __init__(self, strict: bool = False):
        self.strict = strict

    def resolve(self, path: str, context: RenderContext) -> Any:
        """
        Resuelve una ruta.

        Args:
            path: Ruta con puntos
            context: Ámbito actual

        Returns:
            El valor, o ABSENT en modo permisivo

        Raises:
            UnresolvedPathError: Ruta ausente en modo estricto
        """
        segments = parse_path(path)

        if segments[0] in CURRENT_ELEMENT:
            value = context.current
        else:
            value = context.lookup(segments[0])

        for segment in segments[1:]:
            value = read_field(value, segment)
            if value is ABSENT:
                break

        if value is ABSENT and self.strict:
            raise UnresolvedPathError(f"No se pudo resolver la ruta '{path}'", path=path)

        return value

    def resolve_block(self, path: str, context: RenderContext) -> List[Any]:
        """
        Resuelve la ruta de un bloque a la lista de elementos a repetir.

        Una colección se repite por elemento; un diccionario u objeto abre un
        único ámbito; un booleano actúa como condición; ausente o None no
        genera repeticiones.

        Raises:
            FormatError: Si el valor es texto, número o fecha
        """
        return self._block_items(path, self.resolve(path, context), context)

    def block_scopes(self, path: str, context: RenderContext) -> List[RenderContext]:
        """
        Ámbitos hijos de un bloque, uno por repetición.

        Solo la repetición sobre una colección fija $index, $number, $first,
        $last y $count; las condiciones y los objetos únicos dejan visibles
        los del bucle que los contiene.
        """
        value = self.resolve(path, context)
        items = self._block_items(path, value, context)

        if is_iterable_value(value):
            return [context.child(element, position, len(items))
                    for position, element in enumerate(items)]
        return [context.child(element) for element in items]

    @staticmethod
    def _block_items(path: str, value: Any, context: RenderContext) -> List[Any]:
        if value is ABSENT or value is None or value is False:
            return []
        if value is True:
            return [context.current]
        if isinstance(value, (str, bytes, bytearray, Number, Decimal, date, time)):
            raise FormatError(
                f"La ruta de bloque '{path}' no es una colección ({type(value).__name__})",
                path=path
            )
        if isinstance(value, Mapping):
            return [value]
        if is_iterable_value(value):
            return list(value)
        return [value]
