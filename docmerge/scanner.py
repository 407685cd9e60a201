"""
Scanner - Detección de marcadores en el texto de los párrafos

Localiza los marcadores ``{{ruta}}``, ``{{#ruta}}``, ``{{/ruta}}`` y
``{{ruta|formato}}`` sobre el texto lógico de cada párrafo, aunque Word los
haya partido en varios runs, y comprueba que los bloques estén emparejados.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import List, Optional, Tuple

from lxml import etree

from docmerge.errors import (
    FormatError,
    MalformedTemplateError,
    TemplateError,
    UnmatchedBlockError,
)
from docmerge.run_model import W_P, W_TR, ParagraphText
from docmerge.schema_models import RenderOptions


IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
INDEX = re.compile(r'^[0-9]+$')
SCOPE_VARIABLE = re.compile(r'^\$[A-Za-z_][A-Za-z0-9_]*$')
CURRENT_ELEMENT = ('.', 'this')

EXCERPT_LENGTH = 60


class TokenKind(str, Enum):
    SCALAR = "scalar"
    BLOCK_START = "block-start"
    BLOCK_END = "block-end"


@dataclass(frozen=True)
class MergeToken:
    """Marcador localizado en un párrafo."""
    raw: str
    path: str
    kind: TokenKind
    start: int
    end: int
    first_run: int
    last_run: int
    format_spec: Optional[str] = None

    @property
    def is_block(self) -> bool:
        return self.kind != TokenKind.SCALAR


# ==============================================================================
# SINTAXIS DE RUTAS
# ==============================================================================

def parse_path(path: str) -> Tuple[str, ...]:
    """
    Divide una ruta en segmentos validando su sintaxis.

    Args:
        path: Ruta tal como aparece en el marcador (p.ej. ``cliente.direccion.ciudad``)

    Returns:
        Tupla de segmentos; ``('.',)`` para el elemento actual

    Raises:
        MalformedTemplateError: Si algún segmento no es un identificador o índice
    """
    if path == '.':
        return ('.',)

    segments = tuple(path.split('.'))
    for position, segment in enumerate(segments):
        if IDENTIFIER.match(segment) or INDEX.match(segment):
            continue
        if position == 0 and SCOPE_VARIABLE.match(segment):
            continue
        raise MalformedTemplateError(f"Ruta inválida '{path}'", path=path)

    return segments


@lru_cache(maxsize=32)
def token_pattern(open_delimiter: str, close_delimiter: str) -> re.Pattern:
    return re.compile(re.escape(open_delimiter) + '(.*?)' + re.escape(close_delimiter),
                      re.DOTALL)


def describe_location(part_name: str, view: ParagraphText) -> str:
    """Ubicación legible: parte y extracto del párrafo."""
    excerpt = view.text.strip()
    if len(excerpt) > EXCERPT_LENGTH:
        excerpt = excerpt[:EXCERPT_LENGTH - 1] + '…'
    return f"{part_name}: «{excerpt}»"


# ==============================================================================
# ESCANEO
# ==============================================================================

def _classify(raw: str, body: str, options: RenderOptions) -> Tuple[TokenKind, str, Optional[str]]:
    body = body.strip()
    kind = TokenKind.SCALAR

    if body.startswith(options.block_start_prefix):
        kind = TokenKind.BLOCK_START
        body = body[len(options.block_start_prefix):].strip()
    elif body.startswith(options.block_end_prefix):
        kind = TokenKind.BLOCK_END
        body = body[len(options.block_end_prefix):].strip()

    spec = None
    if options.format_separator in body:
        body, spec = body.split(options.format_separator, 1)
        body = body.strip()
        spec = spec.strip()
        if kind != TokenKind.SCALAR:
            raise MalformedTemplateError("Un marcador de bloque no admite formato",
                                         token=raw, path=body)
        if not spec:
            raise FormatError("Especificador de formato vacío", spec=spec,
                              token=raw, path=body)

    if not body:
        raise MalformedTemplateError("Marcador sin ruta", token=raw)

    try:
        parse_path(body)
    except MalformedTemplateError as e:
        raise e.locate(token=raw)

    return kind, body, spec


def scan_paragraph(view: ParagraphText, options: RenderOptions) -> List[MergeToken]:
    """
    Extrae los marcadores de un párrafo en orden.

    Args:
        view: Texto lógico del párrafo
        options: Opciones con delimitadores y prefijos

    Returns:
        Lista de MergeToken

    Raises:
        MalformedTemplateError: Delimitador sin cerrar o ruta inválida
        FormatError: Especificador vacío
    """
    open_delimiter = options.delimiters.open
    close_delimiter = options.delimiters.close
    text = view.text

    if open_delimiter not in text:
        return []

    tokens = []
    last_end = 0
    for match in token_pattern(open_delimiter, close_delimiter).finditer(text):
        if open_delimiter in text[last_end:match.start()]:
            raise MalformedTemplateError("Delimitador de apertura sin cerrar")

        raw = match.group(0)
        kind, path, spec = _classify(raw, match.group(1), options)
        first_run, last_run = view.run_span(match.start(), match.end())
        tokens.append(MergeToken(
            raw=raw,
            path=path,
            kind=kind,
            start=match.start(),
            end=match.end(),
            first_run=first_run,
            last_run=last_run,
            format_spec=spec,
        ))
        last_end = match.end()

    if open_delimiter in text[last_end:]:
        raise MalformedTemplateError("Delimitador de apertura sin cerrar")

    return tokens


def _contains(unit: etree._Element, paragraph: etree._Element) -> bool:
    return paragraph is unit or any(parent is unit for parent in paragraph.iterancestors())


def _unit_of(ancestor: etree._Element, paragraph: etree._Element) -> etree._Element:
    node = paragraph
    while node is not ancestor and node.getparent() is not ancestor:
        node = node.getparent()
    return node


def _delimiting_units(start: etree._Element, end: etree._Element):
    """
    Unidades que se copian al expandir un bloque: los párrafos del inicio y del
    cierre, o sus filas cuando el bloque abarca varias celdas de una tabla.
    """
    if start is end:
        return start, start
    ancestors = [start] + list(start.iterancestors())
    common = next(node for node in [end] + list(end.iterancestors()) if node in ancestors)
    if common.tag == W_TR:
        return common, common
    return _unit_of(common, start), _unit_of(common, end)


def _check_adjacent_blocks(blocks):
    """
    Un bloque no puede empezar en la unidad que cierra otro bloque anterior y
    terminar fuera de ella: la copia de esa unidad llevaría una apertura sin
    su cierre.
    """
    for closed in blocks:
        _, end_unit = closed['units']
        for opened in blocks:
            if opened['order'] <= closed['closed_at']:
                continue
            if (_contains(end_unit, opened['start'])
                    and not _contains(end_unit, opened['end'])):
                token = opened['token']
                raise MalformedTemplateError(
                    f"El bloque '{token.path}' empieza donde termina '{closed['token'].path}'",
                    token=token.raw, path=token.path, location=opened['location']
                )


def scan_part(root: etree._Element, options: RenderOptions,
              part_name: str) -> List[MergeToken]:
    """
    Escanea todos los párrafos de una parte y empareja los bloques.

    Args:
        root: Raíz de la parte
        options: Opciones de renderizado
        part_name: Nombre de la parte (para las ubicaciones)

    Returns:
        Marcadores de la parte en orden de documento

    Raises:
        MalformedTemplateError: Sintaxis inválida o bloques solapados
        UnmatchedBlockError: Aperturas o cierres sin pareja
    """
    tokens = []
    stack = []
    blocks = []

    for paragraph in root.iter(W_P):
        view = ParagraphText(paragraph)
        location = describe_location(part_name, view)

        try:
            found = scan_paragraph(view, options)
        except TemplateError as e:
            raise e.locate(location=location)

        for token in found:
            if token.kind == TokenKind.BLOCK_START:
                stack.append((token, location, paragraph, len(tokens)))
            elif token.kind == TokenKind.BLOCK_END:
                if stack and stack[-1][0].path == token.path:
                    opened, opened_location, start, order = stack.pop()
                    blocks.append({
                        'token': opened,
                        'location': opened_location,
                        'start': start,
                        'end': paragraph,
                        'order': order,
                        'closed_at': len(tokens),
                        'units': _delimiting_units(start, paragraph),
                    })
                elif any(opened[0].path == token.path for opened in stack):
                    raise MalformedTemplateError(
                        f"Bloques solapados: '{token.path}' se cierra antes que '{stack[-1][0].path}'",
                        token=token.raw, path=token.path, location=location
                    )
                else:
                    raise UnmatchedBlockError(
                        f"Cierre de bloque sin apertura '{token.path}'",
                        token=token.raw, path=token.path, location=location
                    )
            tokens.append(token)

    if stack:
        token, location = stack[-1][:2]
        raise UnmatchedBlockError(f"Bloque '{token.path}' sin cierre",
                                  token=token.raw, path=token.path, location=location)

    _check_adjacent_blocks(blocks)
    return tokens
