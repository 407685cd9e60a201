"""
Merge Engine - Combinación de una parte con los datos

Recorre el árbol de una parte en orden de documento, sustituye los
marcadores simples por sus valores formateados y expande los bloques
repetidos, a nivel de párrafo o de fila de tabla según la posición de sus
marcadores de apertura y cierre.
"""

import itertools
from copy import deepcopy
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from lxml import etree

from docmerge.errors import FormatError, MalformedTemplateError, TemplateError
from docmerge.formatter import ValueFormatter
from docmerge.resolver import PathResolver, RenderContext
from docmerge.run_model import (
    W_ENDNOTE,
    W_FOOTNOTE,
    W_P,
    W_SDT,
    W_SDT_CONTENT,
    W_TBL,
    W_TC,
    W_TR,
    W_TXBX_CONTENT,
    ParagraphText,
    body_container,
    ensure_cell_paragraph,
    expand_line_breaks,
    is_blank_unit,
    owning_paragraph,
    strip_revision_ids,
)
from docmerge.scanner import (
    MergeToken,
    TokenKind,
    describe_location,
    scan_paragraph,
    scan_part,
)
from docmerge.schema_models import RenderOptions
from docmerge.utils import has_invalid_xml_chars, setup_logger, strip_invalid_xml_chars

logger = setup_logger(__name__)


# ==============================================================================
# NAVEGACIÓN DEL ÁRBOL
# ==============================================================================

def child_of(container: etree._Element, element: etree._Element) -> Optional[etree._Element]:
    """Ancestro de ``element`` (o él mismo) que es hijo directo de ``container``."""
    current = element
    while current is not None and current.getparent() is not container:
        current = current.getparent()
    return current


def common_ancestor(first: etree._Element, second: etree._Element) -> Optional[etree._Element]:
    ancestors = [first] + list(first.iterancestors())
    for candidate in itertools.chain([second], second.iterancestors()):
        if candidate in ancestors:
            return candidate
    return None


def is_within(element: etree._Element, ancestor: etree._Element) -> bool:
    return any(parent is ancestor for parent in element.iterancestors())


def row_cells(row: etree._Element) -> List[etree._Element]:
    """Celdas de la fila, incluidas las envueltas en controles de contenido."""
    cells = []
    for cell in row.iter(W_TC):
        parent = cell.getparent()
        while parent is not None and parent.tag != W_TR:
            parent = parent.getparent()
        if parent is row:
            cells.append(cell)
    return cells


# ==============================================================================
# MOTOR
# ==============================================================================

class MergeEngine:
    """
    Combina partes de un documento con un objeto de datos.

    Cada renderizado usa su propia instancia; el motor solo modifica el
    árbol de trabajo que recibe y nunca los datos del llamador.
    """

    def __init__(self, options: RenderOptions):
        self.options = options
        self.resolver = PathResolver(strict=options.strict)
        self.formatter = ValueFormatter(options)
        self.part_name = ''

    def merge_part(self, root: etree._Element, data: Any, part_name: str):
        """
        Combina una parte completa.

        Args:
            root: Raíz de la parte (árbol de trabajo, se modifica)
            data: Objeto de datos raíz
            part_name: Nombre de la parte (para las ubicaciones de error)

        Raises:
            TemplateError: Cualquier fallo; no se produce salida parcial
        """
        self.part_name = part_name
        scan_part(root, self.options, part_name)
        self._merge_container(body_container(root), RenderContext(data))

    # ==========================================================================
    # CONTENEDORES DE BLOQUES
    # ==========================================================================

    def _merge_container(self, container: etree._Element, ctx: RenderContext,
                         start: int = 0, stop: Optional[int] = None) -> int:
        """
        Combina los hijos ``container[start:stop]``.

        Returns:
            Número de hijos que ocupan el rango tras la combinación
        """
        whole = stop is None
        stop = len(container) if stop is None else stop
        index = start

        while index < stop:
            child = container[index]
            length = len(container)
            advance = 1

            if child.tag == W_P:
                advance = self._merge_paragraph(container, index, stop, ctx)
            elif child.tag == W_TBL:
                self._merge_rows(child, ctx)
                if next(child.iter(W_TR), None) is None:
                    container.remove(child)
                    advance = 0
            elif child.tag == W_SDT:
                content = child.find(W_SDT_CONTENT)
                if content is not None:
                    self._merge_container(content, ctx)
            elif child.tag in (W_FOOTNOTE, W_ENDNOTE):
                self._merge_container(child, ctx)

            stop += len(container) - length
            index += advance

        if whole and container.tag == W_TC:
            ensure_cell_paragraph(container)

        return stop - start

    def _merge_paragraph(self, container: etree._Element, index: int, stop: int,
                         ctx: RenderContext) -> int:
        paragraph = container[index]
        view = ParagraphText(paragraph)
        tokens = self._scan(view)
        blocks = [token for token in tokens if token.is_block]

        if not blocks:
            self._render_scalars(view, tokens, ctx)
            self._merge_text_boxes(paragraph, ctx)
            return 1

        start_token = blocks[0]
        location = describe_location(self.part_name, view)
        if start_token.kind == TokenKind.BLOCK_END:
            raise MalformedTemplateError("Cierre de bloque fuera de su región",
                                         token=start_token.raw, path=start_token.path,
                                         location=location)

        after_start = tokens[tokens.index(start_token) + 1:]
        text_boxes = [box for box in paragraph.iter(W_TXBX_CONTENT)
                      if owning_paragraph(box) is paragraph]
        following = itertools.chain(
            ((paragraph, token) for token in after_start),
            self._token_stream(text_boxes),
            self._token_stream(container[index + 1:stop]),
        )

        found = self._find_block_end(following)
        end_unit = child_of(container, found[0]) if found else None
        if found is None or end_unit is not found[0]:
            raise MalformedTemplateError(
                f"El bloque '{start_token.path}' cruza un límite estructural",
                token=start_token.raw, path=start_token.path, location=location
            )

        end_paragraph, end_token = found
        return self._expand_block(container, index, container.index(end_unit),
                                  (paragraph, start_token), (end_paragraph, end_token),
                                  ctx, location, rows=False)

    def _merge_text_boxes(self, paragraph: etree._Element, ctx: RenderContext):
        boxes = [box for box in paragraph.iter(W_TXBX_CONTENT)
                 if owning_paragraph(box) is paragraph]
        for box in boxes:
            self._merge_container(box, ctx)

    # ==========================================================================
    # TABLAS
    # ==========================================================================

    def _merge_rows(self, table: etree._Element, ctx: RenderContext,
                    start: int = 0, stop: Optional[int] = None) -> int:
        """Combina las filas ``table[start:stop]`` y devuelve cuántas quedan."""
        stop = len(table) if stop is None else stop
        index = start

        while index < stop:
            child = table[index]
            length = len(table)
            advance = 1

            if child.tag == W_TR:
                region = self._find_row_block(table, index, stop)
                if region is None:
                    for cell in row_cells(child):
                        self._merge_container(cell, ctx)
                else:
                    end_index, start_ref, end_ref, location = region
                    advance = self._expand_block(table, index, end_index, start_ref, end_ref,
                                                 ctx, location, rows=True)
            elif child.tag == W_SDT:
                content = child.find(W_SDT_CONTENT)
                if content is not None:
                    self._merge_rows(content, ctx)

            stop += len(table) - length
            index += advance

        return stop - start

    def _find_row_block(self, table: etree._Element, index: int, stop: int):
        """
        Busca un bloque a nivel de fila que empiece en ``table[index]``.

        Los bloques contenidos en una sola celda se ignoran aquí y se expanden
        al combinar la celda.

        Returns:
            (índice de la fila final, apertura, cierre, ubicación) o None
        """
        row = table[index]
        row_stream = list(self._token_stream([row]))
        position = 0

        while position < len(row_stream):
            paragraph, token = row_stream[position]
            if token.kind != TokenKind.BLOCK_START:
                position += 1
                continue

            location = describe_location(self.part_name, ParagraphText(paragraph))
            following = itertools.chain(row_stream[position + 1:],
                                        self._token_stream(table[index + 1:stop]))
            found = self._find_block_end(following)
            if found is None:
                raise MalformedTemplateError(
                    f"El bloque '{token.path}' cruza los límites de la tabla",
                    token=token.raw, path=token.path, location=location
                )

            end_paragraph, end_token = found
            ancestor = common_ancestor(paragraph, end_paragraph)

            if ancestor is row or ancestor is table:
                end_row = child_of(table, end_paragraph)
                return (table.index(end_row), (paragraph, token),
                        (end_paragraph, end_token), location)

            if ancestor is not None and is_within(ancestor, row):
                position = next(j for j in range(position + 1, len(row_stream))
                                if row_stream[j][1] is end_token) + 1
                continue

            raise MalformedTemplateError(
                f"El bloque '{token.path}' cruza un límite estructural",
                token=token.raw, path=token.path, location=location
            )

        return None

    # ==========================================================================
    # BLOQUES
    # ==========================================================================

    def _expand_block(self, parent: etree._Element, start_index: int, end_index: int,
                      start_ref: Tuple[etree._Element, MergeToken],
                      end_ref: Tuple[etree._Element, MergeToken],
                      ctx: RenderContext, location: str, rows: bool) -> int:
        """
        Expande la región ``parent[start_index:end_index + 1]``.

        Los marcadores se retiran antes de copiar; las unidades delimitadoras
        que quedan vacías no forman parte de la región.

        Returns:
            Número de unidades insertadas en lugar de la región
        """
        start_paragraph, start_token = start_ref
        end_paragraph, end_token = end_ref

        # El cierre primero: si comparte párrafo, la apertura conserva su posición
        ParagraphText(end_paragraph).replace(end_token.start, end_token.end, '')
        ParagraphText(start_paragraph).replace(start_token.start, start_token.end, '')

        region = list(parent[start_index:end_index + 1])
        if is_blank_unit(region[-1]):
            parent.remove(region.pop())
        if region and is_blank_unit(region[0]):
            parent.remove(region.pop(0))

        try:
            scopes = self.resolver.block_scopes(start_token.path, ctx)
        except TemplateError as e:
            raise e.locate(token=start_token.raw, location=location, path=start_token.path)

        logger.debug(f"Bloque '{start_token.path}': {len(scopes)} repeticiones de "
                     f"{len(region)} {'filas' if rows else 'párrafos'}")

        for unit in region:
            parent.remove(unit)

        anchor = start_index
        for child_ctx in scopes:
            for offset, unit in enumerate(region):
                clone = deepcopy(unit)
                strip_revision_ids(clone)
                parent.insert(anchor + offset, clone)

            if rows:
                anchor += self._merge_rows(parent, child_ctx, anchor, anchor + len(region))
            else:
                anchor += self._merge_container(parent, child_ctx, anchor, anchor + len(region))

        return anchor - start_index

    @staticmethod
    def _find_block_end(stream: Iterable[Tuple[etree._Element, MergeToken]]):
        depth = 0
        for paragraph, token in stream:
            if token.kind == TokenKind.BLOCK_START:
                depth += 1
            elif token.kind == TokenKind.BLOCK_END:
                if depth == 0:
                    return paragraph, token
                depth -= 1
        return None

    # ==========================================================================
    # MARCADORES SIMPLES
    # ==========================================================================

    def _scan(self, view: ParagraphText) -> List[MergeToken]:
        try:
            return scan_paragraph(view, self.options)
        except TemplateError as e:
            raise e.locate(location=describe_location(self.part_name, view))

    def _token_stream(self, elements: Iterable[etree._Element]) -> Iterator[Tuple[etree._Element, MergeToken]]:
        """Marcadores de los párrafos de ``elements`` en orden de documento."""
        for element in elements:
            if not isinstance(element.tag, str):
                continue
            for paragraph in element.iter(W_P):
                for token in self._scan(ParagraphText(paragraph)):
                    yield paragraph, token

    def _render_scalars(self, view: ParagraphText, tokens: List[MergeToken],
                        ctx: RenderContext):
        touched = []

        # De derecha a izquierda para no invalidar las posiciones anteriores
        for token in reversed(tokens):
            text = self._render_token(token, view, ctx)
            target = view.replace(token.start, token.end, text)
            if target is not None and target not in touched:
                touched.append(target)

        if self.options.line_breaks_as_tags:
            for text_elem in touched:
                expand_line_breaks(text_elem)

    def _render_token(self, token: MergeToken, view: ParagraphText,
                      ctx: RenderContext) -> str:
        try:
            value = self.resolver.resolve(token.path, ctx)
            text = self.formatter.format(value, token.format_spec)

            if has_invalid_xml_chars(text):
                if not self.options.strip_invalid_xml_chars:
                    raise FormatError("El valor contiene caracteres no válidos en XML",
                                      spec=token.format_spec)
                text = strip_invalid_xml_chars(text)
        except TemplateError as e:
            raise e.locate(token=token.raw, path=token.path,
                           location=describe_location(self.part_name, view))

        return text
