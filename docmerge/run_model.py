"""
Run Model - Modelo XML de párrafos y runs

Parseo y serialización de las partes de WordprocessingML, vista de texto
lógico de un párrafo (concatenación de sus runs) y ediciones sobre runs que
conservan el formato.
"""

from typing import Dict, Iterable, List, Optional, Set

from docx.oxml.ns import qn
from lxml import etree

from docmerge.errors import MalformedTemplateError


# ==============================================================================
# ETIQUETAS
# ==============================================================================

W_DOCUMENT = qn('w:document')
W_BODY = qn('w:body')
W_HDR = qn('w:hdr')
W_FTR = qn('w:ftr')
W_FOOTNOTES = qn('w:footnotes')
W_ENDNOTES = qn('w:endnotes')
W_FOOTNOTE = qn('w:footnote')
W_ENDNOTE = qn('w:endnote')
W_P = qn('w:p')
W_R = qn('w:r')
W_T = qn('w:t')
W_BR = qn('w:br')
W_RPR = qn('w:rPr')
W_TBL = qn('w:tbl')
W_TR = qn('w:tr')
W_TC = qn('w:tc')
W_SDT = qn('w:sdt')
W_SDT_CONTENT = qn('w:sdtContent')
W_TXBX_CONTENT = qn('w:txbxContent')
W_SECTPR = qn('w:sectPr')
W_DRAWING = qn('w:drawing')
W_PICT = qn('w:pict')
W_OBJECT = qn('w:object')
W_FOOTNOTE_REF = qn('w:footnoteReference')
W_ENDNOTE_REF = qn('w:endnoteReference')
WP_DOCPR = qn('wp:docPr')

XML_SPACE = '{http://www.w3.org/XML/1998/namespace}space'
W14_NS = 'http://schemas.microsoft.com/office/word/2010/wordml'
REVISION_ID_ATTRS = (f'{{{W14_NS}}}paraId', f'{{{W14_NS}}}textId')

PART_ROOTS = (W_DOCUMENT, W_HDR, W_FTR, W_FOOTNOTES, W_ENDNOTES)
CONTENT_MARKERS = (W_DRAWING, W_PICT, W_OBJECT, W_SECTPR, W_TBL,
                   W_FOOTNOTE_REF, W_ENDNOTE_REF)


# ==============================================================================
# PARSEO Y SERIALIZACIÓN
# ==============================================================================

def _parser() -> etree.XMLParser:
    return etree.XMLParser(remove_blank_text=False, strip_cdata=False,
                           resolve_entities=False)


def parse_part(xml_bytes: bytes, part_name: str) -> etree._Element:
    """
    Parsea una parte de texto del paquete.

    Args:
        xml_bytes: Contenido XML de la parte
        part_name: Nombre de la parte (para los mensajes de error)

    Returns:
        Elemento raíz de la parte

    Raises:
        MalformedTemplateError: XML mal formado o raíz no reconocida
    """
    try:
        root = etree.fromstring(xml_bytes, _parser())
    except etree.XMLSyntaxError as e:
        raise MalformedTemplateError(f"XML mal formado en {part_name}: {e}",
                                     location=part_name) from e

    if root.tag not in PART_ROOTS:
        raise MalformedTemplateError(f"Raíz no reconocida en {part_name}: {root.tag}",
                                     location=part_name)

    if root.tag == W_DOCUMENT and root.find(W_BODY) is None:
        raise MalformedTemplateError(f"El documento {part_name} no tiene cuerpo (w:body)",
                                     location=part_name)

    return root


def serialize_part(root: etree._Element) -> bytes:
    """Serializa una parte con la misma declaración que genera Word."""
    return etree.tostring(root.getroottree(), xml_declaration=True,
                          encoding='UTF-8', standalone=True)


def body_container(root: etree._Element) -> etree._Element:
    """Contenedor de bloques de nivel superior de una parte."""
    if root.tag == W_DOCUMENT:
        return root.find(W_BODY)
    return root


# ==============================================================================
# RUNS Y TEXTO
# ==============================================================================

def owning_paragraph(element: etree._Element) -> Optional[etree._Element]:
    """Párrafo más cercano que contiene al elemento."""
    parent = element.getparent()
    while parent is not None and parent.tag != W_P:
        parent = parent.getparent()
    return parent


def paragraph_runs(paragraph: etree._Element) -> List[etree._Element]:
    """
    Runs que pertenecen al párrafo.

    Incluye runs dentro de hipervínculos o controles de contenido en línea y
    excluye los de párrafos anidados en cuadros de texto.
    """
    return [run for run in paragraph.iter(W_R) if owning_paragraph(run) is paragraph]


def set_text_with_preserve(text_elem: etree._Element, new_text: str):
    """Actualiza el texto garantizando xml:space cuando sea necesario."""
    if new_text is None:
        new_text = ''

    text_elem.text = new_text

    needs_preserve = (
        new_text.startswith(' ') or
        new_text.endswith(' ') or
        '\n' in new_text or
        '\t' in new_text
    )

    if needs_preserve:
        text_elem.set(XML_SPACE, 'preserve')
    elif XML_SPACE in text_elem.attrib:
        del text_elem.attrib[XML_SPACE]


def expand_line_breaks(text_elem: etree._Element):
    """Convierte los saltos de línea de un w:t en elementos w:br hermanos."""
    text = text_elem.text or ''
    if '\n' not in text and '\r' not in text:
        return

    lines = text.replace('\r\n', '\n').replace('\r', '\n').split('\n')
    run = text_elem.getparent()
    set_text_with_preserve(text_elem, lines[0])

    anchor = text_elem
    for line in lines[1:]:
        br = etree.SubElement(run, W_BR)
        anchor.addnext(br)
        anchor = br
        if line:
            new_text = etree.SubElement(run, W_T)
            set_text_with_preserve(new_text, line)
            anchor.addnext(new_text)
            anchor = new_text


def _run_is_empty(run: etree._Element) -> bool:
    for child in run:
        if not isinstance(child.tag, str):
            continue
        if child.tag == W_RPR:
            continue
        if child.tag == W_T and not child.text:
            continue
        return False
    return True


class ParagraphText:
    """
    Texto lógico de un párrafo.

    Cada fragmento w:t se registra con su run y su rango [start, end) dentro
    del texto concatenado.
    """

    def __init__(self, paragraph: etree._Element):
        self.paragraph = paragraph
        self.runs = paragraph_runs(paragraph)
        self.segments: List[Dict] = []

        current_pos = 0
        for run_index, run in enumerate(self.runs):
            for text_elem in run.iterchildren(W_T):
                text = text_elem.text or ''
                self.segments.append({
                    'element': text_elem,
                    'run': run_index,
                    'start': current_pos,
                    'end': current_pos + len(text),
                })
                current_pos += len(text)

        self.text = ''.join(seg['element'].text or '' for seg in self.segments)

    def run_span(self, start: int, end: int) -> tuple:
        """Índices del primer y último run que cubren [start, end)."""
        owners = [seg['run'] for seg in self.segments
                  if seg['start'] < end and seg['end'] > start]
        if not owners:
            raise ValueError(f"Rango fuera del texto del párrafo: {start}-{end}")
        return owners[0], owners[-1]

    def replace(self, start: int, end: int, value: str) -> Optional[etree._Element]:
        """
        Sustituye el rango [start, end) por ``value``.

        El valor queda en el primer fragmento afectado, con el formato de su
        run. Los rangos deben sustituirse de derecha a izquierda para que las
        posiciones anteriores sigan siendo válidas.

        Returns:
            El w:t que recibió el valor, o None si el valor está vacío
        """
        target = None
        touched: Set[int] = set()

        for seg in self.segments:
            seg_start = seg['start']
            if seg['end'] <= start or seg_start >= end:
                continue

            text_elem = seg['element']
            text = text_elem.text or ''
            before = text[:start - seg_start] if start > seg_start else ''
            after = text[end - seg_start:]

            if target is None:
                set_text_with_preserve(text_elem, before + value + after)
                target = seg
            else:
                set_text_with_preserve(text_elem, after)
            touched.add(seg['run'])

        if target is None:
            raise ValueError(f"Rango fuera del texto del párrafo: {start}-{end}")

        for run_index in sorted(touched):
            run = self.runs[run_index]
            parent = run.getparent()
            if parent is not None and _run_is_empty(run):
                parent.remove(run)

        return target['element'] if value else None


# ==============================================================================
# UNIDADES DE BLOQUE
# ==============================================================================

def element_text(element: etree._Element) -> str:
    """Texto de todos los w:t descendientes."""
    return ''.join(t.text or '' for t in element.iter(W_T))


def is_blank_unit(unit: etree._Element) -> bool:
    """
    Indica si un párrafo o fila quedó vacío tras retirar sus marcadores.

    Se considera con contenido si conserva texto visible, imágenes, un salto
    de sección, una tabla anidada o referencias a notas.
    """
    for tag in CONTENT_MARKERS:
        if unit.find(f'.//{tag}') is not None:
            return False
    return not element_text(unit).strip()


def ensure_cell_paragraph(cell: etree._Element):
    """Una celda debe terminar siempre en un párrafo."""
    children = [child for child in cell if child.tag in (W_P, W_TBL, W_SDT)]
    if not children or children[-1].tag != W_P:
        etree.SubElement(cell, W_P)


def strip_revision_ids(element: etree._Element):
    """Elimina identificadores w14 que no pueden repetirse en las copias."""
    for el in element.iter(etree.Element):
        for attr in REVISION_ID_ATTRS:
            if attr in el.attrib:
                del el.attrib[attr]


def renumber_drawing_ids(roots: Iterable[etree._Element],
                         reserved: Iterable[str] = ()) -> int:
    """
    Renumera los wp:docPr si la expansión de bloques los duplicó.

    Args:
        roots: Partes que se van a reescribir
        reserved: Identificadores usados en partes que se copian intactas

    Returns:
        Número de elementos renumerados (0 si no había duplicados)
    """
    doc_prs = [el for root in roots for el in root.iter(WP_DOCPR)]
    reserved = set(reserved)
    ids = [el.get('id') for el in doc_prs]

    if len(set(ids)) == len(ids) and not reserved.intersection(ids):
        return 0

    next_id = 1
    for el in doc_prs:
        while str(next_id) in reserved:
            next_id += 1
        el.set('id', str(next_id))
        next_id += 1

    return len(doc_prs)


def drawing_ids(root: etree._Element) -> List[str]:
    """Identificadores wp:docPr de una parte."""
    return [el.get('id') for el in root.iter(WP_DOCPR)]
