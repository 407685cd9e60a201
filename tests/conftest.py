import io
import sys
from pathlib import Path

import pytest
from docx import Document
from lxml import etree

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

W_NS = 'http://schemas.openxmlformats.org/wordprocessingml/2006/main'
XML_SPACE = '{http://www.w3.org/XML/1998/namespace}space'


def _w(tag: str) -> str:
    return f'{{{W_NS}}}{tag}'


def _add_runs(paragraph: etree._Element, runs):
    for text in runs:
        run = etree.SubElement(paragraph, _w('r'))
        text_elem = etree.SubElement(run, _w('t'))
        text_elem.set(XML_SPACE, 'preserve')
        text_elem.text = text


def _to_bytes(document) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _read_docx(data: bytes):
    return Document(io.BytesIO(data))


def _paragraph_xml(*runs: str) -> etree._Element:
    paragraph = etree.Element(_w('p'), nsmap={'w': W_NS})
    _add_runs(paragraph, runs)
    return paragraph


def _document_xml(*paragraphs) -> etree._Element:
    """Documento mínimo; cada párrafo es una lista de textos de run."""
    document = etree.Element(_w('document'), nsmap={'w': W_NS})
    body = etree.SubElement(document, _w('body'))
    for runs in paragraphs:
        if isinstance(runs, str):
            runs = [runs]
        _add_runs(etree.SubElement(body, _w('p')), runs)
    return document


@pytest.fixture
def to_bytes():
    return _to_bytes


@pytest.fixture
def read_docx():
    return _read_docx


@pytest.fixture
def paragraph_xml():
    return _paragraph_xml


@pytest.fixture
def document_xml():
    return _document_xml


@pytest.fixture
def make_docx():
    """Construye un .docx con un párrafo de un solo run por cada texto."""
    def build(*texts: str) -> bytes:
        document = Document()
        for text in texts:
            document.add_paragraph(text)
        return _to_bytes(document)
    return build


@pytest.fixture
def body_texts():
    """Textos de los párrafos del cuerpo de un .docx generado."""
    def collect(data: bytes):
        return [p.text for p in _read_docx(data).paragraphs]
    return collect
