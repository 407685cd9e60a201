from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List

import pytest
from docx import Document

from docmerge import (
    FormatError,
    MalformedTemplateError,
    RenderOptions,
    Template,
    UnmatchedBlockError,
    UnresolvedPathError,
    get_template_variables,
    render_docx_file,
    validate_template,
)


# ==============================================================================
# DATOS DE EJEMPLO
# ==============================================================================

@dataclass
class Company:
    name: str
    vat_id: str


@dataclass
class Item:
    description: str
    quantity: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Invoice:
    number: str
    date: date
    company: Company
    customer: Company
    items: List[Item] = field(default_factory=list)
    tax_rate: Decimal = Decimal("0.21")
    paid: bool = False

    @property
    def subtotal(self) -> Decimal:
        return sum((item.total for item in self.items), Decimal("0"))

    @property
    def tax(self) -> Decimal:
        return self.subtotal * self.tax_rate

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax


def sample_invoice() -> Invoice:
    return Invoice(
        number="F-2024-001",
        date=date(2024, 3, 5),
        company=Company("Auditores SL", "B12345678"),
        customer=Company("Cliente SA", "A87654321"),
        items=[
            Item("Consultoría", 10, Decimal("800.00")),
            Item("Soporte", 3, Decimal("450.00")),
        ],
    )


def table_texts(document, index=0):
    return [[cell.text for cell in row.cells] for row in document.tables[index].rows]


# ==============================================================================
# SUSTITUCIÓN SIMPLE
# ==============================================================================

def test_scalar_substitution_keeps_run_formatting(to_bytes, read_docx):
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Hello ")
    paragraph.add_run("{{name}}").bold = True
    paragraph.add_run("!")

    output = Template.from_bytes(to_bytes(document)).render({"name": "Ada"})

    result = read_docx(output).paragraphs[0]
    assert result.text == "Hello Ada!"
    assert result.runs[1].text == "Ada"
    assert result.runs[1].bold is True


def test_split_placeholder_adopts_first_run_formatting(to_bytes, read_docx):
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Hello {{na").italic = True
    paragraph.add_run("me}}!")

    output = Template.from_bytes(to_bytes(document)).render({"name": "Ada"})

    result = read_docx(output).paragraphs[0]
    assert result.text == "Hello Ada!"
    assert result.runs[0].text == "Hello Ada"
    assert result.runs[0].italic is True
    assert not result.runs[1].italic


def test_render_without_tokens_round_trips(make_docx, body_texts):
    data = make_docx("Uno", "Dos")
    assert body_texts(Template.from_bytes(data).render()) == ["Uno", "Dos"]


def test_line_breaks_become_break_elements(make_docx, read_docx):
    output = Template.from_bytes(make_docx("{{address}}")).render({"address": "Calle 1\nMadrid"})

    paragraph = read_docx(output).paragraphs[0]
    assert paragraph.text == "Calle 1\nMadrid"
    assert len(paragraph._p.xpath('.//w:br')) == 1


def test_invalid_xml_characters(make_docx, body_texts):
    data = make_docx("{{value}}")

    with pytest.raises(FormatError):
        Template.from_bytes(data).render({"value": "a\x01b"})

    options = RenderOptions(strip_invalid_xml_chars=True)
    assert body_texts(Template.from_bytes(data, options).render({"value": "a\x01b"})) == ["ab"]


# ==============================================================================
# RUTAS Y MODO ESTRICTO
# ==============================================================================

def test_strict_mode_reports_unresolved_path(make_docx):
    template = Template.from_bytes(make_docx("Tel: {{invoice.customer.phone}}"),
                                   RenderOptions(strict=True))

    with pytest.raises(UnresolvedPathError) as exc:
        template.render({"invoice": sample_invoice()})

    assert exc.value.path == "invoice.customer.phone"
    assert exc.value.token == "{{invoice.customer.phone}}"
    assert exc.value.location.startswith("word/document.xml")


def test_non_strict_mode_renders_empty(make_docx, body_texts):
    output = Template.from_bytes(make_docx("Tel: {{invoice.customer.phone}}")).render(
        {"invoice": sample_invoice()})
    assert body_texts(output) == ["Tel: "]


def test_invalid_format_names_token(make_docx):
    template = Template.from_bytes(make_docx("Importe: {{amount|%q}}"))

    with pytest.raises(FormatError) as exc:
        template.render({"amount": Decimal("150.00")})

    assert exc.value.token == "{{amount|%q}}"
    assert exc.value.spec == "%q"


def test_invalid_format_is_reported_for_missing_value(make_docx):
    template = Template.from_bytes(make_docx("Importe: {{amount|%q}}"))

    with pytest.raises(FormatError) as exc:
        template.render({})

    assert exc.value.token == "{{amount|%q}}"


def test_decimal_printf_format(make_docx, body_texts):
    output = Template.from_bytes(make_docx("{{amount|%.2f}}")).render({"amount": Decimal("150.00")})
    assert body_texts(output) == ["150.00"]


# ==============================================================================
# BLOQUES
# ==============================================================================

def test_paragraph_block_drops_marker_paragraphs(make_docx, body_texts):
    data = make_docx("Lista:", "{{#items}}", "{{$number}}. {{name}}", "{{/items}}", "Fin")

    output = Template.from_bytes(data).render({"items": [{"name": "A"}, {"name": "B"}]})

    assert body_texts(output) == ["Lista:", "1. A", "2. B", "Fin"]


def test_paragraph_block_with_empty_list(make_docx, body_texts):
    data = make_docx("Lista:", "{{#items}}", "{{name}}", "{{/items}}", "Fin")
    assert body_texts(Template.from_bytes(data).render({"items": []})) == ["Lista:", "Fin"]


def test_inline_block_repeats_paragraph(make_docx, body_texts):
    data = make_docx("{{#tags}}- {{.}}{{/tags}}")
    assert body_texts(Template.from_bytes(data).render({"tags": ["x", "y"]})) == ["- x", "- y"]


def test_nested_blocks(make_docx, body_texts):
    data = make_docx("{{#groups}}", "Grupo {{name}}", "{{#members}}", "- {{.}}",
                     "{{/members}}", "{{/groups}}")
    groups = [
        {"name": "A", "members": ["x", "y"]},
        {"name": "B", "members": []},
    ]

    output = Template.from_bytes(data).render({"groups": groups})

    assert body_texts(output) == ["Grupo A", "- x", "- y", "Grupo B"]


def test_boolean_block_is_conditional(make_docx, body_texts):
    data = make_docx("Factura", "{{#paid}}", "PAGADA", "{{/paid}}")
    template = Template.from_bytes(data)

    assert body_texts(template.render({"paid": True})) == ["Factura", "PAGADA"]
    assert body_texts(template.render({"paid": False})) == ["Factura"]


def test_conditional_block_keeps_loop_position(make_docx, body_texts):
    data = make_docx("{{#items}}", "{{#active}}", "{{$number}}. {{name}}", "{{/active}}",
                     "{{/items}}")
    items = [{"name": "A", "active": True}, {"name": "B", "active": True}]

    assert body_texts(Template.from_bytes(data).render({"items": items})) == ["1. A", "2. B"]


def test_object_block_keeps_loop_position(make_docx, body_texts):
    data = make_docx("{{#lines}}{{#product}}{{$number}}/{{$count}} {{name}}{{/product}}{{/lines}}")
    lines = [{"product": {"name": "A"}}, {"product": {"name": "B"}}]

    assert body_texts(Template.from_bytes(data).render({"lines": lines})) == ["1/2 A", "2/2 B"]


def test_adjacent_blocks_sharing_a_paragraph_fail_at_load(make_docx):
    with pytest.raises(MalformedTemplateError) as exc:
        Template.from_bytes(make_docx("{{#a}}", "{{.}}", "{{/a}}{{#b}}", "{{.}}", "{{/b}}"))
    assert exc.value.path == "b"


def test_adjacent_blocks_in_separate_paragraphs(make_docx, body_texts):
    data = make_docx("{{#a}}", "{{.}}", "{{/a}}", "{{#b}}", "{{.}}", "{{/b}}")

    output = Template.from_bytes(data).render({"a": [1], "b": [2, 3]})

    assert body_texts(output) == ["1", "2", "3"]


def test_table_row_block(to_bytes, read_docx):
    document = Document()
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Descripción"
    table.cell(0, 1).text = "Importe"
    table.cell(1, 0).text = "{{#items}}{{description}}"
    table.cell(1, 1).text = "{{amount|%.2f}}{{/items}}"
    template = Template.from_bytes(to_bytes(document))

    items = [
        {"description": "Uno", "amount": Decimal("1.5")},
        {"description": "Dos", "amount": Decimal("2")},
        {"description": "Tres", "amount": Decimal("3.25")},
    ]
    result = read_docx(template.render({"items": items}))
    assert table_texts(result) == [
        ["Descripción", "Importe"],
        ["Uno", "1.50"],
        ["Dos", "2.00"],
        ["Tres", "3.25"],
    ]

    empty = read_docx(template.render({"items": []}))
    assert table_texts(empty) == [["Descripción", "Importe"]]


def test_table_block_spanning_marker_rows(to_bytes, read_docx):
    document = Document()
    table = document.add_table(rows=3, cols=1)
    table.cell(0, 0).text = "{{#rows}}"
    table.cell(1, 0).text = "{{value}}"
    table.cell(2, 0).text = "{{/rows}}"

    output = Template.from_bytes(to_bytes(document)).render({"rows": [{"value": 1}, {"value": 2}]})

    assert table_texts(read_docx(output)) == [["1"], ["2"]]


def test_block_inside_single_cell(to_bytes, read_docx):
    document = Document()
    table = document.add_table(rows=1, cols=1)
    cell = table.cell(0, 0)
    cell.text = "{{#tags}}"
    cell.add_paragraph("{{.}}")
    cell.add_paragraph("{{/tags}}")

    output = Template.from_bytes(to_bytes(document)).render({"tags": ["a", "b"]})

    result_cell = read_docx(output).tables[0].cell(0, 0)
    assert [p.text for p in result_cell.paragraphs] == ["a", "b"]


def test_empty_cell_block_keeps_a_paragraph(to_bytes, read_docx):
    document = Document()
    table = document.add_table(rows=1, cols=1)
    cell = table.cell(0, 0)
    cell.text = "{{#tags}}"
    cell.add_paragraph("{{.}}")
    cell.add_paragraph("{{/tags}}")

    output = Template.from_bytes(to_bytes(document)).render({"tags": []})

    result_cell = read_docx(output).tables[0].cell(0, 0)
    assert len(result_cell.paragraphs) == 1
    assert result_cell.text == ""


def test_block_crossing_table_boundary_is_rejected(to_bytes):
    document = Document()
    document.add_paragraph("{{#items}}")
    table = document.add_table(rows=1, cols=1)
    table.cell(0, 0).text = "{{/items}}"
    template = Template.from_bytes(to_bytes(document))

    with pytest.raises(MalformedTemplateError):
        template.render({"items": [1]})


def test_unmatched_block_fails_at_load(make_docx):
    with pytest.raises(UnmatchedBlockError):
        Template.from_bytes(make_docx("{{#items}}", "{{name}}"))


def test_block_over_text_value_is_rejected(make_docx):
    template = Template.from_bytes(make_docx("{{#name}}", "x", "{{/name}}"))
    with pytest.raises(FormatError) as exc:
        template.render({"name": "Ada"})
    assert exc.value.token == "{{#name}}"


# ==============================================================================
# FACTURA COMPLETA
# ==============================================================================

def test_invoice_end_to_end(to_bytes, read_docx):
    document = Document()
    document.add_paragraph("Factura {{number}} - {{date|%d/%m/%Y}}")
    document.add_paragraph("Emisor: {{company.name}} ({{company.vat_id}})")
    document.add_paragraph("Cliente: {{customer.name|upper}}")
    table = document.add_table(rows=2, cols=4)
    for column, title in enumerate(["Concepto", "Cantidad", "Precio", "Total"]):
        table.cell(0, column).text = title
    table.cell(1, 0).text = "{{#items}}{{description}}"
    table.cell(1, 1).text = "{{quantity}}"
    table.cell(1, 2).text = "{{unit_price|currency}}"
    table.cell(1, 3).text = "{{total|currency}}{{/items}}"
    document.add_paragraph("Subtotal: {{subtotal|currency}}")
    document.add_paragraph("IVA: {{tax|currency}}")
    document.add_paragraph("Total: {{total|,.2f}}")
    document.add_paragraph("Estado: {{paid|Pagada/Pendiente}}")

    output = Template.from_bytes(to_bytes(document)).render(sample_invoice())
    result = read_docx(output)

    assert [p.text for p in result.paragraphs] == [
        "Factura F-2024-001 - 05/03/2024",
        "Emisor: Auditores SL (B12345678)",
        "Cliente: CLIENTE SA",
        "Subtotal: 9,350.00",
        "IVA: 1,963.50",
        "Total: 11,313.50",
        "Estado: Pendiente",
    ]
    assert table_texts(result) == [
        ["Concepto", "Cantidad", "Precio", "Total"],
        ["Consultoría", "10", "800.00", "8,000.00"],
        ["Soporte", "3", "450.00", "1,350.00"],
    ]


# ==============================================================================
# PARTES AUXILIARES
# ==============================================================================

def test_header_is_rendered(to_bytes, read_docx):
    document = Document()
    document.add_paragraph("Cuerpo {{number}}")
    document.sections[0].header.paragraphs[0].text = "Factura {{number}}"

    output = Template.from_bytes(to_bytes(document)).render({"number": "F-001"})
    result = read_docx(output)

    assert result.paragraphs[0].text == "Cuerpo F-001"
    assert result.sections[0].header.paragraphs[0].text == "Factura F-001"


def test_headers_can_be_skipped(to_bytes, read_docx):
    document = Document()
    document.add_paragraph("{{number}}")
    document.sections[0].header.paragraphs[0].text = "Factura {{number}}"
    options = RenderOptions(process_headers_footers=False)

    output = Template.from_bytes(to_bytes(document), options).render({"number": "F-001"})

    assert read_docx(output).sections[0].header.paragraphs[0].text == "Factura {{number}}"


# ==============================================================================
# PROPIEDADES DEL TEMPLATE
# ==============================================================================

def test_rendering_is_deterministic(make_docx):
    template = Template.from_bytes(make_docx("Hola {{name}}", "{{#items}}", "{{.}}", "{{/items}}"))
    data = {"name": "Ada", "items": [1, 2, 3]}

    assert template.render(data) == template.render(data)


def test_template_is_not_mutated_by_render(make_docx, body_texts):
    template = Template.from_bytes(make_docx("Hola {{name}}", "{{#items}}", "{{.}}", "{{/items}}"))
    tokens_before = template.tokens()

    first = template.render({"name": "Ada", "items": [1]})
    second = template.render({"name": "Grace", "items": [2, 3]})

    assert body_texts(first) == ["Hola Ada", "1"]
    assert body_texts(second) == ["Hola Grace", "2", "3"]
    assert template.tokens() == tokens_before


def test_variables(make_docx):
    template = Template.from_bytes(make_docx("{{b}} {{a.x|upper}}", "{{#items}}", "{{b}}", "{{/items}}"))
    assert template.variables() == ["a.x", "b", "items"]
    assert template.main_part == "word/document.xml"
    assert "word/document.xml" in template.parts


def test_custom_delimiters(make_docx, body_texts):
    from docmerge import Delimiters

    options = RenderOptions(delimiters=Delimiters(open="<<", close=">>"))
    output = Template.from_bytes(make_docx("Hola <<name>> {{literal}}"), options).render({"name": "Ada"})

    assert body_texts(output) == ["Hola Ada {{literal}}"]


# ==============================================================================
# ARCHIVOS
# ==============================================================================

def test_file_helpers(tmp_path, make_docx, body_texts):
    template_path = tmp_path / "plantilla.docx"
    template_path.write_bytes(make_docx("Hola {{name}}"))

    assert validate_template(template_path)
    assert get_template_variables(template_path) == ["name"]

    output_path = render_docx_file(template_path, {"name": "Ada"}, tmp_path / "salida", "informe: final")
    assert output_path.name == "informe_ final.docx"
    assert body_texts(output_path.read_bytes()) == ["Hola Ada"]


def test_validate_template_rejects_broken_templates(tmp_path, make_docx):
    broken = tmp_path / "rota.docx"
    broken.write_bytes(make_docx("{{#items}}"))

    assert not validate_template(broken)
    assert not validate_template(tmp_path / "no-existe.docx")


def test_from_file_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Template.from_file(tmp_path / "no-existe.docx")


def test_from_stream(make_docx, body_texts, tmp_path):
    path = tmp_path / "plantilla.docx"
    path.write_bytes(make_docx("{{name}}"))

    with open(path, 'rb') as f:
        template = Template.from_stream(f)

    assert body_texts(template.render({"name": "Ada"})) == ["Ada"]
