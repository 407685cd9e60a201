"""
Formatter - Conversión de valores a texto

Convierte los valores resueltos en el texto que se inserta en el documento,
aplicando el especificador del marcador si lo hay:

- ``{{total|,.2f}}``: mini-lenguaje de formato de Python
- ``{{total|%.2f}}``: formato estilo printf (los Decimal se formatean exactos)
- ``{{fecha|%d/%m/%Y}}``: patrón strftime para fechas y horas
- ``{{pagado|Pagado/Pendiente}}``: par de textos para booleanos
- ``{{nombre|upper}}``: transformaciones de texto
- ``{{total|currency}}``: alias definidos en RenderOptions.named_formats
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from docmerge.errors import FormatError
from docmerge.resolver import ABSENT, is_iterable_value
from docmerge.schema_models import RenderOptions


TEXT_TRANSFORMS = {
    'upper': str.upper,
    'lower': str.lower,
    'title': str.title,
    'capitalize': str.capitalize,
}

# Directivas strftime admitidas en los especificadores de fecha
DATE_DIRECTIVES = set('aAwdbBmyYHIpMSfzZjUWcxXGuV%')
DATE_DIRECTIVE = re.compile(r'%(.)', re.DOTALL)

# Especificador printf con un único valor, texto libre antes y después
PRINTF_SPEC = re.compile(
    r'^(?P<prefix>(?:[^%]|%%)*)%(?P<flags>[-+ 0#]*)(?P<width>\d*)(?:\.(?P<precision>\d+))?'
    r'(?P<conversion>[diufeEgGs])(?P<suffix>(?:[^%]|%%)*)$'
)


def _date_pattern_error(spec: str) -> Optional[str]:
    """Mensaje de error de un patrón strftime, o None si es válido."""
    directives = DATE_DIRECTIVE.findall(spec)
    if not [d for d in directives if d != '%']:
        return f"El formato de fecha '{spec}' no contiene directivas"

    unknown = [d for d in directives if d not in DATE_DIRECTIVES]
    if unknown or '%' in DATE_DIRECTIVE.sub('', spec):
        return f"Directiva de fecha no válida en '{spec}'"

    return None


class ValueFormatter:
    """Formatea valores según las opciones de renderizado."""

    def __init__(self, options: RenderOptions):
        self.options = options

    def format(self, value: Any, spec: Optional[str] = None) -> str:
        """
        Convierte un valor en texto.

        Args:
            value: Valor resuelto (ABSENT y None producen texto vacío)
            spec: Especificador del marcador, o None

        Returns:
            Texto a insertar

        Raises:
            FormatError: Especificador inválido o incompatible con el valor
        """
        if spec is not None:
            spec = self.options.named_formats.get(spec, spec)
            self.check_spec(spec)

        if value is ABSENT or value is None:
            return ''

        if isinstance(value, Enum):
            value = value.value

        if isinstance(value, Mapping) or is_iterable_value(value):
            raise FormatError(
                f"No se puede insertar una colección como texto ({type(value).__name__})",
                spec=spec
            )

        if spec is None:
            return self._default(value)

        if spec in TEXT_TRANSFORMS:
            return TEXT_TRANSFORMS[spec](self._default(value))

        try:
            if isinstance(value, bool):
                return self._format_bool(value, spec)
            if isinstance(value, (date, time)):
                return self._format_date(value, spec)
            if spec.startswith('%') or PRINTF_SPEC.match(spec):
                return self._format_printf(value, spec)
            return format(value, spec)
        except FormatError:
            raise
        except (ValueError, TypeError) as e:
            raise FormatError(f"Especificador '{spec}' inválido para {type(value).__name__}: {e}",
                              spec=spec) from e

    def check_spec(self, spec: str):
        """
        Comprueba la sintaxis de un especificador sin depender del valor.

        Se aplica también cuando el valor está ausente, de modo que un
        especificador erróneo nunca pasa desapercibido.

        Raises:
            FormatError: Si el especificador no es de ningún tipo reconocido
        """
        if spec in TEXT_TRANSFORMS or '/' in spec or PRINTF_SPEC.match(spec):
            return
        if DATE_DIRECTIVE.search(spec) and _date_pattern_error(spec) is None:
            return
        for sample in (0, ''):
            try:
                format(sample, spec)
                return
            except (ValueError, TypeError):
                continue
        raise FormatError(f"Especificador de formato no válido: '{spec}'", spec=spec)

    # ==========================================================================
    # FORMATO POR DEFECTO
    # ==========================================================================

    def _default(self, value: Any) -> str:
        if isinstance(value, bool):
            return self.options.true_text if value else self.options.false_text
        if isinstance(value, Decimal):
            return format(value, 'f')
        if isinstance(value, datetime):
            return value.strftime(self.options.datetime_format)
        if isinstance(value, date):
            return value.strftime(self.options.date_format)
        if isinstance(value, time):
            return value.strftime(self.options.time_format)
        return str(value)

    # ==========================================================================
    # ESPECIFICADORES
    # ==========================================================================

    def _format_bool(self, value: bool, spec: str) -> str:
        if '/' not in spec:
            raise FormatError(f"Un booleano necesita un formato 'sí/no', no '{spec}'", spec=spec)
        true_text, false_text = spec.split('/', 1)
        return true_text if value else false_text

    def _format_date(self, value: Any, spec: str) -> str:
        error = _date_pattern_error(spec)
        if error:
            raise FormatError(error, spec=spec)
        return value.strftime(spec)

    def _format_printf(self, value: Any, spec: str) -> str:
        match = PRINTF_SPEC.match(spec)
        if not match:
            raise FormatError(f"Especificador printf no válido: '{spec}'", spec=spec)

        if isinstance(value, Decimal) and match.group('conversion') in 'feEgG':
            return self._format_decimal_printf(value, match)

        return spec % (value,)

    def _format_decimal_printf(self, value: Decimal, match: re.Match) -> str:
        # % convierte a float; format() mantiene la precisión exacta del Decimal
        flags = match.group('flags')
        align = '<' if '-' in flags else ''
        sign = '+' if '+' in flags else (' ' if ' ' in flags else '')
        zero = '0' if '0' in flags and not align else ''
        alternate = '#' if '#' in flags else ''
        precision = match.group('precision')
        if precision is None:
            precision = '6'
        format_spec = (f"{align}{sign}{alternate}{zero}{match.group('width')}"
                       f".{precision}{match.group('conversion')}")
        prefix = match.group('prefix').replace('%%', '%')
        suffix = match.group('suffix').replace('%%', '%')
        return f"{prefix}{format(value, format_spec)}{suffix}"
