"""
Schema Models - Modelos Pydantic para configuración del renderizado

Define las opciones que gobiernan la sintaxis de los marcadores, el formato
de valores y la escritura del paquete de salida.
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_NAMED_FORMATS = {
    "currency": ",.2f",
    "percent": ".2%",
}


# ==============================================================================
# DELIMITADORES
# ==============================================================================

class Delimiters(BaseModel):
    """Par de delimitadores que encierran un marcador."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    open: str = Field("{{", description="Delimitador de apertura")
    close: str = Field("}}", description="Delimitador de cierre")

    @model_validator(mode="after")
    def validate_pair(self):
        """Ambos delimitadores deben tener contenido y ser distintos."""
        if not self.open or not self.close:
            raise ValueError("Los delimitadores no pueden estar vacíos")
        if self.open == self.close:
            raise ValueError("Los delimitadores de apertura y cierre deben ser distintos")
        return self


# ==============================================================================
# OPCIONES DE RENDERIZADO
# ==============================================================================

class RenderOptions(BaseModel):
    """
    Opciones de un Template.

    Es inmutable: una misma instancia puede compartirse entre hilos que
    renderizan en paralelo.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    delimiters: Delimiters = Field(default_factory=Delimiters, description="Delimitadores de marcador")
    strict: bool = Field(False, description="Error si una ruta no se resuelve")
    block_start_prefix: str = Field("#", description="Prefijo de apertura de bloque")
    block_end_prefix: str = Field("/", description="Prefijo de cierre de bloque")
    format_separator: str = Field("|", description="Separador entre ruta y formato")
    date_format: str = Field("%Y-%m-%d", description="Formato por defecto de fechas")
    datetime_format: str = Field("%Y-%m-%d %H:%M:%S", description="Formato por defecto de fecha y hora")
    time_format: str = Field("%H:%M:%S", description="Formato por defecto de horas")
    true_text: str = Field("true", description="Texto para booleanos verdaderos")
    false_text: str = Field("false", description="Texto para booleanos falsos")
    named_formats: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_NAMED_FORMATS),
        description="Alias de formato utilizables como {{valor|alias}}"
    )
    line_breaks_as_tags: bool = Field(True, description="Convertir saltos de línea en <w:br/>")
    strip_invalid_xml_chars: bool = Field(False, description="Eliminar caracteres no válidos en XML")
    compression_level: Optional[int] = Field(None, description="Nivel de compresión zip (0-9)")
    process_headers_footers: bool = Field(True, description="Procesar encabezados, pies y notas")

    @field_validator('block_start_prefix', 'block_end_prefix', 'format_separator')
    @classmethod
    def validate_not_empty(cls, v):
        """Los prefijos y el separador necesitan al menos un carácter."""
        if not v:
            raise ValueError("El valor no puede estar vacío")
        return v

    @field_validator('compression_level')
    @classmethod
    def validate_compression_level(cls, v):
        """El nivel de compresión deflate va de 0 a 9."""
        if v is not None and not 0 <= v <= 9:
            raise ValueError("El nivel de compresión debe estar entre 0 y 9")
        return v

    @model_validator(mode="after")
    def validate_prefixes(self):
        """Los prefijos de apertura y cierre deben distinguirse."""
        if self.block_start_prefix == self.block_end_prefix:
            raise ValueError("Los prefijos de apertura y cierre de bloque deben ser distintos")
        return self


# ==============================================================================
# FUNCIONES DE UTILIDAD
# ==============================================================================

def validate_options_dict(data: Dict[str, Any]) -> RenderOptions:
    """
    Valida y convierte un diccionario en un RenderOptions.

    Args:
        data: Diccionario con las opciones

    Returns:
        RenderOptions validado
    """
    return RenderOptions(**data)
