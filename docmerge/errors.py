"""
Errors - Jerarquía de errores del motor de plantillas

Todos los fallos de carga y renderizado se lanzan como subclases de
TemplateError. Ninguno se silencia: el llamador recibe el error completo
con el marcador, la ruta y la ubicación que lo provocaron.
"""

from typing import Optional


class TemplateError(Exception):
    """
    Error base del motor.

    Attributes:
        message: Descripción del problema
        token: Texto literal del marcador (p.ej. ``{{cliente.nombre}}``)
        path: Ruta de datos implicada
        location: Parte y extracto del párrafo donde se produjo
    """

    def __init__(self, message: str, token: Optional[str] = None,
                 path: Optional[str] = None, location: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.token = token
        self.path = path
        self.location = location

    def locate(self, token: Optional[str] = None, location: Optional[str] = None,
               path: Optional[str] = None) -> "TemplateError":
        """Completa marcador, ruta y ubicación si aún no se conocen."""
        if self.token is None and token is not None:
            self.token = token
        if self.path is None and path is not None:
            self.path = path
        if self.location is None and location is not None:
            self.location = location
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.token:
            parts.append(f"marcador: {self.token}")
        if self.location:
            parts.append(f"ubicación: {self.location}")
        return " | ".join(parts)


class PackageError(TemplateError):
    """El recurso no es un paquete .docx legible o le falta la parte principal."""


class MalformedTemplateError(TemplateError):
    """XML mal formado, sintaxis de marcador inválida o bloques mal anidados."""


class UnmatchedBlockError(TemplateError):
    """Apertura de bloque sin cierre, o cierre sin apertura."""


class UnresolvedPathError(TemplateError):
    """Ruta de datos ausente en modo estricto."""


class FormatError(TemplateError):
    """Especificador de formato inválido o tipo de valor incompatible."""

    def __init__(self, message: str, spec: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.spec = spec
