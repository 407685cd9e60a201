"""
Utils - Utilidades generales del motor

Funciones auxiliares para logging, manejo de paths y limpieza de texto.
"""

import logging
import re
import sys
from pathlib import Path


# Caracteres que XML 1.0 no admite en contenido de texto
INVALID_XML_CHARS = re.compile('[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]')


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Configura y devuelve un logger con formato estándar.

    Args:
        name: Nombre del logger
        level: Nivel de logging (default: INFO)

    Returns:
        Logger configurado
    """
    logger = logging.getLogger(name)

    # Evitar duplicar handlers si ya existe
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    return logger


def safe_filename(filename: str) -> str:
    """
    Convierte un string en un nombre de archivo seguro.

    Args:
        filename: Nombre de archivo original

    Returns:
        Nombre de archivo sanitizado
    """
    for char in '<>:"/\\|?*':
        filename = filename.replace(char, '_')

    if len(filename) > 200:
        filename = filename[:200]

    return filename.strip()


def ensure_directory(path: Path) -> Path:
    """Crea el directorio si no existe y lo devuelve."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def has_invalid_xml_chars(text: str) -> bool:
    """Indica si el texto contiene caracteres no representables en XML."""
    return INVALID_XML_CHARS.search(text) is not None


def strip_invalid_xml_chars(text: str) -> str:
    """Elimina los caracteres no representables en XML."""
    return INVALID_XML_CHARS.sub('', text)
