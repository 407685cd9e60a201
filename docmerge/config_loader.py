"""
Config Loader - Carga de configuración desde YAML

Funciones para leer las opciones de renderizado desde un archivo YAML.
El archivo puede contener las opciones en la raíz o bajo una clave ``render``.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import ValidationError

from docmerge.utils import setup_logger
from docmerge.schema_models import RenderOptions, validate_options_dict

logger = setup_logger(__name__)


# ==============================================================================
# CARGA DE ARCHIVOS YAML GENÉRICOS
# ==============================================================================

def load_yaml_config(filepath: Path) -> Optional[Dict[str, Any]]:
    """
    Carga un archivo YAML genérico.

    Args:
        filepath: Path al archivo YAML

    Returns:
        Diccionario con el contenido o None si el archivo no existe

    Raises:
        yaml.YAMLError: Si el contenido no es YAML válido
    """
    filepath = Path(filepath)
    if not filepath.exists():
        logger.warning(f"Archivo no encontrado: {filepath}")
        return None

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parseando YAML {filepath}: {e}")
        raise

    logger.debug(f"YAML cargado: {filepath.name}")
    return data


# ==============================================================================
# CARGA DE OPCIONES DE RENDERIZADO
# ==============================================================================

def load_render_options(filepath: Path) -> RenderOptions:
    """
    Carga y valida las opciones de renderizado.

    Si el archivo no existe o está vacío se usan las opciones por defecto.

    Args:
        filepath: Path al archivo YAML

    Returns:
        RenderOptions validado

    Raises:
        ValueError: Si la raíz del YAML no es un diccionario
        ValidationError: Si alguna opción no es válida
    """
    data = load_yaml_config(filepath)

    if not data:
        logger.warning(f"Sin configuración en {filepath}, usando opciones por defecto")
        return RenderOptions()

    if not isinstance(data, dict):
        logger.error(f"La configuración de {filepath} debe ser un diccionario")
        raise ValueError(f"La configuración de {filepath} debe ser un diccionario")

    section = data.get('render', data)
    if section is None:
        section = {}

    try:
        options = validate_options_dict(section)
    except ValidationError as e:
        logger.error(f"Opciones de renderizado inválidas en {filepath}: {e}")
        raise

    logger.debug(f"Opciones de renderizado cargadas desde {Path(filepath).name}")
    return options
