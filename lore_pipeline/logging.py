"""
Logging configuration for the lore pipeline.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure pipeline logging.

    :param level: Log level name, e.g. "INFO" or "DEBUG"
    :type level: str
    :return: Root logger for the lore pipeline
    :rtype: logging.Logger
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )

    return logging.getLogger('lore_pipeline')


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a pipeline component.

    :param name: The component name for the logger
    :type name: str
    :return: Logger instance for the specified component
    :rtype: logging.Logger
    """
    return logging.getLogger(f'lore_pipeline.{name}')
