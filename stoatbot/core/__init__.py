"""
StoatBot - Core Package
=======================

Configuration, logging, constants, errors and persistence.

DESIGN:
    The logger is the only process-wide instance. Config and the
    PersistenceManager are built once at startup and passed explicitly to
    the services that need them.
"""

from .config import Config, ConfigValidationError, load_config
from .errors import (
    CircuitOpenError,
    FatalInitError,
    PermissionDeniedError,
    RateLimitError,
    StoatBotError,
    TransientInfraError,
    ValidationError,
)
from .logger import TreeLogger, logger


__all__ = [
    # Config
    "Config",
    "ConfigValidationError",
    "load_config",
    # Errors
    "StoatBotError",
    "ValidationError",
    "PermissionDeniedError",
    "RateLimitError",
    "TransientInfraError",
    "FatalInitError",
    "CircuitOpenError",
    # Logger
    "logger",
    "TreeLogger",
]
