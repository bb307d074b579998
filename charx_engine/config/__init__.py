"""Configuration loading and validation."""

from .models import (
    SystemConfig,
    LLMConfig,
    CompressionConfig,
    PackagingConfig,
)
from .loader import ConfigLoader, ConfigLoadError, ConfigValidationError

__all__ = [
    "SystemConfig",
    "LLMConfig",
    "CompressionConfig",
    "PackagingConfig",
    "ConfigLoader",
    "ConfigLoadError",
    "ConfigValidationError",
]
