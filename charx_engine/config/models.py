"""Pydantic models for configuration validation."""

from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator, ConfigDict


class LLMConfig(BaseModel):
    """LLM backend configuration."""

    provider: Literal["gemini"] = "gemini"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-2.5-flash"
    api_key: Optional[str] = Field(default=None, description="Overridden by GEMINI_API_KEY when set")
    max_response_tokens: int = Field(default=8192, gt=0, le=65536)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_seconds: int = Field(default=120, gt=0)
    min_request_interval_seconds: float = Field(default=30.0, ge=0.0)
    max_retries: int = Field(default=5, gt=0, le=10)
    max_rate_limit_backoff_seconds: float = Field(default=60.0, ge=0.0)

    @field_validator('base_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL is properly formatted."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('base_url must start with http:// or https://')
        return v.rstrip('/')


class CompressionConfig(BaseModel):
    """Compression primitive used for module containers."""

    primitive: Literal["zlib", "identity"] = "zlib"
    level: int = Field(default=6, ge=-1, le=9)


class PackagingConfig(BaseModel):
    """Bundle layout and archive settings."""

    manifest_filename: str = "card.json"
    module_extension: str = "risum"
    zip_compression_level: int = Field(default=6, ge=0, le=9)
    creator: str = Field(default="CharX Engine", description="Default creator for CLI-built cards")

    @field_validator('manifest_filename')
    @classmethod
    def validate_manifest_filename(cls, v: str) -> str:
        """Manifest must sit at the archive root."""
        if not v or '/' in v or '\\' in v:
            raise ValueError('manifest_filename must be a top-level file name')
        return v

    @field_validator('module_extension')
    @classmethod
    def validate_module_extension(cls, v: str) -> str:
        """Store without leading dot."""
        v = v.strip().lstrip('.')
        if not v or '/' in v or '\\' in v:
            raise ValueError('module_extension must be a plain file extension')
        return v

    @property
    def module_filename(self) -> str:
        return f"module.{self.module_extension}"


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    model_config = ConfigDict(extra='ignore')

    llm: LLMConfig = Field(default_factory=LLMConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    packaging: PackagingConfig = Field(default_factory=PackagingConfig)
    debug: bool = False
