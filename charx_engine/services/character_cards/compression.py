"""
Compression Primitives
=====================

Reversible byte transforms used by the module container codec.

Every primitive has a one-time asynchronous setup step. Calling
``transform``/``untransform`` before ``initialize()`` has completed raises
``CompressionUnavailable`` instead of blocking.
"""

import asyncio
import logging
import zlib
from abc import ABC, abstractmethod
from typing import Optional

from .errors import CompressionUnavailable

logger = logging.getLogger(__name__)


class CompressionPrimitive(ABC):
    """Byte-to-byte reversible transform with gated initialization."""

    name: str = "abstract"

    def __init__(self):
        self._initialized = False
        self._init_lock: Optional[asyncio.Lock] = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Prepare the primitive for use.

        Idempotent: concurrent and repeated calls run the setup once.
        """
        if self._initialized:
            return

        if self._init_lock is None:
            self._init_lock = asyncio.Lock()

        async with self._init_lock:
            if self._initialized:
                return
            await self._setup()
            self._initialized = True
            logger.info(f"Compression primitive '{self.name}' initialized")

    async def _setup(self) -> None:
        """Backend-specific setup. Default is a no-op."""
        return None

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise CompressionUnavailable(
                f"Compression primitive '{self.name}' not initialized. "
                f"Await initialize() first."
            )

    def transform(self, data: bytes) -> bytes:
        """Compress ``data``."""
        self._require_initialized()
        return self._transform(bytes(data))

    def untransform(self, data: bytes) -> bytes:
        """Reverse ``transform``."""
        self._require_initialized()
        return self._untransform(bytes(data))

    @abstractmethod
    def _transform(self, data: bytes) -> bytes:
        pass

    @abstractmethod
    def _untransform(self, data: bytes) -> bytes:
        pass


class ZlibCompression(CompressionPrimitive):
    """DEFLATE (zlib stream) compression."""

    name = "zlib"

    def __init__(self, level: int = 6):
        super().__init__()
        if not -1 <= level <= 9:
            raise ValueError(f"zlib level must be between -1 and 9, got {level}")
        self.level = level

    def _transform(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def _untransform(self, data: bytes) -> bytes:
        return zlib.decompress(data)


class IdentityCompression(CompressionPrimitive):
    """Pass-through transform, for payloads that must stay readable."""

    name = "identity"

    def _transform(self, data: bytes) -> bytes:
        return data

    def _untransform(self, data: bytes) -> bytes:
        return data


def create_compression(name: str, level: int = 6) -> CompressionPrimitive:
    """
    Build a compression primitive by name.

    Raises:
        ValueError: If the name is unknown
    """
    name = name.lower()
    if name == "zlib":
        return ZlibCompression(level=level)
    if name == "identity":
        return IdentityCompression()
    raise ValueError(
        f"Unknown compression primitive: '{name}'. "
        f"Supported: zlib, identity"
    )
