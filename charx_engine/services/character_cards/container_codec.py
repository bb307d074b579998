"""
Module Container Codec
=====================

Reads and writes the length-prefixed ``.risum`` module container.

Layout (all lengths little-endian uint32)::

    0x6F | 0x00 | main_len | transform(json envelope)
    ( 0x01 | asset_len | transform(asset) )*
    0x00

The envelope is ``{"type": "module", "module": <document>}``.
"""

import copy
import json
import logging
import random
import struct
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from .compression import CompressionPrimitive
from .errors import CompressionUnavailable, EncodingError, FormatError
from .models import DecodedModule

logger = logging.getLogger(__name__)


MAGIC = 0x6F
VERSION = 0
ASSET_MARKER = 1
END_MARKER = 0
ENVELOPE_TYPE = "module"

_LENGTH = struct.Struct("<I")
HEADER_SIZE = 2 + _LENGTH.size


def make_id_factory(seed: Optional[int] = None) -> Callable[[], str]:
    """
    Build a generator of UUID-v4 strings backed by ``random.Random``.

    Identifiers only need to be unique within a bundle, so a seeded,
    non-cryptographic RNG is acceptable.
    """
    rng = random.Random(seed)

    def factory() -> str:
        return str(uuid.UUID(int=rng.getrandbits(128), version=4))

    return factory


def strip_asset_paths(document: Dict[str, Any]) -> None:
    """Blank bundle paths in ``document['assets']`` in place."""
    assets = document.get("assets")
    if not isinstance(assets, list):
        return

    for i, asset in enumerate(assets):
        if isinstance(asset, (list, tuple)) and len(asset) >= 2:
            stripped = list(asset)
            stripped[1] = ""
            assets[i] = stripped
        elif isinstance(asset, dict) and "uri" in asset:
            asset["uri"] = ""


class ModuleContainerCodec:
    """Encode/decode module containers using a pluggable compression primitive."""

    def __init__(
        self,
        compression: CompressionPrimitive,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize codec.

        Args:
            compression: Byte transform applied to every record payload
            id_factory: Generator for missing module ids (defaults to random UUID-v4)
        """
        self.compression = compression
        self.id_factory = id_factory or make_id_factory()

    @property
    def is_ready(self) -> bool:
        return self.compression.is_initialized

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, document: Dict[str, Any], assets: Iterable[bytes] = ()) -> bytes:
        """
        Serialize a module document and asset blobs into a container buffer.

        The caller's document is never modified.

        Raises:
            EncodingError: If the document is not serializable or compression fails
            CompressionUnavailable: If the compression primitive is not initialized
        """
        if not isinstance(document, dict):
            raise EncodingError(
                f"Module document must be a JSON object, got {type(document).__name__}"
            )

        try:
            module = copy.deepcopy(document)
        except Exception as e:
            raise EncodingError(f"Module document could not be copied: {e}") from e

        if not module.get("id"):
            module["id"] = self.id_factory()

        strip_asset_paths(module)

        try:
            main_json = json.dumps(
                {"type": ENVELOPE_TYPE, "module": module},
                indent=2,
                ensure_ascii=False,
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Module document is not JSON serializable: {e}") from e

        chunks: List[bytes] = [bytes([MAGIC, VERSION])]
        main_data = self._transform(main_json.encode("utf-8"), "main payload")
        chunks.append(_LENGTH.pack(len(main_data)))
        chunks.append(main_data)

        count = 0
        for blob in assets:
            encoded = self._transform(blob, f"asset {count}")
            chunks.append(bytes([ASSET_MARKER]))
            chunks.append(_LENGTH.pack(len(encoded)))
            chunks.append(encoded)
            count += 1

        chunks.append(bytes([END_MARKER]))
        result = b"".join(chunks)

        logger.debug(
            f"Encoded module '{module.get('name', module['id'])}': "
            f"{len(result)} bytes, {count} asset(s)"
        )
        return result

    def _transform(self, data: bytes, label: str) -> bytes:
        try:
            encoded = self.compression.transform(data)
        except CompressionUnavailable:
            raise
        except Exception as e:
            raise EncodingError(f"Compression failed for {label}: {e}") from e

        if len(encoded) > 0xFFFFFFFF:
            raise EncodingError(f"{label} exceeds 4 GiB after compression")
        return encoded

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, buffer: bytes) -> DecodedModule:
        """
        Parse a container buffer.

        Returns:
            DecodedModule(module, assets) with assets in encode order

        Raises:
            FormatError: If the buffer is malformed, truncated or unsupported
            CompressionUnavailable: If the compression primitive is not initialized
        """
        data = bytes(buffer)

        if len(data) < HEADER_SIZE:
            raise FormatError("truncated container")
        if data[0] != MAGIC:
            raise FormatError("bad magic")
        if data[1] != VERSION:
            raise FormatError("unsupported version")

        pos = 2
        main_data, pos = self._read_record(data, pos)
        module = self._parse_envelope(self._untransform(main_data, "main payload"))

        assets: List[bytes] = []
        while True:
            if pos >= len(data):
                raise FormatError("truncated container")

            marker = data[pos]
            pos += 1

            if marker == END_MARKER:
                break
            if marker != ASSET_MARKER:
                raise FormatError("invalid asset marker")

            asset_data, pos = self._read_record(data, pos)
            assets.append(self._untransform(asset_data, f"asset {len(assets)}"))

        if pos < len(data):
            logger.debug(f"Ignoring {len(data) - pos} trailing byte(s) after end marker")

        return DecodedModule(module=module, assets=assets)

    @staticmethod
    def _read_record(data: bytes, pos: int) -> tuple[bytes, int]:
        """Read a length-prefixed record starting at ``pos``."""
        if pos + _LENGTH.size > len(data):
            raise FormatError("truncated container")
        (length,) = _LENGTH.unpack_from(data, pos)
        pos += _LENGTH.size

        end = pos + length
        if end > len(data):
            raise FormatError("truncated container")
        return data[pos:end], end

    def _untransform(self, data: bytes, label: str) -> bytes:
        try:
            return self.compression.untransform(data)
        except CompressionUnavailable:
            raise
        except Exception as e:
            raise FormatError(f"corrupt {label}: {e}") from e

    @staticmethod
    def _parse_envelope(raw: bytes) -> Any:
        try:
            envelope = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise FormatError(f"corrupt main payload: {e}") from e

        if not isinstance(envelope, dict) or envelope.get("type") != ENVELOPE_TYPE:
            raise FormatError("invalid envelope type")
        if "module" not in envelope:
            raise FormatError("invalid envelope type")

        return envelope["module"]
