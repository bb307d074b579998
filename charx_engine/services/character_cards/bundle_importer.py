"""
CharX Bundle Importer
====================

Read ``.charx`` bundles back into a manifest, asset files and module.
"""

import io
import json
import logging
import zipfile
import zlib
from typing import Optional

from pydantic import ValidationError

from charx_engine.config.models import PackagingConfig

from .container_codec import ModuleContainerCodec
from .errors import CharXError, PackagingError
from .models import BundleImportResult, CharacterManifest

logger = logging.getLogger(__name__)


class CharXImporter:
    """Import character bundles produced by CharXPackager (or compatible tools)."""

    def __init__(
        self,
        codec: Optional[ModuleContainerCodec] = None,
        config: Optional[PackagingConfig] = None,
    ):
        """
        Initialize importer.

        Args:
            codec: Codec for decoding an embedded module blob (skipped when None)
            config: Bundle layout settings
        """
        self.codec = codec
        self.config = config or PackagingConfig()

    def import_bundle(self, data: bytes) -> BundleImportResult:
        """
        Read a bundle.

        Missing asset files and undecodable module blobs are reported as
        warnings rather than errors.

        Raises:
            PackagingError: If the data is not a bundle or the manifest is invalid
        """
        logger.info("Importing character bundle")

        try:
            zipf = zipfile.ZipFile(io.BytesIO(data), 'r')
        except zipfile.BadZipFile as e:
            raise PackagingError(f"not a charx bundle: {e}") from e

        with zipf:
            names = set(zipf.namelist())
            manifest_name = self.config.manifest_filename
            if manifest_name not in names:
                raise PackagingError(f"Bundle has no '{manifest_name}'")

            manifest = self._read_manifest(self._read_member(zipf, manifest_name))
            warnings = []

            assets = {}
            for asset in manifest.assets:
                path = asset.embedded_path
                if path is None:
                    continue
                if path not in names:
                    warnings.append(f"Asset file missing from bundle: {path}")
                    continue
                try:
                    assets[path] = self._read_member(zipf, path)
                except PackagingError as e:
                    warnings.append(f"Asset file damaged: {e}")

            module = None
            module_name = self.config.module_filename
            if module_name in names:
                try:
                    module = self._read_module(self._read_member(zipf, module_name), warnings)
                except PackagingError as e:
                    warnings.append(f"Module blob could not be read: {e}")

        for warning in warnings:
            logger.warning(warning)

        logger.info(
            f"Imported bundle '{manifest.name}': {len(assets)} asset(s), "
            f"module={'yes' if module else 'no'}"
        )
        return BundleImportResult(
            manifest=manifest,
            assets=assets,
            module=module,
            warnings=warnings,
        )

    @staticmethod
    def _read_member(zipf: zipfile.ZipFile, name: str) -> bytes:
        """Read one archive entry; damaged entries raise PackagingError."""
        try:
            return zipf.read(name)
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise PackagingError(f"corrupt entry '{name}': {e}") from e

    @staticmethod
    def _read_manifest(raw: bytes) -> CharacterManifest:
        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PackagingError(f"Invalid manifest JSON: {e}") from e

        try:
            return CharacterManifest.from_canonical_document(document)
        except (ValidationError, ValueError) as e:
            raise PackagingError(f"Invalid manifest: {e}") from e

    def _read_module(self, blob: bytes, warnings: list):
        if self.codec is None:
            warnings.append("Module blob present but no codec configured; skipped")
            return None
        try:
            return self.codec.decode(blob)
        except CharXError as e:
            warnings.append(f"Module blob could not be decoded: {e}")
            return None
