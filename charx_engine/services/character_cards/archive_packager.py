"""
CharX Archive Packager
=====================

Assembles a ``.charx`` bundle: a ZIP archive holding the ``card.json``
manifest, embedded asset files, and an optional module container blob.

Bundle layout::

    card.json
    assets/icon/image/icon.<ext>
    assets/other/image/<name>.<ext>
    module.risum
"""

import io
import json
import logging
import zipfile
from pathlib import Path
from typing import Optional, Dict, List, Any

from charx_engine.config.models import PackagingConfig

from .container_codec import ModuleContainerCodec
from .errors import CharXError, PackagingError
from .image_format import detect_image_extension, normalize_extension
from .models import AssetKind, AssetRef, CharacterManifest

logger = logging.getLogger(__name__)


ICON_DIR = "assets/icon/image"
OTHER_DIR = "assets/other/image"

# Fixed entry timestamp so identical input yields identical bytes
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
ZIP_FILE_MODE = 0o644 << 16


class CharXPackager:
    """Build a character bundle from a manifest and registered files."""

    def __init__(
        self,
        manifest: CharacterManifest,
        codec: Optional[ModuleContainerCodec] = None,
        config: Optional[PackagingConfig] = None,
    ):
        """
        Initialize packager.

        Args:
            manifest: Character manifest (copied; the caller's instance is never modified)
            codec: Module container codec used by attach_module_blob
            config: Bundle layout settings
        """
        self.manifest = manifest.model_copy(deep=True)
        self.codec = codec
        self.config = config or PackagingConfig()

        self._asset_files: Dict[str, bytes] = {}  # path -> bytes, registration order
        self._text_files: Dict[str, str] = {}
        self._module_blob: Optional[bytes] = None
        self.warnings: List[str] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_primary_image(self, data: bytes, extension: Optional[str] = None) -> AssetRef:
        """
        Register the character icon at ``assets/icon/image/icon.<ext>``.

        There is one primary icon: any earlier icon reference and its file
        are replaced.
        """
        ext = normalize_extension(extension) if extension else detect_image_extension(data)
        path = f"{ICON_DIR}/icon.{ext}"

        for asset in list(self.manifest.assets):
            if asset.kind != AssetKind.ICON or asset.embedded_path == path:
                continue
            logger.info(f"Replacing primary icon '{asset.locator}'")
            self.manifest.remove_asset(asset.locator)
            if asset.embedded_path is not None:
                self._asset_files.pop(asset.embedded_path, None)

        return self._register(path, data, AssetRef.embedded(AssetKind.ICON, path, "main", ext))

    def add_named_asset(self, name: str, data: bytes, extension: Optional[str] = None) -> AssetRef:
        """Register a generic asset at ``assets/other/image/<name>.<ext>``."""
        self._validate_name(name)
        ext = normalize_extension(extension) if extension else detect_image_extension(data)
        path = f"{OTHER_DIR}/{name}.{ext}"
        return self._register(
            path, data, AssetRef.embedded(AssetKind.GENERIC, path, f"{name}.{ext}", ext)
        )

    def _register(self, path: str, data: bytes, asset: AssetRef) -> AssetRef:
        if path in self._text_files:
            raise ValueError(f"Bundle path already holds a text file: '{path}'")
        if path in self._asset_files:
            logger.info(f"Replacing asset file '{path}'")
        self._asset_files[path] = bytes(data)

        existing = self.manifest.find_asset(asset.locator)
        if existing is not None:
            existing.kind = asset.kind
            existing.display_name = asset.display_name
            existing.extension = asset.extension
            return existing

        return self.manifest.add_asset(asset)

    @staticmethod
    def _validate_name(name: str) -> None:
        if not name or not name.strip():
            raise ValueError("Asset name must not be empty")
        if "/" in name or "\\" in name:
            raise ValueError(f"Asset name must not contain path separators: '{name}'")

    def add_text_file(self, path: str, content: str) -> None:
        """Register an auxiliary text file (e.g. exported regex scripts)."""
        if not path or path.startswith("/") or ".." in path.split("/"):
            raise ValueError(f"Invalid bundle path: '{path}'")
        if path in (self.config.manifest_filename, self.module_path) or path in self._asset_files:
            raise ValueError(f"Bundle path is reserved: '{path}'")
        self._text_files[path] = content

    def discard_asset_file(self, path: str) -> bytes:
        """
        Drop a registered asset blob without touching the manifest.

        Raises:
            KeyError: If no blob is registered at ``path``
        """
        return self._asset_files.pop(path)

    @property
    def asset_paths(self) -> List[str]:
        return list(self._asset_files)

    # ------------------------------------------------------------------
    # Module blob
    # ------------------------------------------------------------------

    @property
    def module_path(self) -> str:
        return self.config.module_filename

    @property
    def has_module(self) -> bool:
        return self._module_blob is not None

    def attach_module_blob(self, module_document: Dict[str, Any]) -> Optional[bytes]:
        """
        Encode a module document and store it at ``module.<ext>``.

        Failure is recoverable: the blob is omitted, a warning is recorded in
        ``self.warnings`` and None is returned.
        """
        if self.codec is None:
            self._warn("Module blob omitted: no container codec configured")
            return None

        try:
            blob = self.codec.encode(module_document, [])
        except CharXError as e:
            self._warn(f"Module blob omitted: {e}")
            return None

        self._module_blob = blob
        logger.info(f"Attached module blob ({len(blob)} bytes) at '{self.module_path}'")
        return blob

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _check_references(self) -> None:
        """Every embedded locator must have a registered blob."""
        for asset in self.manifest.assets:
            path = asset.embedded_path
            if path is not None and path not in self._asset_files:
                raise PackagingError(f"dangling asset reference: {path}")

    def finalize(self) -> bytes:
        """
        Render the bundle as ZIP bytes.

        Raises:
            PackagingError: If an embedded asset reference has no file
        """
        self._check_references()

        referenced = {a.embedded_path for a in self.manifest.assets if a.is_embedded}
        manifest_json = json.dumps(
            self.manifest.to_canonical_document(),
            indent=4,
            ensure_ascii=False,
        )

        output = io.BytesIO()
        with zipfile.ZipFile(output, 'w', zipfile.ZIP_DEFLATED) as zipf:
            self._write_entry(zipf, self.config.manifest_filename, manifest_json.encode('utf-8'))

            for path, data in self._asset_files.items():
                if path not in referenced:
                    self._warn(f"Skipping unreferenced asset file '{path}'")
                    continue
                self._write_entry(zipf, path, data)

            for path, content in self._text_files.items():
                self._write_entry(zipf, path, content.encode('utf-8'))

            if self._module_blob is not None:
                self._write_entry(zipf, self.module_path, self._module_blob)

        result = output.getvalue()
        logger.info(
            f"Built bundle for '{self.manifest.name}': {len(result)} bytes, "
            f"{len(referenced)} asset(s), module={'yes' if self.has_module else 'no'}"
        )
        return result

    def _write_entry(self, zipf: zipfile.ZipFile, path: str, data: bytes) -> None:
        info = zipfile.ZipInfo(path, date_time=ZIP_TIMESTAMP)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = ZIP_FILE_MODE
        zipf.writestr(info, data, compresslevel=self.config.zip_compression_level)

    def write_to(self, output_path: Path) -> Path:
        """
        Finalize and save the bundle.

        Raises:
            PackagingError: If the bundle is invalid or cannot be written
        """
        output_path = Path(output_path)
        if output_path.suffix != ".charx":
            output_path = output_path.with_name(f"{output_path.name}.charx")

        data = self.finalize()
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise PackagingError(f"Failed to write bundle to '{output_path}': {e}") from e

        logger.info(f"Saved bundle to {output_path}")
        return output_path
