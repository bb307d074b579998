"""
Character Card System
====================

Portable character bundles (``.charx``): a ZIP archive with a CharacterCardV3
manifest, embedded image assets, and an optional length-prefixed module
container (``.risum``) carrying regex scripts and lorebook data.
"""

from .archive_packager import CharXPackager
from .bundle_importer import CharXImporter
from .compression import (
    CompressionPrimitive,
    IdentityCompression,
    ZlibCompression,
    create_compression,
)
from .container_codec import ModuleContainerCodec, make_id_factory
from .errors import (
    CharXError,
    CodecError,
    CompressionUnavailable,
    EncodingError,
    FormatError,
    PackagingError,
)
from .image_format import detect_image_extension
from .models import (
    AssetKind,
    AssetRef,
    BundleImportResult,
    CharacterBook,
    CharacterManifest,
    DecodedModule,
    LoreEntry,
)
from .module_builder import RegexScript, build_module_document, create_asset_regex_list

__all__ = [
    'CharXPackager',
    'CharXImporter',
    'CompressionPrimitive',
    'IdentityCompression',
    'ZlibCompression',
    'create_compression',
    'ModuleContainerCodec',
    'make_id_factory',
    'CharXError',
    'CodecError',
    'CompressionUnavailable',
    'EncodingError',
    'FormatError',
    'PackagingError',
    'detect_image_extension',
    'AssetKind',
    'AssetRef',
    'BundleImportResult',
    'CharacterBook',
    'CharacterManifest',
    'DecodedModule',
    'LoreEntry',
    'RegexScript',
    'build_module_document',
    'create_asset_regex_list',
]
