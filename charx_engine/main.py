"""Command line entry point for CharX Engine."""

import argparse
import asyncio
import json
import logging
import sys
import io
from pathlib import Path
from typing import Any, Dict, List, Optional

from charx_engine.config import ConfigLoader, ConfigLoadError, SystemConfig
from charx_engine.llm import BaseLLMClient, LLMError, create_llm_client
from charx_engine.services.character_cards import (
    CharacterManifest,
    CharXError,
    CharXImporter,
    CharXPackager,
    LoreEntry,
    ModuleContainerCodec,
    build_module_document,
    create_asset_regex_list,
    create_compression,
)
from charx_engine.services.character_cards.module_builder import create_status_window_regex

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False):
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO

    # Force UTF-8 encoding for stdout/stderr on Windows
    if sys.platform == 'win32':
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True
    )

    # Only set DEBUG for our app loggers, not third-party libraries
    logging.getLogger('charx_engine').setLevel(level)

    # Silence noisy third-party loggers
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


def create_codec(config: SystemConfig) -> ModuleContainerCodec:
    """Build a codec with an initialized compression primitive."""
    compression = create_compression(config.compression.primitive, config.compression.level)
    asyncio.run(compression.initialize())
    return ModuleContainerCodec(compression)


def _resolve(base: Path, path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else base / p


def build_bundle(sheet: Dict[str, Any], base_dir: Path, config: SystemConfig) -> CharXPackager:
    """
    Assemble a packager from a character sheet.

    Sheet keys: name, description, first_message, alternate_greetings, tags,
    creator, post_history_instructions, icon, assets, lorebook,
    status_window {pattern, html, style, instruction},
    image_assets {char_name, tags, instruction}, background_css.
    """
    manifest = CharacterManifest(
        name=sheet['name'],
        description=sheet.get('description', ''),
        first_message=sheet.get('first_message', ''),
        alternate_greetings=[g for g in sheet.get('alternate_greetings', []) if g.strip()],
        tags=sheet.get('tags', []),
        creator=sheet.get('creator', config.packaging.creator),
        post_history_instructions=sheet.get('post_history_instructions', ''),
    )

    codec = create_codec(config)
    packager = CharXPackager(manifest, codec=codec, config=config.packaging)

    if sheet.get('icon'):
        packager.add_primary_image(_resolve(base_dir, sheet['icon']).read_bytes())

    asset_entries = sheet.get('assets', [])
    for entry in asset_entries:
        if isinstance(entry, str):
            entry = {'path': entry}
        asset_path = _resolve(base_dir, entry['path'])
        packager.add_named_asset(entry.get('name') or asset_path.stem, asset_path.read_bytes())

    regex = []
    styles: List[str] = []

    status = sheet.get('status_window') or {}
    if status.get('pattern'):
        regex.append(create_status_window_regex(status['pattern'], status.get('html', '')))
        if status.get('instruction'):
            packager.manifest.set_post_history_instructions(status['instruction'])
        if status.get('style'):
            styles.append(status['style'])

    image_assets = sheet.get('image_assets') or {}
    if asset_entries and image_assets:
        regex.extend(create_asset_regex_list(
            image_assets.get('char_name', manifest.name),
            image_assets.get('tags', []),
        ))

    lore_entries = [
        LoreEntry.from_editor(
            title=row.get('title', ''),
            keywords=row.get('keywords', ''),
            content=row.get('content', ''),
            always_active=row.get('alwaysActive', False),
        )
        for row in sheet.get('lorebook', [])
    ]

    if regex or lore_entries:
        packager.attach_module_blob(build_module_document(
            name=f"{manifest.name} Module",
            description="Character module with regex scripts",
            regex=regex,
            lore_entries=lore_entries,
        ))

    if sheet.get('background_css'):
        styles.append(sheet['background_css'])
    styles = [s for s in styles if s.strip()]
    if styles:
        packager.manifest.set_risuai_extensions('\n'.join(styles))

    if image_assets.get('instruction'):
        packager.manifest.append_post_history_instructions(image_assets['instruction'])

    return packager


def cmd_build(args: argparse.Namespace, loader: ConfigLoader, config: SystemConfig) -> int:
    sheet_path = Path(args.sheet)
    sheet = loader.load_character_sheet(sheet_path)
    packager = build_bundle(sheet, sheet_path.parent, config)

    output = Path(args.output) if args.output else sheet_path.with_suffix('.charx')
    saved = packager.write_to(output)

    for warning in packager.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    print(saved)
    return 0


def cmd_inspect(args: argparse.Namespace, loader: ConfigLoader, config: SystemConfig) -> int:
    importer = CharXImporter(codec=create_codec(config), config=config.packaging)
    result = importer.import_bundle(Path(args.bundle).read_bytes())

    manifest = result.manifest
    print(f"name: {manifest.name}")
    print(f"greetings: {1 + len(manifest.alternate_greetings)}")
    print(f"lore entries: {len(manifest.lore_entries)}")
    print(f"assets: {len(manifest.assets)}")
    for asset in manifest.assets:
        size = len(result.assets.get(asset.embedded_path or '', b''))
        print(f"  - [{asset.kind.value}] {asset.display_name} {asset.locator} ({size} bytes)")
    if result.module is not None:
        module = result.module.module
        print(f"module: {module.get('name', '')} (id {module.get('id', '')})")
        print(f"  regex scripts: {len(module.get('regex', []))}")
        print(f"  lore entries: {len(module.get('lorebook', []))}")
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


def cmd_unpack_module(args: argparse.Namespace, loader: ConfigLoader, config: SystemConfig) -> int:
    codec = create_codec(config)
    decoded = codec.decode(Path(args.module).read_bytes())

    text = json.dumps(decoded.module, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text, encoding='utf-8')
    else:
        print(text)

    if args.assets_dir:
        assets_dir = Path(args.assets_dir)
        assets_dir.mkdir(parents=True, exist_ok=True)
        for i, blob in enumerate(decoded.assets):
            (assets_dir / f"asset_{i}.bin").write_bytes(blob)
    logger.info(f"Unpacked module with {len(decoded.assets)} asset(s)")
    return 0


async def _check_llm(client: BaseLLMClient) -> bool:
    try:
        return await client.health_check()
    finally:
        await client.close()


def cmd_check_llm(args: argparse.Namespace, loader: ConfigLoader, config: SystemConfig) -> int:
    client = create_llm_client(config.llm)
    healthy = asyncio.run(_check_llm(client))
    print(f"{config.llm.provider} ({config.llm.model}): {'ok' if healthy else 'unavailable'}")
    return 0 if healthy else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='charx-engine',
        description='Build and inspect .charx character bundles and .risum modules',
    )
    parser.add_argument('--config-dir', default='.', help='Directory containing config/system.yaml')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    build = sub.add_parser('build', help='Build a .charx bundle from a character sheet (YAML)')
    build.add_argument('sheet')
    build.add_argument('-o', '--output')
    build.set_defaults(func=cmd_build)

    inspect = sub.add_parser('inspect', help='Summarize a .charx bundle')
    inspect.add_argument('bundle')
    inspect.set_defaults(func=cmd_inspect)

    unpack = sub.add_parser('unpack-module', help='Decode a .risum module to JSON')
    unpack.add_argument('module')
    unpack.add_argument('-o', '--output')
    unpack.add_argument('--assets-dir')
    unpack.set_defaults(func=cmd_unpack_module)

    check = sub.add_parser('check-llm', help='Check that the configured LLM backend responds')
    check.set_defaults(func=cmd_check_llm)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    loader = ConfigLoader(Path(args.config_dir))
    try:
        config = loader.load_system_config()
    except ConfigLoadError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    setup_logging(debug=args.debug or config.debug)

    try:
        return args.func(args, loader, config)
    except (CharXError, ConfigLoadError, LLMError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
