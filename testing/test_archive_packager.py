"""
Tests for the CharX archive packager.

Tests cover:
- Minimal end-to-end bundle (manifest + icon)
- Asset path conventions and AssetRef registration
- Dangling reference detection
- Optional module blob, including degraded packaging
- Deterministic output and writing to disk
"""

import asyncio
import io
import json
import zipfile

import pytest
from PIL import Image

from charx_engine.config.models import PackagingConfig
from charx_engine.services.character_cards import (
    AssetKind,
    AssetRef,
    CharacterManifest,
    CharXPackager,
    ModuleContainerCodec,
    PackagingError,
    ZlibCompression,
    make_id_factory,
)

PNG_STUB = bytes([0x89, 0x50, 0x4E])


def encode_image(image_format: str) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "blue").save(buf, format=image_format)
    return buf.getvalue()


JPG_IMAGE = encode_image("JPEG")


def make_manifest() -> CharacterManifest:
    return CharacterManifest(name="Aria", description="A knight.", first_message="Hello.")


def make_codec(initialized: bool = True) -> ModuleContainerCodec:
    compression = ZlibCompression()
    if initialized:
        asyncio.run(compression.initialize())
    return ModuleContainerCodec(compression, id_factory=make_id_factory(42))


def open_bundle(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


class TestEndToEnd:

    def test_minimal_bundle(self):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB, "png")

        with open_bundle(packager.finalize()) as zf:
            assert sorted(zf.namelist()) == ["assets/icon/image/icon.png", "card.json"]
            card = json.loads(zf.read("card.json"))
            assert zf.read("assets/icon/image/icon.png") == PNG_STUB

        assets = card["data"]["assets"]
        assert len(assets) == 1
        assert assets[0] == {
            "type": "icon",
            "uri": "embedded://assets/icon/image/icon.png",
            "name": "main",
            "ext": "png",
        }
        assert card["data"]["name"] == "Aria"
        assert card["data"]["first_mes"] == "Hello."

    def test_manifest_is_indented_json(self):
        packager = CharXPackager(make_manifest())
        with open_bundle(packager.finalize()) as zf:
            text = zf.read("card.json").decode("utf-8")
        assert text.startswith('{\n    "spec": "chara_card_v3"')


class TestAssetRegistration:

    def test_named_asset(self):
        packager = CharXPackager(make_manifest())
        ref = packager.add_named_asset("Aria_happy", JPG_IMAGE)

        assert ref.kind == AssetKind.GENERIC
        assert ref.extension == "jpg"
        assert ref.locator == "embedded://assets/other/image/Aria_happy.jpg"
        assert ref.display_name == "Aria_happy.jpg"
        assert packager.asset_paths == ["assets/other/image/Aria_happy.jpg"]

    def test_icon_extension_sniffed(self):
        packager = CharXPackager(make_manifest())
        ref = packager.add_primary_image(encode_image("GIF"))
        assert ref.locator == "embedded://assets/icon/image/icon.gif"

    def test_caller_manifest_untouched(self):
        manifest = make_manifest()
        packager = CharXPackager(manifest)
        packager.add_primary_image(PNG_STUB)
        packager.manifest.set_risuai_extensions("css")

        assert manifest.assets == []
        assert manifest.extensions == {}
        assert len(packager.manifest.assets) == 1

    def test_reregistering_path_keeps_single_reference(self):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(b"first", "png")
        packager.add_primary_image(b"second", "png")

        assert len(packager.manifest.assets) == 1
        with open_bundle(packager.finalize()) as zf:
            assert zf.read("assets/icon/image/icon.png") == b"second"

    @pytest.mark.parametrize("name", ["", "   ", "a/b", "a\\b"])
    def test_invalid_asset_name(self, name):
        packager = CharXPackager(make_manifest())
        with pytest.raises(ValueError):
            packager.add_named_asset(name, PNG_STUB)

    def test_unsupported_extension(self):
        packager = CharXPackager(make_manifest())
        with pytest.raises(ValueError):
            packager.add_named_asset("x", PNG_STUB, "tiff")

    def test_text_file(self):
        packager = CharXPackager(make_manifest())
        packager.add_text_file("regex/scripts.json", "[]")
        with open_bundle(packager.finalize()) as zf:
            assert zf.read("regex/scripts.json") == b"[]"
        with pytest.raises(ValueError):
            packager.add_text_file("../escape.txt", "x")

    def test_new_primary_image_replaces_old_icon(self):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB, "png")
        packager.add_primary_image(JPG_IMAGE, "jpg")

        icons = [a for a in packager.manifest.assets if a.kind == AssetKind.ICON]
        assert [a.locator for a in icons] == ["embedded://assets/icon/image/icon.jpg"]
        with open_bundle(packager.finalize()) as zf:
            assert sorted(zf.namelist()) == ["assets/icon/image/icon.jpg", "card.json"]

    @pytest.mark.parametrize("path", [
        "card.json", "module.risum", "assets/icon/image/icon.png",
    ])
    def test_text_file_reserved_paths(self, path):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB, "png")
        with pytest.raises(ValueError, match="reserved"):
            packager.add_text_file(path, "{}")

        with open_bundle(packager.finalize()) as zf:
            names = zf.namelist()
        assert len(names) == len(set(names))

    def test_asset_cannot_overwrite_text_file(self):
        packager = CharXPackager(make_manifest())
        packager.add_text_file("assets/other/image/notes.png", "text")
        with pytest.raises(ValueError):
            packager.add_named_asset("notes", PNG_STUB, "png")


class TestConsistency:
    """Every embedded reference must have a file, and vice versa."""

    def test_exactly_referenced_files(self):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB)
        for name in ("happy", "sad", "angry"):
            packager.add_named_asset(f"Aria_{name}", PNG_STUB)

        with open_bundle(packager.finalize()) as zf:
            names = set(zf.namelist())
            card = json.loads(zf.read("card.json"))

        paths = {a["uri"][len("embedded://"):] for a in card["data"]["assets"]}
        assert len(paths) == 4
        assert names == paths | {"card.json"}

    def test_discarded_blob_is_dangling(self):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB)
        packager.add_named_asset("Aria_happy", PNG_STUB)
        packager.discard_asset_file("assets/other/image/Aria_happy.png")

        with pytest.raises(PackagingError, match="dangling asset reference"):
            packager.finalize()

    def test_manual_reference_without_file(self):
        manifest = make_manifest()
        manifest.add_asset(AssetRef.embedded(AssetKind.EMOTION, "assets/emotion/x.png", "x", "png"))
        with pytest.raises(PackagingError, match="assets/emotion/x.png"):
            CharXPackager(manifest).finalize()

    def test_external_reference_needs_no_file(self):
        manifest = make_manifest()
        manifest.add_asset(AssetRef(kind="background", locator="https://example.com/bg.png"))
        with open_bundle(CharXPackager(manifest).finalize()) as zf:
            assert zf.namelist() == ["card.json"]

    def test_unreferenced_file_skipped(self):
        packager = CharXPackager(make_manifest())
        packager.add_named_asset("extra", PNG_STUB)
        packager.manifest.remove_asset("embedded://assets/other/image/extra.png")

        with open_bundle(packager.finalize()) as zf:
            assert zf.namelist() == ["card.json"]
        assert any("unreferenced" in w for w in packager.warnings)


class TestModuleBlob:

    def test_attach_module(self):
        codec = make_codec()
        packager = CharXPackager(make_manifest(), codec=codec)
        packager.add_primary_image(PNG_STUB)
        blob = packager.attach_module_blob({"name": "Aria Module", "regex": [], "lorebook": []})

        assert blob is not None
        with open_bundle(packager.finalize()) as zf:
            assert sorted(zf.namelist()) == [
                "assets/icon/image/icon.png", "card.json", "module.risum",
            ]
            module, assets = codec.decode(zf.read("module.risum"))
        assert module["name"] == "Aria Module"
        assert assets == []
        assert packager.warnings == []

    def test_module_extension_configurable(self):
        packager = CharXPackager(
            make_manifest(),
            codec=make_codec(),
            config=PackagingConfig(module_extension=".mod"),
        )
        packager.attach_module_blob({"name": "m"})
        with open_bundle(packager.finalize()) as zf:
            assert "module.mod" in zf.namelist()

    def test_uninitialized_compression_degrades(self):
        packager = CharXPackager(make_manifest(), codec=make_codec(initialized=False))
        packager.add_primary_image(PNG_STUB)

        assert packager.attach_module_blob({"name": "m"}) is None
        assert not packager.has_module
        assert len(packager.warnings) == 1

        with open_bundle(packager.finalize()) as zf:
            assert "module.risum" not in zf.namelist()
            assert "card.json" in zf.namelist()

    def test_unserializable_module_degrades(self):
        packager = CharXPackager(make_manifest(), codec=make_codec())
        assert packager.attach_module_blob({"bad": float("inf")}) is None
        assert packager.warnings

    def test_no_codec_degrades(self):
        packager = CharXPackager(make_manifest())
        assert packager.attach_module_blob({"name": "m"}) is None
        assert "no container codec" in packager.warnings[0]


class TestOutput:

    def build(self) -> bytes:
        packager = CharXPackager(make_manifest(), codec=make_codec())
        packager.add_primary_image(PNG_STUB)
        packager.add_named_asset("Aria_happy", JPG_IMAGE)
        packager.attach_module_blob({"name": "m", "id": "fixed"})
        return packager.finalize()

    def test_deterministic(self):
        assert self.build() == self.build()

    def test_fixed_timestamps(self):
        with open_bundle(self.build()) as zf:
            assert all(info.date_time == (1980, 1, 1, 0, 0, 0) for info in zf.infolist())

    def test_write_to(self, tmp_path):
        packager = CharXPackager(make_manifest())
        packager.add_primary_image(PNG_STUB)

        saved = packager.write_to(tmp_path / "out" / "Aria")
        assert saved.name == "Aria.charx"
        assert zipfile.is_zipfile(saved)

    def test_write_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        packager = CharXPackager(make_manifest())

        with pytest.raises(PackagingError, match="Failed to write"):
            packager.write_to(blocker / "Aria.charx")
