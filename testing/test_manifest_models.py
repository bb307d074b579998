"""
Tests for the character manifest model.

Tests cover:
- always_active / mode coupling on lore entries
- Incremental asset and lore mutations
- Canonical card.json document
- Rebuilding a manifest from its canonical document
"""

import io

import pytest
from PIL import Image
from pydantic import ValidationError

from charx_engine.services.character_cards import (
    AssetKind,
    AssetRef,
    CharacterBook,
    CharacterManifest,
    LoreEntry,
    detect_image_extension,
)


def make_manifest(**kwargs) -> CharacterManifest:
    defaults = dict(name="Aria", description="A knight.", first_message="Hello.")
    defaults.update(kwargs)
    return CharacterManifest(**defaults)


class TestLoreEntryMode:
    """mode is 'constant' exactly when always_active is set."""

    def test_default_is_normal(self):
        entry = LoreEntry(keys=["castle"], content="A castle.")
        assert entry.always_active is False
        assert entry.mode == "normal"
        assert entry.insertion_order == 100

    def test_assignment_updates_mode(self):
        entry = LoreEntry()
        entry.always_active = True
        assert entry.mode == "constant"
        entry.always_active = False
        assert entry.mode == "normal"

    def test_mode_input_sets_always_active(self):
        assert LoreEntry(mode="constant").always_active is True
        assert LoreEntry(mode="normal").always_active is False

    def test_constant_alias(self):
        assert LoreEntry(constant=True).mode == "constant"
        assert LoreEntry(constant=None).mode == "normal"

    def test_contradicting_mode_rejected(self):
        with pytest.raises(ValidationError):
            LoreEntry(always_active=True, mode="normal")

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            LoreEntry(mode="sometimes")

    def test_from_editor_splits_keywords(self):
        entry = LoreEntry.from_editor(
            title="Castle",
            keywords=" castle, keep ,, castle ",
            content="Stone walls.",
            always_active=True,
        )
        assert entry.keys == ["castle", "keep", "castle"]
        assert entry.name == "Castle"
        assert entry.comment == "Castle"
        assert entry.mode == "constant"


class TestManifestLoreMutations:

    def test_set_always_active_forces_mode(self):
        manifest = make_manifest()
        index = manifest.add_lore_entry(LoreEntry(keys=["a"], content="A"))

        entry = manifest.set_lore_always_active(index, True)
        assert entry.mode == "constant"
        assert manifest.lore_entries[index].mode == "constant"

        entry = manifest.set_lore_always_active(index, False)
        assert entry.mode == "normal"

    def test_add_creates_book(self):
        manifest = make_manifest()
        assert manifest.character_book is None
        assert manifest.add_lore_entry(LoreEntry()) == 0
        assert manifest.add_lore_entry(LoreEntry()) == 1
        assert isinstance(manifest.character_book, CharacterBook)

    def test_edit_entry(self):
        manifest = make_manifest()
        manifest.add_lore_entry(LoreEntry(keys=["a"], content="A"))

        updated = manifest.edit_lore_entry(0, content="B", insertion_order=5)
        assert updated.content == "B"
        assert updated.insertion_order == 5
        assert updated.keys == ["a"]

    def test_edit_entry_with_mode(self):
        manifest = make_manifest()
        manifest.add_lore_entry(LoreEntry())

        assert manifest.edit_lore_entry(0, mode="constant").always_active is True
        assert manifest.edit_lore_entry(0, always_active=False).mode == "normal"
        with pytest.raises(ValueError):
            manifest.edit_lore_entry(0, mode="constant", always_active=False)

    def test_edit_unknown_field(self):
        manifest = make_manifest()
        manifest.add_lore_entry(LoreEntry())
        with pytest.raises(ValueError, match="Unknown"):
            manifest.edit_lore_entry(0, colour="red")

    def test_remove_entry(self):
        manifest = make_manifest()
        manifest.add_lore_entry(LoreEntry(content="first"))
        manifest.add_lore_entry(LoreEntry(content="second"))

        removed = manifest.remove_lore_entry(0)
        assert removed.content == "first"
        assert [e.content for e in manifest.lore_entries] == ["second"]

        with pytest.raises(IndexError):
            manifest.remove_lore_entry(3)

    def test_index_error_without_book(self):
        with pytest.raises(IndexError):
            make_manifest().set_lore_always_active(0, True)

    def test_set_lorebook_from_editor_rows(self):
        manifest = make_manifest()
        manifest.set_lorebook([
            {"title": "Castle", "keywords": "castle, keep", "content": "Walls.", "alwaysActive": False},
            {"title": "Oath", "keywords": "", "content": "Always.", "alwaysActive": True},
        ])
        entries = manifest.lore_entries
        assert [e.mode for e in entries] == ["normal", "constant"]
        assert entries[0].keys == ["castle", "keep"]

        manifest.set_lorebook([])
        assert len(manifest.lore_entries) == 2


class TestManifestAssets:

    def test_add_find_remove(self):
        manifest = make_manifest()
        ref = AssetRef.embedded(AssetKind.ICON, "assets/icon/image/icon.png", "main", "png")
        manifest.add_asset(ref)

        assert manifest.find_asset(ref.locator) is ref
        assert manifest.remove_asset(ref.locator) is ref
        assert manifest.assets == []
        with pytest.raises(KeyError):
            manifest.remove_asset(ref.locator)

    def test_embedded_path(self):
        ref = AssetRef(kind="emotion", locator="embedded://assets/a.png", display_name="a")
        assert ref.embedded_path == "assets/a.png"
        legacy = AssetRef(kind="emotion", locator="embeded://assets/a.png")
        assert legacy.embedded_path == "assets/a.png"
        external = AssetRef(kind="background", locator="https://example.com/bg.png")
        assert external.embedded_path is None
        assert not external.is_embedded

    def test_extension_normalized(self):
        assert AssetRef(kind="icon", locator="x", extension="JPEG").extension == "jpg"
        assert AssetRef(kind="icon", locator="x", extension=".webp").extension == "webp"
        assert AssetRef(kind="icon", locator="x", extension="").extension == "png"
        with pytest.raises(ValidationError):
            AssetRef(kind="icon", locator="x", extension="bmp")

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            AssetRef(kind="video", locator="x")


def encode_image(image_format: str) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "red").save(buf, format=image_format)
    return buf.getvalue()


class TestImageFormat:

    @pytest.mark.parametrize("image_format, expected", [
        ("PNG", "png"),
        ("JPEG", "jpg"),
        ("WEBP", "webp"),
        ("GIF", "gif"),
    ])
    def test_detect(self, image_format, expected):
        assert detect_image_extension(encode_image(image_format)) == expected

    @pytest.mark.parametrize("data", [b"\x89PN", b"", b"unknown data here"])
    def test_unidentified_defaults_to_png(self, data):
        assert detect_image_extension(data) == "png"

    def test_unsupported_format_defaults_to_png(self):
        assert detect_image_extension(encode_image("BMP")) == "png"


class TestCanonicalDocument:

    def test_required_fields(self):
        doc = make_manifest().to_canonical_document()
        assert doc["spec"] == "chara_card_v3"
        assert doc["spec_version"] == "3.0"
        data = doc["data"]
        assert data["name"] == "Aria"
        assert data["description"] == "A knight."
        assert data["first_mes"] == "Hello."
        assert data["alternate_greetings"] == []
        assert "character_book" not in data

    def test_name_required(self):
        with pytest.raises(ValidationError):
            make_manifest(name="   ")
        with pytest.raises(ValidationError):
            CharacterManifest(name="Aria", description="x")

    def test_extensions_verbatim(self):
        extensions = {"risuai": {"viewScreen": "none"}, "future_flag": {"nested": [1, 2]}}
        doc = make_manifest(extensions=extensions).to_canonical_document()
        assert doc["data"]["extensions"] == extensions

    def test_document_is_detached(self):
        manifest = make_manifest(extensions={"a": {"b": 1}}, alternate_greetings=["Hi."])
        doc = manifest.to_canonical_document()
        doc["data"]["extensions"]["a"]["b"] = 2
        doc["data"]["alternate_greetings"].append("Yo.")
        assert manifest.extensions == {"a": {"b": 1}}
        assert manifest.alternate_greetings == ["Hi."]

    def test_lore_entry_form(self):
        manifest = make_manifest()
        manifest.add_lore_entry(LoreEntry(
            keys=["Castle"], content="Walls.", name="Castle",
            case_sensitive=True, always_active=True, extensions={"custom": 1},
        ))
        book = manifest.to_canonical_document()["data"]["character_book"]

        assert book["scan_depth"] == 5
        assert book["token_budget"] == 30000
        assert book["recursive_scanning"] is False
        assert book["extensions"] == {"risu_fullWordMatching": False}

        entry = book["entries"][0]
        assert entry["keys"] == ["Castle"]
        assert entry["constant"] is True
        assert entry["mode"] == "constant"
        assert entry["insertion_order"] == 100
        assert entry["extensions"] == {
            "risu_case_sensitive": True,
            "risu_loreCache": None,
            "custom": 1,
        }

    def test_case_sensitive_extension_follows_field(self):
        entry = LoreEntry(case_sensitive=False, extensions={"risu_case_sensitive": True})
        canonical = entry.to_canonical()
        assert canonical["case_sensitive"] is False
        assert canonical["extensions"]["risu_case_sensitive"] is False

    def test_post_history_and_risuai(self):
        manifest = make_manifest()
        manifest.append_post_history_instructions("First.")
        manifest.append_post_history_instructions("Second.")
        manifest.set_risuai_extensions(".box { color: red; }")

        data = manifest.to_canonical_document()["data"]
        assert data["post_history_instructions"] == "First.\n\nSecond."
        assert data["extensions"]["risuai"] == {
            "backgroundHTML": ".box { color: red; }",
            "viewScreen": "none",
            "utilityBot": False,
        }

    def test_from_canonical_document(self):
        manifest = make_manifest(alternate_greetings=["Hi."], tags=["knight"], extensions={"x": 1})
        manifest.add_asset(AssetRef.embedded(AssetKind.ICON, "assets/icon/image/icon.png", "main", "png"))
        manifest.add_lore_entry(LoreEntry(keys=["a"], content="A", name="A", always_active=True))

        doc = manifest.to_canonical_document()
        rebuilt = CharacterManifest.from_canonical_document(doc)
        assert rebuilt.to_canonical_document() == doc
        assert rebuilt.lore_entries[0].mode == "constant"

    def test_from_canonical_document_rejects_non_object(self):
        with pytest.raises(ValueError):
            CharacterManifest.from_canonical_document(["nope"])
