"""
Character Card Data Models
=========================

Pydantic models for the character manifest (CharacterCardV3 ``card.json``),
its asset references and lorebook entries.

Canonical document layout produced by ``CharacterManifest.to_canonical_document``::

    {
        "spec": "chara_card_v3",
        "spec_version": "3.0",
        "data": {
            "name", "description", "first_mes", "personality", "scenario",
            "mes_example", "system_prompt", "post_history_instructions",
            "alternate_greetings", "tags", "creator", "character_version",
            "creator_notes", "assets", "extensions", "character_book"?
        }
    }
"""

import copy
import logging
from enum import Enum
from typing import Optional, Dict, List, Any, Literal, NamedTuple
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from .image_format import normalize_extension

logger = logging.getLogger(__name__)


EMBEDDED_SCHEME = "embedded://"
# Older exporters misspelled the scheme; accepted on read only
LEGACY_EMBEDDED_SCHEME = "embeded://"

CARD_SPEC = "chara_card_v3"
CARD_SPEC_VERSION = "3.0"

LORE_MODES = ("normal", "constant")


# ===========================
# Assets
# ===========================

class AssetKind(str, Enum):
    """Role of an embedded or external asset."""
    ICON = "icon"
    EMOTION = "emotion"
    BACKGROUND = "background"
    USER_ICON = "user_icon"
    GENERIC = "x-risu-asset"


class AssetRef(BaseModel):
    """Manifest-level pointer to a binary resource."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    kind: AssetKind = Field(validation_alias=AliasChoices("kind", "type"))
    locator: str = Field(validation_alias=AliasChoices("locator", "uri"))
    display_name: str = Field(default="", validation_alias=AliasChoices("display_name", "name"))
    extension: str = Field(default="png", validation_alias=AliasChoices("extension", "ext"))

    @field_validator("extension", mode="before")
    @classmethod
    def validate_extension(cls, v: Any) -> str:
        return normalize_extension(v)

    @classmethod
    def embedded(
        cls,
        kind: AssetKind,
        path: str,
        display_name: str,
        extension: str,
    ) -> "AssetRef":
        """Build a reference to a blob stored at ``path`` inside the bundle."""
        return cls(
            kind=kind,
            locator=f"{EMBEDDED_SCHEME}{path}",
            display_name=display_name,
            extension=extension,
        )

    @property
    def embedded_path(self) -> Optional[str]:
        """Bundle-internal path, or None for external assets."""
        for scheme in (EMBEDDED_SCHEME, LEGACY_EMBEDDED_SCHEME):
            if self.locator.startswith(scheme):
                return self.locator[len(scheme):]
        return None

    @property
    def is_embedded(self) -> bool:
        return self.embedded_path is not None

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "uri": self.locator,
            "name": self.display_name,
            "ext": self.extension,
        }


# ===========================
# Lorebook
# ===========================

class LoreEntry(BaseModel):
    """
    Conditionally injected world/character knowledge.

    ``mode`` is derived from ``always_active`` so the two can never disagree,
    whichever way the entry is built or edited.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    keys: List[str] = Field(default_factory=list)
    content: str = ""
    always_active: bool = Field(
        default=False,
        validation_alias=AliasChoices("always_active", "alwaysActive", "constant"),
    )
    insertion_order: int = 100
    case_sensitive: bool = False
    enabled: bool = True
    name: str = ""
    comment: str = ""
    selective: bool = False
    use_regex: bool = False
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def resolve_mode(cls, data: Any) -> Any:
        """Fold an incoming ``mode`` into ``always_active``."""
        if not isinstance(data, dict):
            return data

        flag_keys = [k for k in ("always_active", "alwaysActive", "constant") if k in data]
        if "mode" not in data and not any(data[k] is None for k in flag_keys):
            return data

        data = dict(data)
        for key in flag_keys:
            if data[key] is None:
                del data[key]

        mode = data.pop("mode", None)
        if mode is None:
            return data
        if mode not in LORE_MODES:
            raise ValueError(f"mode must be one of {LORE_MODES}, got '{mode}'")

        from_mode = mode == "constant"
        explicit = [data[k] for k in ("always_active", "alwaysActive", "constant") if k in data]
        if explicit:
            if bool(explicit[0]) != from_mode:
                raise ValueError(
                    f"mode '{mode}' contradicts always_active={explicit[0]}"
                )
        else:
            data["always_active"] = from_mode
        return data

    @computed_field
    @property
    def mode(self) -> Literal["normal", "constant"]:
        return "constant" if self.always_active else "normal"

    @classmethod
    def from_editor(
        cls,
        title: str = "",
        keywords: str = "",
        content: str = "",
        always_active: bool = False,
    ) -> "LoreEntry":
        """Build an entry from editor fields (comma-separated keywords)."""
        keys = [k.strip() for k in (keywords or "").split(",") if k.strip()]
        return cls(
            keys=keys,
            content=content or "",
            comment=title or "",
            name=title or "",
            always_active=bool(always_active),
        )

    @classmethod
    def from_canonical(cls, entry: Dict[str, Any]) -> "LoreEntry":
        data = dict(entry)
        extensions = dict(data.get("extensions") or {})
        if "case_sensitive" not in data and "risu_case_sensitive" in extensions:
            data["case_sensitive"] = extensions["risu_case_sensitive"]
        extensions.pop("risu_case_sensitive", None)
        extensions.pop("risu_loreCache", None)
        data["extensions"] = extensions
        if data.get("case_sensitive") is None:
            data.pop("case_sensitive", None)
        return cls.model_validate(data)

    def to_canonical(self) -> Dict[str, Any]:
        extensions = {
            "risu_case_sensitive": self.case_sensitive,
            "risu_loreCache": None,
        }
        extensions.update(copy.deepcopy(self.extensions))
        # Derived from the field; a stale copy in extensions must not win
        extensions["risu_case_sensitive"] = self.case_sensitive
        return {
            "keys": list(self.keys),
            "content": self.content,
            "extensions": extensions,
            "enabled": self.enabled,
            "insertion_order": self.insertion_order,
            "constant": self.always_active,
            "selective": self.selective,
            "name": self.name or self.comment,
            "comment": self.comment,
            "case_sensitive": self.case_sensitive,
            "use_regex": self.use_regex,
            "mode": self.mode,
        }


class CharacterBook(BaseModel):
    """Character lorebook / world info."""
    entries: List[LoreEntry] = Field(default_factory=list)
    scan_depth: int = 5
    token_budget: int = 30000
    recursive_scanning: bool = False
    extensions: Dict[str, Any] = Field(
        default_factory=lambda: {"risu_fullWordMatching": False}
    )

    @classmethod
    def from_canonical(cls, book: Dict[str, Any]) -> "CharacterBook":
        data = {k: v for k, v in book.items() if k != "entries" and v is not None}
        data["entries"] = [LoreEntry.from_canonical(e) for e in book.get("entries") or []]
        return cls.model_validate(data)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "scan_depth": self.scan_depth,
            "token_budget": self.token_budget,
            "recursive_scanning": self.recursive_scanning,
            "extensions": copy.deepcopy(self.extensions),
            "entries": [e.to_canonical() for e in self.entries],
        }


# ===========================
# Manifest
# ===========================

class CharacterManifest(BaseModel):
    """Root character document with incremental editing operations."""

    model_config = ConfigDict(validate_assignment=True)

    # Required
    name: str
    description: str
    first_message: str

    # Profile
    personality: str = ""
    scenario: str = ""
    example_messages: str = ""
    system_prompt: str = ""
    post_history_instructions: str = ""
    alternate_greetings: List[str] = Field(default_factory=list)

    # Metadata
    tags: List[str] = Field(default_factory=list)
    creator: str = ""
    character_version: str = "1.0"
    creator_notes: str = ""

    assets: List[AssetRef] = Field(default_factory=list)
    character_book: Optional[CharacterBook] = None

    # Consumer-specific flags, emitted verbatim
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v

    # --- assets ---

    def add_asset(self, asset: AssetRef) -> AssetRef:
        """Append an asset reference."""
        self.assets.append(asset)
        logger.debug(f"Added asset '{asset.locator}' ({asset.kind.value})")
        return asset

    def find_asset(self, locator: str) -> Optional[AssetRef]:
        for asset in self.assets:
            if asset.locator == locator:
                return asset
        return None

    def remove_asset(self, locator: str) -> AssetRef:
        """
        Remove the first asset reference with the given locator.

        Raises:
            KeyError: If no asset has that locator
        """
        for i, asset in enumerate(self.assets):
            if asset.locator == locator:
                logger.debug(f"Removed asset '{locator}'")
                return self.assets.pop(i)
        raise KeyError(f"No asset with locator '{locator}'")

    # --- lorebook ---

    @property
    def lore_entries(self) -> List[LoreEntry]:
        return self.character_book.entries if self.character_book else []

    def add_lore_entry(self, entry: LoreEntry) -> int:
        """Append a lore entry, creating the book if needed. Returns its index."""
        if self.character_book is None:
            self.character_book = CharacterBook()
        self.character_book.entries.append(entry)
        return len(self.character_book.entries) - 1

    def _lore_index(self, index: int) -> int:
        entries = self.lore_entries
        if not -len(entries) <= index < len(entries):
            raise IndexError(f"Lore entry index {index} out of range ({len(entries)} entries)")
        return index

    def remove_lore_entry(self, index: int) -> LoreEntry:
        """
        Remove and return the lore entry at ``index``.

        Raises:
            IndexError: If the index is out of range
        """
        self._lore_index(index)
        return self.character_book.entries.pop(index)

    def edit_lore_entry(self, index: int, **changes: Any) -> LoreEntry:
        """
        Replace fields of the lore entry at ``index``.

        Passing ``mode`` is equivalent to passing the matching
        ``always_active`` value.

        Raises:
            IndexError: If the index is out of range
            ValueError: If a field is unknown or the values contradict
        """
        self._lore_index(index)

        if "mode" in changes:
            mode = changes.pop("mode")
            if mode not in LORE_MODES:
                raise ValueError(f"mode must be one of {LORE_MODES}, got '{mode}'")
            changes.setdefault("always_active", mode == "constant")
            if changes["always_active"] != (mode == "constant"):
                raise ValueError(
                    f"mode '{mode}' contradicts always_active={changes['always_active']}"
                )

        unknown = set(changes) - set(LoreEntry.model_fields)
        if unknown:
            raise ValueError(f"Unknown lore entry fields: {', '.join(sorted(unknown))}")

        data = self.character_book.entries[index].model_dump(exclude={"mode"})
        data.update(changes)
        updated = LoreEntry.model_validate(data)
        self.character_book.entries[index] = updated
        return updated

    def set_lore_always_active(self, index: int, always_active: bool) -> LoreEntry:
        """Toggle ``always_active``; ``mode`` follows in the same operation."""
        self._lore_index(index)
        entry = self.character_book.entries[index]
        entry.always_active = always_active
        return entry

    def set_lorebook(self, editor_entries: List[Dict[str, Any]]) -> None:
        """
        Replace the lorebook from editor rows.

        Each row may carry ``title``, ``keywords`` (comma separated),
        ``content`` and ``alwaysActive``. An empty list leaves the book as is.
        """
        if not editor_entries:
            return

        entries = [
            LoreEntry.from_editor(
                title=row.get("title", ""),
                keywords=row.get("keywords", ""),
                content=row.get("content", ""),
                always_active=row.get("alwaysActive", row.get("always_active", False)),
            )
            for row in editor_entries
        ]
        self.character_book = CharacterBook(entries=entries)
        logger.debug(f"Lorebook set with {len(entries)} entries")

    # --- instructions & extensions ---

    def set_post_history_instructions(self, instructions: str) -> None:
        self.post_history_instructions = instructions

    def append_post_history_instructions(self, instructions: str) -> None:
        """Append a block separated by a blank line."""
        if not instructions:
            return
        current = self.post_history_instructions or ""
        self.post_history_instructions = f"{current}\n\n{instructions}" if current else instructions

    def set_risuai_extensions(self, background_html: str = "") -> None:
        """Store shared CSS/HTML for the RisuAI front-end."""
        risuai = dict(self.extensions.get("risuai") or {})
        risuai["backgroundHTML"] = background_html
        risuai["viewScreen"] = "none"
        risuai["utilityBot"] = False
        self.extensions = {**self.extensions, "risuai": risuai}

    # --- serialization ---

    def to_canonical_document(self) -> Dict[str, Any]:
        """Build the JSON-ready ``card.json`` document. Does not modify the manifest."""
        data: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "first_mes": self.first_message,
            "personality": self.personality,
            "scenario": self.scenario,
            "mes_example": self.example_messages,
            "system_prompt": self.system_prompt,
            "post_history_instructions": self.post_history_instructions,
            "alternate_greetings": list(self.alternate_greetings),
            "tags": list(self.tags),
            "creator": self.creator,
            "character_version": self.character_version,
            "creator_notes": self.creator_notes,
            "assets": [a.to_canonical() for a in self.assets],
            "extensions": copy.deepcopy(self.extensions),
        }
        if self.character_book is not None:
            data["character_book"] = self.character_book.to_canonical()

        return {
            "spec": CARD_SPEC,
            "spec_version": CARD_SPEC_VERSION,
            "data": data,
        }

    @classmethod
    def from_canonical_document(cls, document: Dict[str, Any]) -> "CharacterManifest":
        """
        Rebuild a manifest from a ``card.json`` document (or its ``data`` block).

        Raises:
            ValueError: If the document is not a mapping
            pydantic.ValidationError: If required fields are missing or invalid
        """
        if not isinstance(document, dict):
            raise ValueError("Card document must be a JSON object")

        data = document.get("data", document)
        if not isinstance(data, dict):
            raise ValueError("Card 'data' must be a JSON object")

        spec = document.get("spec")
        if spec and spec != CARD_SPEC:
            logger.warning(f"Reading card with spec '{spec}', expected '{CARD_SPEC}'")

        book = data.get("character_book")
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            first_message=data.get("first_mes", ""),
            personality=data.get("personality") or "",
            scenario=data.get("scenario") or "",
            example_messages=data.get("mes_example") or "",
            system_prompt=data.get("system_prompt") or "",
            post_history_instructions=data.get("post_history_instructions") or "",
            alternate_greetings=data.get("alternate_greetings") or [],
            tags=data.get("tags") or [],
            creator=data.get("creator") or "",
            character_version=data.get("character_version") or "1.0",
            creator_notes=data.get("creator_notes") or "",
            assets=[AssetRef.model_validate(a) for a in data.get("assets") or []],
            character_book=CharacterBook.from_canonical(book) if book else None,
            extensions=data.get("extensions") or {},
        )


# ===========================
# Codec / Import DTOs
# ===========================

class DecodedModule(NamedTuple):
    """Result of decoding a module container."""
    module: Any
    assets: List[bytes]


class BundleImportResult(BaseModel):
    """Result of reading a character bundle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    manifest: CharacterManifest
    assets: Dict[str, bytes] = Field(default_factory=dict)  # bundle path -> bytes
    module: Optional[DecodedModule] = None
    warnings: List[str] = Field(default_factory=list)
