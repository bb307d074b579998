"""
Module Builder
=============

Builds the module document embedded in a bundle as ``module.risum``:
regex display scripts plus the module form of the lorebook.
"""

import logging
from typing import Optional, Dict, List, Any, Iterable
from pydantic import BaseModel, ConfigDict, Field

from .models import LoreEntry

logger = logging.getLogger(__name__)


class RegexScript(BaseModel):
    """Regex rewrite script executed by the chat front-end."""

    model_config = ConfigDict(populate_by_name=True)

    comment: str = ""
    pattern: str = Field(alias="in")
    replacement: str = Field(default="", alias="out")
    type: str = "editdisplay"  # editinput, editoutput, editprocess, editdisplay
    able_flag: bool = Field(default=False, alias="ableFlag")
    flag: Optional[str] = None

    def to_module(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ===========================
# Fixed image asset scripts
# ===========================

# Keep <img> requests visible only for the last five turns
OLD_IMAGE_REMOVE = RegexScript(
    comment="Remove stale image requests",
    pattern='<img="([^"]+)">',
    replacement="{{#if {{greater_equal::{{chat_index}}::{{? {{lastmessageid}}-5}}}}}}\n$&\n{{/if}}",
    type="editprocess",
    able_flag=True,
    flag="g",
)

ASSET_NEWLINE_BEFORE = RegexScript(
    comment="Asset newline handling 1",
    pattern='(?<!\\n\\n)<img="([^"_]+)_([^"]+)">',
    replacement='\n<img="$1_$2">',
    type="editoutput",
)

ASSET_NEWLINE_AFTER = RegexScript(
    comment="Asset newline handling 2",
    pattern='<img="([^"_]+)_([^"]+)">(?!\\n\\n)',
    replacement='<img="$1_$2">\n',
    type="editoutput",
)

ASSET_DISPLAY_HTML = """<div class="container">
  <img
    class="roundedImage asset"
    src="{{raw::{{random::{{spread::{{filter::{{split::{{#each {{assetlist}} a}} {{#if {{startswith::{{slot::a}}::$1_$2}}}} {{slot::a}}$$ {{/if}} {{/each}}::$$}}}}}}}}}}">
</div>"""


# ===========================
# Per-character scripts
# ===========================

def create_asset_display_regex(char_name: str, tags: List[str]) -> RegexScript:
    """Render ``<img="Name_tag">`` as a random matching embedded asset."""
    tag_pattern = "|".join(tags)
    return RegexScript(
        comment="Asset display",
        pattern=f'<img="({char_name})_({tag_pattern})">',
        replacement=ASSET_DISPLAY_HTML,
        type="editdisplay",
    )


def create_asset_error_regex(char_name: str, tags: List[str]) -> RegexScript:
    """Show an error box for image requests with unknown tags."""
    tag_pattern = "|".join(tags)
    return RegexScript(
        comment="Asset error display",
        pattern=f'<img="(?!(?:{char_name})_(?:{tag_pattern})")([^"]+)">',
        replacement='<div class="container error">Display Error: $1 </div>',
        type="editdisplay",
        able_flag=True,
        flag="<order 1>",
    )


def create_asset_error_remove_regex(char_name: str, tags: List[str]) -> RegexScript:
    """Strip image requests with unknown tags from the prompt."""
    tag_pattern = "|".join(tags)
    return RegexScript(
        comment="Asset error request removal",
        pattern=f'<img="(?!(?:{char_name})_(?:{tag_pattern})")([^"]+)">',
        replacement="",
        type="editprocess",
        able_flag=True,
        flag="g",
    )


def create_asset_regex_list(char_name: str, tags: List[str]) -> List[RegexScript]:
    """All scripts needed for emotion image assets; empty without a name or tags."""
    if not char_name or not tags:
        return []

    return [
        OLD_IMAGE_REMOVE,
        create_asset_display_regex(char_name, tags),
        ASSET_NEWLINE_BEFORE,
        ASSET_NEWLINE_AFTER,
        create_asset_error_regex(char_name, tags),
        create_asset_error_remove_regex(char_name, tags),
    ]


def create_status_window_regex(pattern: str, html: str) -> RegexScript:
    """Render a status block matched by ``pattern`` with an HTML template."""
    return RegexScript(
        comment="Status window display",
        pattern=pattern,
        replacement=html,
        type="editdisplay",
        able_flag=True,
        flag="g",
    )


# ===========================
# Module document
# ===========================

def lore_entry_to_module(entry: LoreEntry) -> Dict[str, Any]:
    """Convert a lore entry to the module lorebook form."""
    return {
        "key": ", ".join(entry.keys),
        "secondkey": "",
        "comment": entry.name or entry.comment,
        "content": entry.content,
        "mode": entry.mode,
        "insertorder": entry.insertion_order,
        "alwaysActive": entry.always_active,
        "selective": entry.selective,
        "useRegex": entry.use_regex,
    }


def build_module_document(
    name: str,
    description: str = "",
    regex: Iterable[RegexScript] = (),
    lore_entries: Iterable[LoreEntry] = (),
) -> Dict[str, Any]:
    """
    Build a module document ready for ``ModuleContainerCodec.encode``.

    No ``id`` is set; the codec assigns one.
    """
    scripts = [r.to_module() for r in regex]
    lorebook = [lore_entry_to_module(e) for e in lore_entries]

    logger.debug(f"Built module '{name}': {len(scripts)} regex, {len(lorebook)} lore entries")
    return {
        "name": name,
        "description": description,
        "regex": scripts,
        "lorebook": lorebook,
        "assets": [],
    }
