"""
Decode ChatGPT ``conversations.json`` exports.

The document is a JSON list of conversation objects.  Decoding happens in two
steps so that one malformed conversation does not sink a whole export:
``load_export`` validates the document shape (fatal on failure) and
``parse_conversation`` validates each conversation (per-item failure).
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from chatrecall.models.export import ExportConversation
from chatrecall.parsers.base import ParseDataError, ParseFormatError

logger = logging.getLogger(__name__)

SOURCE_TAG = "chatgpt"


@dataclass(frozen=True)
class ContentPart:
    """One classified entry of a message's ``content.parts`` list."""

    kind: str  # 'text', 'image' or 'other'
    text: str = ""
    file_id: Optional[str] = None
    asset_pointer: Optional[str] = None


def load_export(path: Path) -> list[dict[str, Any]]:
    """
    Load the raw conversation objects from a ``conversations.json`` file.

    Args:
        path: Path to the JSON document

    Returns:
        List of raw conversation dicts, in source order

    Raises:
        ParseFormatError: If the file cannot be read or decoded, or is not a
            JSON list of objects
    """
    try:
        with open(path, "rb") as f:
            return loads_export(f.read())
    except OSError as e:
        raise ParseFormatError(f"Cannot read export {path}: {e}") from e


def loads_export(data: Union[str, bytes]) -> list[dict[str, Any]]:
    """Decode an export document already held in memory."""
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(document, list):
        raise ParseFormatError(
            f"Expected a list of conversations, got {type(document).__name__}"
        )
    for position, item in enumerate(document):
        if not isinstance(item, dict):
            raise ParseFormatError(
                f"Conversation at position {position} is {type(item).__name__}, "
                "expected an object"
            )
    return document


def raw_title(raw: dict[str, Any]) -> str:
    """Best-effort title of a raw conversation, for error reporting."""
    title = raw.get("title")
    return title if isinstance(title, str) and title else "Untitled"


def parse_conversation(raw: dict[str, Any]) -> ExportConversation:
    """
    Validate one raw conversation object.

    Raises:
        ParseDataError: If required fields are missing or have the wrong type
    """
    if raw.get("title") is None:
        raw = {**raw, "title": "Untitled"}
    try:
        conversation = ExportConversation.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ParseDataError(
            raw_title(raw), f"{location}: {first.get('msg', 'invalid value')}"
        ) from e

    return conversation


def file_id_from_pointer(asset_pointer: str) -> Optional[str]:
    """
    Extract the bare file id from an asset pointer.

    Supported shapes:
    - ``file-service://file-AbC123``        -> ``file-AbC123``
    - ``sediment://file_00ab``              -> ``file_00ab``
    - ``sediment://hash#file_00ab#p_1.jpg`` -> ``file_00ab``
    """
    if "://" not in asset_pointer:
        return None
    rest = asset_pointer.split("://", 1)[1]
    if "#" in rest:
        for segment in rest.split("#"):
            if segment.startswith(("file-", "file_")):
                return segment
        return None
    return rest or None


def classify_part(part: Any) -> ContentPart:
    """Classify a content part as text, an image reference, or something else."""
    if isinstance(part, str):
        return ContentPart(kind="text", text=part)

    if isinstance(part, dict) and part.get("asset_pointer") is not None:
        pointer = part.get("asset_pointer")
        if isinstance(pointer, str):
            return ContentPart(
                kind="image",
                file_id=file_id_from_pointer(pointer),
                asset_pointer=pointer,
            )

    return ContentPart(kind="other")
