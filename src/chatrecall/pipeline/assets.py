"""
Resolve export image references to files in an extracted archive.

Exports are inconsistent about whether asset filenames keep the ``file-``
prefix and the extension, so every file is indexed under several keys and
lookups try progressively looser matches.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from chatrecall.models.db import Attachment, AttachmentKind

logger = logging.getLogger(__name__)

# Extensions tried, in order, when the reference carries none
IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "webp", "gif")
INDEXED_EXTENSIONS = frozenset(IMAGE_EXTENSIONS)
KNOWN_ID_PREFIX = "file-"

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


def mime_type_for_extension(extension: str) -> str:
    """Map a file extension (with or without dot) to a MIME type."""
    return MIME_TYPES.get(extension.lower().lstrip("."), DEFAULT_MIME_TYPE)


def _strip_prefix(name: str) -> Optional[str]:
    if name.startswith(KNOWN_ID_PREFIX) and len(name) > len(KNOWN_ID_PREFIX):
        return name[len(KNOWN_ID_PREFIX) :]
    return None


@dataclass(frozen=True)
class ResolvedAsset:
    """An asset file matched to a reference."""

    file_id: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def mime_type(self) -> str:
        return mime_type_for_extension(self.path.suffix)


class AssetIndex:
    """
    Lookup of image files by every filename variant.

    Keys are the full file name, the name without extension and, for
    ``file-``-prefixed names, the name with that prefix stripped.  The first
    file seen for a key wins, so lookups are deterministic for a given scan
    order.
    """

    def __init__(self, entries: Optional[Dict[str, Path]] = None):
        self._entries: Dict[str, Path] = dict(entries or {})

    @classmethod
    def build(cls, root: Path) -> "AssetIndex":
        """Scan ``root`` recursively for image files."""
        index = cls()
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            index.add(path)
        logger.info(f"Indexed {len(index)} asset keys under {root}")
        return index

    def add(self, path: Path) -> None:
        if path.suffix.lower().lstrip(".") not in INDEXED_EXTENSIONS:
            return

        keys = [path.name, path.stem]
        stripped = _strip_prefix(path.stem)
        if stripped:
            keys.append(stripped)
        for key in keys:
            self._entries.setdefault(key, path)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _exact_or_extension(self, key: str) -> Optional[Path]:
        if key in self._entries:
            return self._entries[key]
        for extension in IMAGE_EXTENSIONS:
            candidate = f"{key}.{extension}"
            if candidate in self._entries:
                return self._entries[candidate]
        return None

    def resolve(self, file_id: str) -> Optional[ResolvedAsset]:
        """
        Find the file for an image reference.

        Tries, stopping at the first hit: exact key, key plus each known
        extension, the same two with the ``file-`` prefix stripped, and finally
        a substring match in either direction over all keys.

        Returns:
            ResolvedAsset or None when nothing matches
        """
        if not file_id:
            return None

        path = self._exact_or_extension(file_id)

        if path is None:
            stripped = _strip_prefix(file_id)
            if stripped:
                path = self._exact_or_extension(stripped)

        if path is None:
            for key in sorted(self._entries):
                if file_id in key or key in file_id:
                    path = self._entries[key]
                    break

        if path is None:
            return None
        return ResolvedAsset(file_id=file_id, path=path)


def load_attachment(asset: ResolvedAsset) -> Optional[Attachment]:
    """
    Read a resolved asset into a new (unattached) image Attachment.

    Returns:
        Attachment, or None if the file cannot be read
    """
    try:
        data = asset.path.read_bytes()
    except OSError as e:
        logger.warning(f"Cannot read asset {asset.path}: {e}")
        return None

    return Attachment(
        kind=AttachmentKind.IMAGE,
        mime_type=asset.mime_type,
        data=data,
        filename=asset.filename,
    )
