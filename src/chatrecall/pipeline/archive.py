"""
Zip archive handling for chat exports.
"""

import logging
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from chatrecall.parsers.base import ParseFormatError

logger = logging.getLogger(__name__)

CONVERSATIONS_FILENAME = "conversations.json"


def find_conversations_json(root: Path) -> Path:
    """
    Locate ``conversations.json`` in an extracted export.

    The file normally sits at the archive root; some tools wrap the export in
    a top-level folder, so the shallowest match anywhere is accepted.

    Raises:
        ParseFormatError: If no such file exists
    """
    direct = root / CONVERSATIONS_FILENAME
    if direct.is_file():
        return direct

    matches = [p for p in root.rglob(CONVERSATIONS_FILENAME) if p.is_file()]
    if not matches:
        raise ParseFormatError(f"No {CONVERSATIONS_FILENAME} found in archive")

    matches.sort(key=lambda p: (len(p.relative_to(root).parts), str(p)))
    return matches[0]


@contextmanager
def extracted_archive(archive_path: Path) -> Iterator[Path]:
    """
    Extract a zip archive into a temporary directory.

    Yields the extraction directory; it is removed on exit whether or not the
    body raised.

    Raises:
        ParseFormatError: If the file is not a readable zip archive
    """
    temp_dir = Path(tempfile.mkdtemp(prefix="chatrecall_import_"))
    try:
        try:
            with zipfile.ZipFile(archive_path) as zf:
                zf.extractall(temp_dir)
        except (zipfile.BadZipFile, OSError) as e:
            raise ParseFormatError(f"Cannot extract {archive_path}: {e}") from e

        logger.debug(f"Extracted {archive_path} to {temp_dir}")
        yield temp_dir
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
