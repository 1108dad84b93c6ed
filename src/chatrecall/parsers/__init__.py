"""Chat export parsing: document decoding and main-branch extraction."""

from chatrecall.parsers.base import ParseDataError, ParseFormatError, ParserError
from chatrecall.parsers.chatgpt_export import (
    SOURCE_TAG,
    ContentPart,
    classify_part,
    file_id_from_pointer,
    load_export,
    loads_export,
    parse_conversation,
)
from chatrecall.parsers.path_extractor import extract_main_branch, find_root_id

__all__ = [
    "SOURCE_TAG",
    "ContentPart",
    "ParseDataError",
    "ParseFormatError",
    "ParserError",
    "classify_part",
    "extract_main_branch",
    "file_id_from_pointer",
    "find_root_id",
    "load_export",
    "loads_export",
    "parse_conversation",
]
