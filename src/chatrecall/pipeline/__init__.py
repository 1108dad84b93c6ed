"""Import pipeline: asset resolution, deduplication, orchestration and maintenance."""

from chatrecall.pipeline.assets import AssetIndex, ResolvedAsset, mime_type_for_extension
from chatrecall.pipeline.dedup import DedupIndex, DedupMatch, make_import_source_id
from chatrecall.pipeline.maintenance import (
    CleanupResult,
    remove_all_imported_conversations,
    remove_duplicate_conversations,
)
from chatrecall.pipeline.orchestrator import (
    ConversationImporter,
    ImportPhase,
    ImportProgress,
    ImportResult,
)

__all__ = [
    "AssetIndex",
    "CleanupResult",
    "ConversationImporter",
    "DedupIndex",
    "DedupMatch",
    "ImportPhase",
    "ImportProgress",
    "ImportResult",
    "ResolvedAsset",
    "make_import_source_id",
    "mime_type_for_extension",
    "remove_all_imported_conversations",
    "remove_duplicate_conversations",
]
