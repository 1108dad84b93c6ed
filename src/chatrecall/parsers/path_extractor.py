"""
Linearize an export tree along its main branch.

The tree is an id-keyed mapping of nodes.  Starting at the root, the walk
always follows the first child; sibling branches are abandoned edits or
regenerations and are dropped.
"""

import logging
from typing import Mapping, Optional

from chatrecall.models.export import CLIENT_CREATED_ROOT, ExportNode, ExtractedMessage
from chatrecall.parsers.chatgpt_export import classify_part

logger = logging.getLogger(__name__)

EXTRACTED_ROLES = frozenset({"user", "assistant"})


def find_root_id(mapping: Mapping[str, ExportNode]) -> Optional[str]:
    """
    Locate the node the walk starts from.

    The root is the node without a parent, or the ``client-created-root``
    sentinel; the sentinel itself carries no message, so the walk starts at
    its first child.
    """
    root_id: Optional[str] = None
    if CLIENT_CREATED_ROOT in mapping:
        root_id = CLIENT_CREATED_ROOT
    else:
        for node_id, node in mapping.items():
            if node.parent is None:
                root_id = node_id
                break

    if root_id == CLIENT_CREATED_ROOT:
        children = mapping[CLIENT_CREATED_ROOT].children
        return children[0] if children else None
    return root_id


def _extract_node(node: ExportNode) -> Optional[ExtractedMessage]:
    message = node.message
    if message is None:
        return None
    if message.is_hidden:
        return None
    role = message.author.role
    if role not in EXTRACTED_ROLES:
        return None

    text_parts: list[str] = []
    image_file_ids: list[str] = []
    for raw_part in message.content.parts or []:
        part = classify_part(raw_part)
        if part.kind == "text":
            text_parts.append(part.text)
        elif part.kind == "image":
            if part.file_id:
                image_file_ids.append(part.file_id)
            else:
                logger.debug(
                    f"Image part without file id in node {node.id}: {part.asset_pointer}"
                )
        else:
            logger.debug(f"Skipping unrecognized content part in node {node.id}")

    content = "\n".join(text_parts)
    if not content.strip() and not image_file_ids:
        return None

    return ExtractedMessage(
        id=message.id,
        role=role,
        content=content,
        create_time=message.create_time,
        image_file_ids=image_file_ids,
    )


def extract_main_branch(mapping: Mapping[str, ExportNode]) -> list[ExtractedMessage]:
    """
    Walk the first-child branch from the root and collect visible messages.

    Args:
        mapping: Node id -> node

    Returns:
        Extracted user/assistant messages in conversation order.  Hidden nodes,
        other roles and blank text-only messages are dropped.  A dangling child
        id ends the walk.
    """
    messages: list[ExtractedMessage] = []
    visited: set[str] = set()
    node_id = find_root_id(mapping)

    while node_id is not None and node_id not in visited:
        node = mapping.get(node_id)
        if node is None:
            logger.debug(f"Dangling node reference {node_id}; ending branch")
            break
        visited.add(node_id)

        extracted = _extract_node(node)
        if extracted is not None:
            messages.append(extracted)

        node_id = node.children[0] if node.children else None

    return messages
