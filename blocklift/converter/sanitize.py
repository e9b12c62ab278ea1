"""
Payload sanitization for blocklift.

Block payloads read from existing records carry IDs and metadata that must
not be sent when creating new records. Nested blocks are rebuilt as fresh
block resources and structured text gets its blocks inlined.
"""

from typing import Any, Dict

from ..blocks import get_block_attributes, get_block_type_id, is_block_object
from ..dast import BLOCK_NODE_TYPES, index_blocks, resolve_block_node, is_structured_text


def sanitize_block(block: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild a block as a new block resource without its ID or metadata."""
    return {
        "type": "item",
        "attributes": sanitize_payload(get_block_attributes(block)),
        "relationships": {
            "item_type": {"data": {"type": "item_type", "id": get_block_type_id(block)}},
        },
    }


def sanitize_value(value: Any) -> Any:
    if isinstance(value, list):
        return [sanitize_value(entry) for entry in value]
    if not isinstance(value, dict):
        return value
    if is_structured_text(value):
        return sanitize_structured_text(value)
    if is_block_object(value):
        return sanitize_block(value)
    return {key: sanitize_value(entry) for key, entry in value.items()}


def sanitize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare block field values for a record create call.

    Args:
        payload: Field values of a block instance

    Returns:
        A new dict with every nested block stripped of IDs and metadata
    """
    return {key: sanitize_value(value) for key, value in payload.items()}


def sanitize_structured_text(value: Dict[str, Any]) -> Dict[str, Any]:
    """
    Inline the blocks of a structured text value into its block nodes.

    The ``blocks`` and ``links`` side arrays are dropped; inlineItem nodes
    keep their record IDs.
    """
    blocks_by_id = index_blocks(value)

    def visit(node: Any) -> Any:
        if not isinstance(node, dict):
            return node
        if node.get("type") in BLOCK_NODE_TYPES:
            block = resolve_block_node(node, blocks_by_id)
            return {**node, "item": sanitize_block(block)} if block is not None else node
        if node.get("type") == "inlineItem" and isinstance(node.get("item"), dict):
            return {**node, "item": node["item"].get("id")}
        children = node.get("children")
        if isinstance(children, list):
            return {**node, "children": [visit(child) for child in children]}
        return dict(node)

    result = {key: entry for key, entry in value.items() if key not in ("blocks", "links", "document")}
    result["document"] = visit(value.get("document"))
    result.setdefault("schema", "dast")
    return result
