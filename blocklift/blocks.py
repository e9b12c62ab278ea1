"""
Block extraction utilities for blocklift.

Shared helpers for reading block identity, type and field values from the
several shapes the content API returns, and for extracting blocks from
rich_text, single_block and structured_text field values.
"""

import copy
from typing import Any, Dict, List, Optional

from .models import FieldDescriptor


# Field type -> validator holding the allowed block item types
BLOCK_VALIDATOR_KEYS = {
    "rich_text": "rich_text_blocks",
    "structured_text": "structured_text_blocks",
    "single_block": "single_block_blocks",
}

# Keys that describe a block rather than hold one of its field values
BLOCK_META_KEYS = frozenset({
    "id",
    "type",
    "item_type",
    "__itemTypeId",
    "relationships",
    "attributes",
    "meta",
    "creator",
})


def allowed_block_ids(field: FieldDescriptor) -> List[str]:
    """
    Return the block item types a field accepts, whatever its field type.

    Args:
        field: A rich_text, structured_text or single_block field

    Returns:
        List of allowed block type IDs (empty for other field types)
    """
    validator_key = BLOCK_VALIDATOR_KEYS.get(field.field_type)
    if not validator_key:
        return []
    validator = field.validators.get(validator_key) or {}
    return list(validator.get("item_types") or [])


def with_allowed_block_ids(field_type: str, validators: Dict[str, Any], block_ids: List[str]) -> Dict[str, Any]:
    """Return a copy of `validators` whose block validator allows exactly `block_ids`."""
    validator_key = BLOCK_VALIDATOR_KEYS[field_type]
    updated = dict(validators)
    updated[validator_key] = {**(validators.get(validator_key) or {}), "item_types": list(block_ids)}
    return updated


def get_block_type_id(block: Dict[str, Any]) -> Optional[str]:
    """
    Extract the block type ID from a block object.

    Handles `__itemTypeId`, `relationships.item_type.data.id` and `item_type`
    given either as a string or as an object with an `id`.
    """
    if isinstance(block.get("__itemTypeId"), str):
        return block["__itemTypeId"]

    relationships = block.get("relationships")
    if isinstance(relationships, dict):
        item_type_rel = relationships.get("item_type")
        if isinstance(item_type_rel, dict):
            data = item_type_rel.get("data")
            if isinstance(data, dict) and isinstance(data.get("id"), str):
                return data["id"]

    item_type = block.get("item_type")
    if isinstance(item_type, str):
        return item_type
    if isinstance(item_type, dict) and isinstance(item_type.get("id"), str):
        return item_type["id"]

    return None


def get_block_id(block: Dict[str, Any]) -> Optional[str]:
    block_id = block.get("id")
    return block_id if isinstance(block_id, str) else None


def is_block_object(value: Any) -> bool:
    """Whether a value looks like an embedded block."""
    if not isinstance(value, dict):
        return False
    if "__itemTypeId" in value or "item_type" in value:
        return True
    relationships = value.get("relationships")
    return isinstance(relationships, dict) and "item_type" in relationships


def get_block_attributes(block: Dict[str, Any]) -> Dict[str, Any]:
    """
    Get the field values of a block.

    Blocks come either as JSON:API resources (values under `attributes`) or
    flattened (values next to `id`/`item_type`).
    """
    attributes = block.get("attributes")
    if isinstance(attributes, dict):
        return attributes
    return {key: value for key, value in block.items() if key not in BLOCK_META_KEYS}


def get_block_field(block: Dict[str, Any], field_api_key: str) -> Any:
    """Read a field value from the block's top level or from its `attributes`."""
    if block.get(field_api_key) is not None:
        return block[field_api_key]
    attributes = block.get("attributes")
    if isinstance(attributes, dict) and attributes.get(field_api_key) is not None:
        return attributes[field_api_key]
    return None


def set_block_field(block: Dict[str, Any], field_api_key: str, value: Any) -> Dict[str, Any]:
    """
    Return a copy of `block` with one field value replaced.

    The value is written wherever the block keeps its field values.
    """
    updated = copy.deepcopy(block)
    attributes = block.get("attributes")
    if field_api_key not in block and isinstance(attributes, dict):
        updated["attributes"] = {**copy.deepcopy(attributes), field_api_key: value}
    else:
        updated[field_api_key] = value
    return updated


def extract_blocks_from_field_value(field_value: Any, field_type: str) -> List[Dict[str, Any]]:
    """
    Extract the blocks held by a single (non-localized) field value.

    Args:
        field_value: The raw value of the field
        field_type: rich_text, structured_text or single_block

    Returns:
        The embedded blocks; for structured text only the blocks referenced
        from the document tree
    """
    if not field_value:
        return []

    if field_type == "rich_text":
        return [block for block in field_value if isinstance(block, dict)] if isinstance(field_value, list) else []

    if field_type == "single_block":
        return [field_value] if isinstance(field_value, dict) else []

    if field_type == "structured_text":
        # Imported here: dast depends on this module for block type lookups
        from .dast import extract_referenced_blocks
        return extract_referenced_blocks(field_value)

    return []
