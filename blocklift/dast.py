"""
DAST (structured text document tree) utilities for blocklift.

This module traverses and rewrites structured text values of the form
``{"schema": "dast", "document": {...}, "blocks": [...], "links": [...]}``.
Block nodes reference their block either by ID (looked up in ``blocks``) or
inline, when records are fetched with nested expansion.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from .blocks import get_block_id, get_block_type_id


BLOCK_NODE_TYPES = ("block", "inlineBlock")
ITEM_NODE_TYPES = ("block", "inlineBlock", "inlineItem")

# fn(block) -> (updated, new_block); new_block None removes the block
BlockRecordFn = Callable[[Dict[str, Any]], Tuple[bool, Optional[Dict[str, Any]]]]


@dataclass
class DastBlockNode:
    """A block or inlineBlock node found in a document."""
    node_type: str
    item_id: Optional[str]
    block_type_id: Optional[str]
    path: Tuple[Any, ...]


def is_structured_text(value: Any) -> bool:
    """
    Check whether a value is a structured text field value.

    Accepts ``schema == "dast"`` with a document, or any document whose root
    node has type ``root`` and a children list.
    """
    if not isinstance(value, dict):
        return False
    if value.get("schema") == "dast" and value.get("document") is not None:
        return True
    document = value.get("document")
    return (
        isinstance(document, dict)
        and document.get("type") == "root"
        and isinstance(document.get("children"), list)
    )


def node_item_id(node: Dict[str, Any]) -> Optional[str]:
    """Get the referenced ID of a node whose ``item`` is either an ID or an expanded object."""
    item = node.get("item")
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("id"), str):
        return item["id"]
    return None


def index_blocks(value: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    blocks = value.get("blocks") or []
    return {block["id"]: block for block in blocks if isinstance(block, dict) and isinstance(block.get("id"), str)}


def resolve_block_node(node: Dict[str, Any], blocks_by_id: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    item = node.get("item")
    if isinstance(item, dict):
        return item
    if isinstance(item, str):
        return blocks_by_id.get(item)
    return None


def _node_block_type_id(node: Dict[str, Any], blocks_by_id: Dict[str, Dict[str, Any]]) -> Optional[str]:
    block = resolve_block_node(node, blocks_by_id)
    return get_block_type_id(block) if block else None


def _walk(node: Any, path: Tuple[Any, ...] = ()):
    """Yield (node, path) for every node below and including `node`."""
    if not isinstance(node, dict):
        return
    yield node, path
    children = node.get("children")
    if isinstance(children, list):
        for index, child in enumerate(children):
            yield from _walk(child, path + ("children", index))


def find_block_nodes(value: Dict[str, Any]) -> List[DastBlockNode]:
    """
    Find every block and inlineBlock node in a structured text value.

    Args:
        value: The structured text field value

    Returns:
        Information about each node, including its resolved block type
    """
    blocks_by_id = index_blocks(value)
    found = []
    for node, path in _walk(value.get("document")):
        if node.get("type") in BLOCK_NODE_TYPES:
            found.append(DastBlockNode(
                node_type=node["type"],
                item_id=node_item_id(node),
                block_type_id=_node_block_type_id(node, blocks_by_id),
                path=path,
            ))
    return found


def find_block_nodes_of_type(value: Dict[str, Any], target_block_type_id: str) -> List[DastBlockNode]:
    return [node for node in find_block_nodes(value) if node.block_type_id == target_block_type_id]


def extract_referenced_blocks(value: Any) -> List[Dict[str, Any]]:
    """
    Return the blocks actually referenced from the document tree.

    Entries of the ``blocks`` side array that no node points to anymore are
    leftovers from earlier edits and are ignored.
    """
    if not is_structured_text(value):
        return []

    blocks_by_id = index_blocks(value)
    referenced = []
    seen_ids: Set[str] = set()
    for node, _ in _walk(value.get("document")):
        if node.get("type") not in BLOCK_NODE_TYPES:
            continue
        block = resolve_block_node(node, blocks_by_id)
        if block is None:
            continue
        block_id = get_block_id(block)
        if block_id is not None:
            if block_id in seen_ids:
                continue
            seen_ids.add(block_id)
        referenced.append(block)
    return referenced


def extract_link_ids(value: Dict[str, Any], target_block_type_id: str, mapping: Mapping[str, str]) -> List[str]:
    """
    Map the target-type block nodes of a document to their new record IDs.

    Unmapped blocks are skipped.
    """
    link_ids = []
    for node in find_block_nodes_of_type(value, target_block_type_id):
        if node.item_id and node.item_id in mapping:
            link_ids.append(mapping[node.item_id])
    return link_ids


# =============================================================================
# Rewrites
# =============================================================================

@dataclass
class _RewriteContext:
    target_block_type_id: str
    mapping: Mapping[str, str]
    blocks_by_id: Dict[str, Dict[str, Any]]
    removed_block_ids: Set[str] = field(default_factory=set)
    new_link_ids: List[str] = field(default_factory=list)

    def convertible(self, node: Any) -> Optional[str]:
        """Return the new record ID if `node` is a mapped block of the target type."""
        if not isinstance(node, dict) or node.get("type") not in BLOCK_NODE_TYPES:
            return None
        item_id = node_item_id(node)
        if not item_id or item_id not in self.mapping:
            return None
        if _node_block_type_id(node, self.blocks_by_id) != self.target_block_type_id:
            return None
        return self.mapping[item_id]


def _inline_item(record_id: str) -> Dict[str, Any]:
    return {"type": "inlineItem", "item": record_id}


def _paragraph_with_inline_item(record_id: str) -> Dict[str, Any]:
    # The empty span keeps renderers from dropping an inlineItem-only paragraph
    return {
        "type": "paragraph",
        "children": [
            {"type": "span", "value": ""},
            _inline_item(record_id),
        ],
    }


def _normalize_item(node: Any) -> Any:
    """Collapse an expanded ``item`` object back to its bare ID."""
    if isinstance(node, dict) and node.get("type") in ITEM_NODE_TYPES and isinstance(node.get("item"), dict):
        item_id = node_item_id(node)
        if item_id:
            return {**node, "item": item_id}
    return node


def _replace_children(node: Dict[str, Any], ctx: _RewriteContext, at_root: bool) -> Dict[str, Any]:
    children = node.get("children")
    if not isinstance(children, list):
        return node

    new_children = []
    for child in children:
        record_id = ctx.convertible(child)
        if record_id:
            ctx.removed_block_ids.add(node_item_id(child))
            ctx.new_link_ids.append(record_id)
            # inlineItem is not allowed as a direct child of the root
            new_children.append(_paragraph_with_inline_item(record_id) if at_root else _inline_item(record_id))
        else:
            new_children.append(_normalize_item(_replace_children(child, ctx, False)) if isinstance(child, dict) else child)
    return {**node, "children": new_children}


def _append_children(node: Dict[str, Any], ctx: _RewriteContext, at_root: bool) -> Dict[str, Any]:
    children = node.get("children")
    if not isinstance(children, list):
        return node

    new_children = []
    for child in children:
        if not isinstance(child, dict):
            new_children.append(child)
            continue
        new_children.append(_normalize_item(_append_children(child, ctx, False)))
        record_id = ctx.convertible(child)
        if record_id:
            ctx.new_link_ids.append(record_id)
            new_children.append(_paragraph_with_inline_item(record_id) if at_root else _inline_item(record_id))
    return {**node, "children": new_children}


def _normalize_links(value: Dict[str, Any], new_link_ids: List[str]) -> None:
    """Rewrite ``links`` in place as bare ``{"id": ...}`` entries, adding new IDs once."""
    existing = value.get("links")
    if existing is None and not new_link_ids:
        return

    links = []
    seen: Set[str] = set()
    for link in existing or []:
        link_id = link if isinstance(link, str) else link.get("id") if isinstance(link, dict) else None
        if isinstance(link_id, str) and link_id not in seen:
            seen.add(link_id)
            links.append({"id": link_id})
    for link_id in new_link_ids:
        if link_id not in seen:
            seen.add(link_id)
            links.append({"id": link_id})
    value["links"] = links


def replace_blocks_with_links(
    value: Dict[str, Any],
    target_block_type_id: str,
    mapping: Mapping[str, str]
) -> Optional[Dict[str, Any]]:
    """
    Replace target-type block nodes with inlineItem nodes pointing at the new records.

    A root-level ``block`` becomes a paragraph holding an empty span and the
    inlineItem; inline blocks are replaced by a bare inlineItem. Converted
    entries are removed from ``blocks`` and the new record IDs added to
    ``links``.

    Args:
        value: The structured text field value (not mutated)
        target_block_type_id: Block type being converted
        mapping: Old block ID to new record ID

    Returns:
        A transformed copy, or None if the document has no target-type nodes
    """
    if not find_block_nodes_of_type(value, target_block_type_id):
        return None

    result = copy.deepcopy(value)
    ctx = _RewriteContext(target_block_type_id, mapping, index_blocks(result))
    result["document"] = _replace_children(result["document"], ctx, at_root=True)

    if isinstance(result.get("blocks"), list):
        result["blocks"] = [
            block for block in result["blocks"]
            if not (isinstance(block, dict) and block.get("id") in ctx.removed_block_ids)
        ]
        if not result["blocks"]:
            del result["blocks"]

    _normalize_links(result, ctx.new_link_ids)
    return result


def append_links_alongside_blocks(
    value: Dict[str, Any],
    target_block_type_id: str,
    mapping: Mapping[str, str]
) -> Optional[Dict[str, Any]]:
    """
    Insert an inlineItem right after every target-type block node, keeping the block.

    Returns:
        A transformed copy, or None if the document has no target-type nodes
    """
    if not find_block_nodes_of_type(value, target_block_type_id):
        return None

    result = copy.deepcopy(value)
    ctx = _RewriteContext(target_block_type_id, mapping, index_blocks(result))
    result["document"] = _append_children(result["document"], ctx, at_root=True)
    _normalize_links(result, ctx.new_link_ids)
    return result


def map_block_records(value: Dict[str, Any], fn: BlockRecordFn) -> Optional[Dict[str, Any]]:
    """
    Apply `fn` to every block referenced from the document.

    `fn` returns ``(updated, new_block)``; a ``None`` block removes the node
    and its ``blocks`` entry. Inline blocks are replaced in their node, ID
    references are replaced in the ``blocks`` array.

    Returns:
        A transformed copy, or None if `fn` updated nothing
    """
    if not is_structured_text(value):
        return None

    result = copy.deepcopy(value)
    blocks_by_id = index_blocks(result)
    replaced: Dict[str, Optional[Dict[str, Any]]] = {}
    changed = False

    def visit(node: Dict[str, Any]) -> Dict[str, Any]:
        nonlocal changed
        children = node.get("children")
        if not isinstance(children, list):
            return node
        new_children = []
        for child in children:
            if not isinstance(child, dict):
                new_children.append(child)
                continue
            if child.get("type") in BLOCK_NODE_TYPES:
                block = resolve_block_node(child, blocks_by_id)
                if block is not None:
                    updated, new_block = fn(block)
                    if updated:
                        changed = True
                        item_id = node_item_id(child)
                        if new_block is None:
                            if item_id:
                                replaced[item_id] = None
                            continue
                        if isinstance(child.get("item"), dict):
                            child = {**child, "item": new_block}
                        elif item_id:
                            replaced[item_id] = new_block
                new_children.append(child)
            else:
                new_children.append(visit(child))
        return {**node, "children": new_children}

    result["document"] = visit(result["document"])
    if not changed:
        return None

    if replaced and isinstance(result.get("blocks"), list):
        new_blocks = []
        for block in result["blocks"]:
            block_id = block.get("id") if isinstance(block, dict) else None
            if block_id in replaced:
                if replaced[block_id] is not None:
                    new_blocks.append(replaced[block_id])
            else:
                new_blocks.append(block)
        result["blocks"] = new_blocks
    return result
