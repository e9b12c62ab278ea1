"""
Record locator and block instance extraction for blocklift.

This module walks nested paths through records to find every occurrence of
a block, and groups the occurrences of localized fields by position.
"""

import copy
import logging
from typing import Any, Dict, List, NamedTuple, Optional

from .blocks import extract_blocks_from_field_value, get_block_attributes, get_block_field, get_block_id, \
    get_block_type_id, is_block_object
from .client import BaseContentClient
from .dast import is_structured_text
from .models import DEFAULT_LOCALE_KEY, BlockInstance, GroupedBlockInstance, NestedBlockPath, PathStep


class LocatedBlock(NamedTuple):
    """A block found at the end of a path."""
    path_indices: List[int]
    locale: Optional[str]
    block: Dict[str, Any]


def _is_locale_hash(value: Any) -> bool:
    return isinstance(value, dict) and not is_structured_text(value) and not is_block_object(value)


def find_blocks_at_path(container: Dict[str, Any], steps: List[PathStep],
                        indices: Optional[List[int]] = None,
                        locale: Optional[str] = None) -> List[LocatedBlock]:
    """
    Find the blocks a path leads to inside one record.

    Each step reads a field (per locale when localized), extracts its blocks,
    keeps those of the expected type and continues into them with the next
    step.

    Args:
        container: A record or a block
        steps: Remaining path steps
        indices: Block positions chosen so far
        locale: Locale inherited from an outer localized step

    Returns:
        Blocks matched by the last step, with their positions and locale
    """
    indices = indices or []
    step, rest = steps[0], steps[1:]

    raw_value = get_block_field(container, step.field_api_key)
    if raw_value is None:
        return []

    if step.localized and _is_locale_hash(raw_value):
        values = list(raw_value.items())
    else:
        values = [(locale, raw_value)]

    found = []
    for value_locale, value in values:
        for index, block in enumerate(extract_blocks_from_field_value(value, step.field_type)):
            if get_block_type_id(block) != step.expected_block_type_id:
                continue
            if rest:
                found.extend(find_blocks_at_path(block, rest, indices + [index], value_locale))
            else:
                found.append(LocatedBlock(indices + [index], value_locale, block))
    return found


def synthetic_block_id(record_id: str, path_indices: List[int], locale: Optional[str]) -> str:
    """Stable ID for a block the API returned without one."""
    return "_".join([record_id] + [str(i) for i in path_indices] + [locale or DEFAULT_LOCALE_KEY])


async def collect_block_instances(client: BaseContentClient, path: NestedBlockPath) -> List[BlockInstance]:
    """
    Scan all records of the path's root model for block instances.

    Args:
        client: Content client
        path: Path from the root model to the block

    Returns:
        Instances in record order, then path order
    """
    instances = []
    scanned = 0
    async for record in client.iter_records(path.root_model_id, nested=True):
        scanned += 1
        for located in find_blocks_at_path(record, path.path):
            block_id = get_block_id(located.block) or synthetic_block_id(
                record["id"], located.path_indices, located.locale
            )
            instances.append(BlockInstance(
                root_record_id=record["id"],
                path_indices=located.path_indices,
                locale=located.locale,
                block_id=block_id,
                payload=copy.deepcopy(get_block_attributes(located.block)),
            ))

    logging.info(
        f"Found {len(instances)} block instances in {scanned} {path.root_model_api_key} records "
        f"via {path.describe()}"
    )
    return instances


def group_block_instances(instances: List[BlockInstance]) -> List[GroupedBlockInstance]:
    """
    Merge instances that sit at the same position in different locales.

    Args:
        instances: Block instances, typically from one path

    Returns:
        One group per (root record, path indices), in first-seen order
    """
    groups: Dict[str, GroupedBlockInstance] = {}
    for instance in instances:
        key = instance.position_key
        group = groups.get(key)
        if group is None:
            group = GroupedBlockInstance(
                group_key=key,
                root_record_id=instance.root_record_id,
                path_indices=list(instance.path_indices),
            )
            groups[key] = group

        locale_key = instance.locale or DEFAULT_LOCALE_KEY
        if locale_key not in group.locale_data:
            group.locale_data[locale_key] = instance.payload
        if instance.block_id not in group.all_block_ids:
            group.all_block_ids.append(instance.block_id)

    return list(groups.values())


async def count_records_with_block(client: BaseContentClient, root_model_id: str,
                                   paths: List[NestedBlockPath]) -> int:
    """
    Count the records of a model containing the block along any of the paths.

    Records matching several paths count once.
    """
    model_paths = [p for p in paths if p.root_model_id == root_model_id]
    if not model_paths:
        return 0

    count = 0
    async for record in client.iter_records(root_model_id, nested=True):
        if any(find_blocks_at_path(record, p.path) for p in model_paths):
            count += 1
    return count
