"""
Record migration for blocklift.

This module creates one record of the new model per block instance and
rewrites the records that held the blocks: link values are written into
reference fields, structured text documents are rewritten and converted
blocks are stripped from their original fields.

Record-level failures are logged and skipped so that one bad record does not
stop a migration; re-running with the same mapping picks up where it left.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Set

from ..blocks import extract_blocks_from_field_value, get_block_field, get_block_id, get_block_type_id, \
    set_block_field
from ..client import BaseContentClient
from ..dast import append_links_alongside_blocks, is_structured_text, replace_blocks_with_links
from ..errors import ContentAPIError, RecordMutationError
from ..locator import collect_block_instances, group_block_instances, synthetic_block_id
from ..models import BlockInstance, BlockMigrationMapping, GroupedBlockInstance, NestedBlockPath
from .locale import complete_localized_update, merge_locale_data, wrap_fields_in_localized_hash
from .sanitize import sanitize_payload, sanitize_value
from .traverse import UNCHANGED, TraversalResult, traverse_blocks


# container_fn(container, locale, record_id) -> field updates for the container, or None
ContainerFn = Callable[[Dict[str, Any], Optional[str], Optional[str]], Optional[Dict[str, Any]]]


async def _create_record(client: BaseContentClient, model_id: str, attributes: Dict[str, Any],
                         source_id: str) -> str:
    try:
        record = await client.create_record(model_id, attributes)
    except ContentAPIError as e:
        raise RecordMutationError(f"Failed to create record from block {source_id}: {e}", record_id=source_id) from e
    return record["id"]


# =============================================================================
# Record creation
# =============================================================================

async def migrate_block_instances(
    client: BaseContentClient,
    instances: List[BlockInstance],
    new_model_id: str,
    mapping: BlockMigrationMapping,
    localize_for: Optional[List[str]] = None
) -> int:
    """
    Create one record per block instance not yet in the mapping.

    Args:
        client: Content client
        instances: Instances of a non-localized path
        new_model_id: The model to create records of
        mapping: Old block ID to new record ID, extended in place
        localize_for: Site locales when the new model's fields are localized;
            every value is then repeated for each locale

    Returns:
        Number of records actually created
    """
    created = 0
    for instance in instances:
        if instance.block_id in mapping:
            continue

        attributes = sanitize_payload(instance.payload)
        if localize_for:
            attributes = wrap_fields_in_localized_hash(attributes, localize_for)

        try:
            record_id = await _create_record(client, new_model_id, attributes, instance.block_id)
        except RecordMutationError as e:
            logging.error(str(e))
            continue

        mapping.assign(instance.block_id, record_id)
        created += 1

    logging.info(f"Created {created} records from {len(instances)} block instances")
    return created


async def migrate_grouped_instances(
    client: BaseContentClient,
    groups: List[GroupedBlockInstance],
    new_model_id: str,
    mapping: BlockMigrationMapping,
    locales: List[str]
) -> int:
    """
    Create one multi-locale record per group of localized block instances.

    Groups that were partly migrated before reuse the record already created
    for them; every block ID of a group ends up mapped to the same record.

    Args:
        client: Content client
        groups: Locale-merged instances
        new_model_id: The model to create records of (fields localized)
        mapping: Old block ID to new record ID, extended in place
        locales: Site locales

    Returns:
        Number of records actually created
    """
    created = 0
    for group in groups:
        mapped_ids = [block_id for block_id in group.all_block_ids if block_id in mapping]
        if mapped_ids:
            existing_record_id = mapping[mapped_ids[0]]
            for block_id in group.all_block_ids:
                mapping.assign(block_id, existing_record_id)
            continue

        merged = merge_locale_data(group.locale_data, locales)
        keys = list(next(iter(merged.values()), {}).keys())
        attributes = {
            key: {locale: sanitize_value(merged[locale][key]) for locale in locales}
            for key in keys
        }

        try:
            record_id = await _create_record(client, new_model_id, attributes, group.reference_block_id)
        except RecordMutationError as e:
            logging.error(str(e))
            continue

        for block_id in group.all_block_ids:
            mapping.assign(block_id, record_id)
        created += 1

    logging.info(f"Created {created} records from {len(groups)} localized block groups")
    return created


async def migrate_path(
    client: BaseContentClient,
    path: NestedBlockPath,
    new_model_id: str,
    mapping: BlockMigrationMapping,
    locales: List[str],
    fields_localized: bool = False
) -> int:
    """
    Collect the block instances reachable through a path and migrate them.

    Localized paths are grouped so that each position yields one record.
    """
    instances = await collect_block_instances(client, path)
    if path.is_in_localized_context:
        return await migrate_grouped_instances(
            client, group_block_instances(instances), new_model_id, mapping, locales
        )
    return await migrate_block_instances(
        client, instances, new_model_id, mapping, localize_for=locales if fields_localized else None
    )


# =============================================================================
# Record rewrites
# =============================================================================

def _top_level_updates(record: Dict[str, Any], container_fn: ContainerFn, localized: bool,
                       keys: List[str], locales: List[str]) -> Optional[Dict[str, Any]]:
    if not localized:
        return container_fn(record, None, record["id"])

    # Present each locale as a flat view of the localized fields
    partial: Dict[str, Dict[str, Any]] = {}
    for locale in locales:
        view = {key: (record.get(key) or {}).get(locale) for key in keys}
        for key, value in (container_fn(view, locale, record["id"]) or {}).items():
            partial.setdefault(key, {})[locale] = value

    if not partial:
        return None
    return {key: complete_localized_update(record.get(key), values, locales) for key, values in partial.items()}


async def _update_containers(client: BaseContentClient, path: NestedBlockPath, container_fn: ContainerFn,
                             keys: List[str], locales: List[str],
                             touched_records: Optional[Set[str]] = None) -> int:
    """
    Apply `container_fn` to every container of the path's terminal field.

    The container is the root record for one-step paths and the parent block
    otherwise; the changes are written back with one update per record.

    Returns:
        Number of records updated
    """
    steps = path.path
    root_key = steps[0].field_api_key
    records = [record async for record in client.iter_records(path.root_model_id, nested=True)]

    updated = 0
    for record in records:
        if len(steps) == 1:
            updates = _top_level_updates(record, container_fn, path.field_info.localized, keys, locales)
        else:
            def update_parent(block: Dict[str, Any], locale: Optional[str]) -> TraversalResult:
                changes = container_fn(block, locale, None)
                if not changes:
                    return UNCHANGED
                for key, value in changes.items():
                    block = set_block_field(block, key, value)
                return TraversalResult(True, block)

            result = traverse_blocks(record.get(root_key), steps[:-1], update_parent)
            updates = None
            if result.updated:
                value = result.new_value
                if steps[0].localized and isinstance(value, dict):
                    value = complete_localized_update(record.get(root_key), value, locales)
                updates = {root_key: value}

        if not updates:
            continue
        try:
            await client.update_record(record["id"], updates)
            updated += 1
            if touched_records is not None:
                touched_records.add(record["id"])
        except ContentAPIError as e:
            logging.error(f"Failed to update record {record['id']}: {e}")

    return updated


def _mapped_record_ids(value: Any, field_type: str, target_block_type_id: str, mapping: BlockMigrationMapping,
                       record_id: Optional[str], locale: Optional[str]) -> List[str]:
    """New record IDs for the target blocks held by a field value, in order."""
    record_ids = []
    for index, block in enumerate(extract_blocks_from_field_value(value, field_type)):
        if get_block_type_id(block) != target_block_type_id:
            continue
        block_id = get_block_id(block)
        if block_id is None and record_id:
            block_id = synthetic_block_id(record_id, [index], locale)
        new_id = mapping.get(block_id) if block_id else None
        if new_id and new_id not in record_ids:
            record_ids.append(new_id)
    return record_ids


def combine_link_values(existing: Any, new_ids: List[str], link_field_type: str, append: bool) -> Any:
    """
    Compute a link/links field value.

    Args:
        existing: Current value of the field
        new_ids: Record IDs to write
        link_field_type: "link" or "links"
        append: Keep the existing value and add to it instead of replacing it
    """
    if link_field_type == "link":
        if append and existing:
            return existing
        return new_ids[0] if new_ids else None

    if not append:
        return list(new_ids)
    combined = list(existing or [])
    for record_id in new_ids:
        if record_id not in combined:
            combined.append(record_id)
    return combined


async def write_links_field(
    client: BaseContentClient,
    path: NestedBlockPath,
    links_field_api_key: str,
    link_field_type: str,
    mapping: BlockMigrationMapping,
    locales: List[str],
    append: bool = False,
    touched_records: Optional[Set[str]] = None
) -> int:
    """
    Write the new record IDs into a link field next to the block field.

    Args:
        client: Content client
        path: Path to the block field
        links_field_api_key: The link field sharing the block field's owner
        link_field_type: "link" or "links"
        mapping: Old block ID to new record ID
        locales: Site locales
        append: Add to existing values instead of replacing them

    Returns:
        Number of records updated
    """
    terminal = path.path[-1]

    def container_fn(container, locale, record_id):
        new_ids = _mapped_record_ids(
            get_block_field(container, terminal.field_api_key), terminal.field_type,
            terminal.expected_block_type_id, mapping, record_id, locale
        )
        if not new_ids:
            return None
        existing = get_block_field(container, links_field_api_key)
        return {links_field_api_key: combine_link_values(existing, new_ids, link_field_type, append)}

    updated = await _update_containers(
        client, path, container_fn, [terminal.field_api_key, links_field_api_key], locales, touched_records
    )
    logging.info(f"Wrote links into {links_field_api_key} on {updated} records via {path.describe()}")
    return updated


async def rewrite_structured_text_field(
    client: BaseContentClient,
    path: NestedBlockPath,
    target_block_type_id: str,
    mapping: BlockMigrationMapping,
    locales: List[str],
    replace: bool = True,
    touched_records: Optional[Set[str]] = None
) -> int:
    """
    Point structured text documents at the new records.

    Args:
        replace: Replace the block nodes; otherwise keep them and add the
            inlineItem nodes next to them

    Returns:
        Number of records updated
    """
    terminal_key = path.path[-1].field_api_key
    transform = replace_blocks_with_links if replace else append_links_alongside_blocks

    def container_fn(container, locale, record_id):
        value = get_block_field(container, terminal_key)
        if not is_structured_text(value):
            return None
        rewritten = transform(value, target_block_type_id, mapping)
        return {terminal_key: rewritten} if rewritten is not None else None

    updated = await _update_containers(client, path, container_fn, [terminal_key], locales, touched_records)
    logging.info(f"Rewrote structured text {terminal_key} on {updated} records via {path.describe()}")
    return updated


async def strip_converted_blocks(
    client: BaseContentClient,
    path: NestedBlockPath,
    target_block_type_id: str,
    mapping: BlockMigrationMapping,
    locales: List[str],
    touched_records: Optional[Set[str]] = None
) -> int:
    """
    Remove migrated blocks from a rich_text or single_block field.

    Blocks that were not migrated stay where they are.

    Returns:
        Number of records updated
    """
    terminal = path.path[-1]

    def is_converted(block: Any) -> bool:
        return (
            isinstance(block, dict)
            and get_block_type_id(block) == target_block_type_id
            and get_block_id(block) in mapping
        )

    def container_fn(container, locale, record_id):
        value = get_block_field(container, terminal.field_api_key)
        if terminal.field_type == "rich_text" and isinstance(value, list):
            kept = [block for block in value if not is_converted(block)]
            return {terminal.field_api_key: kept} if len(kept) != len(value) else None
        if terminal.field_type == "single_block" and is_converted(value):
            return {terminal.field_api_key: None}
        return None

    updated = await _update_containers(client, path, container_fn, [terminal.field_api_key], locales, touched_records)
    logging.info(f"Stripped converted blocks from {terminal.field_api_key} on {updated} records")
    return updated
