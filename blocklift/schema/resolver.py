"""
Schema graph resolution for blocklift.

This module finds every path from a root model down to a block, following
block-in-block nesting through rich_text, structured_text and single_block
fields.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..blocks import allowed_block_ids
from ..client import BaseContentClient, item_type_id_of, relationship_id
from ..errors import ContentAPIError, SchemaResolutionError
from ..locator import count_records_with_block
from ..models import (
    BLOCK_FIELD_TYPES,
    BlockAnalysis,
    FieldDescriptor,
    FieldReference,
    ItemType,
    NestedBlockPath,
    PathStep,
)


def to_item_type(raw: Dict[str, Any]) -> ItemType:
    return ItemType(
        id=raw["id"],
        name=raw.get("name") or "",
        api_key=raw.get("api_key") or "",
        modular_block=bool(raw.get("modular_block")),
    )


def to_field_descriptor(raw: Dict[str, Any]) -> FieldDescriptor:
    """Convert a flattened API field into a FieldDescriptor."""
    return FieldDescriptor(
        id=raw["id"],
        api_key=raw["api_key"],
        label=raw.get("label") or "",
        field_type=raw["field_type"],
        localized=bool(raw.get("localized")),
        validators=raw.get("validators") or {},
        appearance=raw.get("appearance") or {},
        position=raw.get("position") or 0,
        hint=raw.get("hint"),
        default_value=raw.get("default_value"),
        fieldset=relationship_id(raw.get("fieldset")),
        item_type_id=item_type_id_of(raw),
    )


class SchemaCache:
    """
    Per-run cache of schema lookups.

    A conversion mutates the schema, so a cache must never outlive one run.
    """

    def __init__(self):
        self.item_types: Dict[str, ItemType] = {}
        self.fields: Dict[str, List[FieldDescriptor]] = {}
        self.referencing: Dict[str, List[FieldReference]] = {}

    def clear(self) -> None:
        self.item_types.clear()
        self.fields.clear()
        self.referencing.clear()


class SchemaGraphResolver:
    """
    Resolves where a block is used across the schema.
    """

    def __init__(self, client: BaseContentClient, cache: Optional[SchemaCache] = None):
        """
        Initialize the resolver.

        Args:
            client: Content client used for schema lookups
            cache: Optional cache shared with other components of the same run
        """
        self.client = client
        self.cache = cache or SchemaCache()

    async def get_item_type(self, item_type_id: str) -> ItemType:
        if item_type_id not in self.cache.item_types:
            self.cache.item_types[item_type_id] = to_item_type(await self.client.find_item_type(item_type_id))
        return self.cache.item_types[item_type_id]

    async def get_fields(self, item_type_id: str) -> List[FieldDescriptor]:
        if item_type_id not in self.cache.fields:
            raw_fields = await self.client.list_fields(item_type_id)
            self.cache.fields[item_type_id] = [to_field_descriptor(f) for f in raw_fields]
        return self.cache.fields[item_type_id]

    async def find_referencing_fields(self, block_id: str) -> List[FieldReference]:
        """
        Find the block-embedding fields that currently allow a block.

        Args:
            block_id: The block item type ID

        Returns:
            One FieldReference per field, with its owner resolved
        """
        if block_id in self.cache.referencing:
            return self.cache.referencing[block_id]

        references = []
        for raw in await self.client.referencing_fields(block_id):
            field = to_field_descriptor(raw)
            if field.field_type not in BLOCK_FIELD_TYPES:
                continue

            allowed = allowed_block_ids(field)
            # The referencing query also returns fields whose validators moved on
            if block_id not in allowed:
                continue

            owner = await self.get_item_type(field.item_type_id)
            references.append(FieldReference(
                id=field.id,
                label=field.label,
                api_key=field.api_key,
                parent_model_id=owner.id,
                parent_model_name=owner.name,
                parent_model_api_key=owner.api_key,
                parent_is_block=owner.modular_block,
                localized=field.localized,
                allowed_block_ids=allowed,
                position=field.position,
                hint=field.hint,
                field_type=field.field_type,
            ))

        self.cache.referencing[block_id] = references
        return references

    async def resolve_paths(self, target_block_id: str,
                            visited: FrozenSet[str] = frozenset()) -> List[NestedBlockPath]:
        """
        Find every path from a root model to fields embedding a block.

        A field owned by another block is resolved by finding the paths to that
        block first and extending each of them with the field.

        Args:
            target_block_id: The block to reach
            visited: Blocks already on the current recursion chain

        Returns:
            All nested paths; a block seen twice on one chain contributes none
        """
        if target_block_id in visited:
            logging.debug(f"Block {target_block_id} already on the resolution chain, skipping cycle")
            return []
        visited = visited | {target_block_id}

        paths = []
        for reference in await self.find_referencing_fields(target_block_id):
            step = PathStep(
                field_api_key=reference.api_key,
                expected_block_type_id=target_block_id,
                localized=reference.localized,
                field_type=reference.field_type,
            )

            if not reference.parent_is_block:
                paths.append(NestedBlockPath(
                    root_model_id=reference.parent_model_id,
                    root_model_name=reference.parent_model_name,
                    root_model_api_key=reference.parent_model_api_key,
                    path=[step],
                    field_info=reference,
                ))
                continue

            for parent_path in await self.resolve_paths(reference.parent_model_id, visited):
                paths.append(NestedBlockPath(
                    root_model_id=parent_path.root_model_id,
                    root_model_name=parent_path.root_model_name,
                    root_model_api_key=parent_path.root_model_api_key,
                    path=parent_path.path + [step],
                    field_info=reference,
                ))

        return paths

    async def analyze_block(self, block_id: str,
                            on_progress: Optional[Callable[[str], None]] = None) -> BlockAnalysis:
        """
        Build the full usage report of a block.

        Args:
            block_id: The block item type ID
            on_progress: Optional callback receiving status messages

        Returns:
            BlockAnalysis with fields, referencing fields, paths and record count

        Raises:
            SchemaResolutionError: If the item type is not a block or the schema
                cannot be read
        """
        def report(message: str) -> None:
            logging.info(message)
            if on_progress:
                on_progress(message)

        try:
            report(f"Loading block {block_id}")
            block = await self.get_item_type(block_id)
            if not block.modular_block:
                raise SchemaResolutionError(f"Item type {block.api_key} ({block_id}) is not a block")

            fields = await self.get_fields(block_id)

            report(f"Finding fields that embed {block.api_key}")
            referencing_fields = await self.find_referencing_fields(block_id)

            report(f"Resolving nested paths to {block.api_key}")
            paths = await self.resolve_paths(block_id)

            paths_by_root: Dict[str, List[NestedBlockPath]] = defaultdict(list)
            for path in paths:
                paths_by_root[path.root_model_id].append(path)

            total_affected_records = 0
            for root_model_id, root_paths in paths_by_root.items():
                report(f"Counting records of {root_paths[0].root_model_api_key}")
                total_affected_records += await count_records_with_block(self.client, root_model_id, root_paths)

        except ContentAPIError as e:
            raise SchemaResolutionError(f"Failed to analyze block {block_id}: {e}") from e

        logging.info(
            f"Block {block.api_key}: {len(referencing_fields)} referencing fields, "
            f"{len(paths)} paths, {total_affected_records} affected records"
        )
        return BlockAnalysis(
            block=block,
            fields=fields,
            referencing_fields=referencing_fields,
            paths=paths,
            total_affected_records=total_affected_records,
        )
