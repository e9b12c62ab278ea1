"""
Field conversion for blocklift.

Every field that embeds the converted block is moved from holding blocks to
referencing records of the new model. Depending on the requested mode and on
the other block types the field allows, the field ends up non-destructively
linked, partially replaced or fully replaced.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..blocks import allowed_block_ids, with_allowed_block_ids
from ..client import BaseContentClient
from ..errors import BlockLiftError, ContentAPIError
from ..models import BlockMigrationMapping, FieldDescriptor, FieldReference, NestedBlockPath
from ..schema import to_field_descriptor
from .migrate import rewrite_structured_text_field, write_links_field


LINK_VALIDATOR_KEYS = {
    "link": "item_item_type",
    "links": "items_item_type",
}

LINK_EDITORS = {
    "link": "link_embed",
    "links": "links_embed",
}


class FieldConversionState(Enum):
    """Where a block field stands in its conversion."""
    UNCONVERTED = "unconverted"
    NON_DESTRUCTIVE_LINKED = "non_destructive_linked"
    PARTIALLY_REPLACED = "partially_replaced"
    FULLY_REPLACED = "fully_replaced"


def link_field_type_for(field_type: str) -> str:
    return "link" if field_type == "single_block" else "links"


class FieldConverter:
    """
    Converts block fields into references to the new model.

    The converter keeps the state reached by each field, keyed by field ID.
    """

    def __init__(self, client: BaseContentClient, new_model_id: str, target_block_id: str,
                 mapping: BlockMigrationMapping, locales: List[str], fully_replace: bool = False,
                 touched_records: Optional[Set[str]] = None):
        """
        Initialize the converter.

        Args:
            client: Content client
            new_model_id: The model the block instances were migrated to
            target_block_id: The block type being converted
            mapping: Old block ID to new record ID
            locales: Site locales
            fully_replace: Replace the block fields instead of adding link fields
            touched_records: Optional set collecting the IDs of updated records
        """
        self.client = client
        self.new_model_id = new_model_id
        self.target_block_id = target_block_id
        self.mapping = mapping
        self.locales = locales
        self.fully_replace = fully_replace
        self.touched_records = touched_records
        self.states: Dict[str, FieldConversionState] = {}

    def state_of(self, field_id: str) -> FieldConversionState:
        return self.states.get(field_id, FieldConversionState.UNCONVERTED)

    async def convert_field(self, reference: FieldReference, paths: List[NestedBlockPath]) -> FieldConversionState:
        """
        Convert one field and migrate the data of every path ending in it.

        Args:
            reference: The block field
            paths: Nested paths whose terminal field is `reference`

        Returns:
            The state the field reached
        """
        if self.state_of(reference.id) != FieldConversionState.UNCONVERTED:
            return self.state_of(reference.id)

        field = to_field_descriptor(await self.client.find_field(reference.id))
        remaining = [block_id for block_id in allowed_block_ids(field) if block_id != self.target_block_id]

        if field.field_type == "structured_text":
            state = await self._convert_structured_text(field, paths, remaining)
        elif not self.fully_replace:
            await self._link_alongside(field, paths)
            state = FieldConversionState.NON_DESTRUCTIVE_LINKED
        elif remaining:
            await self._link_alongside(field, paths)
            await self.client.update_field(field.id, {
                "validators": with_allowed_block_ids(field.field_type, field.validators, remaining)
            })
            state = FieldConversionState.PARTIALLY_REPLACED
        else:
            await self._replace_field(field, paths)
            state = FieldConversionState.FULLY_REPLACED

        self.states[reference.id] = state
        logging.info(f"Field {reference.parent_model_api_key}.{reference.api_key}: {state.value}")
        return state

    # =========================================================================
    # Link fields
    # =========================================================================

    async def _find_field(self, item_type_id: str, api_key: str) -> Optional[FieldDescriptor]:
        for raw in await self.client.list_fields(item_type_id):
            if raw["api_key"] == api_key:
                return to_field_descriptor(raw)
        return None

    async def _allow_new_model(self, link_field: FieldDescriptor) -> None:
        """Add the new model to an existing link field's item types."""
        validator_key = LINK_VALIDATOR_KEYS.get(link_field.field_type)
        if validator_key is None:
            raise BlockLiftError(f"Field {link_field.api_key} exists but is not a link field")

        validator = link_field.validators.get(validator_key) or {}
        item_types = list(validator.get("item_types") or [])
        if self.new_model_id in item_types:
            return
        validators = {**link_field.validators, validator_key: {**validator, "item_types": item_types + [self.new_model_id]}}
        await self.client.update_field(link_field.id, {"validators": validators})

    async def _reuse_sibling(self, field: FieldDescriptor, sibling: FieldDescriptor) -> None:
        """Check that an existing sibling can take the block field's links, then allow the new model on it."""
        if sibling.localized != field.localized:
            raise BlockLiftError(
                f"Field {sibling.api_key} exists but its localization does not match {field.api_key}"
            )
        await self._allow_new_model(sibling)

    async def _create_link_field(self, field: FieldDescriptor, api_key: str, label: str) -> FieldDescriptor:
        link_type = link_field_type_for(field.field_type)
        attributes: Dict[str, Any] = {
            "label": label,
            "api_key": api_key,
            "field_type": link_type,
            "localized": field.localized,
            "validators": {LINK_VALIDATOR_KEYS[link_type]: {"item_types": [self.new_model_id]}},
            "appearance": {"editor": LINK_EDITORS[link_type], "parameters": {}, "addons": []},
            "position": field.position + 1,
        }
        if field.fieldset:
            attributes["fieldset"] = field.fieldset
        return to_field_descriptor(await self.client.create_field(field.item_type_id, attributes))

    async def _ensure_sibling(self, field: FieldDescriptor) -> Tuple[FieldDescriptor, bool]:
        """
        Create or reuse the ``<field>_links`` sibling.

        Returns:
            The sibling field and whether it already existed
        """
        sibling = await self._find_field(field.item_type_id, f"{field.api_key}_links")
        if sibling is not None:
            await self._reuse_sibling(field, sibling)
            return sibling, True
        sibling = await self._create_link_field(field, f"{field.api_key}_links", f"{field.label} (Links)")
        return sibling, False

    async def _write_links(self, paths: List[NestedBlockPath], link_field: FieldDescriptor, append: bool) -> None:
        for path in paths:
            await write_links_field(
                self.client, path, link_field.api_key, link_field.field_type,
                self.mapping, self.locales, append=append, touched_records=self.touched_records
            )

    async def _link_alongside(self, field: FieldDescriptor, paths: List[NestedBlockPath]) -> None:
        sibling, reused = await self._ensure_sibling(field)
        await self._write_links(paths, sibling, append=reused)

    async def _remove_stale_temp_fields(self, field: FieldDescriptor) -> None:
        """Drop ``<field>_temp_links`` left behind by an interrupted run."""
        stale = await self._find_field(field.item_type_id, f"{field.api_key}_temp_links")
        if stale is None:
            return
        try:
            await self.client.destroy_field(stale.id)
            logging.info(f"Removed stale field {stale.api_key}")
        except ContentAPIError as e:
            logging.warning(f"Could not remove stale field {stale.api_key}: {e}")

    async def _replace_field(self, field: FieldDescriptor, paths: List[NestedBlockPath]) -> None:
        """Swap the block field for a link field holding the same position and api_key."""
        await self._remove_stale_temp_fields(field)

        sibling = await self._find_field(field.item_type_id, f"{field.api_key}_links")
        if sibling is not None:
            await self._reuse_sibling(field, sibling)
            await self._write_links(paths, sibling, append=True)
            await self.client.destroy_field(field.id)
            await self.client.update_field(sibling.id, {"position": field.position})
            return

        temp_field = await self._create_link_field(field, f"{field.api_key}_temp_links", f"{field.label} (Temp)")
        await self._write_links(paths, temp_field, append=False)
        await self.client.destroy_field(field.id)

        attributes: Dict[str, Any] = {
            "label": field.label,
            "api_key": field.api_key,
            "position": field.position,
            "hint": field.hint,
        }
        if field.fieldset:
            attributes["fieldset"] = field.fieldset
        await self.client.update_field(temp_field.id, attributes)

    # =========================================================================
    # Structured text
    # =========================================================================

    async def _convert_structured_text(self, field: FieldDescriptor, paths: List[NestedBlockPath],
                                       remaining: List[str]) -> FieldConversionState:
        """
        Convert a structured text field in place.

        The new model is allowed as a link first, then documents are rewritten,
        and only then is the block type removed from the allowed blocks.
        """
        validators = dict(field.validators)
        links_validator = validators.get("structured_text_links") or {}
        link_types = list(links_validator.get("item_types") or [])
        if self.new_model_id not in link_types:
            validators["structured_text_links"] = {**links_validator, "item_types": link_types + [self.new_model_id]}
            await self.client.update_field(field.id, {"validators": validators})

        for path in paths:
            await rewrite_structured_text_field(
                self.client, path, self.target_block_id, self.mapping, self.locales,
                replace=self.fully_replace, touched_records=self.touched_records
            )

        if not self.fully_replace:
            return FieldConversionState.NON_DESTRUCTIVE_LINKED

        await self.client.update_field(field.id, {
            "validators": with_allowed_block_ids(field.field_type, validators, remaining)
        })
        return FieldConversionState.FULLY_REPLACED if not remaining else FieldConversionState.PARTIALLY_REPLACED
