"""
Model lifecycle for blocklift.

This module creates the model that replaces a block, copies the block's
fields onto it, deletes the block afterwards and hands the block's name and
api_key over to the new model.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from ..client import BaseContentClient, relationship_id
from ..config import config
from ..errors import ContentAPIError, IdentifierCollisionError
from ..models import BlockAnalysis, FieldDescriptor, ItemType, RenameResult
from ..schema import to_item_type


CONVERTED_SUFFIX = "_conv"


def sanitize_api_key(api_key: str) -> str:
    """Lowercase, with runs of other characters collapsed to one underscore."""
    key = re.sub(r"[^a-z0-9_]", "_", api_key.lower())
    key = re.sub(r"_+", "_", key)
    return key.strip("_")


def pluralize(api_key: str) -> str:
    return api_key if api_key.endswith("s") else f"{api_key}s"


def letter_suffix(n: int) -> str:
    """1 -> a, 26 -> z, 27 -> aa."""
    suffix = ""
    while n > 0:
        n -= 1
        suffix = chr(ord("a") + n % 26) + suffix
        n //= 26
    return suffix


def _model_api_key(key: str) -> str:
    # Model api_keys take letters and underscores only
    key = re.sub(r"[^a-z_]", "", key)
    return re.sub(r"_+", "_", key).strip("_")


def generate_model_identifiers(original_name: str, original_api_key: str,
                               existing: List[Dict[str, Any]]) -> Tuple[str, str]:
    """
    Pick a name and api_key for the converted model that no item type uses yet.

    The first candidate is ``"<Name> (Converted)"`` / ``<key>_convs``; on
    collision a counter goes into the name and a letter suffix into the key.

    Args:
        original_name: Name of the block
        original_api_key: api_key of the block
        existing: All item types of the site

    Returns:
        (name, api_key)

    Raises:
        IdentifierCollisionError: If no free pair is found within the attempt limit
    """
    max_length = config.api_key_max_length
    max_attempts = config.max_identifier_attempts

    base_key = sanitize_api_key(original_api_key) or "block"
    max_base_length = max_length - len(CONVERTED_SUFFIX) - 4
    if len(base_key) > max_base_length:
        base_key = base_key[:max_base_length].rstrip("_")
    base_key = f"{base_key}{CONVERTED_SUFFIX}"

    base_name = re.sub(r"[^\w\s-]", "", original_name).strip() or "Converted Block"

    taken_keys = {item_type.get("api_key") for item_type in existing}
    taken_names = {item_type.get("name") for item_type in existing}

    api_key = pluralize(_model_api_key(base_key))
    name = f"{base_name} (Converted)"
    counter = 0
    while api_key in taken_keys or name in taken_names:
        counter += 1
        if counter > max_attempts:
            raise IdentifierCollisionError(
                f"Could not find a unique model name/api_key after {max_attempts} attempts"
            )
        api_key = pluralize(_model_api_key(f"{base_key}_{letter_suffix(counter)}"))
        name = f"{base_name} (Converted {counter})"

    return name, api_key[:max_length]


def _remap_validators(validators: Dict[str, Any], field_ids: Dict[str, str]) -> Dict[str, Any]:
    """
    Point validators that reference sibling fields at the copied fields.

    A validator whose referenced field was not copied yet is dropped.
    """
    remapped = {}
    for name, validator in validators.items():
        if not isinstance(validator, dict):
            remapped[name] = validator
            continue
        updated = dict(validator)
        keep = True
        for key, value in validator.items():
            if key.endswith("field_id") and isinstance(value, str):
                if value in field_ids:
                    updated[key] = field_ids[value]
                else:
                    keep = False
        if keep:
            remapped[name] = updated
    return remapped


def _field_sort_key(field: FieldDescriptor):
    # Slug fields reference their title field, so they go last
    return (field.field_type == "slug", field.position)


async def copy_fields(client: BaseContentClient, model_id: str, fields: List[FieldDescriptor],
                      force_localized: bool = False) -> Tuple[Optional[str], Dict[str, str]]:
    """
    Recreate a block's fields on a model.

    Args:
        client: Content client
        model_id: The target model
        fields: The block's field definitions
        force_localized: Create every field localized

    Returns:
        (ID of the title field candidate or None, old field ID -> new field ID)
    """
    title_field_id = None
    field_ids: Dict[str, str] = {}

    for field in sorted(fields, key=_field_sort_key):
        appearance = {key: value for key, value in field.appearance.items() if key != "type"}
        attributes: Dict[str, Any] = {
            "label": field.label,
            "api_key": field.api_key,
            "field_type": field.field_type,
            "localized": True if force_localized else field.localized,
            "validators": _remap_validators(field.validators, field_ids),
            "appearance": appearance,
            "position": field.position,
        }
        if field.hint:
            attributes["hint"] = field.hint
        # A non-localized default would not match the per-locale shape
        if field.default_value is not None and not (force_localized and not field.localized):
            attributes["default_value"] = field.default_value

        new_field = await client.create_field(model_id, attributes)
        field_ids[field.id] = new_field["id"]

        if title_field_id is None and field.field_type == "string":
            title_field_id = new_field["id"]

    return title_field_id, field_ids


async def create_model_from_block(client: BaseContentClient, analysis: BlockAnalysis,
                                  force_localized: bool = False) -> ItemType:
    """
    Create a model with the block's fields.

    Args:
        client: Content client
        analysis: Analysis of the block being converted
        force_localized: Create every field localized

    Returns:
        The created model
    """
    name, api_key = generate_model_identifiers(
        analysis.block.name, analysis.block.api_key, await client.list_item_types()
    )
    model = to_item_type(await client.create_item_type({
        "name": name,
        "api_key": api_key,
        "modular_block": False,
        "sortable": True,
        "draft_mode_active": False,
        "collection_appearance": "table",
    }))
    logging.info(f"Created model {model.api_key} ({model.id}) from block {analysis.block.api_key}")

    title_field_id, _ = await copy_fields(client, model.id, analysis.fields, force_localized)
    if title_field_id:
        await client.update_item_type(model.id, {"title_field": title_field_id})

    return model


async def delete_block(client: BaseContentClient, block_id: str) -> None:
    await client.destroy_item_type(block_id)
    logging.info(f"Deleted block {block_id}")


async def _update_menu_label(client: BaseContentClient, model_id: str, label: str) -> Optional[str]:
    """Rename the model's menu item; returns an error message on failure."""
    try:
        for menu_item in await client.list_menu_items():
            if relationship_id(menu_item.get("item_type")) == model_id:
                await client.update_menu_item(menu_item["id"], {"label": label})
                break
    except ContentAPIError as e:
        return f"Menu item label could not be updated: {e}"
    return None


async def rename_model_to_original(client: BaseContentClient, model_id: str,
                                   original_name: str, original_api_key: str) -> RenameResult:
    """
    Give the converted model the block's name and api_key.

    The exact api_key is tried first, then its plural form, and finally only
    the name is changed. Should run after the block has been deleted.

    Returns:
        RenameResult; `warning` describes anything that could not be renamed
    """
    target_key = sanitize_api_key(original_api_key)
    problems = []
    final_api_key = None

    last_error: Optional[ContentAPIError] = None
    for candidate in dict.fromkeys([target_key, pluralize(target_key)]):
        try:
            await client.update_item_type(model_id, {"name": original_name, "api_key": candidate})
            final_api_key = candidate
            break
        except ContentAPIError as e:
            logging.debug(f"api_key {candidate} rejected: {e}")
            last_error = e

    if final_api_key is None:
        try:
            await client.update_item_type(model_id, {"name": original_name})
            final_api_key = (await client.find_item_type(model_id))["api_key"]
            problems.append(f"Could not update api_key: {last_error}")
        except ContentAPIError as e:
            logging.error(f"Failed to rename model {model_id}: {e}")
            try:
                model = await client.find_item_type(model_id)
                return RenameResult(success=False, final_name=model["name"], final_api_key=model["api_key"],
                                    warning=f"Failed to rename model: {e}")
            except ContentAPIError:
                return RenameResult(success=False, warning=f"Failed to rename model: {e}")

    menu_error = await _update_menu_label(client, model_id, original_name)
    if menu_error:
        problems.append(menu_error)

    warning = "; ".join(problems) or None
    if warning:
        logging.warning(warning)

    return RenameResult(success=True, final_name=original_name, final_api_key=final_api_key, warning=warning)
