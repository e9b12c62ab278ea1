"""
In-memory content client for blocklift.

This module provides a content store that keeps item types, fields and
records in dictionaries. It follows the content API closely enough to run a
full conversion (used by the test suite and the ``demo`` command) without a
network connection.
"""

import copy
import itertools
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from ..blocks import BLOCK_META_KEYS, get_block_type_id, is_block_object
from ..config import config
from ..errors import ContentAPIError
from .base import BaseContentClient, item_type_id_of


FIELD_ATTRIBUTES = (
    "api_key",
    "label",
    "field_type",
    "localized",
    "validators",
    "appearance",
    "position",
    "hint",
    "default_value",
    "fieldset",
)

RECORD_META_KEYS = ("id", "type", "item_type", "meta", "creator")


def _empty_value(field_type: str) -> Any:
    return [] if field_type in ("links", "rich_text") else None


class InMemoryContentClient(BaseContentClient):
    """
    Content client backed by plain dictionaries.

    Records are stored flattened: ``{"id", "item_type": {"id", "type"},
    "meta", <field values>}``. Embedded blocks are stored as full objects, so
    every read behaves like a nested fetch.

    Attributes:
        failing_updates: Record IDs whose update calls raise ContentAPIError
        failing_publishes: Record IDs whose publish calls raise ContentAPIError
        fail_next_creates: Number of upcoming record creations that fail
        published: Record IDs in publish order
    """

    def __init__(self, locales: Optional[List[str]] = None, page_size: Optional[int] = None):
        """
        Initialize an empty store.

        Args:
            locales: Site locales, main locale first (defaults to ["en"])
            page_size: Records per page when iterating (defaults to config value)
        """
        self.locales = list(locales or ["en"])
        self.page_size = page_size or config.page_size

        self.item_types: Dict[str, Dict[str, Any]] = {}
        self.fields: Dict[str, Dict[str, Any]] = {}
        self.records: Dict[str, Dict[str, Any]] = {}
        self.menu_items: Dict[str, Dict[str, Any]] = {}

        self.failing_updates: Set[str] = set()
        self.failing_publishes: Set[str] = set()
        self.fail_next_creates = 0
        self.published: List[str] = []

        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    # =========================================================================
    # Seeding helpers (synchronous, no validation beyond the basics)
    # =========================================================================

    def add_item_type(self, name: str, api_key: str, modular_block: bool = False,
                      item_type_id: Optional[str] = None) -> str:
        """
        Register an item type directly.

        Returns:
            The item type ID
        """
        item_type_id = item_type_id or self._next_id("it")
        self.item_types[item_type_id] = {
            "id": item_type_id,
            "name": name,
            "api_key": api_key,
            "modular_block": modular_block,
            "title_field": None,
        }
        if not modular_block:
            menu_item_id = self._next_id("mi")
            self.menu_items[menu_item_id] = {"id": menu_item_id, "label": name, "item_type": item_type_id}
        return item_type_id

    def add_field(self, item_type_id: str, api_key: str, field_type: str, localized: bool = False,
                  validators: Optional[Dict[str, Any]] = None, **attributes) -> Dict[str, Any]:
        """Register a field directly and return it."""
        field_id = attributes.pop("field_id", None) or self._next_id("f")
        existing = self._fields_of(item_type_id)
        field = {
            "id": field_id,
            "api_key": api_key,
            "label": attributes.pop("label", api_key.replace("_", " ").title()),
            "field_type": field_type,
            "localized": localized,
            "validators": copy.deepcopy(validators or {}),
            "appearance": attributes.pop("appearance", {}),
            "position": attributes.pop("position", max([f["position"] for f in existing], default=0) + 1),
            "hint": attributes.pop("hint", None),
            "default_value": attributes.pop("default_value", None),
            "fieldset": attributes.pop("fieldset", None),
            "item_type": item_type_id,
        }
        self.fields[field_id] = field
        return copy.deepcopy(field)

    def add_record(self, item_type_id: str, values: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        """Store a record directly, blocks included, and return it."""
        record_id = record_id or self._next_id("r")
        record = {
            "id": record_id,
            "type": "item",
            "item_type": {"id": item_type_id, "type": "item_type"},
            "meta": {"status": "draft"},
        }
        for field in self._fields_of(item_type_id):
            record[field["api_key"]] = self._default_for(field)
        record.update(self._materialize(copy.deepcopy(values)))
        self.records[record_id] = record
        return copy.deepcopy(record)

    def records_of_type(self, item_type_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.records.values() if item_type_id_of(r) == item_type_id]

    def field_by_api_key(self, item_type_id: str, api_key: str) -> Optional[Dict[str, Any]]:
        for field in self._fields_of(item_type_id):
            if field["api_key"] == api_key:
                return copy.deepcopy(field)
        return None

    # =========================================================================
    # Internals
    # =========================================================================

    def _fields_of(self, item_type_id: str) -> List[Dict[str, Any]]:
        fields = [f for f in self.fields.values() if f["item_type"] == item_type_id]
        return sorted(fields, key=lambda f: f["position"])

    def _require_item_type(self, item_type_id: str) -> Dict[str, Any]:
        if item_type_id not in self.item_types:
            raise ContentAPIError(f"Item type not found: {item_type_id}", status_code=404)
        return self.item_types[item_type_id]

    def _require_field(self, field_id: str) -> Dict[str, Any]:
        if field_id not in self.fields:
            raise ContentAPIError(f"Field not found: {field_id}", status_code=404)
        return self.fields[field_id]

    def _require_record(self, record_id: str) -> Dict[str, Any]:
        if record_id not in self.records:
            raise ContentAPIError(f"Record not found: {record_id}", status_code=404)
        return self.records[record_id]

    def _default_for(self, field: Dict[str, Any]) -> Any:
        value = copy.deepcopy(field.get("default_value"))
        if value is None:
            value = _empty_value(field["field_type"])
        if field["localized"]:
            if isinstance(value, dict) and set(value) <= set(self.locales):
                return {locale: copy.deepcopy(value.get(locale)) for locale in self.locales}
            return {locale: copy.deepcopy(value) for locale in self.locales}
        return value

    def _check_item_type_identity(self, name: str, api_key: str, modular_block: bool,
                                  exclude_id: Optional[str] = None) -> None:
        for other in self.item_types.values():
            if other["id"] == exclude_id:
                continue
            if other["api_key"] == api_key:
                raise ContentAPIError(f"api_key '{api_key}' is already taken", status_code=422)
            if other["name"] == name:
                raise ContentAPIError(f"name '{name}' is already taken", status_code=422)
        if not modular_block and not api_key.endswith("s"):
            raise ContentAPIError(f"api_key '{api_key}' must be plural", status_code=422)

    def _materialize(self, value: Any) -> Any:
        """Give new blocks an ID and store them flattened, recursively."""
        if isinstance(value, list):
            return [self._materialize(entry) for entry in value]
        if not isinstance(value, dict):
            return value

        if is_block_object(value):
            block_type_id = get_block_type_id(value)
            attributes = value.get("attributes")
            if not isinstance(attributes, dict):
                attributes = {k: v for k, v in value.items() if k not in BLOCK_META_KEYS}
            block = {
                "id": value.get("id") or self._next_id("b"),
                "type": "item",
                "item_type": {"id": block_type_id, "type": "item_type"},
            }
            for key, field_value in attributes.items():
                block[key] = self._materialize(field_value)
            return block

        return {key: self._materialize(entry) for key, entry in value.items()}

    def _walk_blocks(self, value: Any, block_type_id: str, visit) -> None:
        """Call visit(block) on every stored block of a type, depth first."""
        if isinstance(value, list):
            for entry in value:
                self._walk_blocks(entry, block_type_id, visit)
        elif isinstance(value, dict):
            for entry in list(value.values()):
                self._walk_blocks(entry, block_type_id, visit)
            if is_block_object(value) and get_block_type_id(value) == block_type_id:
                visit(value)

    def _check_field_values(self, item_type_id: str, attributes: Dict[str, Any]) -> None:
        fields = {f["api_key"]: f for f in self._fields_of(item_type_id)}
        for key, value in attributes.items():
            if key in RECORD_META_KEYS:
                continue
            if key not in fields:
                raise ContentAPIError(f"Unknown field '{key}'", status_code=422)
            field = fields[key]
            if field["localized"]:
                if not isinstance(value, dict) or not set(value) <= set(self.locales):
                    raise ContentAPIError(
                        f"Field '{key}' is localized and needs a value per locale", status_code=422
                    )
                for locale_value in value.values():
                    self._check_link_value(field, locale_value)
            else:
                self._check_link_value(field, value)

    def _check_link_value(self, field: Dict[str, Any], value: Any) -> None:
        if field["field_type"] == "links":
            ids = value or []
        elif field["field_type"] == "link":
            ids = [value] if value else []
        else:
            return
        for record_id in ids:
            if not isinstance(record_id, str) or record_id not in self.records:
                raise ContentAPIError(f"Field '{field['api_key']}' links to unknown record {record_id!r}",
                                      status_code=422)

    # =========================================================================
    # Item types
    # =========================================================================

    async def find_item_type(self, item_type_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._require_item_type(item_type_id))

    async def list_item_types(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(it) for it in self.item_types.values()]

    async def create_item_type(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        name = attributes.get("name", "")
        api_key = attributes.get("api_key", "")
        modular_block = bool(attributes.get("modular_block", False))
        self._check_item_type_identity(name, api_key, modular_block)

        item_type_id = self.add_item_type(name, api_key, modular_block)
        logging.debug(f"Created item type {api_key} ({item_type_id})")
        return copy.deepcopy(self.item_types[item_type_id])

    async def update_item_type(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        item_type = self._require_item_type(item_type_id)
        name = attributes.get("name", item_type["name"])
        api_key = attributes.get("api_key", item_type["api_key"])
        self._check_item_type_identity(name, api_key, item_type["modular_block"], exclude_id=item_type_id)

        title_field = attributes.get("title_field", item_type.get("title_field"))
        if title_field is not None:
            field = self._require_field(title_field)
            if field["item_type"] != item_type_id:
                raise ContentAPIError("Title field must belong to the item type", status_code=422)

        item_type.update({"name": name, "api_key": api_key, "title_field": title_field})
        return copy.deepcopy(item_type)

    async def destroy_item_type(self, item_type_id: str) -> None:
        self._require_item_type(item_type_id)

        for field in self.fields.values():
            if field["item_type"] == item_type_id:
                continue
            for validator in field["validators"].values():
                if isinstance(validator, dict) and item_type_id in (validator.get("item_types") or []):
                    raise ContentAPIError(
                        f"Item type {item_type_id} is still referenced by field {field['api_key']}",
                        status_code=422
                    )

        for field_id in [f["id"] for f in self.fields.values() if f["item_type"] == item_type_id]:
            del self.fields[field_id]
        for record_id in [r["id"] for r in self.records.values() if item_type_id_of(r) == item_type_id]:
            del self.records[record_id]
        for menu_item_id in [m["id"] for m in self.menu_items.values() if m["item_type"] == item_type_id]:
            del self.menu_items[menu_item_id]
        del self.item_types[item_type_id]

    # =========================================================================
    # Fields
    # =========================================================================

    async def list_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        self._require_item_type(item_type_id)
        return [copy.deepcopy(f) for f in self._fields_of(item_type_id)]

    async def find_field(self, field_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._require_field(field_id))

    async def referencing_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        self._require_item_type(item_type_id)
        referencing = []
        for field in self.fields.values():
            for validator in field["validators"].values():
                if isinstance(validator, dict) and item_type_id in (validator.get("item_types") or []):
                    referencing.append(copy.deepcopy(field))
                    break
        return referencing

    async def create_field(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        self._require_item_type(item_type_id)
        api_key = attributes.get("api_key")
        if not api_key:
            raise ContentAPIError("Field api_key is required", status_code=422)
        if any(f["api_key"] == api_key for f in self._fields_of(item_type_id)):
            raise ContentAPIError(f"Field api_key '{api_key}' is already taken", status_code=422)

        extra = {key: attributes[key] for key in FIELD_ATTRIBUTES if key in attributes}
        extra.pop("api_key")
        field_type = extra.pop("field_type")
        localized = extra.pop("localized", False)
        validators = extra.pop("validators", None)
        field = self.add_field(item_type_id, api_key, field_type, localized, validators, **extra)

        for record in self.records.values():
            if item_type_id_of(record) == item_type_id:
                record[api_key] = self._default_for(self.fields[field["id"]])
        return field

    async def update_field(self, field_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        field = self._require_field(field_id)
        item_type_id = field["item_type"]
        old_api_key = field["api_key"]
        new_api_key = attributes.get("api_key", old_api_key)

        if new_api_key != old_api_key:
            if any(f["api_key"] == new_api_key for f in self._fields_of(item_type_id)):
                raise ContentAPIError(f"Field api_key '{new_api_key}' is already taken", status_code=422)
            self._rename_stored_values(item_type_id, old_api_key, new_api_key)

        for key in FIELD_ATTRIBUTES:
            if key in attributes and key != "field_type":
                field[key] = copy.deepcopy(attributes[key])
        return copy.deepcopy(field)

    async def destroy_field(self, field_id: str) -> None:
        field = self._require_field(field_id)
        item_type_id = field["item_type"]
        api_key = field["api_key"]

        def drop(block: Dict[str, Any]) -> None:
            block.pop(api_key, None)
            if isinstance(block.get("attributes"), dict):
                block["attributes"].pop(api_key, None)

        for record in self.records.values():
            if item_type_id_of(record) == item_type_id:
                record.pop(api_key, None)
            else:
                self._walk_blocks(record, item_type_id, drop)

        item_type = self.item_types.get(item_type_id)
        if item_type and item_type.get("title_field") == field_id:
            item_type["title_field"] = None
        del self.fields[field_id]

    def _rename_stored_values(self, item_type_id: str, old_api_key: str, new_api_key: str) -> None:
        def rename(container: Dict[str, Any]) -> None:
            if old_api_key in container:
                container[new_api_key] = container.pop(old_api_key)
            if isinstance(container.get("attributes"), dict):
                rename(container["attributes"])

        for record in self.records.values():
            if item_type_id_of(record) == item_type_id:
                rename(record)
            else:
                self._walk_blocks(record, item_type_id, rename)

    # =========================================================================
    # Records
    # =========================================================================

    async def iter_records(self, item_type_id: str, nested: bool = True) -> AsyncIterator[Dict[str, Any]]:
        """Yield records of a type in insertion order, one page at a time."""
        record_ids = [r["id"] for r in self.records.values() if item_type_id_of(r) == item_type_id]
        for offset in range(0, len(record_ids), self.page_size):
            page = [self.records[rid] for rid in record_ids[offset:offset + self.page_size] if rid in self.records]
            logging.debug(f"Fetched page of {len(page)} records of {item_type_id} at offset {offset}")
            for record in page:
                yield copy.deepcopy(record)

    async def find_record(self, record_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._require_record(record_id))

    async def create_record(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        item_type = self._require_item_type(item_type_id)
        if self.fail_next_creates > 0:
            self.fail_next_creates -= 1
            raise ContentAPIError("Record creation rejected", status_code=422)
        if item_type["modular_block"]:
            raise ContentAPIError("Cannot create top-level records of a block", status_code=422)

        values = {key: value for key, value in attributes.items() if key not in RECORD_META_KEYS}
        self._check_field_values(item_type_id, values)

        for field in self._fields_of(item_type_id):
            if field["localized"] and field["api_key"] in values:
                given = values[field["api_key"]]
                values[field["api_key"]] = {locale: given.get(locale) for locale in self.locales}
        return self.add_record(item_type_id, values)

    async def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        record = self._require_record(record_id)
        if record_id in self.failing_updates:
            raise ContentAPIError(f"Record {record_id} could not be updated", status_code=422)

        values = {key: value for key, value in attributes.items() if key not in RECORD_META_KEYS}
        self._check_field_values(item_type_id_of(record), values)

        # Localized values are replaced as a whole; locales left out are dropped
        record.update(self._materialize(copy.deepcopy(values)))
        if record["meta"]["status"] == "published":
            record["meta"]["status"] = "updated"
        return copy.deepcopy(record)

    async def publish_record(self, record_id: str) -> Dict[str, Any]:
        record = self._require_record(record_id)
        if record_id in self.failing_publishes:
            raise ContentAPIError(f"Record {record_id} could not be published", status_code=422)
        record["meta"]["status"] = "published"
        self.published.append(record_id)
        return copy.deepcopy(record)

    # =========================================================================
    # Site
    # =========================================================================

    async def site_locales(self) -> List[str]:
        return list(self.locales)

    async def list_menu_items(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(m) for m in self.menu_items.values()]

    async def update_menu_item(self, menu_item_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        if menu_item_id not in self.menu_items:
            raise ContentAPIError(f"Menu item not found: {menu_item_id}", status_code=404)
        menu_item = self.menu_items[menu_item_id]
        if "label" in attributes:
            menu_item["label"] = attributes["label"]
        return copy.deepcopy(menu_item)
