"""
Base content client interface for blocklift.

This module defines the abstract interface every content API client must
implement. The conversion engine talks to the content store exclusively
through it.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional


class BaseContentClient(ABC):
    """
    Abstract base class for content management API clients.

    Item types, fields and records are exchanged as plain dictionaries in
    flattened form: attributes next to ``id``, relationships reduced to IDs
    (``item_type``, ``fieldset``, ``title_field``).
    """

    # -- Item types ----------------------------------------------------------

    @abstractmethod
    async def find_item_type(self, item_type_id: str) -> Dict[str, Any]:
        """
        Fetch one item type (model or block).

        Raises:
            ContentAPIError: If the item type does not exist
        """
        pass

    @abstractmethod
    async def list_item_types(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_item_type(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an item type.

        Args:
            attributes: name, api_key, modular_block and optional flags

        Returns:
            The created item type
        """
        pass

    @abstractmethod
    async def update_item_type(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def destroy_item_type(self, item_type_id: str) -> None:
        pass

    # -- Fields --------------------------------------------------------------

    @abstractmethod
    async def list_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_field(self, field_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def referencing_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        """
        List fields whose validators mention an item type.

        The result may include fields that no longer allow the item type;
        callers must re-check the validators.
        """
        pass

    @abstractmethod
    async def create_field(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_field(self, field_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def destroy_field(self, field_id: str) -> None:
        pass

    # -- Records -------------------------------------------------------------

    @abstractmethod
    def iter_records(self, item_type_id: str, nested: bool = True) -> AsyncIterator[Dict[str, Any]]:
        """
        Iterate over all records of an item type, page by page.

        Args:
            item_type_id: The model to scan
            nested: Expand embedded blocks into full objects

        Returns:
            Async iterator of records in a stable order
        """
        pass

    @abstractmethod
    async def find_record(self, record_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def create_record(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def publish_record(self, record_id: str) -> Dict[str, Any]:
        pass

    # -- Site ----------------------------------------------------------------

    @abstractmethod
    async def site_locales(self) -> List[str]:
        """Return the site's locales, main locale first."""
        pass

    @abstractmethod
    async def list_menu_items(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def update_menu_item(self, menu_item_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    async def close(self) -> None:
        """Release any underlying resources."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def relationship_id(value: Any) -> Optional[str]:
    """Reduce a flattened relationship (bare ID or ``{"id", "type"}``) to its ID."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def item_type_id_of(resource: Dict[str, Any]) -> Optional[str]:
    """Get the item type ID of a flattened record or field."""
    return relationship_id(resource.get("item_type"))
