"""
Block instance models for blocklift.

This module defines the occurrences of a block found while scanning records,
their locale-merged grouping, and the append-only mapping from migrated block
instances to the records created for them.
"""

from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional
from pydantic import BaseModel, Field


DEFAULT_LOCALE_KEY = "__default__"


class BlockInstance(BaseModel):
    """
    One occurrence of the target block inside a root record.
    """

    root_record_id: str = Field(..., description="ID of the top-level record holding the block")

    path_indices: List[int] = Field(
        default_factory=list,
        description="Position of the block at every nesting level"
    )

    locale: Optional[str] = Field(default=None, description="Locale the block was found under")

    block_id: str = Field(..., description="Block instance ID (synthetic when the API omits it)")

    payload: Dict[str, Any] = Field(default_factory=dict, description="The block's field values")

    @property
    def position_key(self) -> str:
        return group_key_for(self.root_record_id, self.path_indices)


class GroupedBlockInstance(BaseModel):
    """
    Block instances from different locales sitting at the same position.

    Exactly one record is created per group.
    """

    group_key: str = Field(..., description="root_record_id plus path indices")

    root_record_id: str

    path_indices: List[int] = Field(default_factory=list)

    locale_data: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Locale (or __default__) to block payload"
    )

    all_block_ids: List[str] = Field(
        default_factory=list,
        description="Block IDs from every locale, all mapped to the same new record"
    )

    @property
    def reference_block_id(self) -> str:
        return self.all_block_ids[0] if self.all_block_ids else self.group_key


def group_key_for(root_record_id: str, path_indices: List[int]) -> str:
    """Build the grouping key shared by all locales of one block position."""
    return "_".join([root_record_id] + [str(index) for index in path_indices])


class BlockMigrationMapping(Mapping):
    """
    Append-only mapping of old block instance IDs to new record IDs.

    Once an ID is mapped it is never remapped, so re-running a migration with
    the same mapping only creates records for instances not seen before.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = {}
        if initial:
            for old_id, new_id in initial.items():
                self.assign(old_id, new_id)

    def assign(self, old_id: str, new_id: str) -> bool:
        """
        Map a block instance to a record.

        Returns:
            True if the mapping was added, False if old_id was already mapped
        """
        if old_id in self._data:
            return False
        self._data[old_id] = new_id
        return True

    def merge(self, other: Mapping[str, str]) -> None:
        for old_id, new_id in other.items():
            self.assign(old_id, new_id)

    def record_ids(self) -> List[str]:
        """Distinct new record IDs in first-assignment order."""
        return list(dict.fromkeys(self._data.values()))

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"BlockMigrationMapping({self._data!r})"
