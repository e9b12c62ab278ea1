"""
Schema data models for blocklift.

This module defines the item type and field structures read from the content
API, plus the nested path description that links a root model to a block.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


BLOCK_FIELD_TYPES = ("rich_text", "structured_text", "single_block")


class ItemType(BaseModel):
    """
    A model or block definition.
    """

    id: str = Field(..., description="Item type ID")

    name: str = Field(..., description="Human-readable name")

    api_key: str = Field(..., description="API identifier")

    modular_block: bool = Field(
        default=False,
        description="True when this item type is a block (only embeddable inside fields)"
    )


class FieldDescriptor(BaseModel):
    """
    A field definition belonging to an item type.
    """

    id: str = Field(..., description="Field ID")

    api_key: str = Field(..., description="API identifier of the field")

    label: str = Field(default="", description="Field label shown to editors")

    field_type: str = Field(..., description="Field type (string, rich_text, links, ...)")

    localized: bool = Field(default=False, description="Whether values vary per locale")

    validators: Dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific validators, including allowed block/link item types"
    )

    appearance: Dict[str, Any] = Field(default_factory=dict, description="Editor appearance")

    position: int = Field(default=0, description="Position inside the item type")

    hint: Optional[str] = Field(default=None, description="Help text")

    default_value: Any = Field(default=None, description="Default value for new records")

    fieldset: Optional[str] = Field(default=None, description="ID of the fieldset, if any")

    item_type_id: Optional[str] = Field(default=None, description="ID of the owning item type")


class FieldReference(BaseModel):
    """
    A block-embedding field that allows the target block.
    """

    id: str = Field(..., description="Field ID")

    label: str = Field(default="", description="Field label")

    api_key: str = Field(..., description="Field API key")

    parent_model_id: str = Field(..., description="ID of the item type owning the field")

    parent_model_name: str = Field(..., description="Name of the owning item type")

    parent_model_api_key: str = Field(..., description="API key of the owning item type")

    parent_is_block: bool = Field(..., description="Whether the owner is itself a block")

    localized: bool = Field(default=False, description="Whether the field is localized")

    allowed_block_ids: List[str] = Field(
        default_factory=list,
        description="Block type IDs the field accepts, normalized across field types"
    )

    position: int = Field(default=0, description="Field position")

    hint: Optional[str] = Field(default=None, description="Field hint")

    field_type: str = Field(..., description="One of rich_text, structured_text, single_block")


class PathStep(BaseModel):
    """
    One hop of a nested path: read `field_api_key`, keep blocks of `expected_block_type_id`.
    """

    field_api_key: str

    expected_block_type_id: str

    localized: bool = False

    field_type: str


class NestedBlockPath(BaseModel):
    """
    Ordered steps from a root (non-block) model to the field directly embedding a block.
    """

    root_model_id: str = Field(..., description="ID of the root model")

    root_model_name: str = Field(..., description="Name of the root model")

    root_model_api_key: str = Field(..., description="API key of the root model")

    path: List[PathStep] = Field(..., min_length=1, description="Steps from root to the target")

    field_info: FieldReference = Field(..., description="The field that embeds the target block")

    @property
    def is_in_localized_context(self) -> bool:
        """True if any step is localized, meaning block data varies by locale."""
        return any(step.localized for step in self.path)

    @property
    def target_block_id(self) -> str:
        return self.path[-1].expected_block_type_id

    def describe(self) -> str:
        return " → ".join(step.field_api_key for step in self.path)
