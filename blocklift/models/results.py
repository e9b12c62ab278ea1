"""
Result models for blocklift.

This module defines the analysis report, progress events and the final
result returned by a conversion.
"""

from typing import Callable, List, Optional
from pydantic import BaseModel, Field

from .schema import FieldDescriptor, FieldReference, ItemType, NestedBlockPath


class BlockAnalysis(BaseModel):
    """
    Everything known about a block before converting it.
    """

    block: ItemType = Field(..., description="The block being analyzed")

    fields: List[FieldDescriptor] = Field(
        default_factory=list,
        description="The block's own field definitions"
    )

    referencing_fields: List[FieldReference] = Field(
        default_factory=list,
        description="Fields that directly embed the block"
    )

    paths: List[NestedBlockPath] = Field(
        default_factory=list,
        description="Every path from a root model to the block"
    )

    total_affected_records: int = Field(
        default=0,
        description="Distinct root records that contain the block"
    )


class ConversionProgress(BaseModel):
    """
    A progress event emitted between conversion stages.
    """

    current_step: int

    total_steps: int

    step_description: str

    percentage: float

    details: Optional[str] = None


ProgressCallback = Callable[[ConversionProgress], None]


class ConversionResult(BaseModel):
    """
    Outcome of a block-to-model conversion.
    """

    success: bool = Field(..., description="Whether the conversion completed")

    new_model_id: Optional[str] = Field(default=None, description="ID of the created model")

    new_model_api_key: Optional[str] = Field(default=None, description="Final API key of the created model")

    migrated_records_count: int = Field(default=0, description="Records created from block instances")

    converted_fields_count: int = Field(default=0, description="Fields converted to references")

    original_block_name: Optional[str] = Field(default=None)

    original_block_api_key: Optional[str] = Field(default=None)

    error: Optional[str] = Field(default=None, description="Error message when success is False")

    warnings: List[str] = Field(
        default_factory=list,
        description="Non-fatal problems, e.g. a partially successful rename"
    )


class RenameResult(BaseModel):
    """
    Outcome of reclaiming the original block name/api_key for the new model.
    """

    success: bool

    final_name: str = ""

    final_api_key: str = ""

    warning: Optional[str] = None
