"""Block-to-model conversion for blocklift."""

from .fields import FieldConversionState, FieldConverter
from .migrate import (
    migrate_block_instances,
    migrate_grouped_instances,
    migrate_path,
    rewrite_structured_text_field,
    strip_converted_blocks,
    write_links_field,
)
from .model import create_model_from_block, delete_block, rename_model_to_original
from .orchestrator import convert_block_to_model

__all__ = [
    "FieldConversionState",
    "FieldConverter",
    "migrate_block_instances",
    "migrate_grouped_instances",
    "migrate_path",
    "rewrite_structured_text_field",
    "strip_converted_blocks",
    "write_links_field",
    "create_model_from_block",
    "delete_block",
    "rename_model_to_original",
    "convert_block_to_model",
]
