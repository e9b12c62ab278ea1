"""Data models for blocklift."""

from .schema import (
    BLOCK_FIELD_TYPES,
    ItemType,
    FieldDescriptor,
    FieldReference,
    PathStep,
    NestedBlockPath,
)
from .instances import (
    DEFAULT_LOCALE_KEY,
    BlockInstance,
    GroupedBlockInstance,
    BlockMigrationMapping,
    group_key_for,
)
from .results import (
    BlockAnalysis,
    ConversionProgress,
    ConversionResult,
    ProgressCallback,
    RenameResult,
)

__all__ = [
    "BLOCK_FIELD_TYPES",
    "ItemType",
    "FieldDescriptor",
    "FieldReference",
    "PathStep",
    "NestedBlockPath",
    "DEFAULT_LOCALE_KEY",
    "BlockInstance",
    "GroupedBlockInstance",
    "BlockMigrationMapping",
    "group_key_for",
    "BlockAnalysis",
    "ConversionProgress",
    "ConversionResult",
    "ProgressCallback",
    "RenameResult",
]
