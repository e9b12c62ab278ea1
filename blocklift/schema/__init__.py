"""Schema graph resolution for blocklift."""

from .resolver import SchemaCache, SchemaGraphResolver, to_field_descriptor, to_item_type

__all__ = ["SchemaCache", "SchemaGraphResolver", "to_field_descriptor", "to_item_type"]
