"""
blocklift: Convert embedded content blocks into standalone models.

Moves every instance of a block into records of a new model and rewrites
the fields that embedded it, at any nesting depth and across locales.
"""

__version__ = "0.1.0"
__author__ = "blocklift Project"

# Import main components
from .client import BaseContentClient, DatoCMSClient, InMemoryContentClient
from .converter import convert_block_to_model
from .models import BlockAnalysis, ConversionProgress, ConversionResult
from .schema import SchemaGraphResolver

__all__ = [
    "BaseContentClient",
    "DatoCMSClient",
    "InMemoryContentClient",
    "convert_block_to_model",
    "BlockAnalysis",
    "ConversionProgress",
    "ConversionResult",
    "SchemaGraphResolver",
]
