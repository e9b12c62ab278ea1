"""Content API clients for blocklift."""

from .base import BaseContentClient, item_type_id_of, relationship_id
from .memory import InMemoryContentClient
from .http import DatoCMSClient

__all__ = [
    "BaseContentClient",
    "InMemoryContentClient",
    "DatoCMSClient",
    "item_type_id_of",
    "relationship_id",
]
