# Knowledge graph: entity store, validation and consistency operations
from .store import EntityStore, ALL_NAMESPACES
from .consistency import ConsistencyEngine, DuplicatePair

__all__ = [
    "EntityStore",
    "ALL_NAMESPACES",
    "ConsistencyEngine",
    "DuplicatePair",
]
