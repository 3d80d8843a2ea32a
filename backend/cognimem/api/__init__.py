# API Routes
from .relationships import router as relationships_router
from .entities import router as entities_router
from .predicates import router as predicates_router
from .validation_rules import router as validation_rules_router
from .memory import router as memory_router
from .inspect import router as inspect_router
from .conversations import router as conversations_router
from .contacts import router as contacts_router

__all__ = [
    "relationships_router",
    "entities_router",
    "predicates_router",
    "validation_rules_router",
    "memory_router",
    "inspect_router",
    "conversations_router",
    "contacts_router",
]
