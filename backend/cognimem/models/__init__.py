# CogniMem Models
from .entity import (
    EntityDefinition,
    PredicateDefinition,
    EntityRelationship,
    EntityTypeValidationRule,
    MessageEntity,
    VerificationStatus,
)
from .conversation import Conversation, Message
from .pipeline import PipelineRun, PipelineRunStep, PipelineType, RunStatus, StepStatus
from .knowledge import KnowledgeVector, SourceDocument, Contact

__all__ = [
    "EntityDefinition",
    "PredicateDefinition",
    "EntityRelationship",
    "EntityTypeValidationRule",
    "MessageEntity",
    "VerificationStatus",
    "Conversation",
    "Message",
    "PipelineRun",
    "PipelineRunStep",
    "PipelineType",
    "RunStatus",
    "StepStatus",
    "KnowledgeVector",
    "SourceDocument",
    "Contact",
]
