"""
Error taxonomy shared by the store, the pipelines and the API layer.
"""
from typing import List, Optional


class CogniMemError(Exception):
    """Base class for all domain errors."""


class ValidationError(CogniMemError):
    """Input rejected before any write (missing field, rule violation)."""

    def __init__(self, message: str, violations: Optional[List[str]] = None):
        super().__init__(message)
        self.violations = violations or [message]


class ConflictError(CogniMemError):
    """A write collided with a uniqueness scope or a concurrent modification."""


class NotFoundError(CogniMemError):
    """The addressed entity, edge, predicate or run does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class UpstreamError(CogniMemError):
    """A collaborator (model, vector tier, database) is unreachable or unconfigured."""
