"""
Schema Base

API bodies use camelCase keys; Python code keeps snake_case.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request/response bodies exchanged over HTTP."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(CamelModel):
    """Request body that rejects unknown keys."""
    model_config = ConfigDict(extra="forbid")
