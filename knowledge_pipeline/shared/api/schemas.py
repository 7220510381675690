"""
Shared API Schemas
==================

Base model for request bodies: fields are declared in snake_case and
accepted in either snake_case or camelCase.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request DTO base accepting ``document_id`` and ``documentId`` alike."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
