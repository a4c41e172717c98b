"""
Base pydantic schema for the public API.

The REST surface speaks camelCase (``redirectTo``, ``organizationId``) while the
Python side stays snake_case; both spellings are accepted on input.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
