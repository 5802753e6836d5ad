"""
Shared Pydantic base models.

All Pydantic models in the application should inherit from StrictModel,
or from WireModel when the model is serialized to the remote API.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StrictModel(BaseModel):
    """Base model with strict validation settings."""

    model_config = ConfigDict(
        extra='forbid',  # Raise error on unexpected fields
        strict=True,  # Strict type validation
        frozen=True,  # Immutable (cannot modify after creation)
    )


class WireModel(StrictModel):
    """Strict model whose JSON form uses camelCase keys (remote API format).

    Python code uses snake_case attribute names; `model_dump(by_alias=True)`
    and `model_dump_json(by_alias=True)` produce the wire representation.
    """

    model_config = ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
