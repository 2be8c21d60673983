"""
Base model for server JSON shapes.

The API speaks camelCase; Python code uses snake_case.  Every DTO
inherits the alias generator so ``model_dump(by_alias=True)`` produces
the wire format and ``model_validate`` accepts either spelling.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Immutable DTO with camelCase wire aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, object]:
        """Return the JSON-ready payload (camelCase keys, ``None`` kept)."""
        return self.model_dump(mode="json", by_alias=True)
