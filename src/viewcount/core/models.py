from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model persisted with camelCase keys, as the host stores them."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Convert the model to a JSON-ready dictionary with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")
