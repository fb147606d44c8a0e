from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts both the camelCase wire names and the Python attribute names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
