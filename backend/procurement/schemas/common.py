from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from procurement import jsonfields


class CamelModel(BaseModel):
    """camelCase on the wire; snake_case names accepted on input too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageEnvelope(CamelModel):
    success: bool = True
    message: str


def decode_json_object(v: Any) -> Any:
    if isinstance(v, str):
        out = jsonfields.loads(v, default={})
        return out if isinstance(out, dict) else {}
    return {} if v is None else v


def decode_json_list(v: Any) -> Any:
    if isinstance(v, str):
        out = jsonfields.loads(v, default=[])
        return out if isinstance(out, list) else []
    return [] if v is None else v
