from __future__ import annotations
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    error: str


class StatusResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    running: bool = True
    extension_connected: bool
    last_update: Optional[int]  # epoch milliseconds of the last push
