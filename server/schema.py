"""Request and message models for the HTTP + WebSocket bridge.

Fields accept both their snake_case names and the camelCase aliases used
on the wire (``projectDir``, ``operationId``, ...).
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InstallRequest(ApiModel):
    path: str | None = None
    target: str = "all"
    add_to_shell: bool = True


class InitRequest(ApiModel):
    name: str = Field(min_length=1)
    directory: str
    language: Literal["c", "cpp"] = "c"
    target: str = "esp32"


class BuildRequest(ApiModel):
    project_dir: str
    target: str | None = None
    clean: bool = False


class FlashRequest(ApiModel):
    project_dir: str
    port: str = Field(min_length=1)
    baud: int | None = Field(default=None, gt=0)


class MonitorRequest(ApiModel):
    port: str = Field(min_length=1)
    baud: int | None = Field(default=None, gt=0)
    project_dir: str | None = None


class CleanRequest(ApiModel):
    project_dir: str
    full: bool = False


class OperationRequest(ApiModel):
    """Body of ``/api/monitor/stop`` and ``/api/operations/cancel``."""

    operation_id: str = Field(min_length=1)


class SubscribeMessage(ApiModel):
    type: Literal["subscribe"]
    operation_id: str


class UnsubscribeMessage(ApiModel):
    type: Literal["unsubscribe"]
    operation_id: str


class InputMessage(ApiModel):
    type: Literal["input"]
    operation_id: str
    data: str


ClientMessage = Annotated[
    SubscribeMessage | UnsubscribeMessage | InputMessage, Field(discriminator="type")
]

client_message = TypeAdapter(ClientMessage)
