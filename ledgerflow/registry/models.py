"""Pydantic models describing registered workflows and steps."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, field_validator

from ..payloads import PayloadDeserializer, PayloadSerializer


class _Definition(BaseModel):
    """Shared shape handling for workflows and steps."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    fn: Callable[..., Any]
    input_type: Any = Field(default=Any)
    output_type: Any = Field(default=Any)

    _input_adapter: TypeAdapter = PrivateAttr()
    _output_adapter: TypeAdapter = PrivateAttr()

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must be a non-empty string")
        return v

    def model_post_init(self, __context: Any) -> None:
        self._input_adapter = TypeAdapter(self.input_type)
        self._output_adapter = TypeAdapter(self.output_type)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.fn)

    def encode_input(self, value: Any) -> str:
        return PayloadSerializer.serialize(value, self._input_adapter)

    def decode_input(self, data: str | None) -> Any:
        return PayloadDeserializer.deserialize(data, self._input_adapter)

    def encode_output(self, value: Any) -> str:
        return PayloadSerializer.serialize(value, self._output_adapter)

    def decode_output(self, data: str | None) -> Any:
        return PayloadDeserializer.deserialize(data, self._output_adapter)


class StepDefinition(_Definition):
    """A registered step: one unit of work with an optional single input."""

    async def invoke(self, *args: Any) -> Any:
        if self.is_async:
            return await self.fn(*args)
        return await asyncio.to_thread(self.fn, *args)


class WorkflowDefinition(_Definition):
    """A registered workflow. ``fn`` is called as ``fn(ctx, input)``."""

    async def invoke(self, ctx: Any, value: Any) -> Any:
        return await self.fn(ctx, value)
