"""Tool collaborator interface.

Concrete tools (bash, file I/O, search, fetch) live outside this package.
They subclass Tool, declare a pydantic model for their arguments, and describe
themselves through ToolAnnotations so the approval policy can reason about
them.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from threadline.threads.events import ToolResult, create_error_result


@dataclass(frozen=True)
class ToolAnnotations:
    """Behavioural hints a tool declares about itself."""

    read_only_hint: bool = False
    destructive_hint: bool = False
    title: str | None = None


@dataclass
class ToolContext:
    """Per-invocation context handed to a tool."""

    thread_id: str | None = None
    working_dir: str | None = None
    cancel_event: asyncio.Event | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{location}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class Tool(ABC):
    """Base class for executable tools.

    Subclasses set ``name`` and ``schema`` and implement ``execute_validated``.
    A tool reports its own business failures as an error ToolResult; raising is
    reserved for unexpected faults.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    annotations: ClassVar[ToolAnnotations] = ToolAnnotations()
    schema: ClassVar[type[BaseModel] | None] = None

    @property
    def read_only(self) -> bool:
        return self.annotations.read_only_hint

    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the tool arguments, for provider tool definitions."""
        if self.schema is None:
            return {"type": "object", "properties": {}}
        return self.schema.model_json_schema()

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Validate ``arguments`` against the schema, then run the tool."""
        if self.schema is None:
            return await self.execute_validated(dict(arguments), context)

        try:
            validated = self.schema.model_validate(arguments)
        except ValidationError as e:
            return create_error_result(
                f"Invalid arguments for {self.name}: {format_validation_error(e)}"
            )
        return await self.execute_validated(validated, context)

    @abstractmethod
    async def execute_validated(
        self, args: BaseModel | dict[str, Any], context: ToolContext
    ) -> ToolResult:
        """Run the tool with already-validated arguments."""
        ...
