"""Tool specs and the in-process tool runtime."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from llm_fiber.runtime.cancellation import CancellationToken
from llm_fiber.runtime.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ToolSpec:
    """A tool the model may call."""

    name: str
    description: str = ""
    # JSON Schema for the arguments object; None means "anything goes"
    schema: dict[str, Any] | None = None


@dataclass
class ToolContext:
    """Passed to every tool invocation."""

    run_id: str
    cancellation: CancellationToken | None = field(default=None, repr=False)


ToolImplementation = Callable[[Any, ToolContext], Awaitable[Any] | Any]


@runtime_checkable
class ToolRuntime(Protocol):
    def register(
        self, spec: ToolSpec, impl: ToolImplementation | None = None
    ) -> Callable[[], None]: ...

    async def call(self, name: str, args: Any, ctx: ToolContext) -> Any: ...


@dataclass
class RegisteredTool:
    """A tool spec with its (optional) implementation."""

    spec: ToolSpec
    impl: ToolImplementation | None = None


class LocalToolRuntime:
    """
    Simple in-process tool registry.

    Specs can be registered without an implementation so they can still be
    offered to the model; calling such a tool fails with ToolNotFoundError.
    """

    # Parameter names filled in by the runtime rather than the model.
    # Stripped from generated schemas and injected at call time.
    CONTEXT_PARAMS = frozenset({"ctx"})

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self, spec: ToolSpec, impl: ToolImplementation | None = None
    ) -> Callable[[], None]:
        """
        Register a tool and return a function that removes it again.

        Re-registering a name replaces the previous entry; a stale
        deregister function then leaves the newer entry alone.
        """
        entry = RegisteredTool(spec=spec, impl=impl)
        if spec.name in self._tools:
            logger.debug("Replacing registered tool '%s'", spec.name)
        self._tools[spec.name] = entry

        def deregister() -> None:
            if self._tools.get(spec.name) is entry:
                del self._tools[spec.name]

        return deregister

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ) -> Callable[[], None]:
        """
        Register a plain function as a tool, generating its ToolSpec.

        The model's argument object is splatted into keyword arguments. A
        ``ctx`` parameter, if declared, receives the ToolContext.
        """
        tool_name = name or func.__name__
        tool_desc = description or inspect.getdoc(func) or f"Execute {tool_name}"

        sig = inspect.signature(func)
        properties: dict[str, Any] = {}
        required: list[str] = []
        wants_ctx = False

        for param_name, param in sig.parameters.items():
            if param_name in ("self", "cls"):
                continue
            if param_name in self.CONTEXT_PARAMS:
                wants_ctx = True
                continue

            param_type = "string"  # Default
            if param.annotation is not inspect.Parameter.empty:
                if param.annotation in (int, "int"):
                    param_type = "integer"
                elif param.annotation in (float, "float"):
                    param_type = "number"
                elif param.annotation in (bool, "bool"):
                    param_type = "boolean"
                elif param.annotation in (dict, "dict"):
                    param_type = "object"
                elif param.annotation in (list, "list"):
                    param_type = "array"

            properties[param_name] = {"type": param_type}
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        spec = ToolSpec(
            name=tool_name,
            description=tool_desc,
            schema={"type": "object", "properties": properties, "required": required},
        )

        def impl(args: Any, ctx: ToolContext) -> Any:
            kwargs = dict(args) if isinstance(args, dict) else {}
            if wants_ctx:
                kwargs["ctx"] = ctx
            return func(**kwargs)

        return self.register(spec, impl)

    def specs(self) -> list[ToolSpec]:
        """All registered specs, in registration order."""
        return [entry.spec for entry in self._tools.values()]

    def has_tool(self, name: str) -> bool:
        entry = self._tools.get(name)
        return entry is not None and entry.impl is not None

    async def call(self, name: str, args: Any, ctx: ToolContext) -> Any:
        """Invoke a registered tool, awaiting it if it is async."""
        entry = self._tools.get(name)
        if entry is None or entry.impl is None:
            raise ToolNotFoundError(f'No tool implementation registered for "{name}"')

        if ctx.cancellation is not None:
            ctx.cancellation.raise_if_cancelled()

        logger.debug("Calling tool '%s'", name)
        result = entry.impl(args, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result
