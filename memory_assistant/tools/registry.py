"""Tool descriptors, the tool registry and guarded tool execution."""

import asyncio
import importlib
import inspect
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, model_validator

from memory_assistant.exceptions import ConfigurationError, ToolExecutionError, ToolNotFoundError
from memory_assistant.llm import ToolDefinition
from memory_assistant.logging import get_logger

log = get_logger(__name__)

# An executor receives the call's input payload. It may be sync or async and
# may return a plain value or a ToolResult.
Executor = Callable[[dict[str, Any]], Any]


def _empty_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    output: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = str(self.output or "").strip()
            self.error = fallback or "Tool execution failed"
        return self


@dataclass
class ToolDescriptor:
    """Registration record for one tool.

    ``execute`` is absent for tools whose execution is the very thing a human
    has to approve; their executor lives in the registry's execution table.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=_empty_schema)
    requires_confirmation: bool = False
    execute: Executor | None = None
    timeout_seconds: float | None = None

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments are present.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        for name in self.parameters.get("required", []):
            if name not in arguments:
                raise ToolExecutionError(self.name, f"Missing required argument: {name}")


class ToolRegistry:
    """Tool catalog plus the execution table for confirmation-required tools.

    Built once at startup and handed to whoever resolves tool calls.
    """

    def __init__(
        self,
        tools: Iterable[ToolDescriptor] | None = None,
        executions: Mapping[str, Executor] | None = None,
        require_confirmation: Iterable[str] | None = None,
        default_timeout_seconds: float = 30.0,
    ):
        self._tools: dict[str, ToolDescriptor] = {}
        self._executions: dict[str, Executor] = {}
        self._forced_confirmation = {str(name).strip() for name in require_confirmation or []}
        self.default_timeout_seconds = max(0.1, float(default_timeout_seconds))
        for tool in tools or []:
            self.register(tool)
        for name, executor in (executions or {}).items():
            self.register_execution(name, executor)

    @classmethod
    def from_config(
        cls,
        tools: Iterable[ToolDescriptor],
        executions: Mapping[str, Executor] | None = None,
    ) -> "ToolRegistry":
        """Build a registry honoring the ``tools`` config section."""
        from memory_assistant.config import get_config

        cfg = get_config().tools
        return cls(
            tools=tools,
            executions=executions,
            require_confirmation=cfg.require_confirmation,
            default_timeout_seconds=cfg.timeout_seconds,
        )

    @classmethod
    def from_factory(cls, factory_path: str) -> "ToolRegistry":
        """Build a registry from a ``"module:callable"`` reference.

        The callable may return a ``ToolRegistry``, a list of descriptors, or
        a ``(descriptors, executions)`` pair.
        """
        module_name, _, attr = str(factory_path or "").partition(":")
        if not module_name or not attr:
            raise ConfigurationError(f"Invalid tool factory reference: {factory_path!r}")
        try:
            module = importlib.import_module(module_name)
            factory = getattr(module, attr)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Cannot load tool factory {factory_path!r}: {e}") from e

        produced = factory()
        if isinstance(produced, ToolRegistry):
            return produced
        if isinstance(produced, tuple) and len(produced) == 2:
            tools, executions = produced
            return cls.from_config(tools, executions)
        return cls.from_config(produced)

    def register(self, tool: ToolDescriptor) -> None:
        """Register a tool.

        Args:
            tool: Descriptor to register; names must be unique
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")

        log.debug("Registering tool", tool=tool.name, requires_confirmation=tool.requires_confirmation)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)
        self._executions.pop(name, None)

    def register_execution(self, name: str, executor: Executor) -> None:
        """Register the executor run once a confirmation-required call is approved."""
        if not callable(executor):
            raise TypeError(f"Executor for '{name}' is not callable")
        self._executions[name] = executor

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def requires_confirmation(self, name: str) -> bool:
        tool = self.get(name)
        return tool.requires_confirmation or name in self._forced_confirmation

    def get_executor(self, name: str) -> Executor | None:
        """Return the executor for a tool, or None when nothing can run it.

        Tools that declare ``requires_confirmation`` only run through the
        execution table. Tools forced into confirmation by the ``tools``
        config section keep their own ``execute`` as a fallback.
        """
        tool = self.get(name)
        if tool.requires_confirmation:
            return self._executions.get(name)
        if name in self._forced_confirmation:
            return self._executions.get(name) or tool.execute
        return tool.execute

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [tool.get_definition() for tool in self._tools.values()]

    @staticmethod
    async def _invoke(executor: Executor, arguments: dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(executor):
            result = await executor(arguments)
        else:
            # Blocking executors run off the event loop.
            result = await asyncio.to_thread(executor, arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        executor: Executor | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool input payload
            executor: Explicit executor; defaults to ``get_executor(name)``

        Returns:
            ToolResult from execution

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if the tool cannot run, fails or times out
        """
        tool = self.get(name)
        runner = executor or self.get_executor(name)
        if runner is None:
            raise ToolExecutionError(name, "No execute function found on tool")

        tool.validate_arguments(arguments)

        timeout_seconds = float(tool.timeout_seconds or self.default_timeout_seconds)
        timeout_seconds = max(0.1, timeout_seconds)

        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await asyncio.wait_for(self._invoke(runner, dict(arguments)), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

        if not isinstance(result, ToolResult):
            result = ToolResult(success=True, output=result)
        log.info("Tool executed", tool=name, success=result.success)
        return result
