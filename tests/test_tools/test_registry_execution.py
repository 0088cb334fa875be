import asyncio
import sys
import types

import pytest

from memory_assistant.config import Config, set_config
from memory_assistant.exceptions import ConfigurationError, ToolExecutionError, ToolNotFoundError
from memory_assistant.tools.registry import ToolDescriptor, ToolRegistry, ToolResult


class DummyCalendar:
    def __init__(self) -> None:
        self.scheduled: list[str] = []

    async def schedule(self, args: dict) -> ToolResult:
        self.scheduled.append(args["description"])
        return ToolResult(success=True, output="ok")


SCHEDULE_SCHEMA = {
    "type": "object",
    "properties": {"description": {"type": "string"}},
    "required": ["description"],
}


@pytest.mark.asyncio
async def test_execute_runs_sync_and_async_executors() -> None:
    async def async_time(args: dict) -> str:
        return "async-10am"

    registry = ToolRegistry(tools=[
        ToolDescriptor(name="syncTime", execute=lambda args: "sync-10am"),
        ToolDescriptor(name="asyncTime", execute=async_time),
    ])

    sync_result = await registry.execute("syncTime", {})
    async_result = await registry.execute("asyncTime", {})

    assert sync_result.success and sync_result.output == "sync-10am"
    assert async_result.output == "async-10am"


@pytest.mark.asyncio
async def test_execute_uses_execution_table_for_confirmation_tools() -> None:
    calendar = DummyCalendar()
    registry = ToolRegistry(
        tools=[ToolDescriptor(name="scheduleTask", parameters=SCHEDULE_SCHEMA, requires_confirmation=True)],
        executions={"scheduleTask": calendar.schedule},
    )

    result = await registry.execute("scheduleTask", {"description": "dentist"})

    assert result.output == "ok"
    assert calendar.scheduled == ["dentist"]


@pytest.mark.asyncio
async def test_execute_rejects_missing_required_argument() -> None:
    calendar = DummyCalendar()
    registry = ToolRegistry(
        tools=[ToolDescriptor(name="scheduleTask", parameters=SCHEDULE_SCHEMA, execute=calendar.schedule)],
    )

    with pytest.raises(ToolExecutionError) as exc_info:
        await registry.execute("scheduleTask", {})

    assert "description" in str(exc_info.value)
    assert calendar.scheduled == []


@pytest.mark.asyncio
async def test_execute_without_executor_raises() -> None:
    registry = ToolRegistry(tools=[ToolDescriptor(name="getWeatherInformation", requires_confirmation=True)])

    assert registry.get_executor("getWeatherInformation") is None
    with pytest.raises(ToolExecutionError) as exc_info:
        await registry.execute("getWeatherInformation", {})

    assert "No execute function found on tool" in str(exc_info.value)


@pytest.mark.asyncio
async def test_execute_times_out() -> None:
    async def slow(args: dict) -> str:
        await asyncio.sleep(2.0)
        return "done"

    registry = ToolRegistry(tools=[ToolDescriptor(name="slow", execute=slow, timeout_seconds=0.1)])

    with pytest.raises(ToolExecutionError) as exc_info:
        await registry.execute("slow", {})

    assert "timed out" in str(exc_info.value)


@pytest.mark.asyncio
async def test_unknown_tool_raises_not_found() -> None:
    registry = ToolRegistry()

    with pytest.raises(ToolNotFoundError):
        await registry.execute("missing", {})


def test_register_rejects_duplicates() -> None:
    registry = ToolRegistry(tools=[ToolDescriptor(name="getLocalTime")])

    with pytest.raises(ValueError):
        registry.register(ToolDescriptor(name="getLocalTime"))


def test_register_execution_requires_callable() -> None:
    registry = ToolRegistry()

    with pytest.raises(TypeError):
        registry.register_execution("scheduleTask", "not callable")


def test_config_can_force_confirmation() -> None:
    cfg = Config()
    cfg.tools.require_confirmation = ["getLocalTime"]
    set_config(cfg)
    try:
        registry = ToolRegistry.from_config([ToolDescriptor(name="getLocalTime", execute=lambda args: "10am")])
    finally:
        set_config(Config())

    assert registry.requires_confirmation("getLocalTime")
    # The descriptor's own executor still runs once approved.
    assert registry.get_executor("getLocalTime") is not None


def test_declared_confirmation_tool_only_uses_execution_table() -> None:
    registry = ToolRegistry(tools=[
        ToolDescriptor(name="scheduleTask", requires_confirmation=True, execute=lambda args: "direct"),
    ])

    assert registry.get_executor("scheduleTask") is None

    registry.register_execution("scheduleTask", lambda args: "approved")
    assert registry.get_executor("scheduleTask")({}) == "approved"

def test_definitions_expose_schema_for_the_model() -> None:
    registry = ToolRegistry(tools=[
        ToolDescriptor(name="scheduleTask", description="Schedule a task", parameters=SCHEDULE_SCHEMA),
    ])

    definitions = registry.get_definitions()

    assert [d.name for d in definitions] == ["scheduleTask"]
    assert definitions[0].parameters["required"] == ["description"]


def test_from_factory_loads_descriptor_pair(monkeypatch) -> None:
    calendar = DummyCalendar()
    module = types.ModuleType("dummy_tool_factory")

    def build_tools():
        return (
            [ToolDescriptor(name="scheduleTask", requires_confirmation=True)],
            {"scheduleTask": calendar.schedule},
        )

    module.build_tools = build_tools
    monkeypatch.setitem(sys.modules, "dummy_tool_factory", module)

    registry = ToolRegistry.from_factory("dummy_tool_factory:build_tools")

    assert registry.list_tools() == ["scheduleTask"]
    assert registry.get_executor("scheduleTask") == calendar.schedule


@pytest.mark.parametrize("reference", ["no_colon_here", "missing_module_xyz:build", ""])
def test_from_factory_rejects_bad_reference(reference: str) -> None:
    with pytest.raises(ConfigurationError):
        ToolRegistry.from_factory(reference)
