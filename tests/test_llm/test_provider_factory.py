import pytest

from memory_assistant.exceptions import ConfigurationError
from memory_assistant.llm import Message, OllamaProvider, ToolCall, ToolDefinition, create_provider


def test_create_provider_supports_ollama():
    provider = create_provider(
        provider="ollama",
        model="llama3.2",
        base_url="http://localhost:11434/",
    )
    assert isinstance(provider, OllamaProvider)
    assert provider.model == "llama3.2"
    assert provider.base_url == "http://localhost:11434"


def test_create_provider_rejects_unknown_provider():
    with pytest.raises(ConfigurationError):
        create_provider(provider="nonexistent", model="x")


def test_ollama_message_conversion_keeps_tool_round_trip():
    provider = OllamaProvider(model="llama3.2")
    messages = [
        Message(role="system", content="sys"),
        Message(role="user", content="time?"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="c1", name="getLocalTime", arguments={"location": "Paris"})],
        ),
        Message(role="tool", content="10am", tool_call_id="c1", tool_name="getLocalTime"),
    ]

    converted = provider._convert_messages(messages)

    assert [m["role"] for m in converted] == ["system", "user", "assistant", "tool"]
    assert converted[2]["tool_calls"] == [
        {"function": {"name": "getLocalTime", "arguments": {"location": "Paris"}}}
    ]
    assert converted[3] == {"role": "tool", "content": "10am", "tool_name": "getLocalTime"}


def test_ollama_tool_calls_get_unique_ids():
    message = {
        "tool_calls": [
            {"function": {"name": "getLocalTime", "arguments": '{"location": "Paris"}'}},
            {"function": {"name": "getLocalTime", "arguments": {"location": "Rome"}}},
        ]
    }

    calls = OllamaProvider._parse_tool_calls(message)

    assert calls[0].arguments == {"location": "Paris"}
    assert calls[0].id != calls[1].id
    assert all(call.id.startswith("ollama_call_") for call in calls)


def test_ollama_body_includes_tools_only_when_given():
    provider = OllamaProvider(model="llama3.2", max_tokens=128)
    definition = ToolDefinition(name="getLocalTime", description="Local time", parameters={"type": "object"})

    with_tools = provider._build_body([Message(role="user", content="hi")], [definition], None, None, stream=False)
    without = provider._build_body([Message(role="user", content="hi")], None, 0.1, None, stream=True)

    assert with_tools["tools"][0]["function"]["name"] == "getLocalTime"
    assert with_tools["options"]["num_predict"] == 128
    assert "tools" not in without
    assert without["options"]["temperature"] == 0.1
