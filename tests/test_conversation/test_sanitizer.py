from memory_assistant.conversation import (
    Conversation,
    Decision,
    Role,
    TextPart,
    ToolCallPart,
    Turn,
)
from memory_assistant.sanitizer import cleanup_messages


def _user(text: str) -> Turn:
    return Turn(role=Role.USER, parts=(TextPart(text),))


def test_drops_call_with_neither_result_nor_decision() -> None:
    conversation = Conversation(turns=(
        _user("weather in Paris?"),
        Turn(role=Role.ASSISTANT, parts=(
            TextPart("Let me check"),
            ToolCallPart(tool_call_id="c1", tool_name="getWeatherInformation", input={"city": "Paris"}),
        )),
        _user("never mind, what time is it?"),
    ))

    cleaned = cleanup_messages(conversation)

    assert cleaned.find_tool_call("c1") is None
    assert len(cleaned.turns) == 3
    assert cleaned.turns[1].parts == (TextPart("Let me check"),)


def test_keeps_decided_and_completed_calls() -> None:
    approved = ToolCallPart(tool_call_id="c1", tool_name="getWeatherInformation").decide(Decision.APPROVE)
    done = ToolCallPart(tool_call_id="c2", tool_name="getLocalTime").complete(output="10am")
    conversation = Conversation(turns=(
        _user("hi"),
        Turn(role=Role.ASSISTANT, parts=(approved, done)),
    ))

    assert cleanup_messages(conversation) is conversation


def test_turn_emptied_by_cleanup_is_dropped() -> None:
    conversation = Conversation(turns=(
        _user("hi"),
        Turn(role=Role.ASSISTANT, parts=(ToolCallPart(tool_call_id="c1", tool_name="getUserInfo"),)),
    ))

    cleaned = cleanup_messages(conversation)

    assert [turn.role for turn in cleaned.turns] == [Role.USER]


def test_cleanup_is_idempotent() -> None:
    conversation = Conversation(turns=(
        _user("hi"),
        Turn(role=Role.ASSISTANT, parts=(
            TextPart("one"),
            ToolCallPart(tool_call_id="c1", tool_name="getUserInfo"),
            ToolCallPart(tool_call_id="c2", tool_name="getLocalTime").complete(output="noon"),
        )),
    ))

    once = cleanup_messages(conversation)
    twice = cleanup_messages(once)

    assert twice == once
    assert [part.tool_call_id for _, _, part in once.iter_tool_calls()] == ["c2"]


def test_text_only_conversation_is_untouched() -> None:
    conversation = Conversation(turns=(_user("hi"), Turn(role=Role.ASSISTANT, parts=(TextPart("hello"),))))

    assert cleanup_messages(conversation) is conversation


def test_keeps_calls_held_back_behind_a_decided_call() -> None:
    conversation = Conversation(turns=(
        _user("schedule it and tell me the time"),
        Turn(role=Role.ASSISTANT, parts=(
            ToolCallPart(tool_call_id="b", tool_name="scheduleTask").decide(Decision.APPROVE),
            ToolCallPart(tool_call_id="c", tool_name="getLocalTime"),
        )),
    ))

    assert cleanup_messages(conversation) is conversation


def test_pending_call_before_a_decided_call_is_still_dropped() -> None:
    conversation = Conversation(turns=(
        _user("hi"),
        Turn(role=Role.ASSISTANT, parts=(
            ToolCallPart(tool_call_id="a", tool_name="getUserInfo"),
            ToolCallPart(tool_call_id="b", tool_name="scheduleTask").decide(Decision.DENY),
            ToolCallPart(tool_call_id="c", tool_name="getLocalTime"),
        )),
    ))

    cleaned = cleanup_messages(conversation)

    assert [part.tool_call_id for _, _, part in cleaned.iter_tool_calls()] == ["b", "c"]
    assert cleanup_messages(cleaned) is cleaned
