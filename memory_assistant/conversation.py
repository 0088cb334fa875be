"""Conversation model: turns, parts and tool-call lifecycle.

Conversations are immutable values. Every update (a decision, a tool result,
a sanitizing pass) produces a new ``Conversation`` through
``dataclasses.replace``, so a half-finished resolution can be dropped simply
by not keeping the new value.

Wire format (what the transport and any history store exchange)::

    {"id": "...", "turns": [
        {"id": "...", "role": "assistant", "parts": [
            {"type": "text", "text": "..."},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "getLocalTime",
             "input": {...}, "state": "completed", "output": ...},
        ]},
    ]}

Parts in the UI-message shape (``"type": "tool-<name>"`` with
``input-available`` / ``output-available`` / ``output-error`` states) are
accepted on input as well.
"""

import json
import uuid
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from memory_assistant.exceptions import ConversationNotReadyError, InvalidTransitionError
from memory_assistant.llm import Message, ToolCall

APPROVAL_YES = "Yes, confirmed."
APPROVAL_NO = "No, denied."


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    COMPLETED = "completed"


class Decision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


def parse_decision(value: Any) -> Decision | None:
    """Normalize a decision coming from the UI channel.

    Accepts ``Decision`` members, ``"approve"``/``"deny"``, booleans and the
    confirmation button strings. Anything else means "no decision".
    """
    if isinstance(value, Decision):
        return value
    if isinstance(value, bool):
        return Decision.APPROVE if value else Decision.DENY
    cleaned = str(value or "").strip()
    if cleaned == APPROVAL_YES:
        return Decision.APPROVE
    if cleaned == APPROVAL_NO:
        return Decision.DENY
    lowered = cleaned.lower()
    if lowered in ("approve", "approved", "yes"):
        return Decision.APPROVE
    if lowered in ("deny", "denied", "no"):
        return Decision.DENY
    return None


@dataclass(frozen=True)
class TextPart:
    """Plain text fragment."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolCallPart:
    """Model-initiated invocation of a named tool."""

    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    state: ToolCallState = ToolCallState.PENDING
    output: Any = None
    error: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.state == ToolCallState.COMPLETED

    @property
    def has_decision(self) -> bool:
        return self.state in (ToolCallState.APPROVED, ToolCallState.DENIED)

    @property
    def is_error(self) -> bool:
        return self.is_completed and self.error is not None

    def decide(self, decision: Decision) -> "ToolCallPart":
        """Record a human decision on a pending call."""
        target = ToolCallState.APPROVED if decision == Decision.APPROVE else ToolCallState.DENIED
        if self.state != ToolCallState.PENDING:
            raise InvalidTransitionError(self.tool_call_id, self.state.value, target.value)
        return replace(self, state=target)

    def complete(self, output: Any = None, error: str | None = None) -> "ToolCallPart":
        """Attach a result. ``completed`` is terminal."""
        if self.is_completed:
            raise InvalidTransitionError(
                self.tool_call_id, self.state.value, ToolCallState.COMPLETED.value
            )
        return replace(
            self,
            state=ToolCallState.COMPLETED,
            output=None if error is not None else output,
            error=error,
        )

    def result_text(self) -> str:
        """Render the attached result the way the oracle reads it."""
        if self.error is not None:
            return f"Error: {self.error}"
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, ensure_ascii=False, default=str)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool-call",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "input": dict(self.input),
            "state": self.state.value,
        }
        if self.is_completed:
            if self.error is not None:
                data["errorText"] = self.error
            else:
                data["output"] = self.output
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallPart":
        part_type = str(data.get("type", ""))
        tool_name = str(data.get("toolName") or "")
        if not tool_name and part_type.startswith("tool-"):
            tool_name = part_type[len("tool-"):]
        raw_input = data.get("input")
        base = cls(
            tool_call_id=str(data.get("toolCallId", "")),
            tool_name=tool_name,
            input=dict(raw_input) if isinstance(raw_input, dict) else {},
        )

        state = str(data.get("state", ToolCallState.PENDING.value))
        if state in (ToolCallState.APPROVED.value, ToolCallState.DENIED.value):
            return replace(base, state=ToolCallState(state))
        if state == ToolCallState.COMPLETED.value:
            return base.complete(output=data.get("output"), error=data.get("errorText"))
        if state == "output-error":
            return base.complete(error=str(data.get("errorText") or "Tool execution failed"))
        if state == "output-available":
            # UI clients report a confirmation answer as the call's output.
            output = data.get("output")
            if output in (APPROVAL_YES, APPROVAL_NO):
                return base.decide(parse_decision(output))
            return base.complete(output=output)
        return base


Part = TextPart | ToolCallPart


def part_from_dict(data: dict[str, Any]) -> Part:
    if not isinstance(data, dict):
        raise ValueError(f"Part must be an object, got {type(data).__name__}")
    part_type = str(data.get("type", ""))
    if part_type == "text":
        return TextPart(text=str(data.get("text", "")))
    if part_type == "tool-call" or part_type.startswith("tool-"):
        return ToolCallPart.from_dict(data)
    raise ValueError(f"Unsupported part type: {part_type!r}")


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Turn:
    """One message-level unit of a conversation."""

    role: Role
    parts: tuple[Part, ...] = ()
    id: str = field(default_factory=_new_id)

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_call_parts(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]

    def with_parts(self, parts: list[Part] | tuple[Part, ...]) -> "Turn":
        return replace(self, parts=tuple(parts))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "parts": [part.to_dict() for part in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        if not isinstance(data, dict):
            raise ValueError(f"Turn must be an object, got {type(data).__name__}")
        parts = data.get("parts")
        if parts is None and data.get("content") is not None:
            parts = [{"type": "text", "text": str(data["content"])}]
        if parts is not None and not isinstance(parts, list):
            raise ValueError("Turn parts must be a list")
        return cls(
            role=Role(str(data.get("role", Role.USER.value))),
            parts=tuple(part_from_dict(part) for part in parts or []),
            id=str(data.get("id") or _new_id()),
        )


@dataclass(frozen=True)
class Conversation:
    """Ordered sequence of turns."""

    turns: tuple[Turn, ...] = ()
    id: str = ""

    def iter_tool_calls(self) -> Iterator[tuple[int, int, ToolCallPart]]:
        """Yield ``(turn_index, part_index, part)`` in turn then part order."""
        for turn_index, turn in enumerate(self.turns):
            for part_index, part in enumerate(turn.parts):
                if isinstance(part, ToolCallPart):
                    yield turn_index, part_index, part

    def find_tool_call(self, tool_call_id: str) -> ToolCallPart | None:
        for _, _, part in self.iter_tool_calls():
            if part.tool_call_id == tool_call_id:
                return part
        return None

    def unresolved_call_ids(self) -> list[str]:
        return [
            part.tool_call_id
            for _, _, part in self.iter_tool_calls()
            if not part.is_completed
        ]

    def append(self, turn: Turn) -> "Conversation":
        return replace(self, turns=self.turns + (turn,))

    def with_turns(self, turns: list[Turn] | tuple[Turn, ...]) -> "Conversation":
        return replace(self, turns=tuple(turns))

    def replace_part(self, turn_index: int, part_index: int, part: Part) -> "Conversation":
        turn = self.turns[turn_index]
        parts = list(turn.parts)
        parts[part_index] = part
        turns = list(self.turns)
        turns[turn_index] = turn.with_parts(parts)
        return self.with_turns(turns)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "turns": [turn.to_dict() for turn in self.turns]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        """Parse the wire shape.

        Raises:
            ValueError: on a malformed shape, or a tool call id that is
                empty or used twice.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Conversation must be an object, got {type(data).__name__}")
        turns = data.get("turns")
        if turns is None:
            turns = data.get("messages", [])
        if turns is not None and not isinstance(turns, list):
            raise ValueError("Conversation turns must be a list")
        conversation = cls(
            turns=tuple(Turn.from_dict(turn) for turn in turns or []),
            id=str(data.get("id", "")),
        )

        seen: set[str] = set()
        for _, _, part in conversation.iter_tool_calls():
            if not part.tool_call_id:
                raise ValueError(f"Tool call to '{part.tool_name}' has no toolCallId")
            if part.tool_call_id in seen:
                raise ValueError(f"Duplicate toolCallId: {part.tool_call_id}")
            seen.add(part.tool_call_id)
        return conversation


def apply_decisions(conversation: Conversation, decisions: Mapping[str, Any]) -> Conversation:
    """Attach out-of-band approve/deny decisions keyed by call id.

    Only ``pending`` parts move; decided or completed parts and unknown ids
    are left alone.
    """
    if not decisions:
        return conversation

    updated = conversation
    for turn_index, part_index, part in conversation.iter_tool_calls():
        if part.state != ToolCallState.PENDING or part.tool_call_id not in decisions:
            continue
        decision = parse_decision(decisions[part.tool_call_id])
        if decision is None:
            continue
        updated = updated.replace_part(turn_index, part_index, part.decide(decision))
    return updated


def convert_to_model_messages(
    conversation: Conversation,
    system_prompt: str | None = None,
) -> list[Message]:
    """Render a fully-resolved conversation as oracle messages.

    An assistant turn becomes one assistant message per run of
    text-then-tool-calls, each followed by a tool message per call.

    Raises:
        ConversationNotReadyError: if any tool call is not ``completed``.
    """
    unresolved = conversation.unresolved_call_ids()
    if unresolved:
        raise ConversationNotReadyError(unresolved)

    messages: list[Message] = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))

    for turn in conversation.turns:
        if turn.role == Role.USER:
            messages.append(Message(role="user", content=turn.text))
            continue

        text_chunks: list[str] = []
        calls: list[ToolCallPart] = []

        def flush() -> None:
            if not text_chunks and not calls:
                return
            if turn.role == Role.TOOL and not calls:
                messages.append(Message(role="tool", content="".join(text_chunks)))
            else:
                messages.append(Message(
                    role="assistant",
                    content="".join(text_chunks),
                    tool_calls=[
                        ToolCall(id=call.tool_call_id, name=call.tool_name, arguments=dict(call.input))
                        for call in calls
                    ],
                ))
                for call in calls:
                    messages.append(Message(
                        role="tool",
                        content=call.result_text(),
                        tool_call_id=call.tool_call_id,
                        tool_name=call.tool_name,
                    ))
            text_chunks.clear()
            calls.clear()

        for part in turn.parts:
            if isinstance(part, TextPart):
                if calls:
                    flush()
                text_chunks.append(part.text)
            else:
                calls.append(part)
        flush()

    return messages
