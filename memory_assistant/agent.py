"""Chat handler: prepares the conversation, runs tools, streams the model reply."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any

from memory_assistant.config import get_config
from memory_assistant.conversation import (
    Conversation,
    Role,
    TextPart,
    ToolCallPart,
    Turn,
    apply_decisions,
    convert_to_model_messages,
)
from memory_assistant.exceptions import ResolutionCancelledError
from memory_assistant.llm import LLMProvider, LLMResponse, get_provider
from memory_assistant.logging import get_logger
from memory_assistant.resolver import Resolution, ToolCallResolver
from memory_assistant.sanitizer import cleanup_messages
from memory_assistant.stream import UIMessageStream, create_message_stream
from memory_assistant.tools.registry import ToolRegistry

log = get_logger(__name__)

FinishCallback = Callable[[Conversation], Awaitable[None] | None]


class ChatAgent:
    """Handles one chat request at a time per conversation.

    Flow per request: apply decisions -> drop dangling calls -> resolve tool
    calls (status events go to the stream) -> ask the model -> append its
    turn -> resolve again, until the model stops calling tools, a call needs
    a human decision, or ``max_steps`` is reached.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        provider: LLMProvider | None = None,
        system_prompt: str | None = None,
        max_steps: int | None = None,
    ):
        cfg = get_config()
        self.registry = registry
        self.provider = provider or get_provider()
        self.system_prompt = cfg.model.system_prompt if system_prompt is None else system_prompt
        self.max_steps = max(1, int(max_steps or cfg.agent.max_steps))
        self.resolver = ToolCallResolver(registry)

    def on_chat_message(
        self,
        conversation: Conversation,
        decisions: Mapping[str, Any] | None = None,
        abort_event: asyncio.Event | None = None,
        on_finish: FinishCallback | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Return the ordered event stream answering ``conversation``.

        ``on_finish`` receives the final conversation unless the request was
        aborted, in which case the partially resolved value is dropped.
        """

        async def execute(writer: UIMessageStream) -> str:
            try:
                final, reason = await self.run(conversation, writer, decisions, abort_event)
            except ResolutionCancelledError:
                log.info("Chat request aborted", conversation_id=conversation.id)
                return "aborted"
            if on_finish is not None:
                outcome = on_finish(final)
                if asyncio.iscoroutine(outcome):
                    await outcome
            return reason

        return create_message_stream(execute)

    async def prepare(
        self,
        conversation: Conversation,
        writer: UIMessageStream | None = None,
        decisions: Mapping[str, Any] | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> Resolution:
        """Attach decisions, drop dangling calls and run one resolver pass."""
        decided = apply_decisions(conversation, decisions or {})
        cleaned = cleanup_messages(decided)
        return await self.resolver.resolve(cleaned, writer=writer, abort_event=abort_event)

    async def run(
        self,
        conversation: Conversation,
        writer: UIMessageStream,
        decisions: Mapping[str, Any] | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> tuple[Conversation, str]:
        """Drive the request to completion; returns ``(conversation, finish_reason)``."""
        resolution = await self.prepare(conversation, writer, decisions, abort_event)

        for step in range(self.max_steps):
            if not resolution.ready:
                self._request_approvals(resolution, writer)
                return resolution.conversation, "awaiting-confirmation"
            if self._is_aborted(abort_event):
                raise ResolutionCancelledError(
                    f"Chat request for conversation '{conversation.id}' was aborted"
                )

            response = await self._generate(resolution.conversation, writer)
            turn = self._assistant_turn(response)
            current = resolution.conversation.append(turn) if turn.parts else resolution.conversation

            if not response.tool_calls:
                log.debug("Model finished", conversation_id=conversation.id, steps=step + 1)
                return current, "stop"

            for call in turn.tool_call_parts:
                writer.write({
                    "type": "tool-input-available",
                    "toolCallId": call.tool_call_id,
                    "toolName": call.tool_name,
                    "input": dict(call.input),
                })
            resolution = await self.resolver.resolve(current, writer=writer, abort_event=abort_event)

        if not resolution.ready:
            self._request_approvals(resolution, writer)
            return resolution.conversation, "awaiting-confirmation"
        log.warning("Step limit reached", conversation_id=conversation.id, max_steps=self.max_steps)
        return resolution.conversation, "max-steps"

    async def _generate(self, conversation: Conversation, writer: UIMessageStream) -> LLMResponse:
        """Call the model; text is streamed only when no tools are registered."""
        messages = convert_to_model_messages(conversation, system_prompt=self.system_prompt)
        definitions = self.registry.get_definitions()

        if not definitions:
            chunks: list[str] = []
            async for chunk in self.provider.complete_streaming(messages):
                if chunk:
                    chunks.append(chunk)
                    writer.write({"type": "text-delta", "delta": chunk})
            return LLMResponse(content="".join(chunks))

        response = await self.provider.complete(messages, tools=definitions)
        if response.content:
            writer.write({"type": "text-delta", "delta": response.content})
        return response

    @staticmethod
    def _assistant_turn(response: LLMResponse) -> Turn:
        parts: list[TextPart | ToolCallPart] = []
        if response.content:
            parts.append(TextPart(text=response.content))
        for call in response.tool_calls:
            parts.append(ToolCallPart(
                tool_call_id=call.id,
                tool_name=call.name,
                input=dict(call.arguments or {}),
            ))
        return Turn(role=Role.ASSISTANT, parts=tuple(parts))

    @staticmethod
    def _request_approvals(resolution: Resolution, writer: UIMessageStream) -> None:
        conversation = resolution.conversation
        for call_id in resolution.pending_call_ids:
            part = conversation.find_tool_call(call_id)
            if part is None:
                continue
            writer.write({
                "type": "tool-approval-requested",
                "toolCallId": part.tool_call_id,
                "toolName": part.tool_name,
                "input": dict(part.input),
            })
            # Only the frontier call can be decided on next.
            break

    @staticmethod
    def _is_aborted(abort_event: asyncio.Event | None) -> bool:
        return abort_event is not None and abort_event.is_set()
