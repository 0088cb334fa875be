"""Resolve tool calls: run auto tools, honor human decisions, attach results.

Per call, in turn order then part order::

    completed                      -> skip
    unknown tool                   -> completed with an error result
    auto-executing                 -> run, completed (result or error)
    needs confirmation, pending    -> stop the pass here
    needs confirmation, denied     -> completed with a refusal, never run
    needs confirmation, approved   -> run, completed (result or error)

The pass stops at the first call still waiting for a human, since a later
call may depend on an answer that has not been given yet.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from memory_assistant.conversation import Conversation, ToolCallPart, ToolCallState
from memory_assistant.exceptions import ResolutionCancelledError, ToolError
from memory_assistant.logging import get_logger
from memory_assistant.stream import UIMessageStream
from memory_assistant.tools.registry import Executor, ToolRegistry, ToolResult

log = get_logger(__name__)

DENIED_ERROR = "User denied access to tool execution"
MISSING_EXECUTOR_ERROR = "No execute function found on tool"


@dataclass
class Resolution:
    """Outcome of one resolver pass."""

    conversation: Conversation
    pending_call_ids: list[str] = field(default_factory=list)
    executed_call_ids: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        """True when the conversation may be forwarded to the model."""
        return not self.pending_call_ids


class ToolCallResolver:
    """Walks a conversation's tool calls and brings each one to a terminal state."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def resolve(
        self,
        conversation: Conversation,
        writer: UIMessageStream | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> Resolution:
        """Run one resolution pass and return the rewritten conversation.

        Raises:
            ResolutionCancelledError: if ``abort_event`` is set mid-pass; the
                partially resolved conversation is not returned.
        """
        updated = conversation
        executed: list[str] = []

        for turn_index, part_index, part in conversation.iter_tool_calls():
            if part.is_completed:
                continue
            if abort_event is not None and abort_event.is_set():
                log.info("Tool call resolution aborted", conversation_id=conversation.id)
                raise ResolutionCancelledError(
                    f"Resolution of conversation '{conversation.id}' was aborted"
                )

            if not self.registry.has_tool(part.tool_name):
                log.warning("Unknown tool call", tool=part.tool_name, call_id=part.tool_call_id)
                resolved = part.complete(error=f"Unknown tool: {part.tool_name}")
            elif self.registry.requires_confirmation(part.tool_name) and part.state == ToolCallState.PENDING:
                log.info(
                    "Tool call awaiting confirmation",
                    tool=part.tool_name,
                    call_id=part.tool_call_id,
                )
                break
            elif self.registry.requires_confirmation(part.tool_name) and part.state == ToolCallState.DENIED:
                resolved = part.complete(error=DENIED_ERROR)
            else:
                executor = self.registry.get_executor(part.tool_name)
                resolved = await self._run(part, executor)
                if executor is not None:
                    executed.append(part.tool_call_id)

            updated = updated.replace_part(turn_index, part_index, resolved)
            if writer is not None:
                writer.write(self._output_event(resolved))

        return Resolution(
            conversation=updated,
            pending_call_ids=updated.unresolved_call_ids(),
            executed_call_ids=executed,
        )

    async def _run(self, part: ToolCallPart, executor: Executor | None) -> ToolCallPart:
        """Execute one call; failures become the call's visible result."""
        if executor is None:
            log.warning("Tool has no executor", tool=part.tool_name, call_id=part.tool_call_id)
            return part.complete(error=MISSING_EXECUTOR_ERROR)

        execution = asyncio.ensure_future(
            self.registry.execute(part.tool_name, dict(part.input), executor=executor)
        )
        try:
            # An execution already under way finishes even if the request is
            # cancelled, so its side effects never go unrecorded.
            result: ToolResult = await asyncio.shield(execution)
        except asyncio.CancelledError:
            if not execution.done():
                await asyncio.wait({execution})
            raise
        except ToolError as e:
            log.error("Tool call failed", tool=part.tool_name, call_id=part.tool_call_id, error=str(e))
            return part.complete(error=str(e))

        if not result.success:
            return part.complete(error=result.error)
        return part.complete(output=result.output)

    @staticmethod
    def _output_event(part: ToolCallPart) -> dict[str, Any]:
        if part.error is not None:
            return {
                "type": "tool-output-error",
                "toolCallId": part.tool_call_id,
                "errorText": part.result_text(),
            }
        return {
            "type": "tool-output-available",
            "toolCallId": part.tool_call_id,
            "output": part.output,
        }


async def process_tool_calls(
    conversation: Conversation,
    registry: ToolRegistry,
    writer: UIMessageStream | None = None,
    abort_event: asyncio.Event | None = None,
) -> Resolution:
    """Functional entry point for a single resolver pass."""
    return await ToolCallResolver(registry).resolve(
        conversation,
        writer=writer,
        abort_event=abort_event,
    )
