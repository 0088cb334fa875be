"""Drop dangling tool calls before a conversation is replayed to the model."""

from memory_assistant.conversation import Conversation, Part, ToolCallPart, ToolCallState, Turn
from memory_assistant.logging import get_logger

log = get_logger(__name__)


def _is_dangling(part: object, held_back: bool) -> bool:
    """A call with neither a result nor a human decision.

    ``held_back`` is true once an earlier call in the same turn carries a
    decision: the pending calls behind it were held back by the resolver
    waiting on that decision, not abandoned.
    """
    return isinstance(part, ToolCallPart) and part.state == ToolCallState.PENDING and not held_back


def _clean_turn(turn: Turn, dropped_calls: list[str]) -> list[Part]:
    parts: list[Part] = []
    held_back = False
    for part in turn.parts:
        if _is_dangling(part, held_back):
            dropped_calls.append(part.tool_call_id)
            continue
        if isinstance(part, ToolCallPart) and part.has_decision:
            held_back = True
        parts.append(part)
    return parts


def cleanup_messages(conversation: Conversation) -> Conversation:
    """Remove tool calls that never reached a decision or a result.

    Calls left behind by a crash, a disconnect or an abandoned confirmation
    cannot be re-issued by the model, so they are removed. Pending calls
    that follow a decided call in the same turn are kept for the resolver.
    A turn emptied by the removal is dropped. Text parts and decided or
    completed calls are kept as they are. Pure and idempotent.
    """
    kept: list[Turn] = []
    dropped_calls: list[str] = []

    for turn in conversation.turns:
        before = len(dropped_calls)
        parts = _clean_turn(turn, dropped_calls)
        if len(dropped_calls) == before:
            kept.append(turn)
        elif parts:
            kept.append(turn.with_parts(parts))

    if not dropped_calls:
        return conversation

    log.debug(
        "Dropped dangling tool calls",
        conversation_id=conversation.id,
        tool_call_ids=dropped_calls,
    )
    return conversation.with_turns(kept)
