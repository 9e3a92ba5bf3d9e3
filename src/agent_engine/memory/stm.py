"""Short-term memory ring.

All functions are pure: they never mutate their input and never raise.
Each returns a MemoryResult; callers decide what a failure means.
"""

from typing import Any

from agent_engine.memory.models import MemoryItem, MemoryResult, STMContext


def create_empty(max_size: int) -> MemoryResult[STMContext]:
    """Create an empty ring.

    Args:
        max_size: Number of slots.

    Returns:
        Result holding the new context.
    """
    if max_size < 1:
        return MemoryResult.fail(f"max_size must be at least 1, got {max_size}")
    return MemoryResult.ok(STMContext(items=[None] * max_size, max_size=max_size))


def add(
    ctx: STMContext,
    messages: list[dict[str, Any]],
    owner_id: str,
    step_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> MemoryResult[STMContext]:
    """Insert an item at the head, overwriting the oldest slot when full.

    Args:
        ctx: Current ring.
        messages: Messages the item holds.
        owner_id: Task the item belongs to.
        step_id: Step the item summarizes, if any.
        metadata: Extra item metadata.

    Returns:
        Result holding the updated ring.
    """
    if not validate(ctx):
        return MemoryResult.fail("cannot add to an invalid STM context")
    if not messages:
        return MemoryResult.fail("cannot add an item without messages")

    item = MemoryItem(
        messages=list(messages),
        memories_id=owner_id,
        step_id=step_id,
        metadata=metadata or {},
    )
    items = list(ctx.items)
    items[ctx.head] = item
    return MemoryResult.ok(
        STMContext(
            items=items,
            max_size=ctx.max_size,
            head=(ctx.head + 1) % ctx.max_size,
            size=min(ctx.size + 1, ctx.max_size),
            total_inserted=ctx.total_inserted + 1,
        )
    )


def update_last(ctx: STMContext, messages: list[dict[str, Any]]) -> MemoryResult[STMContext]:
    """Append messages to the most recently inserted item.

    Args:
        ctx: Current ring.
        messages: Messages to fold into the last item.

    Returns:
        Result holding the updated ring.
    """
    if not validate(ctx):
        return MemoryResult.fail("cannot update an invalid STM context")
    if ctx.size == 0:
        return MemoryResult.fail("cannot update last item of an empty STM")

    last_index = (ctx.head - 1 + ctx.max_size) % ctx.max_size
    last = ctx.items[last_index]
    if last is None:
        return MemoryResult.fail(f"STM slot {last_index} is unexpectedly empty")

    items = list(ctx.items)
    items[last_index] = last.model_copy(update={"messages": [*last.messages, *messages]})
    return MemoryResult.ok(ctx.model_copy(update={"items": items}))


def get_recent(ctx: STMContext, n: int) -> MemoryResult[list[MemoryItem]]:
    """Return the last n items, oldest first.

    Args:
        ctx: Current ring.
        n: Number of items wanted.

    Returns:
        Result holding at most min(n, size) items.
    """
    if not validate(ctx):
        return MemoryResult.fail("cannot read an invalid STM context")
    if n < 0:
        return MemoryResult.fail(f"n must be non-negative, got {n}")

    count = min(n, ctx.size)
    recent: list[MemoryItem] = []
    for offset in range(count, 0, -1):
        item = ctx.items[(ctx.head - offset) % ctx.max_size]
        if item is not None:
            recent.append(item)
    return MemoryResult.ok(recent)


def get_all(ctx: STMContext) -> MemoryResult[list[MemoryItem]]:
    """Return every retained item, oldest first."""
    return get_recent(ctx, ctx.size)


def clear(ctx: STMContext) -> MemoryResult[STMContext]:
    """Return an empty ring of the same size."""
    return create_empty(ctx.max_size)


def validate(ctx: STMContext) -> bool:
    """Check the ring's structural invariants.

    Args:
        ctx: Ring to check.

    Returns:
        True when slots, head, size and total_inserted are consistent.
    """
    if ctx.max_size < 1 or len(ctx.items) != ctx.max_size:
        return False
    if not 0 <= ctx.head < ctx.max_size:
        return False
    if ctx.total_inserted < 0 or ctx.size != min(ctx.total_inserted, ctx.max_size):
        return False
    occupied = sum(1 for item in ctx.items if item is not None)
    return occupied == ctx.size


def format_for_history(ctx: STMContext, max_chars_per_message: int | None = None) -> str:
    """Render the ring as prompt text, oldest first.

    Args:
        ctx: Ring to render.
        max_chars_per_message: Optional truncation per message.

    Returns:
        Rendered text, or an empty string when there is nothing to show.
    """
    result = get_all(ctx)
    if not result.success or not result.data:
        return ""

    blocks: list[str] = []
    for index, item in enumerate(result.data, start=1):
        header = f"[memory {index} | task {item.memories_id}"
        if item.step_id:
            header += f" | step {item.step_id}"
        header += f" | {item.timestamp.isoformat()}]"
        lines = [header]
        for message in item.messages:
            content = message.get("content") or ""
            if not isinstance(content, str):
                content = str(content)
            if max_chars_per_message and len(content) > max_chars_per_message:
                content = content[:max_chars_per_message] + "..."
            # Tool-call summaries keep every name; only message content is truncated
            if not content and message.get("tool_calls"):
                names = [
                    tc.get("function", {}).get("name") or tc.get("name", "")
                    for tc in message["tool_calls"]
                ]
                content = f"called {', '.join(n for n in names if n)}"
            lines.append(f"{message.get('role', 'unknown')}: {content}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
