from collections.abc import AsyncGenerator

from milhouse.broadcast import LogBroadcaster

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def to_sse(line: str) -> str:
    return f"data: {line}\n\n"


async def log_stream(broadcaster: LogBroadcaster) -> AsyncGenerator[str]:
    """Backlog replay followed by live lines, until the client goes away."""
    sub = broadcaster.subscribe()
    try:
        async for line in sub:
            yield to_sse(line)
    finally:
        broadcaster.unsubscribe(sub.id)
