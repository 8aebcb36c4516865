import asyncio
from collections.abc import AsyncIterator

# Child output lines can carry long tracebacks or tool output
STREAM_LIMIT = 1 << 20
TRUNCATED_SUFFIX = b" [truncated]"


async def read_lines(stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield newline-terminated chunks from a subprocess pipe until EOF.

    A line longer than the reader's limit is yielded once, cut at the point
    the overrun was detected and tagged with TRUNCATED_SUFFIX; the rest of
    that line is discarded. A final line without a newline is yielded as is.
    """
    discarding = False
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            if e.partial and not discarding:
                yield e.partial
            return
        except asyncio.LimitOverrunError as e:
            head = await stream.readexactly(e.consumed)
            if not discarding:
                discarding = True
                yield head + TRUNCATED_SUFFIX
            continue

        if discarding:
            discarding = False
            continue
        yield chunk
