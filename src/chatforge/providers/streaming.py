"""Accumulation of streamed replies with cooperative cancellation."""

import asyncio
import logging
from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class StreamingReply:
    """Collects streamed reply text.

    When the abort event is set the stream is closed and the text received so
    far is kept, so a cancelled generation still yields a partial reply.
    """

    def __init__(self) -> None:
        self.text = ""
        self.chunks = 0
        self.aborted = False

    async def iterate(
        self,
        chunks: AsyncIterator[str],
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Yield chunks while accumulating them, stopping once aborted."""
        try:
            async for chunk in chunks:
                if abort_event is not None and abort_event.is_set():
                    self.aborted = True
                    logger.info(f"Stream aborted after {self.chunks} chunks")
                    break
                self.text += chunk
                self.chunks += 1
                yield chunk
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def consume(
        self,
        chunks: AsyncIterator[str],
        abort_event: asyncio.Event | None = None,
    ) -> str:
        """Read the whole stream, or until aborted, and return the text."""
        async for _ in self.iterate(chunks, abort_event):
            pass
        return self.text
