"""
Polled cancellation tokens.

A ``CancelToken`` is a flag plus an optional deadline. Consumers check
``done()`` instead of registering callbacks, so the lifetime of whoever
cancels is never coupled to the lifetime of whoever waits. Several sources
can be combined with ``CancelToken.any``; the combined token is done as soon
as the earliest source is.
"""

import asyncio
import time
from collections.abc import Callable


class CancelToken:
    """
    Cancellation flag with an optional monotonic deadline.

    Attributes:
        reason: Free-form reason passed to ``cancel`` (None until cancelled)
    """

    def __init__(
        self,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            deadline: Monotonic time (seconds) after which the token is done
            clock: Monotonic clock used to evaluate the deadline
        """
        self._deadline = deadline
        self._clock = clock
        self._event: asyncio.Event | None = None
        self._cancelled = False
        self.reason: object = None

    @classmethod
    def with_timeout(
        cls, seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> "CancelToken":
        return cls(deadline=clock() + seconds, clock=clock)

    @classmethod
    def any(cls, *tokens: "CancelToken | None") -> "CancelToken":
        """Combine tokens; the result is done when any source is done."""
        return _AnyCancelToken([token for token in tokens if token is not None])

    def cancel(self, reason: object = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    def done(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    async def wait(self) -> None:
        """Suspend until ``cancel`` is called (deadlines are not awaited)."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(done={self.done()}, reason={self.reason!r})"


class _AnyCancelToken(CancelToken):
    def __init__(self, sources: list[CancelToken]) -> None:
        super().__init__()
        self._sources = sources

    def done(self) -> bool:
        if super().done():
            return True
        for source in self._sources:
            if source.done():
                if self.reason is None:
                    self.reason = source.reason
                return True
        return False

    async def wait(self) -> None:
        """Suspend until this token or any source is cancelled."""
        if self.done():
            return
        waiters = [asyncio.ensure_future(CancelToken.wait(self))]
        waiters += [asyncio.ensure_future(source.wait()) for source in self._sources]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        self.done()  # latch the source reason
