"""
Lazy, initialize-once handle for async resources.

Replaces module-level singletons: each service owns an `AsyncOnce` and
concurrent callers await the same pending task instead of starting
duplicate work.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class AsyncOnce(Generic[T]):
    """
    Memoizes the result of one async initialization.

    A failed initialization clears the handle so the next `get()` retries
    from scratch. Cancelling a waiting caller does not cancel the shared
    initialization.

    Example:
        once = AsyncOnce()
        engine = await once.get(lambda: build_engine(report))
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[T] | None = None

    async def get(self, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Return the memoized value, starting `factory` if nothing is pending.

        Args:
            factory: Coroutine factory used only by the first caller.

        Returns:
            The initialized value.
        """
        if self._task is None:
            task = asyncio.ensure_future(factory())
            task.add_done_callback(self._forget_failure)
            self._task = task
        return await asyncio.shield(self._task)

    def _forget_failure(self, task: "asyncio.Task[T]") -> None:
        if task.cancelled() or task.exception() is not None:
            if self._task is task:
                self._task = None

    @property
    def pending(self) -> bool:
        """True while an initialization is running."""
        return self._task is not None and not self._task.done()

    @property
    def ready(self) -> bool:
        """True once an initialization has succeeded."""
        return (
            self._task is not None
            and self._task.done()
            and not self._task.cancelled()
            and self._task.exception() is None
        )

    def peek(self) -> T | None:
        """Return the value if initialization already succeeded."""
        return self._task.result() if self.ready else None

    def reset(self) -> None:
        """Forget the memoized value (tests and explicit teardown only)."""
        self._task = None
