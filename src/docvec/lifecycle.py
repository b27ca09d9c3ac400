"""AsyncOnce — guarded once-only async initialization."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

from docvec.exceptions import ErrorCategory, InitializationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InitState(Enum):
    """Lifecycle of a lazily initialized resource."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class AsyncOnce(Generic[T]):
    """Holds a resource that is built at most once.

    The first caller of :meth:`get_or_init` starts the factory in a task;
    callers arriving while it runs await the same task, so the factory is
    never run twice concurrently.  A failed factory returns the cell to
    ``UNINITIALIZED`` and the error propagates to every waiter; the next call
    starts a fresh attempt.  :meth:`reset` abandons an attempt still in
    flight: its result is discarded and its waiters get an
    :class:`InitializationError`.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._value: T | None = None
        self._task: asyncio.Future[T] | None = None
        self._state = InitState.UNINITIALIZED
        self._generation = 0

    async def get_or_init(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the resource, running *factory* if it does not exist yet."""
        if self._state is InitState.READY:
            return self._value  # type: ignore[return-value]

        if self._task is None:
            logger.debug("%s: starting initialization", self._name)
            self._state = InitState.INITIALIZING
            self._task = asyncio.ensure_future(self._run(factory, self._generation))
        else:
            logger.debug("%s: initialization already in progress, waiting", self._name)

        # Shielded so one cancelled waiter does not abort the shared attempt
        return await asyncio.shield(self._task)

    async def _run(self, factory: Callable[[], Awaitable[T]], generation: int) -> T:
        try:
            value = await factory()
        except BaseException:
            if generation == self._generation:
                self._task = None
                self._state = InitState.UNINITIALIZED
            raise
        if generation != self._generation:
            logger.debug("%s: discarding initialization abandoned by reset", self._name)
            raise InitializationError(
                ErrorCategory.UNKNOWN,
                message=f"{self._name} was reset while initializing",
            )
        self._value = value
        self._task = None
        self._state = InitState.READY
        logger.debug("%s: ready", self._name)
        return value

    def reset(self) -> T | None:
        """Forget the resource and return it so the caller can release it."""
        value = self._value
        self._generation += 1
        self._task = None
        self._value = None
        self._state = InitState.UNINITIALIZED
        return value

    @property
    def state(self) -> InitState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        """True once the factory has succeeded."""
        return self._state is InitState.READY

    @property
    def value(self) -> T | None:
        """The resource, or ``None`` before it is ready."""
        return self._value
