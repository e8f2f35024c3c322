"""Token store - owns the canonical state and serialises command reduction."""

import asyncio
import logging
from typing import Callable

from .mapper import Command
from .reducer import (
    HISTORY_WINDOW_SECONDS,
    LIQUIDITY_DRIFT_FACTOR,
    TokenState,
    reduce,
)

logger = logging.getLogger(__name__)

Listener = Callable[[int, TokenState, Command], None]


class TokenStore:
    """
    Single owner of the canonical token map.

    Commands are reduced one at a time, either directly through
    ``dispatch()`` or through the ordered queue drained by ``run()``. Every
    observable change bumps ``version`` and notifies listeners with the
    whole new state.
    """

    def __init__(
        self,
        window_seconds: float = HISTORY_WINDOW_SECONDS,
        drift_factor: float = LIQUIDITY_DRIFT_FACTOR,
    ):
        self.window_seconds = window_seconds
        self.drift_factor = drift_factor
        self._state = TokenState()
        self._version = 0
        self._listeners: list[Listener] = []
        self._queue: asyncio.Queue[Command | None] = asyncio.Queue()
        self._closed = False
        self._processed = 0
        self._applied = 0

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, command: Command) -> bool:
        """
        Reduce a command synchronously.

        Returns:
            True if the state changed
        """
        if self._closed:
            return False

        self._processed += 1
        next_state = reduce(
            self._state,
            command,
            window_seconds=self.window_seconds,
            drift_factor=self.drift_factor,
        )
        if next_state is self._state:
            return False

        self._state = next_state
        self._version += 1
        self._applied += 1

        for listener in list(self._listeners):
            try:
                listener(self._version, self._state, command)
            except Exception as e:
                logger.error(f"Error in state listener: {e}", exc_info=True)
        return True

    def submit(self, command: Command):
        """Queue a command for ordered reduction by ``run()``."""
        if self._closed:
            logger.debug(f"Ignoring {type(command).__name__} submitted after close")
            return
        self._queue.put_nowait(command)

    async def run(self):
        """Drain the queue in arrival order until ``close()`` is called."""
        while True:
            command = await self._queue.get()
            try:
                if command is None or self._closed:
                    break
                self.dispatch(command)
            finally:
                self._queue.task_done()

    async def join(self):
        """Wait until every queued command has been reduced."""
        await self._queue.join()

    def close(self):
        """Stop accepting commands; pending ones are discarded."""
        self._closed = True
        self._queue.put_nowait(None)

    def reset(self):
        """Drop every token. The only way tokens leave the store."""
        if not self._state.by_id and not self._state.pages:
            return
        self._state = TokenState()
        self._version += 1
        logger.info("Token state reset")

    @property
    def stats(self) -> dict:
        """Get store statistics."""
        return {
            "commands_processed": self._processed,
            "commands_applied": self._applied,
            "commands_dropped": self._processed - self._applied,
            "tokens": len(self._state.by_id),
            "version": self._version,
        }
