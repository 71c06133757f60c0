"""Event dispatcher for SSH login events."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .events import LoginEvent

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Fan a login event out to every registered handler."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[LoginEvent], Awaitable[None]]] = []

    def register_handler(
        self, handler: Callable[[LoginEvent], Awaitable[None]]
    ) -> None:
        """Register an event handler."""
        self._handlers.append(handler)

    async def dispatch(self, event: LoginEvent) -> None:
        """Dispatch an event to all registered handlers."""
        logger.debug(
            "Dispatching SSH login event: %s@%s (session %s)",
            event.username,
            event.source_ip,
            event.session_id,
        )

        tasks = [handler(event) for handler in self._handlers]
        if not tasks:
            return

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for handler, result in zip(self._handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Login event handler %s failed: %s",
                    getattr(handler, "__name__", repr(handler)),
                    result,
                )
