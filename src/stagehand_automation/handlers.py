from __future__ import annotations

from typing import Iterable
import logging

from .types import HandlerSpec

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Deferred handler notifications for a single host.

    Handlers are flushed once each, in the order they were declared,
    no matter how many tasks notified them or in what order.
    """

    def __init__(self, handlers: Iterable[HandlerSpec]):
        self.handlers = list(handlers)
        self._known = {handler.name for handler in self.handlers}
        self._pending: set[str] = set()

    def notify(self, names: Iterable[str]) -> None:
        for name in names:
            if name not in self._known:
                raise KeyError(f"handler '{name}' is not defined")
            if name not in self._pending:
                logger.debug("notify handler=%s", name)
            self._pending.add(name)

    def pending(self) -> list[HandlerSpec]:
        return [handler for handler in self.handlers if handler.name in self._pending]

    def flush(self) -> list[HandlerSpec]:
        ready = self.pending()
        self._pending.clear()
        return ready

    def __bool__(self) -> bool:
        return bool(self._pending)
