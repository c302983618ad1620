from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

EXECUTION_STARTED = "execution:started"
EXECUTION_OUTPUT = "execution:output"
EXECUTION_STRUCTURED_OUTPUT = "execution:structured-output"
EXECUTION_COMPLETED = "execution:completed"
EXECUTION_ERROR = "execution:error"
EXECUTION_STOPPED = "execution:stopped"
DEPENDENCIES_MISSING = "execution:dependencies-missing"

PACKAGE_INSTALLING = "package:installing"
PACKAGE_INSTALL_OUTPUT = "package:install-output"
PACKAGE_INSTALLED = "package:installed"
PACKAGE_INSTALL_ERROR = "package:install-error"
PACKAGE_UNINSTALLED = "package:uninstalled"
PACKAGE_UNINSTALL_ERROR = "package:uninstall-error"

TERMINAL_OUTPUT = "terminal:output"
TERMINAL_CLEAR = "terminal:clear"
TERMINAL_COMMAND_SUCCESS = "terminal:command-success"
TERMINAL_COMMAND_ERROR = "terminal:command-error"
TERMINAL_READY = "terminal:ready"

Callback = Callable[[dict[str, Any]], Any]
WildcardCallback = Callable[[str, dict[str, Any]], Any]


@dataclass(slots=True)
class _Subscription:
    """One registered callback.

    Example:
        ```python
        sub = _Subscription(id=1, callback=print, once=False, priority=0)
        ```
    """

    id: int
    callback: Callable[..., Any]
    once: bool
    priority: int


class EventChannel:
    """Named event fan-out to independent subscribers.

    A subscriber that raises is logged and skipped; delivery to the remaining
    subscribers continues.

    Example:
        ```python
        events = EventChannel()
        unsubscribe = events.subscribe("execution:started", lambda payload: print(payload))
        ```
    """

    def __init__(self) -> None:
        """Create a channel with no subscribers.

        Example:
            ```python
            events = EventChannel()
            ```
        """
        self._subscribers: dict[str, list[_Subscription]] = {}
        self._wildcards: list[_Subscription] = []
        self._ids = itertools.count(1)

    def subscribe(
        self,
        name: str,
        callback: Callback,
        *,
        once: bool = False,
        priority: int = 0,
    ) -> Callable[[], None]:
        """Register a callback and return a function that removes it.

        Higher priority subscribers run first; equal priorities keep
        registration order.

        Example:
            ```python
            off = events.subscribe("execution:output", on_output, priority=10)
            off()
            ```
        """
        if not callable(callback):
            raise TypeError("callback must be callable")
        sub = _Subscription(next(self._ids), callback, once, priority)
        subs = self._subscribers.setdefault(name, [])
        subs.append(sub)
        subs.sort(key=lambda item: -item.priority)

        def _unsubscribe() -> None:
            """Remove this subscription if still present.

            Example:
                ```python
                _unsubscribe()
                ```
            """
            self._remove(name, sub.id)

        return _unsubscribe

    def once(self, name: str, callback: Callback, *, priority: int = 0) -> Callable[[], None]:
        """Register a callback that fires at most once.

        Example:
            ```python
            events.once("execution:completed", on_done)
            ```
        """
        return self.subscribe(name, callback, once=True, priority=priority)

    def subscribe_all(self, callback: WildcardCallback) -> Callable[[], None]:
        """Register a callback receiving every event as `(name, payload)`.

        Example:
            ```python
            off = events.subscribe_all(lambda name, payload: log.append(name))
            ```
        """
        if not callable(callback):
            raise TypeError("callback must be callable")
        sub = _Subscription(next(self._ids), callback, False, 0)
        self._wildcards.append(sub)

        def _unsubscribe() -> None:
            """Remove this wildcard subscription.

            Example:
                ```python
                _unsubscribe()
                ```
            """
            self._wildcards = [item for item in self._wildcards if item.id != sub.id]

        return _unsubscribe

    def emit(self, name: str, payload: dict[str, Any] | None = None) -> bool:
        """Deliver an event; return True if at least one callback ran cleanly.

        Example:
            ```python
            events.emit("execution:stopped", {"timestamp": 1700000000000})
            ```
        """
        data = payload if payload is not None else {}
        delivered = False
        fired_once: list[int] = []
        for sub in list(self._subscribers.get(name, [])):
            try:
                sub.callback(data)
                delivered = True
            except Exception:
                logger.warning("Subscriber for %s failed", name, exc_info=True)
            if sub.once:
                fired_once.append(sub.id)
        for sub_id in fired_once:
            self._remove(name, sub_id)
        for sub in list(self._wildcards):
            try:
                sub.callback(name, data)
                delivered = True
            except Exception:
                logger.warning("Wildcard subscriber failed on %s", name, exc_info=True)
        return delivered

    def subscriber_count(self, name: str) -> int:
        """Number of callbacks registered for a name (wildcards excluded).

        Example:
            ```python
            assert events.subscriber_count("execution:output") == 1
            ```
        """
        return len(self._subscribers.get(name, []))

    def clear(self, name: str | None = None) -> None:
        """Drop subscribers for one name, or all of them.

        Example:
            ```python
            events.clear()
            ```
        """
        if name is None:
            self._subscribers.clear()
            self._wildcards.clear()
            return
        self._subscribers.pop(name, None)

    def _remove(self, name: str, sub_id: int) -> None:
        """Remove a subscription by id.

        Example:
            ```python
            events._remove("execution:output", 3)
            ```
        """
        subs = self._subscribers.get(name)
        if not subs:
            return
        remaining = [item for item in subs if item.id != sub_id]
        if remaining:
            self._subscribers[name] = remaining
        else:
            self._subscribers.pop(name, None)
