"""Error reporting collaborator.

The auth and webhook layers report failures through an ``ErrorReporter``
rather than a global SDK so that deployments can plug in their own
error-tracking sink and tests can inspect what was reported.

Signals:
- capture_exception: handler / upstream failures (tags: shop, topic or flow)
- capture_message: security-relevant warnings, e.g. invalid webhook
  signatures (tag ``signal`` identifies the indicator)
- add_breadcrumb: low-volume audit trail of successful operations
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_MAX_RECORDED_EVENTS = 500

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class ReportedEvent:
    """A single event handed to the reporter."""

    kind: str  # exception, message, breadcrumb
    message: str
    level: str = "info"
    tags: dict[str, str] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


class ErrorReporter(Protocol):
    def capture_exception(
        self,
        exc: BaseException,
        tags: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None: ...

    def capture_message(
        self,
        message: str,
        level: str = "warning",
        tags: dict[str, str] | None = None,
    ) -> None: ...

    def add_breadcrumb(
        self,
        category: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...


class LoggingErrorReporter:
    """Reporter that writes to ``logging`` and keeps a bounded event history."""

    def __init__(self, max_events: int = _MAX_RECORDED_EVENTS) -> None:
        self._events: deque[ReportedEvent] = deque(maxlen=max_events)

    @property
    def events(self) -> list[ReportedEvent]:
        return list(self._events)

    def capture_exception(
        self,
        exc: BaseException,
        tags: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        tags = dict(tags or {})
        logger.error(
            "Captured exception %s: %s tags=%s",
            type(exc).__name__,
            exc,
            tags,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        self._events.append(
            ReportedEvent(
                kind="exception",
                message=f"{type(exc).__name__}: {exc}",
                level="error",
                tags=tags,
                data=dict(extra or {}),
                timestamp=time.time(),
            )
        )

    def capture_message(
        self,
        message: str,
        level: str = "warning",
        tags: dict[str, str] | None = None,
    ) -> None:
        tags = dict(tags or {})
        logger.log(_LEVELS.get(level, logging.WARNING), "%s tags=%s", message, tags)
        self._events.append(
            ReportedEvent(
                kind="message",
                message=message,
                level=level,
                tags=tags,
                timestamp=time.time(),
            )
        )

    def add_breadcrumb(
        self,
        category: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        logger.debug("[%s] %s", category, message)
        self._events.append(
            ReportedEvent(
                kind="breadcrumb",
                message=message,
                tags={"category": category},
                data=dict(data or {}),
                timestamp=time.time(),
            )
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    if any(getattr(h, "_minimall", False) for h in root.handlers):
        root.setLevel(level.upper())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler._minimall = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())
