"""Hook contract between request-wrapping collaborators and the tracing core.

A collaborator (anything that can observe an outgoing request: an HTTP client
event hook, a transport wrapper, a test double) reports the request lifecycle
through these calls. Exactly one terminal hook (load, error, timeout, abort)
fires per logical request. The core treats hooks as advisory and never calls
back into the collaborator.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from enum import Enum
from typing import Protocol, runtime_checkable


class EventNames(str, Enum):
    """Span event names recorded for request lifecycle hooks."""

    METHOD_OPEN = "open"
    METHOD_SEND = "send"
    EVENT_LOAD = "loaded"
    EVENT_ERROR = "error"
    EVENT_TIMEOUT = "timeout"
    EVENT_ABORT = "abort"


@runtime_checkable
class RequestHooks(Protocol):
    """Lifecycle callbacks for one outgoing request."""

    def on_open(self, method: str, url: str) -> None: ...

    def on_headers_prepared(
        self, carrier: MutableMapping[str, str]
    ) -> MutableMapping[str, str]: ...

    def on_send(self) -> None: ...

    def on_load(self, status_code: int, status_text: str = "") -> None: ...

    def on_error(self) -> None: ...

    def on_timeout(self) -> None: ...

    def on_abort(self) -> None: ...
