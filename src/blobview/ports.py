"""Host collaborator interfaces.

The pipeline never reaches into a browser directly. Object references,
byte reads, fetches, the document, windows and timers are all consumed
through the small interfaces below, so a real host adapter
(``blobview.host``) and a test double (``blobview.testing``) can be
substituted for one another.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bs4 import Tag

    from .registry import Blob


class ObjectAllocator(ABC):
    """Mints and revokes ephemeral object references."""

    @abstractmethod
    def create(self, obj: Blob) -> str:
        """Return a new reference naming ``obj``."""
        ...

    @abstractmethod
    def revoke(self, reference: str) -> None:
        """Release ``reference``. Unknown references are ignored."""
        ...


class BlobReader(ABC):
    """Reads binary objects."""

    @abstractmethod
    async def read_range(self, blob: Blob, start: int, end: int) -> bytes:
        """Return ``blob`` bytes in ``[start, end)``."""
        ...

    @abstractmethod
    async def to_data_reference(
        self, blob: Blob, content_type: str | None = None
    ) -> str:
        """Convert a whole binary object into a self-contained reference.

        The result carries the bytes inline (a ``data:`` URL) and can be
        embedded anywhere a reference is accepted.
        """
        ...


class FetchResponse(ABC):
    """Response to a fetch addressed to a reference.

    Header names are normalised to lowercase. The body is streamed through
    :meth:`iter_bytes`; :meth:`aclose` aborts an in-flight transfer and must
    be safe to call more than once.
    """

    def __init__(self, status: int, headers: Mapping[str, str] | None = None):
        self.status = status
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            length = int(value)
        except ValueError:
            return None
        return length if length >= 0 else None

    @abstractmethod
    def iter_bytes(self) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def aclose(self) -> None: ...


class Fetcher(ABC):
    """Network-style fetch of a resource by reference."""

    @abstractmethod
    async def fetch(
        self,
        reference: str,
        *,
        cache: str = "no-store",
        credentials: str = "same-origin",
    ) -> FetchResponse: ...


class Subscription(ABC):
    @abstractmethod
    def unsubscribe(self) -> None: ...


class Document(ABC):
    """The hosted document and its insertion notifications."""

    @abstractmethod
    def subscribe(self, callback: Callable[[list[Tag]], None]) -> Subscription:
        """Call ``callback`` with each batch of nodes inserted under the root."""
        ...


class Surface(ABC):
    """A display surface (browsing context) that can host a document."""

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    @abstractmethod
    def write(self, html: str) -> None:
        """Replace the displayed document with ``html``."""
        ...

    @abstractmethod
    def navigate(self, url: str) -> None: ...

    @abstractmethod
    def on_load(self, callback: Callable[[], None]) -> None:
        """Register ``callback`` for the load signal of the current document.

        The signal belongs to the document last written. A new write starts
        a document whose signal has not fired yet, and callbacks still
        waiting on the previous document are dropped. If the current
        document has already signalled, ``callback`` runs immediately.
        """
        ...

    def clear_opener(self) -> None:
        """Sever the surface's link back to the page that opened it."""
        return None

    def close(self) -> None:
        return None


class Navigator(ABC):
    """Window creation and navigation primitives."""

    @abstractmethod
    def open_surface(self, name: str) -> Surface | None:
        """Open (or re-target) a surface by logical name.

        Returns None when the host suppresses the new surface.
        """
        ...

    @abstractmethod
    def current(self) -> Surface: ...

    @abstractmethod
    def navigate(
        self, url: str, target: str | None = None, features: str | None = None
    ) -> Surface | None:
        """The native navigation primitive."""
        ...


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None: ...


class Clock(ABC):
    """Monotonic time in seconds plus one-shot timers."""

    @abstractmethod
    def now(self) -> float: ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


@dataclass
class UserEvent:
    """A user-originated input event as seen by a capture-phase handler."""

    type: str
    target: Tag | None = None
    default_prevented: bool = False
    propagation_stopped: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True


@dataclass
class HostPorts:
    """Everything the pipeline consumes from its host."""

    allocator: ObjectAllocator
    reader: BlobReader
    fetcher: Fetcher
    document: Document
    navigator: Navigator
    clock: Clock
