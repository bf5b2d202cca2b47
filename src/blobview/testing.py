"""Deterministic doubles for the host ports.

Used by the test suite and handy for exercising the pipeline without a
browser: a clock advanced by hand, surfaces and a navigator that record
what was done to them, and a fetcher that replays scripted responses.
"""

from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from bs4 import Tag

from .errors import SurfaceError
from .host import BlobStore, BytesResponse, InlineBlobReader, SoupDocument
from .ports import (
    Clock,
    Fetcher,
    FetchResponse,
    HostPorts,
    Navigator,
    Surface,
    TimerHandle,
    UserEvent,
)


def make_pdf_bytes(size: int = 1200) -> bytes:
    """Bytes of exactly ``size`` that start with the PDF signature."""
    head = b"%PDF-1.4\n"
    if size <= len(head):
        return head[:size]
    return head + b"0" * (size - len(head))


def click_event(target: Tag | None) -> UserEvent:
    return UserEvent("click", target)


# -- time -------------------------------------------------------------------


class _ManualTimer(TimerHandle):
    def __init__(self, deadline: float, callback: Callable[[], None]):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock(Clock):
    """A clock that only moves when :meth:`advance` is called."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._heap: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._heap, (timer.deadline, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of timers that are scheduled and not cancelled."""
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in deadline order."""
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target:
            deadline, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            self._now = deadline
            timer.callback()
        self._now = target


# -- surfaces -----------------------------------------------------------------


class RecordingSurface(Surface):
    """Surface that records writes and navigations.

    Args:
        name: Name it was opened under.
        auto_load: Fire the load signal as soon as a document is written.
    """

    def __init__(self, name: str = "_self", auto_load: bool = False):
        self.name = name
        self.auto_load = auto_load
        self.writes: list[str] = []
        self.navigations: list[str] = []
        self.opener_cleared = False
        self.write_error: Exception | None = None
        self.loaded = False
        self._closed = False
        self._load_callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, html: str) -> None:
        if self._closed:
            raise SurfaceError(f"Surface {self.name} is closed")
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(html)
        self.loaded = False
        self._load_callbacks = []
        if self.auto_load:
            self.mark_loaded()

    def navigate(self, url: str) -> None:
        self.navigations.append(url)

    def on_load(self, callback: Callable[[], None]) -> None:
        if self.loaded:
            callback()
        else:
            self._load_callbacks.append(callback)

    def mark_loaded(self) -> None:
        """Deliver the load signal of the current document."""
        self.loaded = True
        callbacks, self._load_callbacks = self._load_callbacks, []
        for callback in callbacks:
            callback()

    def clear_opener(self) -> None:
        self.opener_cleared = True

    def close(self) -> None:
        self._closed = True


@dataclass
class NativeNavigation:
    url: str
    target: str | None = None
    features: str | None = None


class RecordingNavigator(Navigator):
    """Navigator that hands out :class:`RecordingSurface` objects.

    Named surfaces are reused while open, ``_blank`` always opens a new
    one. With ``block_popups`` set every open is suppressed.
    """

    def __init__(self, block_popups: bool = False, auto_load: bool = False):
        self.block_popups = block_popups
        self.auto_load = auto_load
        self.opened: list[RecordingSurface] = []
        self.open_requests: list[str] = []
        self.navigations: list[NativeNavigation] = []
        self._named: dict[str, RecordingSurface] = {}
        self._current = RecordingSurface("_self", auto_load)

    def open_surface(self, name: str) -> Surface | None:
        self.open_requests.append(name)
        if self.block_popups:
            return None
        existing = self._named.get(name)
        if existing is not None and not existing.closed:
            return existing
        surface = RecordingSurface(name, self.auto_load)
        if name != "_blank":
            self._named[name] = surface
        self.opened.append(surface)
        return surface

    def current(self) -> RecordingSurface:
        return self._current

    def navigate(
        self, url: str, target: str | None = None, features: str | None = None
    ) -> Surface | None:
        self.navigations.append(NativeNavigation(url, target, features))
        return None

    @property
    def all_writes(self) -> list[str]:
        """Every document written to any surface, current one included."""
        writes = list(self._current.writes)
        for surface in self.opened:
            writes.extend(surface.writes)
        return writes


# -- fetch ----------------------------------------------------------------------


@dataclass
class _Scripted:
    status: int
    headers: dict
    body: bytes


class ScriptedFetcher(Fetcher):
    """Fetcher replaying canned responses.

    Unknown references answer 404. With ``error`` set every fetch raises it.
    """

    def __init__(self, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size
        self.error: Exception | None = None
        self.calls: list[tuple[str, str, str]] = []
        self.responses: list[BytesResponse] = []
        self._scripts: dict[str, _Scripted] = {}

    def add(
        self,
        reference: str,
        body: bytes = b"",
        content_type: str | None = None,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        declare_length: bool = True,
    ) -> None:
        all_headers = dict(headers or {})
        if content_type is not None:
            all_headers.setdefault("Content-Type", content_type)
        if declare_length:
            all_headers.setdefault("Content-Length", str(len(body)))
        self._scripts[reference] = _Scripted(status, all_headers, body)

    async def fetch(
        self,
        reference: str,
        *,
        cache: str = "no-store",
        credentials: str = "same-origin",
    ) -> FetchResponse:
        self.calls.append((reference, cache, credentials))
        if self.error is not None:
            raise self.error
        script = self._scripts.get(reference)
        if script is None:
            response = BytesResponse(404)
        else:
            response = BytesResponse(
                script.status, script.headers, script.body, self.chunk_size
            )
        self.responses.append(response)
        return response


def make_ports(
    fetcher: Fetcher | None = None,
    navigator: Navigator | None = None,
    clock: Clock | None = None,
    document: SoupDocument | None = None,
    allocator: BlobStore | None = None,
) -> HostPorts:
    """Assemble ports from doubles, filling in whatever is not given.

    The fetcher defaults to the allocator itself, so references minted
    behind the registry's back still resolve.
    """
    if allocator is None:
        allocator = BlobStore("https://example.test")
    return HostPorts(
        allocator=allocator,
        reader=InlineBlobReader(),
        fetcher=allocator if fetcher is None else fetcher,
        document=SoupDocument() if document is None else document,
        navigator=RecordingNavigator() if navigator is None else navigator,
        clock=ManualClock() if clock is None else clock,
    )
