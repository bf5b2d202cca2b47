"""Host adapters for the collaborator ports.

These run the pipeline outside a browser: an in-memory object store that
mints references and serves them back by fetch, an httpx fetcher for hosts
that expose references over HTTP, a BeautifulSoup document with insertion
notifications, and surfaces that are HTML files on disk.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
import uuid
from collections.abc import AsyncIterator, Callable, Mapping
from pathlib import Path

import click
import httpx
from bs4 import BeautifulSoup, Tag

from .errors import SurfaceError
from .ports import (
    BlobReader,
    Clock,
    Document,
    Fetcher,
    FetchResponse,
    Navigator,
    ObjectAllocator,
    Subscription,
    Surface,
    TimerHandle,
)
from .registry import Blob

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def parse_html(html: str) -> BeautifulSoup:
    """Parse a document, preferring lxml when it is installed."""
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


# -- references and bytes -----------------------------------------------------


class BytesResponse(FetchResponse):
    """Fetch response over an in-memory body, streamed in chunks.

    Records how much of the body was handed out and whether the transfer
    was aborted, so callers can observe early cancellation.
    """

    def __init__(
        self,
        status: int,
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
        chunk_size: int = CHUNK_SIZE,
    ):
        super().__init__(status, headers)
        self._body = body
        self._chunk_size = chunk_size
        self.bytes_sent = 0
        self.closed = False

    @property
    def aborted(self) -> bool:
        return self.closed and self.bytes_sent < len(self._body)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self._body), self._chunk_size):
            if self.closed:
                return
            chunk = self._body[start : start + self._chunk_size]
            self.bytes_sent += len(chunk)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class BlobStore(ObjectAllocator, Fetcher):
    """In-memory object-reference allocator.

    References are ``blob:<origin>/<uuid>``. The store also answers fetches
    addressed to its own references, the way a browser resolves a
    reference minted by a worker for any context of the same origin.
    """

    def __init__(self, origin: str = "null"):
        self.origin = origin
        self._objects: dict[str, Blob] = {}

    def __contains__(self, reference: str) -> bool:
        return reference in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def create(self, obj: Blob) -> str:
        if not isinstance(obj, Blob):
            raise TypeError(f"Cannot create a reference for {type(obj).__name__}")
        reference = f"blob:{self.origin}/{uuid.uuid4()}"
        self._objects[reference] = obj
        return reference

    def revoke(self, reference: str) -> None:
        self._objects.pop(reference, None)

    def get(self, reference: str) -> Blob | None:
        return self._objects.get(reference)

    async def fetch(
        self,
        reference: str,
        *,
        cache: str = "no-store",
        credentials: str = "same-origin",
    ) -> FetchResponse:
        blob = self._objects.get(reference)
        if blob is None:
            return BytesResponse(404)
        headers = {"Content-Length": str(blob.size)}
        if blob.type:
            headers["Content-Type"] = blob.type
        return BytesResponse(200, headers, blob.data)


class HttpxResponse(FetchResponse):
    def __init__(self, response: httpx.Response, chunk_size: int = CHUNK_SIZE):
        super().__init__(response.status_code, response.headers)
        self._response = response
        self._chunk_size = chunk_size

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes(chunk_size=self._chunk_size):
            yield chunk

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()


class HttpxFetcher(Fetcher):
    """Fetch references served over HTTP, streaming the body.

    Args:
        client: Client to use; one is created (and owned) if omitted.
        chunk_size: Streaming chunk size in bytes.
    """

    def __init__(
        self, client: httpx.AsyncClient | None = None, chunk_size: int = CHUNK_SIZE
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._chunk_size = chunk_size

    async def fetch(
        self,
        reference: str,
        *,
        cache: str = "no-store",
        credentials: str = "same-origin",
    ) -> FetchResponse:
        headers = {}
        if cache == "no-store":
            headers["Cache-Control"] = "no-store"
            headers["Pragma"] = "no-cache"
        request = self._client.build_request("GET", reference, headers=headers)
        if credentials == "omit":
            request.headers.pop("Cookie", None)
        response = await self._client.send(request, stream=True)
        return HttpxResponse(response, self._chunk_size)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class InlineBlobReader(BlobReader):
    """Read blobs from memory; convert them to base64 ``data:`` references."""

    async def read_range(self, blob: Blob, start: int, end: int) -> bytes:
        return blob.data[start:end]

    async def to_data_reference(
        self, blob: Blob, content_type: str | None = None
    ) -> str:
        mime = content_type or blob.type or "application/octet-stream"
        encoded = await asyncio.to_thread(base64.b64encode, blob.data)
        return f"data:{mime};base64,{encoded.decode('ascii')}"


# -- document -------------------------------------------------------------------


class _SoupSubscription(Subscription):
    def __init__(self, document: SoupDocument, callback):
        self._document = document
        self.callback = callback

    def unsubscribe(self) -> None:
        self._document._unsubscribe(self)


class SoupDocument(Document):
    """A parsed HTML document that reports insertions to subscribers."""

    def __init__(self, html: str = "<html><head></head><body></body></html>"):
        self.soup = parse_html(html)
        self._subscriptions: list[_SoupSubscription] = []

    @classmethod
    def from_path(cls, path: Path) -> SoupDocument:
        return cls(Path(path).read_text(encoding="utf-8"))

    @property
    def root(self) -> Tag:
        return self.soup.body or self.soup

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback) -> Subscription:
        subscription = _SoupSubscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: _SoupSubscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    def new_tag(self, name: str, attrs: dict | None = None, text: str | None = None):
        tag = self.soup.new_tag(name, attrs=attrs or {})
        if text is not None:
            tag.string = text
        return tag

    def insert(self, content: str | Tag, parent: Tag | None = None) -> list[Tag]:
        """Append markup or a tag under ``parent`` and notify subscribers.

        Returns:
            The inserted element nodes.
        """
        if isinstance(content, Tag):
            nodes = [content]
        else:
            fragment = BeautifulSoup(content, "html.parser")
            nodes = list(fragment.contents)

        target = parent if parent is not None else self.root
        for node in nodes:
            target.append(node.extract())

        elements = [n for n in nodes if isinstance(n, Tag)]
        for subscription in list(self._subscriptions):
            subscription.callback(elements)
        return elements

    def __str__(self) -> str:
        return str(self.soup)


# -- surfaces -------------------------------------------------------------------

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


class FileSurface(Surface):
    """A surface backed by an HTML file.

    A successful write is the load signal: once the file is on disk there
    is nothing further to wait for.
    """

    def __init__(self, path: Path, launch: bool = False):
        self.path = Path(path)
        self.launch = launch
        self.location: str | None = None
        self.writes = 0
        self._closed = False
        self._loaded = False
        self._load_callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, html: str) -> None:
        if self._closed:
            raise SurfaceError(f"Surface is closed: {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(html, encoding="utf-8")
        except OSError as e:
            raise SurfaceError(f"Cannot write {self.path}: {e}") from e
        self.writes += 1
        self.location = self.path.as_uri()
        if self.launch:
            click.launch(str(self.path))
        self._loaded = True
        callbacks, self._load_callbacks = self._load_callbacks, []
        for callback in callbacks:
            callback()

    def navigate(self, url: str) -> None:
        self.location = url
        if self.launch:
            click.launch(url)

    def on_load(self, callback: Callable[[], None]) -> None:
        if self._loaded:
            callback()
        else:
            self._load_callbacks.append(callback)

    def close(self) -> None:
        self._closed = True


class DirectoryNavigator(Navigator):
    """Surfaces as files in a directory.

    Named surfaces map to ``<name>.html`` and are reused while open;
    ``_blank`` gets a fresh numbered file each time.
    """

    def __init__(self, directory: Path, launch: bool = False):
        self.directory = Path(directory)
        self.launch = launch
        self.surfaces: dict[str, FileSurface] = {}
        self.navigations: list[str] = []
        self._counter = 0
        self._current = FileSurface(self.directory / "current.html", launch)

    def open_surface(self, name: str) -> Surface | None:
        if name == "_blank":
            self._counter += 1
            name = f"surface-{self._counter}"
        existing = self.surfaces.get(name)
        if existing is not None and not existing.closed:
            return existing
        surface = FileSurface(
            self.directory / f"{_UNSAFE_NAME_RE.sub('_', name)}.html", self.launch
        )
        self.surfaces[name] = surface
        return surface

    def current(self) -> Surface:
        return self._current

    def navigate(
        self, url: str, target: str | None = None, features: str | None = None
    ) -> Surface | None:
        self.navigations.append(url)
        logger.debug("Native navigation to %s (target=%s)", url, target)
        if self.launch:
            click.launch(url)
        return None

    @property
    def written(self) -> list[Path]:
        """Files that received a document."""
        paths = [s.path for s in self.surfaces.values() if s.writes]
        if self._current.writes:
            paths.append(self._current.path)
        return paths


# -- time -----------------------------------------------------------------------


class _LoopTimer(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class LoopClock(Clock):
    """Clock on the running asyncio loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return _LoopTimer(loop.call_later(delay, callback))
