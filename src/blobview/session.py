"""Session context and the resolve-classify-render pipeline.

A :class:`Session` owns every piece of mutable interception state for one
page lifetime (the registry, the reusable surface, the watch window and
the in-flight pipeline tasks) and threads it into each component at
construction. Nothing is kept in module globals.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine

from .config import BlobviewConfig, is_site_excluded
from .ports import HostPorts, Surface
from .registry import Blob, ObjectRegistry, exceeds_limit
from .render import LoadVerifier, PendingRender, Renderer
from .resolver import BlobResolver, Resolution, ResolveReason
from .surfaces import SurfaceManager
from .sweeper import Sweeper
from .watcher import MutationWatcher

logger = logging.getLogger(__name__)


class Session:
    """All interception state for one page lifetime.

    Args:
        config: Configuration, read once.
        ports: Host collaborators.
    """

    def __init__(self, config: BlobviewConfig, ports: HostPorts):
        self.config = config
        self.ports = ports
        self.clock = ports.clock
        self._tasks: set[asyncio.Task] = set()
        self._exposed: list[str] = []
        self.last_render: PendingRender | None = None

        timing = config.timing
        self.registry = ObjectRegistry(ports.clock, ports.reader, spawn=self.spawn)
        self.resolver = BlobResolver(
            self.registry,
            ports.fetcher,
            ports.reader,
            max_bytes=config.max_bytes,
            timeout=timing.fetch_timeout_s,
        )
        self.renderer = Renderer(ports.reader, config.viewer, timing.verify_ms)
        self.surfaces = SurfaceManager(ports.navigator, config.open_in_new_surface)
        self.verifier = LoadVerifier(ports.clock, timing.verify_ms / 1000)
        self.watcher = MutationWatcher(ports.document, ports.clock)
        self.sweeper = Sweeper(
            self.registry,
            self.surfaces,
            ports.clock,
            interval=timing.sweep_interval_s,
            max_age=timing.max_age_s,
        )

    # -- task bookkeeping -------------------------------------------------

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Schedule pipeline work on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Pipeline task failed: %s", exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until all in-flight pipeline work has finished."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    # -- surfaces -----------------------------------------------------------

    def presurface(self) -> Surface | None:
        """Acquire a surface synchronously, inside the triggering hook.

        Only the hardened strategy does this; the simple strategy acquires
        after resolution.
        """
        if self.config.strategy != "hardened":
            return None
        return self.surfaces.acquire(reuse_existing=True)

    def _late_surface(self) -> Surface:
        surface = None
        if self.config.open_in_new_surface:
            surface = self.surfaces.acquire(reuse_existing=False)
        if surface is None:
            logger.warning("No new surface available, using the current one")
            surface = self.surfaces.current()
        return surface

    def _navigate_direct(self, surface: Surface | None, reference: str) -> None:
        try:
            if surface is not None and not surface.closed:
                surface.navigate(reference)
                return
        except Exception as e:
            logger.warning("Direct navigation of surface failed: %s", e)
        self.ports.navigator.navigate(reference, "_blank")

    # -- pipeline -------------------------------------------------------------

    async def handle(
        self,
        reference: str,
        label: str | None = None,
        surface: Surface | None = None,
    ) -> bool:
        """Resolve, classify and render ``reference``.

        Args:
            reference: Ephemeral object reference.
            label: File name for the viewer; defaults to the configured one.
            surface: Surface pre-acquired by the hook, if any.

        Returns:
            True if the user was given a response (viewer, labelled fallback
            or direct navigation); False if the reference is not a reachable
            PDF and the caller should perform the native action.
        """
        label = label or self.config.viewer.default_label
        logger.debug("Handling reference %s (%s)", reference, label)

        resolution = await self.resolver.resolve_detailed(reference)
        if resolution.reason is ResolveReason.TOO_LARGE or (
            resolution.blob is not None
            and exceeds_limit(resolution.blob.size, self.config.max_bytes)
        ):
            self._show_too_large(reference, label, resolution, surface)
            return True

        if resolution.blob is None:
            logger.debug("Not handling %s: %s", reference, resolution.reason.value)
            return False

        if surface is None or surface.closed:
            surface = self._late_surface()

        try:
            content = self._content_for(reference, resolution)
            await self.renderer.render(surface, content, label)
        except Exception as e:
            logger.warning(
                "Render failed for %s, navigating directly: %s", reference, e
            )
            self.surfaces.mark_used(surface)
            self._navigate_direct(surface, reference)
            return True

        self.surfaces.mark_used(surface)
        self.last_render = self.verifier.arm(surface, reference)
        logger.debug("PDF opened: %s", reference)
        return True

    def _content_for(self, reference: str, resolution: Resolution) -> Blob | str:
        if self.config.embed_mode != "reference":
            return resolution.blob
        if resolution.reason is ResolveReason.CACHED:
            # Still live; the page that minted it has not revoked it.
            return reference
        exposed = self.ports.allocator.create(resolution.blob)
        self._exposed.append(exposed)
        return exposed

    def _show_too_large(
        self,
        reference: str,
        label: str,
        resolution: Resolution,
        surface: Surface | None,
    ) -> None:
        size = resolution.size
        if size is None and resolution.blob is not None:
            size = resolution.blob.size
        size_mb = (size or 0) / 1024 / 1024
        logger.warning(
            "PDF too large for inline viewing (%.2fMB > %sMB): %s",
            size_mb,
            self.config.max_mb,
            reference,
        )
        message = self.config.viewer.too_large_text.format(
            size_mb=size_mb, max_mb=self.config.max_mb
        )
        if surface is None or surface.closed:
            surface = self._late_surface()
        self.surfaces.mark_used(surface)
        try:
            self.renderer.render_fallback(surface, reference, label, message)
        except Exception as e:
            logger.warning("Fallback render failed: %s", e)
            self._navigate_direct(surface, reference)

    # -- lifecycle ------------------------------------------------------------

    def on_unload(self) -> None:
        self.watcher.expire()
        self.sweeper.on_unload()
        for reference in self._exposed:
            try:
                self.ports.allocator.revoke(reference)
            except Exception as e:
                logger.debug("Could not revoke %s: %s", reference, e)
        self._exposed.clear()


def install(config: BlobviewConfig, ports: HostPorts, location: str | None = None):
    """Install interception for one page lifetime.

    Args:
        config: Configuration.
        ports: Host collaborators.
        location: Current page location, checked once against
            ``config.excluded_sites``.

    Returns:
        An :class:`~blobview.intercept.Interceptor`, or None when the page
        is excluded and nothing was installed.
    """
    from .intercept import Interceptor

    if location and is_site_excluded(location, config.excluded_sites):
        logger.debug("Site excluded, not installing: %s", location)
        return None

    session = Session(config, ports)
    interceptor = Interceptor(session)
    session.sweeper.start()
    logger.debug("blobview installed (strategy=%s)", config.strategy)
    return interceptor
