"""Entry points that divert PDF references into the pipeline.

The :class:`Interceptor` stands in for the host primitives a page calls:
the object-reference allocator, the navigation primitive, the
capture-phase click handler and the user-interaction listeners that arm
the mutation watcher. Each hook finishes its detection and surface
acquisition synchronously, then hands the rest of the work to the session
as a task. Any internal failure is logged and control returns to the
native primitive.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from bs4 import BeautifulSoup, Tag

from .classify import is_candidate_reference
from .ports import Surface, UserEvent
from .registry import Blob
from .session import Session

logger = logging.getLogger(__name__)

# Inputs that open a watch window
INTERACTION_EVENTS = frozenset({"click", "keydown", "submit", "change"})

_NOTICE_STYLE = "padding:10px;background:#f0f0f0;border:1px solid #ccc;"


def closest_reference_anchor(target: Tag | None) -> Tag | None:
    """Find the anchor with a candidate reference at or above ``target``."""
    node = target
    while isinstance(node, Tag):
        if node.name == "a" and is_candidate_reference(node.get("href")):
            return node
        node = node.parent
    return None


def anchor_label(anchor: Tag, default: str) -> str:
    """Name for the viewer: download attribute, visible text, then default."""
    download = anchor.get("download")
    if isinstance(download, str) and download.strip():
        return download.strip()
    text = anchor.get_text(strip=True)
    return text or default


class Interceptor:
    """Hooks installed for one page lifetime.

    Args:
        session: Session owning all interception state.
    """

    def __init__(self, session: Session):
        self.session = session
        self._ports = session.ports
        session.watcher.on_embed = self._on_embed
        session.watcher.accepts = self.should_divert

    def should_divert(self, url) -> bool:
        """True if ``url`` is a reference that may name a PDF."""
        if not is_candidate_reference(url):
            return False
        return not self.session.registry.is_declined(url)

    # -- object reference allocator --------------------------------------

    def create_object_url(self, obj) -> str:
        reference = self._ports.allocator.create(obj)
        try:
            if isinstance(obj, Blob):
                self.session.registry.track(reference, obj)
        except Exception:
            logger.exception("Reference creation hook failed for %s", reference)
        return reference

    def revoke_object_url(self, reference: str) -> None:
        try:
            self.session.registry.forget(reference)
        except Exception:
            logger.exception("Reference revocation hook failed for %s", reference)
        return self._ports.allocator.revoke(reference)

    # -- navigation primitive -----------------------------------------------

    def window_open(
        self, url=None, target: str | None = None, features: str | None = None
    ) -> Surface | None:
        """Navigation primitive override.

        Returns None when the request was diverted; the native primitive
        only runs if resolution finds the target is not a PDF.
        """
        try:
            if self.should_divert(url):
                logger.debug("Intercepted navigation to %s", url)
                surface = self.session.presurface()
                self.session.spawn(
                    self._divert(
                        url,
                        None,
                        surface,
                        lambda: self._ports.navigator.navigate(url, target, features),
                    )
                )
                return None
        except Exception:
            logger.exception("Navigation hook failed for %s", url)
        return self._ports.navigator.navigate(url, target, features)

    # -- user input -----------------------------------------------------------

    def on_interaction(self, kind: str) -> None:
        """User-input listener: opens the watch window."""
        if kind not in INTERACTION_EVENTS:
            return
        try:
            self.session.watcher.arm(self.session.config.watch_ms / 1000)
        except Exception:
            logger.exception("Could not arm insertion watcher")

    def on_click(self, event: UserEvent) -> None:
        """Capture-phase click handler."""
        self.on_interaction(event.type)
        anchor = None
        try:
            anchor = closest_reference_anchor(event.target)
            if anchor is None:
                return
            url = anchor.get("href")
            if not self.should_divert(url):
                return

            label = anchor_label(anchor, self.session.config.viewer.default_label)
            logger.debug("Intercepted click on %s (%s)", url, label)
            event.prevent_default()
            event.stop_propagation()

            target = anchor.get("target")
            if not isinstance(target, str):
                target = None
            surface = self.session.presurface()
            self.session.spawn(
                self._divert(
                    url,
                    label,
                    surface,
                    lambda: self._ports.navigator.navigate(url, target),
                )
            )
        except Exception:
            logger.exception("Click hook failed")
            if event.default_prevented and anchor is not None:
                # We already swallowed the click; do what it would have done.
                self._ports.navigator.navigate(anchor.get("href"))

    def on_unload(self) -> None:
        try:
            self.session.on_unload()
        except Exception:
            logger.exception("Unload cleanup failed")

    # -- pipeline glue --------------------------------------------------------

    async def _divert(
        self,
        reference: str,
        label: str | None,
        surface: Surface | None,
        native: Callable[[], object],
    ) -> bool:
        try:
            handled = await self.session.handle(reference, label, surface)
        except Exception:
            logger.exception("Pipeline failed for %s", reference)
            handled = False
        if handled:
            return True

        # Not a PDF (or unreachable): fall back to the action the user asked for.
        if surface is not None and not surface.closed:
            self.session.surfaces.mark_used(surface)
            surface.navigate(reference)
        else:
            native()
        return False

    def _on_embed(self, element: Tag, reference: str) -> None:
        try:
            surface = self.session.presurface()
            self.session.spawn(self._handle_embedded(element, reference, surface))
        except Exception:
            logger.exception("Insertion hook failed for %s", reference)

    async def _handle_embedded(
        self, element: Tag, reference: str, surface: Surface | None
    ) -> bool:
        try:
            handled = await self.session.handle(reference, None, surface)
        except Exception:
            logger.exception("Pipeline failed for embedded %s", reference)
            handled = False

        if not handled:
            # The element keeps rendering natively; don't leave a blank tab.
            self.session.surfaces.release(surface)
            return False

        if element.parent is not None:
            self._replace_with_notice(element)
        return True

    def _replace_with_notice(self, element: Tag) -> None:
        notice = BeautifulSoup("", "html.parser").new_tag(
            "div", attrs={"class": "blobview-notice", "style": _NOTICE_STYLE}
        )
        notice.string = self.session.config.viewer.notice_text
        element.replace_with(notice)
        self.session.clock.call_later(
            self.session.config.timing.notice_ms / 1000, notice.extract
        )
