"""Bounded-duration observation of document insertions.

After a user interaction, pages often inject a frame or embed pointing at
a freshly minted reference. :class:`MutationWatcher` subscribes to the
document's insertion notifications for a short window, scans inserted
elements for qualifying references and hands embedding elements to a
callback. Anchors are left alone; clicks on them are intercepted directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from bs4 import Tag

from .classify import is_candidate_reference
from .ports import Clock, Document, Subscription, TimerHandle

logger = logging.getLogger(__name__)

# Element name -> attribute carrying its content reference
REFERENCE_ATTRIBUTES = {
    "a": "href",
    "iframe": "src",
    "embed": "src",
    "object": "data",
}
EMBEDDING_TAGS = frozenset({"iframe", "embed", "object"})


def reference_of(element: Tag) -> str | None:
    attr = REFERENCE_ATTRIBUTES.get(element.name or "")
    if attr is None:
        return None
    value = element.get(attr)
    return value if isinstance(value, str) else None


def qualifies(element) -> bool:
    """True for anchors and embedding elements pointing at a reference."""
    return isinstance(element, Tag) and is_candidate_reference(reference_of(element))


def find_qualifying(node: Tag) -> list[Tag]:
    """Return ``node`` (if it qualifies) followed by qualifying descendants."""
    found = [node] if qualifies(node) else []
    found.extend(node.find_all(qualifies))
    return found


class MutationWatcher:
    """Insertion scanner with explicit ``arm``/``expire`` transitions.

    Args:
        document: Document port to subscribe to.
        clock: Clock driving the window.
        on_embed: Called with (element, reference) for the first qualifying
            embedding element of a batch.
        accepts: Extra filter on references (e.g. skip known non-PDFs).
    """

    def __init__(
        self,
        document: Document,
        clock: Clock,
        on_embed: Callable[[Tag, str], None] | None = None,
        accepts: Callable[[str], bool] | None = None,
    ):
        self._document = document
        self._clock = clock
        self.on_embed = on_embed
        self.accepts = accepts
        self.watch_until = 0.0
        self._subscription: Subscription | None = None
        self._timer: TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def arm(self, duration: float) -> None:
        """Open (or extend) the window for ``duration`` seconds from now."""
        self.watch_until = self._clock.now() + duration
        if self._subscription is None:
            self._subscription = self._document.subscribe(self.feed)
            logger.debug("Watching document insertions")
        self._schedule_expiry()

    def expire(self) -> None:
        """Close the window and unsubscribe."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.debug("Stopped watching document insertions")

    def _schedule_expiry(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        delay = max(0.0, self.watch_until - self._clock.now())
        self._timer = self._clock.call_later(delay, self._on_deadline)

    def _on_deadline(self) -> None:
        self._timer = None
        if self._clock.now() >= self.watch_until:
            self.expire()
        else:
            self._schedule_expiry()

    def feed(self, nodes: list) -> None:
        """Process one batch of inserted nodes."""
        if self._clock.now() > self.watch_until:
            self.expire()
            return

        for node in nodes:
            if not isinstance(node, Tag):
                continue
            for element in find_qualifying(node):
                if element.name not in EMBEDDING_TAGS:
                    continue
                reference = reference_of(element)
                if self.accepts is not None and not self.accepts(reference):
                    continue
                logger.debug("Reference inserted: <%s> %s", element.name, reference)
                self.expire()
                if self.on_embed is not None:
                    self.on_embed(element, reference)
                return
