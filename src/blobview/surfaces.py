"""Acquisition of display surfaces for the viewer.

Popup blockers only let a page create a window from inside a direct input
handler, so the hardened strategy acquires its surface synchronously in
the interception hook, before any await. The surface is a single named
child that is reused across interceptions until the user closes it.
"""

from __future__ import annotations

import logging

from .ports import Navigator, Surface

logger = logging.getLogger(__name__)

SURFACE_NAME = "blobview-viewer"


class SurfaceManager:
    """Hand out display surfaces.

    Args:
        navigator: Host window primitive.
        open_in_new_surface: False to always use the current surface.
    """

    def __init__(self, navigator: Navigator, open_in_new_surface: bool = True):
        self._navigator = navigator
        self.open_in_new_surface = open_in_new_surface
        self._named: Surface | None = None
        # Surfaces this manager opened that nothing has been written to yet
        self._untouched: list[Surface] = []

    @property
    def named(self) -> Surface | None:
        """The reusable child surface, if one is open."""
        if self._named is not None and self._named.closed:
            self._named = None
        return self._named

    def acquire(self, reuse_existing: bool) -> Surface | None:
        """Obtain a surface to render into.

        Args:
            reuse_existing: Reuse the named child surface while it is open
                (hardened strategy); otherwise open a fresh one.

        Returns:
            A surface, or None when creation was suppressed. Callers degrade
            to :meth:`current`.
        """
        if not self.open_in_new_surface:
            return self.current()

        if reuse_existing and self.named is not None:
            return self._named

        name = SURFACE_NAME if reuse_existing else "_blank"
        try:
            surface = self._navigator.open_surface(name)
        except Exception as e:
            logger.warning("Surface creation failed: %s", e)
            return None
        if surface is None or surface.closed:
            logger.warning("Surface creation was blocked")
            return None

        try:
            surface.clear_opener()
        except Exception as e:
            logger.debug("Could not clear opener: %s", e)

        if reuse_existing:
            self._named = surface
        self._untouched.append(surface)
        return surface

    def current(self) -> Surface:
        return self._navigator.current()

    def mark_used(self, surface: Surface) -> None:
        self._untouched = [s for s in self._untouched if s is not surface]

    def release(self, surface: Surface | None) -> None:
        """Close a surface this manager opened if nothing was ever shown in it."""
        if surface is None or not any(s is surface for s in self._untouched):
            return
        self.mark_used(surface)
        if surface is self._named:
            self._named = None
        try:
            surface.close()
        except Exception as e:
            logger.debug("Could not close unused surface: %s", e)

    def prune(self) -> None:
        """Drop references to surfaces the user has closed."""
        self._untouched = [s for s in self._untouched if not s.closed]
        if self._named is not None and self._named.closed:
            self._named = None

    def forget(self) -> None:
        self._named = None
        self._untouched = []
