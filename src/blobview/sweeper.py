"""Periodic and unload-triggered cleanup."""

from __future__ import annotations

import logging

from .ports import Clock, TimerHandle
from .registry import ObjectRegistry
from .surfaces import SurfaceManager

logger = logging.getLogger(__name__)


class Sweeper:
    """Evict stale registry entries and forget closed surfaces.

    Args:
        registry: Registry to sweep.
        surfaces: Surface manager whose held references are pruned.
        clock: Clock driving the sweep timer.
        interval: Seconds between sweeps.
        max_age: Entries older than this many seconds are evicted.
    """

    def __init__(
        self,
        registry: ObjectRegistry,
        surfaces: SurfaceManager,
        clock: Clock,
        interval: float = 300.0,
        max_age: float = 1800.0,
    ):
        self._registry = registry
        self._surfaces = surfaces
        self._clock = clock
        self.interval = interval
        self.max_age = max_age
        self._timer: TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._timer is None:
            self._timer = self._clock.call_later(self.interval, self._tick)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        self._timer = None
        try:
            self.sweep()
        except Exception:
            logger.exception("Registry sweep failed")
        self.start()

    def sweep(self) -> list[str]:
        """Run one sweep.

        Returns:
            References evicted for age.
        """
        evicted = self._registry.evict_older_than(self._clock.now() - self.max_age)
        self._surfaces.prune()
        if evicted:
            logger.debug("Swept %d stale reference(s)", len(evicted))
        return evicted

    def on_unload(self) -> None:
        """Page is going away: nothing tracked is meaningful any more."""
        self.stop()
        self._registry.clear()
        self._surfaces.forget()
        logger.debug("Registry cleared on unload")
