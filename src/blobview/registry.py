"""Registry of ephemeral object references that may name PDFs.

The registry sits behind the reference-creation hook. It keeps a mapping
from reference to entry metadata, and a side table from a generated blob
identifier to the binary object itself. Both are dropped together, so the
registry never keeps an object alive past its entry.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum

from .classify import (
    PDF_SIGNATURE,
    Classification,
    classify_by_bytes,
    classify_by_type,
)
from .ports import BlobReader, Clock

logger = logging.getLogger(__name__)

Spawn = Callable[[Coroutine], object]


def _new_blob_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Blob:
    """Immutable byte sequence with an optional content-type label.

    ``blob_id`` is carried alongside the bytes and keys the registry's side
    table; two blobs with equal bytes are still distinct objects.
    """

    data: bytes
    type: str = ""
    blob_id: str = field(default_factory=_new_blob_id, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

    @property
    def size(self) -> int:
        return len(self.data)


class EntryState(Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"


@dataclass
class RegistryEntry:
    """Metadata kept for a tracked reference."""

    reference: str
    blob_id: str
    created_at: float
    size: int
    type: str
    state: EntryState = EntryState.CONFIRMED


def exceeds_limit(size: int, max_bytes: int) -> bool:
    """Check a byte count against a ceiling where 0 means unlimited."""
    return bool(max_bytes) and size > max_bytes


class ObjectRegistry:
    """Bounded mapping of live references to PDF-candidate binary objects.

    Entries exist only for references classified as PDF at creation time
    (CONFIRMED) or whose type was unknown and are awaiting a byte check
    (PENDING). References seen at creation and found not to be PDFs are
    remembered as *declined* so interception can leave them alone.

    Eviction by age is the sweeper's job; reads never evict.
    """

    def __init__(
        self,
        clock: Clock,
        reader: BlobReader,
        spawn: Spawn | None = None,
    ):
        self._clock = clock
        self._reader = reader
        self._spawn = spawn
        self._entries: dict[str, RegistryEntry] = {}
        self._blobs: dict[str, Blob] = {}
        self._declined: dict[str, float] = {}

    def __contains__(self, reference: str) -> bool:
        return reference in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def track(self, reference: str, blob: Blob) -> Classification:
        """Record a newly created reference.

        Never blocks: for an unknown type the byte check is spawned and the
        entry stays PENDING until it completes.

        Returns:
            Classification by type label.
        """
        verdict = classify_by_type(blob.type)
        if verdict is Classification.NOT_PDF:
            self._declined[reference] = self._clock.now()
            logger.debug("Not tracking %s (%s)", reference, blob.type)
            return verdict

        state = (
            EntryState.CONFIRMED
            if verdict is Classification.PDF
            else EntryState.PENDING
        )
        self._insert(reference, blob, state)

        if state is EntryState.PENDING:
            if not self._defer_check(reference, blob):
                # Nothing to defer to; sniff inline from the bytes we hold.
                self._settle(reference, blob, classify_by_bytes(blob.data))
        else:
            logger.debug(
                "PDF reference captured: %s (%.2fMB)",
                reference,
                blob.size / 1024 / 1024,
            )
        return verdict

    def _defer_check(self, reference: str, blob: Blob) -> bool:
        if self._spawn is None:
            return False
        try:
            self._spawn(self._confirm(reference, blob))
        except RuntimeError:
            return False
        return True

    async def _confirm(self, reference: str, blob: Blob) -> None:
        try:
            head = await self._reader.read_range(blob, 0, len(PDF_SIGNATURE))
        except Exception as e:
            logger.debug("Byte check failed for %s: %s", reference, e)
            self._drop_if_current(reference, blob)
            return
        self._settle(reference, blob, classify_by_bytes(head))

    def _settle(self, reference: str, blob: Blob, verdict: Classification) -> None:
        entry = self._entries.get(reference)
        if entry is None or entry.blob_id != blob.blob_id:
            # Revoked (or replaced) while the check was in flight.
            return
        if verdict is Classification.PDF:
            entry.state = EntryState.CONFIRMED
            logger.debug("PDF detected by signature: %s", reference)
        else:
            self._remove(reference)
            self._declined[reference] = self._clock.now()

    def _drop_if_current(self, reference: str, blob: Blob) -> None:
        entry = self._entries.get(reference)
        if entry is not None and entry.blob_id == blob.blob_id:
            self._remove(reference)

    def _insert(self, reference: str, blob: Blob, state: EntryState) -> None:
        self._remove(reference)
        self._declined.pop(reference, None)
        self._entries[reference] = RegistryEntry(
            reference=reference,
            blob_id=blob.blob_id,
            created_at=self._clock.now(),
            size=blob.size,
            type=blob.type,
            state=state,
        )
        self._blobs[blob.blob_id] = blob

    def _remove(self, reference: str) -> RegistryEntry | None:
        entry = self._entries.pop(reference, None)
        if entry is not None:
            self._blobs.pop(entry.blob_id, None)
        return entry

    def forget(self, reference: str) -> bool:
        """Drop everything known about ``reference``. Idempotent.

        Returns:
            True if an entry was removed.
        """
        self._declined.pop(reference, None)
        removed = self._remove(reference) is not None
        if removed:
            logger.debug("Revoked reference released: %s", reference)
        return removed

    def lookup(self, reference: str) -> RegistryEntry | None:
        return self._entries.get(reference)

    def blob_for(self, reference: str) -> Blob | None:
        entry = self._entries.get(reference)
        if entry is None:
            return None
        return self._blobs.get(entry.blob_id)

    def is_declined(self, reference: str) -> bool:
        """True if the reference was created here and is known not to be a PDF."""
        return reference in self._declined

    def references(self) -> list[str]:
        return list(self._entries)

    def evict_older_than(self, cutoff: float) -> list[str]:
        """Remove entries created before ``cutoff`` (clock seconds).

        Returns:
            The evicted references.
        """
        stale = [ref for ref, e in self._entries.items() if e.created_at < cutoff]
        for reference in stale:
            self._remove(reference)
            logger.debug("Evicted stale reference: %s", reference)
        for reference in [r for r, t in self._declined.items() if t < cutoff]:
            del self._declined[reference]
        return stale

    def clear(self) -> None:
        self._entries.clear()
        self._blobs.clear()
        self._declined.clear()
