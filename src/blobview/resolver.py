"""Resolution of ephemeral object references back into bytes.

References minted on this page are served from the registry. Anything
else (typically a reference minted by a background worker) is fetched by
addressing the reference itself, which the host resolves within the same
origin. Every failure collapses to a negative result; nothing raises.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .classify import (
    PDF_SIGNATURE,
    Classification,
    classify_by_bytes,
    classify_by_type,
)
from .ports import BlobReader, Fetcher, FetchResponse
from .registry import Blob, EntryState, ObjectRegistry, exceeds_limit

logger = logging.getLogger(__name__)


class ResolveReason(Enum):
    CACHED = "cached"
    FETCHED = "fetched"
    NOT_PDF = "not-pdf"
    TOO_LARGE = "too-large"
    FAILED = "failed"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a reference.

    ``blob`` is set only for CACHED and FETCHED. ``size`` is the best known
    byte count (declared length for an aborted transfer).
    """

    reason: ResolveReason
    blob: Blob | None = None
    size: int | None = None

    @property
    def ok(self) -> bool:
        return self.blob is not None


class BlobResolver:
    """Resolve references to PDF binary objects.

    Args:
        registry: Registry consulted before any network round-trip.
        fetcher: Fetch port used for references the registry does not hold.
        reader: Reader used for byte sniffing.
        max_bytes: Size ceiling for fetched content (0 = unlimited).
        timeout: Seconds allowed for a fetch, None or 0 for no limit.
    """

    def __init__(
        self,
        registry: ObjectRegistry,
        fetcher: Fetcher,
        reader: BlobReader,
        max_bytes: int = 0,
        timeout: float | None = None,
    ):
        self._registry = registry
        self._fetcher = fetcher
        self._reader = reader
        self.max_bytes = max_bytes
        self.timeout = timeout or None

    async def resolve(self, reference: str) -> Blob | None:
        """Return the PDF binary object named by ``reference``, or None."""
        return (await self.resolve_detailed(reference)).blob

    async def resolve_detailed(self, reference: str) -> Resolution:
        try:
            blob = self._registry.blob_for(reference)
            if blob is not None:
                return await self._from_registry(reference, blob)
            return await asyncio.wait_for(self._fetch(reference), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Fetch timed out after %ss: %s", self.timeout, reference)
        except Exception as e:
            logger.warning("Failed to resolve %s: %s", reference, e)
        return Resolution(ResolveReason.FAILED)

    async def _from_registry(self, reference: str, blob: Blob) -> Resolution:
        entry = self._registry.lookup(reference)
        if entry is not None and entry.state is EntryState.PENDING:
            head = await self._reader.read_range(blob, 0, len(PDF_SIGNATURE))
            if classify_by_bytes(head) is not Classification.PDF:
                return Resolution(ResolveReason.NOT_PDF, size=blob.size)
        logger.debug("Reference served from registry: %s", reference)
        return Resolution(ResolveReason.CACHED, blob=blob, size=blob.size)

    async def _fetch(self, reference: str) -> Resolution:
        logger.debug("Fetching reference: %s", reference)
        response = await self._fetcher.fetch(
            reference, cache="no-store", credentials="same-origin"
        )
        try:
            if not response.ok:
                logger.warning(
                    "Fetch of %s returned HTTP %s", reference, response.status
                )
                return Resolution(ResolveReason.FAILED)

            declared_type = classify_by_type(response.content_type)
            if declared_type is Classification.NOT_PDF:
                logger.debug(
                    "Ignoring non-PDF reference %s (%s)",
                    reference,
                    response.content_type,
                )
                return Resolution(ResolveReason.NOT_PDF, size=response.content_length)

            declared = response.content_length
            if declared is not None and exceeds_limit(declared, self.max_bytes):
                logger.info(
                    "Aborting fetch of %s: declared %d bytes exceeds %d",
                    reference,
                    declared,
                    self.max_bytes,
                )
                await response.aclose()
                return Resolution(ResolveReason.TOO_LARGE, size=declared)

            body = await self._read_body(
                response, sniff=declared_type is Classification.UNKNOWN
            )
            if isinstance(body, Resolution):
                return body
        finally:
            await response.aclose()

        blob = Blob(body, type=response.content_type)
        verdict = declared_type
        if verdict is Classification.UNKNOWN:
            head = await self._reader.read_range(blob, 0, len(PDF_SIGNATURE))
            verdict = classify_by_bytes(head)
        if verdict is not Classification.PDF:
            logger.debug("Ignoring non-PDF reference %s (%s)", reference, blob.type)
            return Resolution(ResolveReason.NOT_PDF, size=blob.size)

        if exceeds_limit(blob.size, self.max_bytes):
            return Resolution(ResolveReason.TOO_LARGE, size=blob.size)

        logger.debug("PDF fetched: %s (%d bytes)", reference, blob.size)
        return Resolution(ResolveReason.FETCHED, blob=blob, size=blob.size)

    async def _read_body(
        self, response: FetchResponse, sniff: bool = False
    ) -> bytes | Resolution:
        """Read the body, stopping as soon as it passes the ceiling.

        With ``sniff`` set the leading bytes are checked against the PDF
        signature as they arrive and the transfer stops at the first
        mismatch.

        Returns:
            The body, or a NOT_PDF or TOO_LARGE resolution if the transfer
            was aborted.
        """
        chunks: list[bytes] = []
        total = 0
        head = b""
        async for chunk in response.iter_bytes():
            total += len(chunk)
            if sniff and len(head) < len(PDF_SIGNATURE):
                head += chunk[: len(PDF_SIGNATURE) - len(head)]
                if not PDF_SIGNATURE.startswith(head):
                    logger.debug("Aborting transfer: content is not a PDF")
                    await response.aclose()
                    return Resolution(ResolveReason.NOT_PDF, size=total)
            if exceeds_limit(total, self.max_bytes):
                logger.info("Aborting transfer past %d bytes", self.max_bytes)
                await response.aclose()
                return Resolution(ResolveReason.TOO_LARGE, size=total)
            chunks.append(chunk)
        return b"".join(chunks)
