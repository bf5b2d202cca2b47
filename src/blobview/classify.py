"""Content classification for ephemeral object references.

Decides whether a binary object is a PDF, either from the content-type
label its creator supplied or from its first bytes. Everything here is
pure: no state, no I/O, safe to call from any context.
"""

import mimetypes
import re
from enum import Enum
from pathlib import Path

# PDF magic number: "%PDF-"
PDF_SIGNATURE = b"%PDF-"

# Content-type family used for PDFs by browsers and servers in the wild.
_PDF_TYPE_RE = re.compile(r"application/(pdf|x-pdf|acrobat)", re.IGNORECASE)

# Labels that say nothing about the content; these defer to byte sniffing.
GENERIC_TYPES = frozenset({"", "application/octet-stream"})

REFERENCE_SCHEME = "blob:"


class Classification(Enum):
    """Outcome of classifying a binary object."""

    PDF = "pdf"
    UNKNOWN = "unknown"
    NOT_PDF = "not-pdf"


def classify_by_type(label: str | None) -> Classification:
    """Classify a content-type label.

    Args:
        label: Content-type label, possibly with parameters
            (e.g. ``application/pdf; name=x.pdf``) or None.

    Returns:
        PDF for the PDF family, UNKNOWN for an absent or generic binary
        label, NOT_PDF for anything else.
    """
    if not label:
        return Classification.UNKNOWN
    if _PDF_TYPE_RE.search(label):
        return Classification.PDF
    essence = label.split(";", 1)[0].strip().lower()
    if essence in GENERIC_TYPES:
        return Classification.UNKNOWN
    return Classification.NOT_PDF


def classify_by_bytes(first_bytes) -> Classification:
    """Classify the leading bytes of a binary object.

    Never raises: anything that cannot be read as bytes is NOT_PDF.
    """
    try:
        head = bytes(first_bytes[: len(PDF_SIGNATURE)])
    except Exception:
        return Classification.NOT_PDF
    if len(head) < len(PDF_SIGNATURE):
        return Classification.NOT_PDF
    if head == PDF_SIGNATURE:
        return Classification.PDF
    return Classification.NOT_PDF


def is_candidate_reference(url) -> bool:
    """Check whether a URL-like value is an ephemeral object reference."""
    return isinstance(url, str) and url[: len(REFERENCE_SCHEME)].lower() == (
        REFERENCE_SCHEME
    )


def detect_type(path: Path) -> str:
    """Guess the content-type label of a file on disk.

    Args:
        path: Path to the file.

    Returns:
        Content-type string, ``application/octet-stream`` when unknown.
    """
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"
