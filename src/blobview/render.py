"""Viewer document generation and load verification.

A resolved PDF is shown by writing a minimal document into a display
surface: a full-surface ``<iframe>`` pointed at the content plus a hidden
fallback panel with a direct link to the same content. The panel is
revealed when the embedded viewer errors or stays blank; independently,
:class:`LoadVerifier` navigates the surface straight to the original
reference when the viewer misses its deadline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import ViewerConfig
from .errors import RenderError
from .ports import BlobReader, Clock, Surface
from .registry import Blob

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# References are interpolated into attribute values; any of these would let
# an untrusted reference break out of the attribute.
_UNSAFE_REFERENCE_CHARS = frozenset("\"'<>")


def check_reference(src: str) -> str:
    """Reject a content reference that is unsafe to use as an attribute value.

    Raises:
        RenderError: If the reference contains quote or angle-bracket
            characters.
    """
    if not isinstance(src, str) or not src:
        raise RenderError("Empty content reference")
    if any(c in _UNSAFE_REFERENCE_CHARS for c in src):
        raise RenderError(f"Refusing unsafe content reference: {src[:80]!r}")
    return src


def _html_escape(s: str) -> str:
    """Escape a string for HTML text and attribute values."""
    return (
        s.replace("&", "&amp;")
        .replace('"', "&quot;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


_BASE_CSS = """
* { margin: 0; padding: 0; box-sizing: border-box; }
html, body { height: 100%; width: 100%; overflow: hidden; }
iframe { width: 100%; height: 100%; border: none; display: block; }
.fallback {
  padding: 20px;
  font-family: system-ui, -apple-system, sans-serif;
  text-align: center;
}
.fallback[hidden] { display: none; }
.fallback p { margin-bottom: 12px; }
.fallback a { color: #0066cc; text-decoration: none; font-size: 18px; }
"""


def build_viewer_document(
    src: str,
    label: str,
    viewer: ViewerConfig | None = None,
    verify_ms: int = 1200,
) -> str:
    """Build the viewer document for a content reference.

    Args:
        src: Content reference (data: URL or live object reference).
            Must already have passed :func:`check_reference`.
        label: File name shown as title and offered for download.
        viewer: Viewer texts.
        verify_ms: Delay before the in-page blank-viewer check.

    Returns:
        Complete HTML string.
    """
    viewer = viewer or ViewerConfig()
    title = _html_escape(label)

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <style>{_BASE_CSS}</style>
</head>
<body>
  <iframe id="blobview-frame" src="{src}" title="{title}" allowfullscreen></iframe>
  <div class="fallback" id="blobview-fallback" hidden>
    <p>{_html_escape(viewer.fallback_text)}</p>
    <a href="{src}" download="{title}" target="_blank" rel="noopener">{_html_escape(viewer.link_text)}</a>
  </div>
  <noscript>
    <div class="fallback">
      <a href="{src}" download="{title}">{_html_escape(viewer.link_text)}</a>
    </div>
  </noscript>
  <script>
  (function () {{
    var frame = document.getElementById('blobview-frame');
    var panel = document.getElementById('blobview-fallback');
    var reveal = function () {{
      panel.hidden = false;
      frame.style.display = 'none';
    }};
    frame.addEventListener('error', reveal);
    setTimeout(function () {{
      try {{
        var doc = frame.contentDocument;
        if (doc && doc.body && !doc.body.childElementCount) reveal();
      }} catch (e) {{}}
    }}, {int(verify_ms)});
  }})();
  </script>
</body>
</html>"""


def build_fallback_document(
    reference: str,
    label: str,
    message: str,
    viewer: ViewerConfig | None = None,
) -> str:
    """Build a document showing only the labelled direct link.

    The reference is escaped rather than rejected, so this is usable even
    when the reference failed :func:`check_reference`.
    """
    viewer = viewer or ViewerConfig()
    title = _html_escape(label)
    href = _html_escape(reference)

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <style>{_BASE_CSS}</style>
</head>
<body>
  <div class="fallback" id="blobview-fallback">
    <p>{_html_escape(message)}</p>
    <a href="{href}" download="{title}" target="_blank" rel="noopener">{_html_escape(viewer.link_text)}</a>
  </div>
</body>
</html>"""


@dataclass
class PendingRender:
    """Per-surface state between a viewer write and its fallback decision."""

    reference: str
    loaded: bool = False
    fallback_shown: bool = False

    @property
    def done(self) -> bool:
        return self.loaded or self.fallback_shown


class Renderer:
    """Write viewer documents into surfaces.

    Args:
        reader: Reader used to turn raw bytes into an inline reference.
        viewer: Viewer texts.
        verify_ms: Passed through to the in-page blank-viewer check.
    """

    def __init__(
        self,
        reader: BlobReader,
        viewer: ViewerConfig | None = None,
        verify_ms: int = 1200,
    ):
        self._reader = reader
        self.viewer = viewer or ViewerConfig()
        self.verify_ms = verify_ms

    async def to_reference(self, content: Blob | str) -> str:
        """Turn pipeline content into an embeddable reference.

        Raw bytes are converted to an inline ``data:`` reference. The type
        is forced to application/pdf so generically-labelled PDFs still
        reach the PDF viewer. A string is taken to be a reusable reference
        and returned as-is.
        """
        if isinstance(content, Blob):
            return await self._reader.to_data_reference(content, PDF_CONTENT_TYPE)
        return content

    async def render(
        self, surface: Surface, content: Blob | str, label: str | None = None
    ) -> None:
        """Overwrite ``surface`` with a viewer for ``content``.

        Raises:
            RenderError: If the reference is unsafe or the surface is gone.
                Any exception raised by the surface's write propagates too;
                callers fall back to navigating the surface directly.
        """
        src = check_reference(await self.to_reference(content))
        html = build_viewer_document(
            src, label or self.viewer.default_label, self.viewer, self.verify_ms
        )
        if surface.closed:
            raise RenderError("Surface was closed before the viewer was written")
        surface.write(html)
        logger.debug("Viewer written (%d chars)", len(html))

    def render_fallback(
        self, surface: Surface, reference: str, label: str, message: str
    ) -> None:
        if surface.closed:
            raise RenderError("Surface was closed before the fallback was written")
        surface.write(build_fallback_document(reference, label, message, self.viewer))


class LoadVerifier:
    """Deadline for an embedded viewer to report that it populated.

    Whichever comes first, the surface's load signal or the deadline, is
    final. On the deadline the surface is navigated directly to the original
    reference so the user is never left with a blank surface.
    """

    def __init__(self, clock: Clock, timeout: float = 1.2):
        self._clock = clock
        self.timeout = timeout

    def arm(self, surface: Surface, reference: str) -> PendingRender:
        state = PendingRender(reference=reference)

        def on_deadline() -> None:
            if state.done:
                return
            state.fallback_shown = True
            if surface.closed:
                return
            logger.info("Viewer did not load in time, navigating to %s", reference)
            try:
                surface.navigate(reference)
            except Exception as e:
                logger.warning("Direct navigation fallback failed: %s", e)

        timer = self._clock.call_later(self.timeout, on_deadline)

        def on_loaded() -> None:
            if state.done:
                return
            state.loaded = True
            timer.cancel()

        surface.on_load(on_loaded)
        return state
