"""End-to-end tests for blobview.intercept and blobview.session."""

import base64

import pytest
from bs4 import BeautifulSoup

from blobview.config import BlobviewConfig
from blobview.intercept import Interceptor, anchor_label, closest_reference_anchor
from blobview.registry import Blob
from blobview.session import install
from blobview.surfaces import SURFACE_NAME
from blobview.testing import (
    RecordingNavigator,
    ScriptedFetcher,
    click_event,
    make_pdf_bytes,
    make_ports,
)

pytestmark = pytest.mark.anyio

MB = 1024 * 1024


def _frame_src(html):
    return BeautifulSoup(html, "html.parser").find("iframe")["src"]


async def _click(interceptor, document, reference, text="report.pdf", **attrs):
    anchor = document.new_tag("a", {"href": reference, **attrs}, text=text)
    document.insert(anchor)
    event = click_event(anchor)
    interceptor.on_click(event)
    await interceptor.session.drain()
    return event


@pytest.fixture
def interceptor(config, ports):
    return install(config, ports)


class TestClickInterception:
    """Tests for clicks on anchors pointing at references."""

    async def test_pdf_click_opens_viewer(self, interceptor, document, navigator):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(1200), "application/pdf")
        )

        event = await _click(interceptor, document, reference)

        assert event.default_prevented
        assert event.propagation_stopped
        assert len(navigator.all_writes) == 1
        prefix = "data:application/pdf;base64,"
        src = _frame_src(navigator.all_writes[0])
        assert src.startswith(prefix)
        assert base64.b64decode(src[len(prefix) :]) == make_pdf_bytes(1200)
        assert navigator.navigations == []
        assert navigator.open_requests == [SURFACE_NAME]

    async def test_text_click_untouched(self, interceptor, document, navigator):
        reference = interceptor.create_object_url(Blob(b"hello", "text/plain"))

        event = await _click(interceptor, document, reference, text="notes.txt")

        assert not event.default_prevented
        assert navigator.all_writes == []
        assert navigator.open_requests == []

    async def test_label_from_download_attribute(
        self, interceptor, document, navigator
    ):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(
            interceptor, document, reference, text="Get it", download="q3-report.pdf"
        )

        assert "<title>q3-report.pdf</title>" in navigator.all_writes[0]

    async def test_surface_reused_across_clicks(self, interceptor, document, navigator):
        for _ in range(2):
            reference = interceptor.create_object_url(
                Blob(make_pdf_bytes(), "application/pdf")
            )
            await _click(interceptor, document, reference)

        assert navigator.open_requests == [SURFACE_NAME]
        assert len(navigator.opened[0].writes) == 2

    async def test_nested_click_target(self, interceptor, document, navigator):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )
        anchor = document.new_tag("a", {"href": reference})
        span = document.new_tag("span", text="report")
        anchor.append(span)
        document.insert(anchor)

        event = click_event(span)
        interceptor.on_click(event)
        await interceptor.session.drain()

        assert event.default_prevented
        assert len(navigator.all_writes) == 1

    async def test_click_elsewhere_ignored(self, interceptor, document, navigator):
        [div] = document.insert("<div>text</div>")

        event = click_event(div)
        interceptor.on_click(event)

        assert not event.default_prevented
        assert interceptor.session.pending == 0

    async def test_generic_type_sniffed(self, interceptor, document, navigator):
        reference = interceptor.create_object_url(Blob(make_pdf_bytes(), ""))
        await interceptor.session.drain()

        event = await _click(interceptor, document, reference)

        assert event.default_prevented
        assert len(navigator.all_writes) == 1


class TestResolution:
    """Tests for how the pipeline reaches the bytes."""

    async def test_tracked_reference_with_failing_fetcher(
        self, config, clock, navigator, document
    ):
        fetcher = ScriptedFetcher()
        fetcher.error = OSError("network down")
        ports = make_ports(
            fetcher=fetcher, navigator=navigator, clock=clock, document=document
        )
        interceptor = install(config, ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(interceptor, document, reference)

        assert len(navigator.all_writes) == 1
        assert fetcher.calls == []

    async def test_worker_reference_fetched(
        self, interceptor, ports, document, navigator
    ):
        """Test a reference minted behind the hooks is resolved by fetch."""
        reference = ports.allocator.create(Blob(make_pdf_bytes(), "application/pdf"))

        event = await _click(interceptor, document, reference)

        assert event.default_prevented
        assert _frame_src(navigator.all_writes[0]).startswith("data:application/pdf")

    async def test_unknown_non_pdf_falls_back_to_navigation(
        self, interceptor, ports, document, navigator
    ):
        reference = ports.allocator.create(Blob(b"plain text", "text/plain"))

        await _click(interceptor, document, reference)

        surface = navigator.opened[0]
        assert surface.writes == []
        assert surface.navigations == [reference]

    async def test_unreachable_reference_simple_strategy(
        self, ports, document, navigator
    ):
        interceptor = install(BlobviewConfig(strategy="simple"), ports)

        await _click(interceptor, document, "blob:https://example.test/gone")

        assert navigator.open_requests == []
        assert [n.url for n in navigator.navigations] == [
            "blob:https://example.test/gone"
        ]


class TestTooLarge:
    """Tests for content over the size ceiling."""

    async def test_declared_length_over_ceiling(
        self, config, clock, navigator, document
    ):
        """Test a 150MB response under the 80MB default gets a direct link."""
        fetcher = ScriptedFetcher()
        reference = "blob:https://example.test/huge"
        fetcher.add(
            reference,
            make_pdf_bytes(1200),
            "application/pdf",
            headers={"Content-Length": str(150 * MB)},
        )
        ports = make_ports(
            fetcher=fetcher, navigator=navigator, clock=clock, document=document
        )
        interceptor = install(config, ports)

        assert interceptor.window_open(reference) is None
        await interceptor.session.drain()

        html = navigator.all_writes[0]
        soup = BeautifulSoup(html, "html.parser")
        assert soup.find("iframe") is None
        assert soup.find("a")["href"] == reference
        assert "150.00MB > 80MB" in soup.get_text()
        assert fetcher.responses[0].bytes_sent == 0

    async def test_oversized_non_pdf_left_to_host(
        self, config, clock, navigator, document
    ):
        """Test a huge video is handed back instead of shown as a large PDF."""
        fetcher = ScriptedFetcher()
        reference = "blob:https://example.test/video"
        fetcher.add(
            reference,
            b"\0" * 10,
            "video/mp4",
            headers={"Content-Length": str(150 * MB)},
        )
        ports = make_ports(
            fetcher=fetcher, navigator=navigator, clock=clock, document=document
        )
        interceptor = install(config, ports)

        interceptor.window_open(reference, "_blank")
        await interceptor.session.drain()

        assert navigator.all_writes == []
        assert navigator.opened[0].navigations == [reference]

    async def test_oversized_untyped_non_pdf_native(
        self, clock, navigator, document
    ):
        fetcher = ScriptedFetcher()
        reference = "blob:https://example.test/archive"
        fetcher.add(
            reference,
            b"PK\x03\x04" + b"\0" * (2 * MB),
            "application/zip",
            declare_length=False,
        )
        ports = make_ports(
            fetcher=fetcher, navigator=navigator, clock=clock, document=document
        )
        interceptor = install(BlobviewConfig(strategy="simple", max_mb=1), ports)

        interceptor.window_open(reference, "_blank")
        await interceptor.session.drain()

        assert navigator.all_writes == []
        assert [n.url for n in navigator.navigations] == [reference]

    async def test_tracked_blob_over_ceiling(self, ports, document, navigator):
        interceptor = install(BlobviewConfig(max_mb=1), ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(2 * MB), "application/pdf")
        )

        await _click(interceptor, document, reference, text="big.pdf")

        html = navigator.all_writes[0]
        assert "data:" not in html
        assert f'href="{reference}"' in html
        assert 'download="big.pdf"' in html


class TestDegradation:
    """Tests for blocked surfaces and failed renders."""

    async def test_blocked_popup_uses_current_surface(self, config, clock, document):
        navigator = RecordingNavigator(block_popups=True)
        ports = make_ports(navigator=navigator, clock=clock, document=document)
        interceptor = install(config, ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(interceptor, document, reference)

        assert len(navigator.current().writes) == 1

    async def test_render_failure_navigates_directly(
        self, interceptor, document, navigator
    ):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )
        anchor = document.new_tag("a", {"href": reference}, text="x.pdf")
        document.insert(anchor)

        interceptor.on_click(click_event(anchor))
        navigator.opened[0].write_error = RuntimeError("blocked by policy")
        await interceptor.session.drain()

        assert navigator.opened[0].navigations == [reference]

    async def test_viewer_deadline_navigates_to_reference(
        self, interceptor, document, navigator, clock
    ):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )
        await _click(interceptor, document, reference)

        clock.advance(1.3)

        assert navigator.opened[0].navigations == [reference]
        assert interceptor.session.last_render.fallback_shown

    async def test_viewer_load_cancels_deadline(
        self, interceptor, document, navigator, clock
    ):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )
        await _click(interceptor, document, reference)

        navigator.opened[0].mark_loaded()
        clock.advance(5)

        assert navigator.opened[0].navigations == []
        assert interceptor.session.last_render.loaded

    async def test_reused_surface_deadline_per_render(
        self, interceptor, document, navigator, clock
    ):
        """Test the second viewer in the reused surface gets its own deadline."""
        first = interceptor.create_object_url(Blob(make_pdf_bytes(), "application/pdf"))
        await _click(interceptor, document, first)
        navigator.opened[0].mark_loaded()

        second = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )
        await _click(interceptor, document, second)
        assert not interceptor.session.last_render.loaded

        clock.advance(1.3)

        surface = navigator.opened[0]
        assert len(surface.writes) == 2
        assert surface.navigations == [second]
        assert interceptor.session.last_render.fallback_shown

    async def test_simple_strategy_opens_after_resolution(self, ports, document):
        navigator = ports.navigator
        interceptor = install(BlobviewConfig(strategy="simple"), ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(interceptor, document, reference)

        assert navigator.open_requests == ["_blank"]
        assert len(navigator.opened[0].writes) == 1

    async def test_same_surface_mode(self, ports, document):
        navigator = ports.navigator
        interceptor = install(BlobviewConfig(open_in_new_surface=False), ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(interceptor, document, reference)

        assert navigator.open_requests == []
        assert len(navigator.current().writes) == 1


class TestEmbedMode:
    """Tests for embedding a live reference instead of inline bytes."""

    async def test_cached_reference_embedded_as_is(self, ports, document):
        interceptor = install(BlobviewConfig(embed_mode="reference"), ports)
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        await _click(interceptor, document, reference)

        assert _frame_src(ports.navigator.all_writes[0]) == reference

    async def test_fetched_content_reexposed_and_revoked(self, ports, document):
        interceptor = install(BlobviewConfig(embed_mode="reference"), ports)
        reference = ports.allocator.create(Blob(make_pdf_bytes(), "application/pdf"))

        await _click(interceptor, document, reference)

        src = _frame_src(ports.navigator.all_writes[0])
        assert src != reference
        assert src in ports.allocator

        interceptor.on_unload()
        assert src not in ports.allocator


class TestNavigationPrimitive:
    """Tests for Interceptor.window_open."""

    async def test_plain_url_passes_through(self, interceptor, navigator):
        interceptor.window_open("https://example.test/", "_blank", "noopener")

        assert navigator.navigations[0].url == "https://example.test/"
        assert navigator.navigations[0].target == "_blank"
        assert navigator.navigations[0].features == "noopener"

    async def test_declined_reference_passes_through(self, interceptor, navigator):
        reference = interceptor.create_object_url(Blob(b"x", "text/plain"))

        interceptor.window_open(reference)

        assert [n.url for n in navigator.navigations] == [reference]
        assert interceptor.session.pending == 0

    async def test_pdf_reference_diverted(self, interceptor, navigator):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        assert interceptor.window_open(reference) is None
        await interceptor.session.drain()

        assert navigator.navigations == []
        assert len(navigator.all_writes) == 1


class TestInsertionWatch:
    """Tests for frames inserted after a user interaction."""

    async def test_embedded_frame_replaced_with_notice(
        self, interceptor, document, navigator, clock
    ):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        interceptor.on_interaction("click")
        document.insert(f'<iframe src="{reference}"></iframe>')
        await interceptor.session.drain()

        assert len(navigator.all_writes) == 1
        notice = document.soup.find("div", class_="blobview-notice")
        assert notice.get_text() == "PDF opened in a new tab"
        assert document.soup.find("iframe") is None

        clock.advance(3.0)
        assert document.soup.find("div", class_="blobview-notice") is None

    async def test_insertion_after_window_ignored(
        self, interceptor, document, navigator, clock
    ):
        """Test an insertion 5000ms after interaction with a 4000ms window."""
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        interceptor.on_interaction("keydown")
        clock.advance(5.0)
        document.insert(f'<iframe src="{reference}"></iframe>')
        await interceptor.session.drain()

        assert navigator.all_writes == []
        assert document.soup.find("iframe") is not None

    async def test_non_interaction_does_not_arm(self, interceptor, document):
        interceptor.on_interaction("mousemove")
        assert not interceptor.session.watcher.active

    async def test_unhandled_embed_releases_surface(
        self, interceptor, ports, document, navigator
    ):
        reference = ports.allocator.create(Blob(b"<svg/>", "image/svg+xml"))

        interceptor.on_interaction("click")
        document.insert(f'<embed src="{reference}">')
        await interceptor.session.drain()

        assert navigator.opened[0].closed
        assert navigator.opened[0].navigations == []
        assert document.soup.find("embed") is not None


class TestLifecycle:
    """Tests for reference revocation, unload and installation."""

    async def test_double_revoke_is_noop(self, interceptor, ports):
        reference = interceptor.create_object_url(
            Blob(make_pdf_bytes(), "application/pdf")
        )

        interceptor.revoke_object_url(reference)
        interceptor.revoke_object_url(reference)

        assert reference not in interceptor.session.registry
        assert reference not in ports.allocator

    async def test_revoke_unknown_reference(self, interceptor):
        interceptor.revoke_object_url("blob:https://example.test/unknown")

    async def test_unload_clears_state(self, interceptor, clock):
        interceptor.create_object_url(Blob(make_pdf_bytes(), "application/pdf"))
        interceptor.on_interaction("click")

        interceptor.on_unload()

        session = interceptor.session
        assert len(session.registry) == 0
        assert not session.sweeper.running
        assert not session.watcher.active
        assert clock.pending == 0

    async def test_excluded_site_installs_nothing(self, config, ports):
        assert install(config, ports, "https://mail.google.com/mail/u/0") is None

    async def test_other_site_installs(self, config, ports):
        interceptor = install(config, ports, "https://example.test/page")

        assert isinstance(interceptor, Interceptor)
        assert interceptor.session.sweeper.running

    async def test_creation_hook_failure_still_returns_reference(
        self, interceptor, ports
    ):
        def explode(reference, blob):
            raise RuntimeError("boom")

        interceptor.session.registry.track = explode

        reference = interceptor.create_object_url(Blob(b"x", "application/pdf"))

        assert reference in ports.allocator


class TestAnchorHelpers:
    """Tests for closest_reference_anchor and anchor_label."""

    def test_closest_anchor(self):
        soup = BeautifulSoup(
            '<a href="blob:x/1"><b><i>deep</i></b></a>', "html.parser"
        )
        assert closest_reference_anchor(soup.i) is soup.a

    def test_plain_anchor_not_matched(self):
        soup = BeautifulSoup('<a href="/file.pdf"><i>x</i></a>', "html.parser")
        assert closest_reference_anchor(soup.i) is None

    def test_label_fallbacks(self):
        soup = BeautifulSoup('<a href="blob:x/1"> </a>', "html.parser")
        assert anchor_label(soup.a, "document.pdf") == "document.pdf"
