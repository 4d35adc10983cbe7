"""
Tests for the page viewer: navigation, zoom and superseded renders.
"""
import asyncio
import io

import pytest
from PIL import Image

from app.pdf.viewer import PDFViewer, StaleRenderError, ViewerError, ViewerState


class TestViewerState:
    """Test navigation and zoom clamping."""

    def test_defaults(self):
        """Starts on page 1 at 120%."""
        state = ViewerState(num_pages=3)
        assert state.current_page == 1
        assert state.zoom_percent == 120

    def test_next_page_clamped_at_last(self):
        """Next on the last page stays put."""
        state = ViewerState(num_pages=2)
        assert state.next_page() == 2
        assert state.next_page() == 2
        assert state.can_go_next is False

    def test_previous_page_clamped_at_first(self):
        """Previous on page 1 stays put."""
        state = ViewerState(num_pages=2)
        assert state.previous_page() == 1
        assert state.can_go_previous is False

    def test_go_to_clamped(self):
        """Jumping past either end is clamped."""
        state = ViewerState(num_pages=5)
        assert state.go_to(9) == 5
        assert state.go_to(-3) == 1

    def test_zoom_steps(self):
        """Zoom moves in 0.2 steps without float drift."""
        state = ViewerState()
        assert state.zoom_in() == 1.4
        assert state.zoom_out() == 1.2
        assert state.zoom_out() == 1.0

    def test_zoom_clamped(self):
        """Zoom stays within 0.6 and 3.0."""
        state = ViewerState()
        for _ in range(20):
            state.zoom_in()
        assert state.scale == 3.0
        assert state.can_zoom_in is False
        for _ in range(20):
            state.zoom_out()
        assert state.scale == 0.6
        assert state.can_zoom_out is False

    def test_set_zoom_clamped(self):
        """Arbitrary zoom values are clamped."""
        state = ViewerState()
        assert state.set_zoom(10) == 3.0
        assert state.set_zoom(0.1) == 0.6


class TestPDFViewer:
    """Test loading and rendering."""

    def test_load_resets_state(self, sample_pdf_bytes):
        """Loading a document resets page and zoom."""
        viewer = PDFViewer()
        viewer.state.scale = 2.0
        viewer.state.current_page = 2
        assert viewer.load("doc-1", sample_pdf_bytes) == 2
        assert viewer.state.current_page == 1
        assert viewer.state.scale == 1.2
        assert viewer.document_id == "doc-1"
        viewer.close()

    def test_load_invalid_bytes(self):
        """Garbage bytes raise ViewerError."""
        viewer = PDFViewer()
        with pytest.raises(ViewerError):
            viewer.load("doc-1", b"not a pdf")

    def test_settings_drive_zoom(self, test_settings):
        """Zoom limits come from settings."""
        viewer = PDFViewer(test_settings)
        assert viewer.state.min_scale == test_settings.viewer_min_scale
        assert viewer.state.max_scale == test_settings.viewer_max_scale

    @pytest.mark.asyncio
    async def test_render_without_document(self):
        """Rendering before load fails."""
        with pytest.raises(ViewerError):
            await PDFViewer().render()

    @pytest.mark.asyncio
    async def test_render_page_png(self, sample_pdf_bytes):
        """A page renders to a PNG scaled by the zoom."""
        viewer = PDFViewer()
        viewer.load("doc-1", sample_pdf_bytes)
        rendered = await viewer.render(page=1, scale=1.0)

        assert rendered.key == ("doc-1", 1, 1.0)
        with Image.open(io.BytesIO(rendered.png)) as img:
            assert img.format == "PNG"
            assert img.size == (595, 842)
        viewer.close()

    @pytest.mark.asyncio
    async def test_render_clamps_page(self, sample_pdf_bytes):
        """A page past the end renders the last page."""
        viewer = PDFViewer()
        viewer.load("doc-1", sample_pdf_bytes)
        rendered = await viewer.render(page=10)
        assert rendered.page == 2
        viewer.close()

    @pytest.mark.asyncio
    async def test_newer_render_supersedes_older(self, sample_pdf_bytes):
        """A render overtaken by a newer request is discarded."""
        viewer = PDFViewer()
        viewer.load("doc-1", sample_pdf_bytes)

        first = asyncio.create_task(viewer.render(page=1))
        await asyncio.sleep(0)
        second = await viewer.render(page=2)

        with pytest.raises(StaleRenderError):
            await first
        assert second.page == 2
        viewer.close()

    @pytest.mark.asyncio
    async def test_same_key_shares_render(self, sample_pdf_bytes):
        """Two requests for the same page and zoom both succeed."""
        viewer = PDFViewer()
        viewer.load("doc-1", sample_pdf_bytes)

        a, b = await asyncio.gather(viewer.render(page=1), viewer.render(page=1))
        assert a.png == b.png
        viewer.close()

    @pytest.mark.asyncio
    async def test_loading_new_document_supersedes_render(self, sample_pdf_bytes):
        """Switching documents cancels the in-flight render of the old one."""
        viewer = PDFViewer()
        viewer.load("doc-1", sample_pdf_bytes)

        first = asyncio.create_task(viewer.render(page=1))
        await asyncio.sleep(0)
        viewer.load("doc-2", sample_pdf_bytes)
        rendered = await viewer.render(page=1)

        with pytest.raises(StaleRenderError):
            await first
        assert rendered.document_id == "doc-2"
        viewer.close()
