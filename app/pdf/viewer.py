"""
PDF page viewer.

Renders one page at a time to PNG with PyMuPDF. Navigation and zoom are
clamped; a render for a new (document, page, scale) key cancels the one
still in flight, and a render that finishes after it was superseded is
discarded instead of being shown.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import fitz  # PyMuPDF

from app.config import Settings

logger = logging.getLogger(__name__)

RenderKey = Tuple[str, int, float]


class ViewerError(Exception):
    """Viewer could not load or render."""


class StaleRenderError(ViewerError):
    """A newer render request superseded this one."""


@dataclass
class RenderedPage:
    key: RenderKey
    png: bytes
    width: int
    height: int

    @property
    def document_id(self) -> str:
        return self.key[0]

    @property
    def page(self) -> int:
        return self.key[1]

    @property
    def scale(self) -> float:
        return self.key[2]


@dataclass
class ViewerState:
    """Page / zoom state with clamping."""
    current_page: int = 1
    num_pages: int = 0
    scale: float = 1.2
    min_scale: float = 0.6
    max_scale: float = 3.0
    scale_step: float = 0.2

    def _clamp_scale(self, value: float) -> float:
        # Round away float drift from repeated steps (1.2 + 0.2 + ...)
        return round(min(max(value, self.min_scale), self.max_scale), 4)

    def go_to(self, page: int) -> int:
        if self.num_pages < 1:
            self.current_page = 1
        else:
            self.current_page = min(max(page, 1), self.num_pages)
        return self.current_page

    def next_page(self) -> int:
        if self.current_page < self.num_pages:
            self.current_page += 1
        return self.current_page

    def previous_page(self) -> int:
        if self.current_page > 1:
            self.current_page -= 1
        return self.current_page

    def set_zoom(self, scale: float) -> float:
        self.scale = self._clamp_scale(scale)
        return self.scale

    def zoom_in(self) -> float:
        return self.set_zoom(self.scale + self.scale_step)

    def zoom_out(self) -> float:
        return self.set_zoom(self.scale - self.scale_step)

    @property
    def can_go_previous(self) -> bool:
        return self.current_page > 1

    @property
    def can_go_next(self) -> bool:
        return self.current_page < self.num_pages

    @property
    def can_zoom_in(self) -> bool:
        return self.scale < self.max_scale

    @property
    def can_zoom_out(self) -> bool:
        return self.scale > self.min_scale

    @property
    def zoom_percent(self) -> int:
        return round(self.scale * 100)


def render_page_png(doc: fitz.Document, page_number: int, scale: float) -> Tuple[bytes, int, int]:
    """Render a 1-indexed page to PNG at the given zoom."""
    page = doc[page_number - 1]
    pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return pixmap.tobytes("png"), pixmap.width, pixmap.height


class PDFViewer:
    """Single-document viewer with superseding renders."""

    def __init__(self, settings: Optional[Settings] = None):
        if settings is not None:
            self.state = ViewerState(
                scale=settings.viewer_default_scale,
                min_scale=settings.viewer_min_scale,
                max_scale=settings.viewer_max_scale,
                scale_step=settings.viewer_scale_step,
            )
        else:
            self.state = ViewerState()
        self._default_scale = self.state.scale
        self._doc: Optional[fitz.Document] = None
        self._document_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._task_key: Optional[RenderKey] = None
        self._current_key: Optional[RenderKey] = None
        self._source: Optional[str] = None

    @property
    def source(self) -> Optional[str]:
        """Where the loaded bytes came from, if the caller said."""
        return self._source

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def is_loaded(self) -> bool:
        return self._doc is not None

    def load(self, document_id: str, data: bytes, source: Optional[str] = None) -> int:
        """
        Open a new document, resetting page and zoom.

        Returns:
            Number of pages

        Raises:
            ViewerError: If the bytes are not a readable PDF
        """
        in_flight = self._task is not None and not self._task.done()
        self.cancel()
        # Any render still awaiting belongs to the previous document
        self._current_key = None
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise ViewerError(f"Failed to load PDF: {e}")
        if doc.page_count < 1:
            doc.close()
            raise ViewerError("PDF has no pages")

        # A cancelled render may still be reading the old document in its thread
        self._close_doc(release_only=in_flight)
        self._doc = doc
        self._document_id = document_id
        self._source = source
        self.state.num_pages = doc.page_count
        self.state.current_page = 1
        self.state.set_zoom(self._default_scale)
        logger.info(f"Viewer loaded document {document_id[:8]} with {doc.page_count} pages")
        return doc.page_count

    def cancel(self) -> None:
        """Cancel the in-flight render, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug(f"Cancelled render {self._task_key}")
        self._task = None
        self._task_key = None

    async def render(self, page: Optional[int] = None, scale: Optional[float] = None) -> RenderedPage:
        """
        Render a page (defaults to the current page and zoom).

        Raises:
            ViewerError: If no document is loaded
            StaleRenderError: If a newer request superseded this one
        """
        if self._doc is None or self._document_id is None:
            raise ViewerError("No document loaded")

        if page is not None:
            self.state.go_to(page)
        if scale is not None:
            self.state.set_zoom(scale)

        key: RenderKey = (self._document_id, self.state.current_page, self.state.scale)
        self._current_key = key

        if self._task is not None and not self._task.done() and self._task_key == key:
            task = self._task
        else:
            self.cancel()
            doc = self._doc
            task = asyncio.create_task(
                asyncio.to_thread(render_page_png, doc, key[1], key[2])
            )
            self._task = task
            self._task_key = key

        try:
            png, width, height = await task
        except asyncio.CancelledError:
            if self._current_key != key:
                raise StaleRenderError(f"Render {key} superseded by {self._current_key}")
            raise

        if self._current_key != key:
            raise StaleRenderError(f"Render {key} superseded by {self._current_key}")

        return RenderedPage(key=key, png=png, width=width, height=height)

    def _close_doc(self, release_only: bool = False) -> None:
        if self._doc is not None and not release_only:
            self._doc.close()
        self._doc = None
        self._document_id = None
        self._source = None

    def close(self) -> None:
        in_flight = self._task is not None and not self._task.done()
        self.cancel()
        self._close_doc(release_only=in_flight)
        self._current_key = None
