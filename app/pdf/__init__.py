# PDF module
from app.pdf.compose import (
    PDFCompositor,
    SigningError,
    DocumentFormatError,
    CompositingError,
    open_document,
    normalize_raster,
)
from app.pdf.placement import (
    SignaturePlacement,
    PlacementPosition,
    PlacementDeferred,
    PlacementValidationError,
    scale_to_page,
    default_corner_position,
)
from app.pdf.viewer import PDFViewer, ViewerState, ViewerError, StaleRenderError

__all__ = [
    "PDFCompositor",
    "SigningError",
    "DocumentFormatError",
    "CompositingError",
    "open_document",
    "normalize_raster",
    "SignaturePlacement",
    "PlacementPosition",
    "PlacementDeferred",
    "PlacementValidationError",
    "scale_to_page",
    "default_corner_position",
    "PDFViewer",
    "ViewerState",
    "ViewerError",
    "StaleRenderError",
]
