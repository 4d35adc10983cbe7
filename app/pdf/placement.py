"""
Signature placement: screen-to-page coordinate mapping and validation.

PDF coordinate system: origin at bottom-left, Y increases upward.
Screen coordinates: origin at top-left, Y increases downward.
All page coordinates are in points (1 point = 1/72 inch).
"""
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Tolerance for bounds checking (in points, ~1mm)
PLACEMENT_BOUNDS_TOLERANCE = 3.0

DEFAULT_REDUCTION = 0.5
DEFAULT_MARGIN_PERCENT = 5.0


class PlacementDeferred(Exception):
    """The rendered surface has not been laid out yet; try again later."""


class PlacementValidationError(ValueError):
    """Invalid signature placement error."""

    def __init__(self, message: str, code: str = "INVALID_PLACEMENT"):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class PlacementPosition:
    """A point in page-native coordinates. Ephemeral, never persisted."""
    x: float
    y: float


@dataclass
class SignaturePlacement:
    """Signature rectangle in PDF coordinates (bottom-left origin)."""
    page: int  # 1-indexed page number
    x: float   # X from left in points
    y: float   # Y from bottom in points
    w: float   # Width in points
    h: float   # Height in points

    def to_dict(self) -> dict:
        return {"page": self.page, "x": self.x, "y": self.y, "w": self.w, "h": self.h}


def scale_point(x: float, y: float, scale: float) -> PlacementPosition:
    """Multiply a screen point by an explicit scale factor."""
    return PlacementPosition(x=x * scale, y=y * scale)


def scale_to_page(
    screen_x: float,
    screen_y: float,
    rendered_width: float,
    rendered_height: float,
    native_width: float,
    native_height: float,
) -> PlacementPosition:
    """
    Map a click on the rendered page to page-native coordinates.

    page_coord = screen_coord * (native_size / rendered_size), per axis.
    The returned point keeps the screen's top-left origin; use
    screen_to_pdf_y before compositing.

    Raises:
        PlacementDeferred: If the rendered surface has zero width or height
    """
    if not rendered_width or not rendered_height or rendered_width <= 0 or rendered_height <= 0:
        raise PlacementDeferred(
            f"Rendered surface not laid out yet ({rendered_width}x{rendered_height})"
        )

    return PlacementPosition(
        x=screen_x * (native_width / rendered_width),
        y=screen_y * (native_height / rendered_height),
    )


def screen_to_pdf_y(y_top: float, height: float, page_height: float) -> float:
    """
    Convert the top edge of a box measured from the page top into the
    bottom edge measured from the page bottom.
    """
    return page_height - y_top - height


def scaled_signature_size(width: float, height: float, reduction: float = DEFAULT_REDUCTION) -> tuple:
    """Capture canvas size reduced by the fixed factor."""
    return width * reduction, height * reduction


def fit_within_page(w: float, h: float, page_width: float, page_height: float) -> tuple:
    """Shrink (w, h) proportionally so the box fits on the page."""
    factor = min(1.0, page_width / w if w else 1.0, page_height / h if h else 1.0)
    return w * factor, h * factor


def default_corner_position(
    page_width: float,
    page_height: float,
    sig_width: float,
    sig_height: float,
    margin_percent: float = DEFAULT_MARGIN_PERCENT,
) -> PlacementPosition:
    """
    Bottom-right anchored position in PDF coordinates.

    The margin is a percentage of the page width (horizontal) and page
    height (vertical). Never returns negative coordinates.
    """
    margin_x = page_width * margin_percent / 100.0
    margin_y = page_height * margin_percent / 100.0
    return PlacementPosition(
        x=max(0.0, page_width - sig_width - margin_x),
        y=max(0.0, margin_y),
    )


def placement_from_click(
    page: int,
    click_x: float,
    click_y: float,
    rendered_width: float,
    rendered_height: float,
    page_width: float,
    page_height: float,
    sig_width: float,
    sig_height: float,
) -> SignaturePlacement:
    """
    Click-to-place: the click marks the top-left corner of the signature.

    The box is clamped inside the page so a click near the edge still
    produces a valid placement.
    """
    point = scale_to_page(
        click_x, click_y, rendered_width, rendered_height, page_width, page_height
    )
    x = min(max(point.x, 0.0), max(page_width - sig_width, 0.0))
    y_top = min(max(point.y, 0.0), max(page_height - sig_height, 0.0))
    y = screen_to_pdf_y(y_top, sig_height, page_height)
    return SignaturePlacement(page=page, x=x, y=max(y, 0.0), w=sig_width, h=sig_height)


def validate_placement(
    placement: SignaturePlacement,
    page_count: int,
    page_width: float,
    page_height: float,
) -> None:
    """
    Validate signature placement against document constraints.

    Raises:
        PlacementValidationError: If placement is invalid
    """
    if not isinstance(placement.page, int) or placement.page < 1:
        raise PlacementValidationError(
            f"Invalid page number: {placement.page}. Must be an integer >= 1.",
            code="INVALID_PAGE_NUMBER"
        )

    if placement.page > page_count:
        raise PlacementValidationError(
            f"Page {placement.page} does not exist. Document has {page_count} pages.",
            code="PAGE_OUT_OF_RANGE"
        )

    if placement.w <= 0:
        raise PlacementValidationError(
            f"Signature width must be positive, got: {placement.w}",
            code="INVALID_WIDTH"
        )

    if placement.h <= 0:
        raise PlacementValidationError(
            f"Signature height must be positive, got: {placement.h}",
            code="INVALID_HEIGHT"
        )

    if placement.x < 0:
        raise PlacementValidationError(
            f"X position must not be negative, got: {placement.x}",
            code="INVALID_X_POSITION"
        )

    if placement.y < 0:
        raise PlacementValidationError(
            f"Y position must not be negative, got: {placement.y}",
            code="INVALID_Y_POSITION"
        )

    if placement.x + placement.w > page_width + PLACEMENT_BOUNDS_TOLERANCE:
        raise PlacementValidationError(
            f"Signature exceeds the right edge of the page. "
            f"X({placement.x}) + width({placement.w}) = {placement.x + placement.w}, "
            f"but page width is {page_width}.",
            code="EXCEEDS_PAGE_WIDTH"
        )

    if placement.y + placement.h > page_height + PLACEMENT_BOUNDS_TOLERANCE:
        raise PlacementValidationError(
            f"Signature exceeds the top edge of the page. "
            f"Y({placement.y}) + height({placement.h}) = {placement.y + placement.h}, "
            f"but page height is {page_height}.",
            code="EXCEEDS_PAGE_HEIGHT"
        )
