"""
Freehand signature capture.

Turns pointer / touch drag gestures over a fixed-size drawing surface into
strokes, rasterises them with Pillow and hands out an immutable
SignatureData once the signer confirms.

Resize policy: a resize discards every stroke, drawn or in progress, and
resets the stroke style. A signature drawn at one width is never confirmed
at another.
"""
import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw

from app.models import SignatureData, PNG_MAGIC
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_CANVAS_HEIGHT = 150
DEFAULT_LINE_WIDTH = 2
DEFAULT_STROKE_COLOR = "#000000"

Point = Tuple[float, float]


class EmptySignatureError(ValueError):
    """Confirm was requested but nothing has been drawn."""

    def __init__(self, message: str = "Please provide your signature"):
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class SurfaceRect:
    """Bounding box of the drawing surface in client coordinates."""
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class PointerEvent:
    """
    Mouse or touch event in client coordinates.

    Touch events carry one or more touches; only the first one draws.
    """
    kind: str = "mouse"  # "mouse" or "touch"
    client_x: float = 0.0
    client_y: float = 0.0
    touches: Tuple[Point, ...] = ()

    @classmethod
    def mouse(cls, x: float, y: float) -> "PointerEvent":
        return cls(kind="mouse", client_x=x, client_y=y)

    @classmethod
    def touch(cls, *touches: Point) -> "PointerEvent":
        return cls(kind="touch", touches=tuple(touches))


@dataclass
class StrokeStyle:
    line_width: int = DEFAULT_LINE_WIDTH
    color: str = DEFAULT_STROKE_COLOR


class SignatureCapture:
    """Drawing surface that records strokes and produces a signature."""

    def __init__(
        self,
        width: int,
        height: int = DEFAULT_CANVAS_HEIGHT,
        line_width: int = DEFAULT_LINE_WIDTH,
        stroke_color: str = DEFAULT_STROKE_COLOR,
        rect: Optional[SurfaceRect] = None,
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface must have a positive size, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self._default_style = StrokeStyle(line_width=line_width, color=stroke_color)
        self.style = StrokeStyle(line_width=line_width, color=stroke_color)
        self.rect = rect or SurfaceRect(0, 0, self.width, self.height)
        self._strokes: List[List[Point]] = []
        self._is_drawing = False
        self._has_signature = False

    @property
    def has_signature(self) -> bool:
        return self._has_signature

    @property
    def is_drawing(self) -> bool:
        return self._is_drawing

    @property
    def strokes(self) -> List[List[Point]]:
        return [list(s) for s in self._strokes]

    def normalize(self, event: PointerEvent) -> Point:
        """Map a mouse or touch event to surface-relative coordinates."""
        if event.kind == "touch":
            if not event.touches:
                raise ValueError("Touch event without touches")
            client_x, client_y = event.touches[0]
        else:
            client_x, client_y = event.client_x, event.client_y
        return client_x - self.rect.left, client_y - self.rect.top

    def pointer_down(self, event: PointerEvent) -> None:
        self._is_drawing = True
        self._strokes.append([self.normalize(event)])

    def pointer_move(self, event: PointerEvent) -> None:
        if not self._is_drawing or not self._strokes:
            return
        self._strokes[-1].append(self.normalize(event))
        self._has_signature = True

    def pointer_up(self) -> None:
        self._is_drawing = False

    # Leaving the surface ends the stroke exactly like releasing the button
    pointer_leave = pointer_up

    def clear(self) -> None:
        """Drop every stroke and return to the initial empty state."""
        self._strokes = []
        self._is_drawing = False
        self._has_signature = False

    def resize(self, width: int, height: Optional[int] = None, rect: Optional[SurfaceRect] = None) -> bool:
        """
        Resize the surface after a host layout change.

        Strokes are discarded and the stroke style restored.

        Returns:
            True if drawn content was discarded
        """
        new_height = int(height if height is not None else self.height)
        if width <= 0 or new_height <= 0:
            raise ValueError(f"Surface must have a positive size, got {width}x{new_height}")

        discarded = bool(self._strokes)
        self.width = int(width)
        self.height = new_height
        self.rect = rect or SurfaceRect(self.rect.left, self.rect.top, self.width, self.height)
        self.style = StrokeStyle(self._default_style.line_width, self._default_style.color)
        self.clear()

        if discarded:
            logger.info(f"Signature surface resized to {self.width}x{self.height}, strokes discarded")
        return discarded

    def render_png(self) -> bytes:
        """Rasterise the strokes onto a transparent PNG the size of the surface."""
        image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        width = self.style.line_width
        radius = width / 2

        for stroke in self._strokes:
            if len(stroke) < 2:
                continue
            draw.line(stroke, fill=self.style.color, width=width, joint="curve")
            # round caps
            for x, y in (stroke[0], stroke[-1]):
                draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=self.style.color)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def confirm(self, signer_name: str = "", signer_email: str = "") -> SignatureData:
        """
        Produce the signature.

        Raises:
            EmptySignatureError: If nothing has been drawn since the last clear
        """
        if not self._has_signature:
            raise EmptySignatureError()

        return SignatureData(
            image=self.render_png(),
            width=self.width,
            height=self.height,
            signer_name=signer_name,
            signer_email=signer_email,
            signed_at=utc_now(),
        )

    def replay(self, strokes: Sequence[Sequence[Point]]) -> None:
        """Draw pre-recorded strokes given in surface coordinates."""
        for stroke in strokes:
            if not stroke:
                continue
            x, y = stroke[0]
            self.pointer_down(PointerEvent.mouse(x + self.rect.left, y + self.rect.top))
            for x, y in stroke[1:]:
                self.pointer_move(PointerEvent.mouse(x + self.rect.left, y + self.rect.top))
            self.pointer_up()


def decode_signature_image(data) -> bytes:
    """
    Decode a submitted signature image.

    Accepts raw PNG bytes, a base64 string, or a data:image/png;base64 URL.

    Raises:
        ValueError: If the payload is not base64 or not a PNG
    """
    if isinstance(data, (bytes, bytearray)) and bytes(data[:8]) == PNG_MAGIC:
        return bytes(data)

    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("ascii", errors="ignore")

    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]

    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Signature is not valid base64: {e}")

    if decoded[:8] != PNG_MAGIC:
        raise ValueError("Signature is not a PNG image")

    return decoded


def is_blank_signature(image: bytes) -> bool:
    """True when a submitted PNG has no visible ink (fully transparent or all white)."""
    with Image.open(io.BytesIO(image)) as img:
        rgba = img.convert("RGBA")
    if rgba.getchannel("A").getbbox() is None:
        return True
    # Flatten on white and look for any non-white pixel
    background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    flat = Image.alpha_composite(background, rgba).convert("L")
    return flat.point(lambda v: 255 if v < 250 else 0).getbbox() is None
