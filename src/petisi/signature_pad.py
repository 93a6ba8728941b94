"""Freehand signature capture on a Pillow drawing surface.

The pad receives pointer events (mouse or touch), turns them into
surface-local coordinates through the surface's bounding rectangle and
draws a continuous 2px black stroke with round caps. When a stroke ends
the surface is encoded as a PNG ``data:`` URI and handed to ``on_sign``
unless the decoded image is larger than ``max_bytes``; oversized
signatures wipe the surface and are reported through ``on_clear`` and
``on_reject``.

Resizing the surface erases it. The stroke style is re-applied after a
resize and the consumer is told through ``on_clear`` that any previous
signature is gone.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from PIL import Image, ImageDraw, UnidentifiedImageError

logger = logging.getLogger("petisi.signature_pad")

MAX_SIGNATURE_BYTES = 50 * 1024
SURFACE_HEIGHT = 200
DATA_URI_PREFIX = "data:image/png;base64,"


class SignatureTooLarge(ValueError):
    """Encoded signature exceeds the size limit.

    Attributes:
        size: Decoded payload size in bytes.
        max_bytes: The limit that was exceeded.
    """

    def __init__(self, size: int, max_bytes: int = MAX_SIGNATURE_BYTES) -> None:
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(size_message(size, max_bytes))


def size_message(size: int, max_bytes: int = MAX_SIGNATURE_BYTES) -> str:
    """User-facing message for an oversized signature."""
    return (
        f"Ukuran tanda tangan terlalu besar ({size / 1024:.2f} KB). "
        f"Maksimal {max_bytes // 1024}KB.\n"
        "Mohon buat tanda tangan yang lebih sederhana."
    )


def _payload(data_uri: str) -> bytes:
    header, sep, encoded = data_uri.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Signature is not a base64 data URI")
    try:
        return base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


def decoded_size(data_uri: str) -> int:
    """Exact byte length of the payload embedded in a ``data:`` URI.

    Raises:
        ValueError: If the URI is malformed.
    """
    return len(_payload(data_uri))


def check_signature(data_uri: str, max_bytes: int = MAX_SIGNATURE_BYTES) -> int:
    """Validate a signature produced outside this module.

    Args:
        data_uri: ``data:image/...;base64,...`` string.
        max_bytes: Largest accepted decoded size.

    Returns:
        The decoded size in bytes.

    Raises:
        ValueError: If the URI is malformed or not an image.
        SignatureTooLarge: If the payload exceeds ``max_bytes``.
    """
    if not data_uri.startswith("data:image/"):
        raise ValueError("Signature must be an image data URI")
    payload = _payload(data_uri)
    size = len(payload)
    if size > max_bytes:
        raise SignatureTooLarge(size, max_bytes)
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
        raise ValueError(f"Signature is not a readable image: {exc}") from exc
    return size


def decode_image(data_uri: str) -> Image.Image:
    """Open the image embedded in a ``data:`` URI."""
    image = Image.open(io.BytesIO(_payload(data_uri)))
    image.load()
    return image


# ---------------------------------------------------------------------------
# Pointer input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BoundingRect:
    """Position and size of the surface in client coordinates."""

    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = SURFACE_HEIGHT


@dataclass(frozen=True)
class TouchPoint:
    client_x: float
    client_y: float


@dataclass(frozen=True)
class PointerEvent:
    """A mouse or touch event in client coordinates.

    Touch events carry ``touches``; only the first one is used.
    """

    client_x: float = 0.0
    client_y: float = 0.0
    touches: tuple[TouchPoint, ...] = field(default_factory=tuple)

    @property
    def client_position(self) -> tuple[float, float]:
        if self.touches:
            first = self.touches[0]
            return first.client_x, first.client_y
        return self.client_x, self.client_y


@dataclass
class StrokeStyle:
    line_width: int = 2
    line_cap: str = "round"
    color: tuple[int, int, int, int] = (0, 0, 0, 255)


# ---------------------------------------------------------------------------
# Pad
# ---------------------------------------------------------------------------

class SignaturePad:
    """Drawing surface with sign/clear notifications.

    Args:
        on_sign: Receives the PNG data URI after an accepted stroke.
        on_clear: Called whenever the surface is wiped.
        on_reject: Receives the user message for an oversized signature.
        width: Initial surface width (follows the container on resize).
        height: Surface height.
        max_bytes: Largest accepted decoded PNG size.
        rect: Client-space bounding rectangle of the surface.
    """

    def __init__(
        self,
        on_sign: Callable[[str], None],
        on_clear: Callable[[], None],
        on_reject: Optional[Callable[[str], None]] = None,
        width: int = 500,
        height: int = SURFACE_HEIGHT,
        max_bytes: int = MAX_SIGNATURE_BYTES,
        rect: Optional[BoundingRect] = None,
    ) -> None:
        self.on_sign = on_sign
        self.on_clear = on_clear
        self.on_reject = on_reject
        self.height = height
        self.max_bytes = max_bytes
        self.width = max(1, int(width))
        self.rect = rect or BoundingRect(width=self.width, height=height)
        self.style = StrokeStyle()
        self.is_drawing = False
        self.has_signature = False
        self._last: Optional[tuple[float, float]] = None
        self._image = self._blank()

    @property
    def image(self) -> Image.Image:
        return self._image

    def _blank(self) -> Image.Image:
        return Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))

    def to_local(self, event: PointerEvent) -> tuple[float, float]:
        """Map a client position into surface coordinates."""
        x, y = event.client_position
        return x - self.rect.left, y - self.rect.top

    # -- stroke lifecycle -------------------------------------------------

    def press(self, event: PointerEvent) -> None:
        """Begin a new path at the event position."""
        self.is_drawing = True
        self._last = self.to_local(event)

    def move(self, event: PointerEvent) -> None:
        """Extend the current path while pressed."""
        if not self.is_drawing:
            return
        point = self.to_local(event)
        self._segment(self._last or point, point)
        self._last = point
        self.has_signature = True

    def release(self) -> None:
        """Commit the current path and publish the signature."""
        if not self.is_drawing:
            return
        self.is_drawing = False
        self._last = None
        self._save()

    # leaving the surface ends the stroke exactly like a release
    leave = release

    def _segment(self, start: tuple[float, float], end: tuple[float, float]) -> None:
        draw = ImageDraw.Draw(self._image)
        width = self.style.line_width
        draw.line([start, end], fill=self.style.color, width=width)
        if self.style.line_cap == "round":
            r = width / 2
            for x, y in (start, end):
                draw.ellipse((x - r, y - r, x + r, y + r), fill=self.style.color)

    # -- surface management -----------------------------------------------

    def resize(self, container_width: int, rect: Optional[BoundingRect] = None) -> None:
        """Fit the surface to its container width.

        The surface is erased, any in-progress stroke is dropped and the
        stroke style is reset.
        """
        self.width = max(1, int(container_width))
        self.rect = rect or BoundingRect(
            left=self.rect.left, top=self.rect.top, width=self.width, height=self.height
        )
        self.style = StrokeStyle()
        self.is_drawing = False
        self._last = None
        self._wipe()

    def clear(self) -> None:
        """Wipe the surface on explicit user request."""
        self._wipe()

    def _wipe(self) -> None:
        self._image = self._blank()
        self.has_signature = False
        self.on_clear()

    def to_data_uri(self) -> str:
        """Encode the surface as a PNG data URI."""
        buf = io.BytesIO()
        self._image.save(buf, format="PNG")
        return DATA_URI_PREFIX + base64.b64encode(buf.getvalue()).decode("ascii")

    def _save(self) -> None:
        if not self.has_signature:
            return
        data_uri = self.to_data_uri()
        size = decoded_size(data_uri)
        if size > self.max_bytes:
            logger.info("Rejected signature of %d bytes (max %d)", size, self.max_bytes)
            self._wipe()
            if self.on_reject is not None:
                self.on_reject(size_message(size, self.max_bytes))
            return
        self.on_sign(data_uri)
