import base64
import binascii
import io
import logging
import numbers
import os
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import unquote_to_bytes

import cv2
import httpx
import numpy as np
from PIL import Image, ImageOps

from lineocr.domain.errors import (
    DecodeFailed,
    EnvironmentCapabilityMissing,
    InvalidBitmapDimensions,
    ResourceFetchFailed,
    SourceNotReady,
    UnsupportedInputType,
)
from lineocr.domain.image import (
    BitmapImage,
    CanvasImage,
    ElementImage,
    EncodedImage,
    ImageInput,
    LineImage,
    PixelBuffer,
    RawImage,
    VideoFrameImage,
)
from lineocr.domain.platform import Platform
from lineocr.infrastructure.surface import Surface, create_surface, draw_source, get_context, read_pixels

logger = logging.getLogger(__name__)

_VARIANTS = (EncodedImage, RawImage, BitmapImage, ElementImage, CanvasImage, VideoFrameImage, PixelBuffer)
_DECODE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


class ImageNormalizer:
    """Turns any supported image input into a canonical RGBA PixelBuffer."""

    def __init__(self, platform: Optional[Platform] = None, fetch_timeout: float = 15.0):
        self.platform = platform or Platform.main_thread()
        self.fetch_timeout = fetch_timeout

    def normalize(self, image: ImageInput) -> PixelBuffer:
        if isinstance(image, PixelBuffer):
            buffer = image
        elif isinstance(image, RawImage):
            buffer = self.from_raw(image)
        elif isinstance(image, EncodedImage):
            buffer = self.open(image.source)
        elif isinstance(image, BitmapImage):
            buffer = self.from_bitmap(image.bitmap)
        elif isinstance(image, ElementImage):
            buffer = self.from_element(image.element)
        elif isinstance(image, CanvasImage):
            buffer = self.from_canvas(image.canvas)
        elif isinstance(image, VideoFrameImage):
            buffer = self.from_video_frame(image.capture)
        else:
            raise UnsupportedInputType(
                "Unsupported image input type",
                {"type": type(image).__name__},
            )
        logger.debug(
            "image_normalized variant=%s width=%s height=%s",
            type(image).__name__,
            buffer.width,
            buffer.height,
        )
        return buffer

    def open(self, source: Union[str, os.PathLike]) -> PixelBuffer:
        payload = self._fetch(source)
        if self.platform.bitmap_decoding:
            return self.from_bitmap(decode_bitmap(payload))
        if self.platform.element_api:
            return self.from_element(_open_lazy(payload))
        raise EnvironmentCapabilityMissing(
            "Cannot load image from URL: no supported method available",
            {"source": _describe_source(source)},
        )

    def from_bitmap(self, bitmap: Any) -> PixelBuffer:
        # The bitmap is single-use: it is released on every path, once.
        try:
            width, height = int(bitmap.width), int(bitmap.height)
            if width == 0 or height == 0:
                raise InvalidBitmapDimensions(
                    "Invalid bitmap: dimensions are zero (bitmap may be closed)",
                    {"width": width, "height": height},
                )
            surface = create_surface(width, height, self.platform)
            context = get_context(surface, self.platform)
            context.draw_image(_bitmap_pixels(bitmap), width, height)
            return context.get_image_data()
        finally:
            _release(bitmap)

    def from_element(self, element: Any) -> PixelBuffer:
        self._require_element_api("image element", "Use a bitmap instead.")
        try:
            element.load()
        except _DECODE_ERRORS as exc:
            raise DecodeFailed("Failed to decode image element", {"error": str(exc)}) from exc

        if self.platform.bitmap_decoding:
            return self.from_bitmap(element.convert("RGBA"))

        surface = create_surface(element.width, element.height, self.platform)
        draw_source(surface, _bitmap_pixels(element), element.width, element.height, self.platform)
        return read_pixels(surface, self.platform)

    def from_canvas(self, canvas: Surface) -> PixelBuffer:
        if not isinstance(canvas, Surface):
            raise UnsupportedInputType("Canvas input must be a Surface", {"type": type(canvas).__name__})
        if not canvas.offscreen:
            self._require_element_api("display canvas", "Use an offscreen surface instead.")
        return read_pixels(canvas, self.platform)

    def from_video_frame(self, capture: Any) -> PixelBuffer:
        self._require_element_api("video frame", "Use a bitmap instead.")
        if not capture.isOpened():
            raise SourceNotReady("Video is not ready. Ensure the capture is opened.")
        ok, frame = capture.read()
        if not ok or frame is None:
            raise SourceNotReady("Video frame is not decoded yet.")

        pixels = _as_rgba(frame, bgr=True)
        height, width = pixels.shape[:2]
        surface = create_surface(width, height, self.platform)
        draw_source(surface, pixels, width, height, self.platform)
        return read_pixels(surface, self.platform)

    def from_raw(self, raw: RawImage) -> PixelBuffer:
        width, height = int(raw.width), int(raw.height)
        if width <= 0 or height <= 0:
            raise UnsupportedInputType("Raw image dimensions must be positive", {"width": width, "height": height})
        expected = width * height * 4
        data = raw.data
        if isinstance(data, (list, tuple)):
            data = _byte_array(data)

        if isinstance(data, np.ndarray):
            if data.dtype != np.uint8 or data.size != expected:
                raise UnsupportedInputType(
                    "Raw image data must be uint8 with width*height*4 entries",
                    {"dtype": str(data.dtype), "size": int(data.size), "expected": expected},
                )
            # Already canonical bytes: reuse without copying.
            if not data.flags.c_contiguous:
                data = np.ascontiguousarray(data)
            return PixelBuffer(data.reshape(height, width, 4))

        if isinstance(data, (bytes, bytearray, memoryview)):
            if len(data) != expected:
                raise UnsupportedInputType(
                    "Raw image data length must equal width*height*4",
                    {"size": len(data), "expected": expected},
                )
            pixels = np.frombuffer(data, dtype=np.uint8).copy().reshape(height, width, 4)
            return PixelBuffer(pixels)

        raise UnsupportedInputType("Raw image data must be bytes or a uint8 array", {"type": type(data).__name__})

    def resize(self, buffer: PixelBuffer, width: Optional[int] = None, height: Optional[int] = None) -> PixelBuffer:
        if width is None and height is None:
            raise ValueError("both width and height are undefined")
        new_width = width or round(buffer.width / buffer.height * height)
        new_height = height or round(buffer.height / buffer.width * width)
        new_width, new_height = max(int(new_width), 1), max(int(new_height), 1)
        surface = create_surface(new_width, new_height, self.platform)
        draw_source(surface, buffer.data, new_width, new_height, self.platform)
        return read_pixels(surface, self.platform)

    def draw_boxes(self, buffer: PixelBuffer, line_images: List[LineImage]) -> PixelBuffer:
        surface = create_surface(buffer.width, buffer.height, self.platform)
        context = get_context(surface, self.platform)
        context.put_image_data(buffer)
        context.stroke_polygons([line.box for line in line_images])
        return context.get_image_data()

    def _require_element_api(self, name: str, hint: str) -> None:
        if not self.platform.element_api:
            raise EnvironmentCapabilityMissing(
                f"{name} is not available in this execution context. {hint}",
                {"input": name},
            )

    def _fetch(self, source: Union[str, os.PathLike]) -> bytes:
        text = os.fspath(source)
        if text.startswith(("http://", "https://")):
            try:
                response = httpx.get(text, timeout=self.fetch_timeout, follow_redirects=True)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise ResourceFetchFailed("Failed to fetch image", {"source": text, "error": str(exc)}) from exc
            return response.content

        if text.startswith("data:"):
            header, sep, payload = text.partition(",")
            if not sep:
                raise ResourceFetchFailed("Malformed data URL", {"source": _describe_source(text)})
            try:
                if header.endswith(";base64"):
                    return base64.b64decode(payload, validate=True)
                return unquote_to_bytes(payload)
            except (binascii.Error, ValueError) as exc:
                raise ResourceFetchFailed("Malformed data URL", {"error": str(exc)}) from exc

        try:
            return Path(text).read_bytes()
        except OSError as exc:
            raise ResourceFetchFailed("Failed to read image", {"source": text, "error": str(exc)}) from exc


def to_image_input(value: Any) -> ImageInput:
    if isinstance(value, _VARIANTS):
        return value
    if isinstance(value, (str, os.PathLike)):
        return EncodedImage(value)
    if isinstance(value, Image.Image):
        return BitmapImage(value)
    if isinstance(value, Surface):
        return CanvasImage(value)
    if isinstance(value, cv2.VideoCapture) or (hasattr(value, "isOpened") and hasattr(value, "read")):
        return VideoFrameImage(value)
    raw = _as_raw_image(value)
    if raw is not None:
        return raw
    raise UnsupportedInputType("Unsupported image input type", {"type": type(value).__name__})


def _as_raw_image(value: Any) -> Optional[RawImage]:
    if isinstance(value, dict):
        data, width, height = value.get("data"), value.get("width"), value.get("height")
    else:
        data = getattr(value, "data", None)
        width = getattr(value, "width", None)
        height = getattr(value, "height", None)

    if not (_is_number(width) and _is_number(height)):
        return None
    if isinstance(data, (bytes, bytearray)):
        return RawImage(data=data, width=int(width), height=int(height))
    if isinstance(data, np.ndarray) and data.dtype == np.uint8:
        return RawImage(data=data, width=int(width), height=int(height))
    if isinstance(data, (list, tuple)):
        return RawImage(data=_byte_array(data), width=int(width), height=int(height))
    return None


def _byte_array(values) -> np.ndarray:
    """Copy a sequence of ints in 0..255 into a flat uint8 array."""
    try:
        array = np.asarray(values)
    except ValueError as exc:
        raise UnsupportedInputType("Raw image data must be a flat sequence of bytes", {"error": str(exc)}) from exc
    if array.ndim != 1 or array.dtype.kind not in "iu":
        raise UnsupportedInputType("Raw image data must be a flat sequence of ints", {"dtype": str(array.dtype)})
    if array.size and (array.min() < 0 or array.max() > 255):
        raise UnsupportedInputType("Raw image values must be in 0..255", {"min": int(array.min()), "max": int(array.max())})
    return array.astype(np.uint8)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def decode_bitmap(payload: bytes) -> Image.Image:
    image = _open_lazy(payload)
    try:
        ImageOps.exif_transpose(image, in_place=True)
        image.load()
    except _DECODE_ERRORS as exc:
        image.close()
        raise DecodeFailed("Failed to decode image bytes", {"error": str(exc)}) from exc
    return image


def _open_lazy(payload: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(payload))
    except _DECODE_ERRORS as exc:
        raise DecodeFailed("Failed to decode image bytes", {"error": str(exc)}) from exc


def _bitmap_pixels(bitmap: Any) -> np.ndarray:
    if isinstance(bitmap, Image.Image):
        if bitmap.mode != "RGBA":
            return np.asarray(bitmap.convert("RGBA"))
        return np.asarray(bitmap)
    return _as_rgba(np.asarray(bitmap))


def _as_rgba(pixels: np.ndarray, bgr: bool = False) -> np.ndarray:
    if pixels.ndim == 2:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2RGBA)
    if pixels.shape[2] == 3:
        return cv2.cvtColor(pixels, cv2.COLOR_BGR2RGBA if bgr else cv2.COLOR_RGB2RGBA)
    if bgr:
        return cv2.cvtColor(pixels, cv2.COLOR_BGRA2RGBA)
    return pixels


def _release(bitmap: Any) -> None:
    try:
        bitmap.close()
    except Exception:
        logger.warning("bitmap_release_failed type=%s", type(bitmap).__name__, exc_info=True)


def _describe_source(source: Union[str, os.PathLike]) -> str:
    text = os.fspath(source)
    if len(text) > 80:
        return f"{text[:80]}..."
    return text
