import logging
import os
from typing import List

import cv2

from lineocr.domain.image import LineImage, PixelBuffer
from lineocr.domain.ocr import DebugSinkPort
from lineocr.infrastructure.image_normalizer import ImageNormalizer

logger = logging.getLogger(__name__)


class NullDebugSink(DebugSinkPort):
    def write_image(self, buffer: PixelBuffer, name: str) -> None:
        return None

    def draw_boxes(self, buffer: PixelBuffer, line_images: List[LineImage]) -> PixelBuffer:
        return buffer


class FileDebugSink(DebugSinkPort):
    def __init__(self, output_dir: str, normalizer: ImageNormalizer | None = None):
        self.output_dir = output_dir
        self._normalizer = normalizer or ImageNormalizer()

    def write_image(self, buffer: PixelBuffer, name: str) -> None:
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, name)
        if not cv2.imwrite(path, cv2.cvtColor(buffer.data, cv2.COLOR_RGBA2BGRA)):
            raise OSError(f"cv2.imwrite could not write {path}")
        logger.debug("debug_image_written path=%s width=%s height=%s", path, buffer.width, buffer.height)

    def draw_boxes(self, buffer: PixelBuffer, line_images: List[LineImage]) -> PixelBuffer:
        return self._normalizer.draw_boxes(buffer, line_images)


class SafeDebugSink(DebugSinkPort):
    """Debug output is best-effort: failures are logged, never raised."""

    def __init__(self, inner: DebugSinkPort):
        self._inner = inner

    def write_image(self, buffer: PixelBuffer, name: str) -> None:
        try:
            self._inner.write_image(buffer, name)
        except Exception:
            logger.warning("debug_write_failed name=%s", name, exc_info=True)

    def draw_boxes(self, buffer: PixelBuffer, line_images: List[LineImage]) -> PixelBuffer:
        try:
            return self._inner.draw_boxes(buffer, line_images)
        except Exception:
            logger.warning("debug_draw_boxes_failed lines=%s", len(line_images), exc_info=True)
            return buffer
