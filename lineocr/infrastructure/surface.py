from typing import Iterable, Optional, Tuple

import cv2
import numpy as np

from lineocr.domain.errors import ContextCreationFailure, EnvironmentCapabilityMissing, OcrError
from lineocr.domain.image import PixelBuffer, RegionPolygon
from lineocr.domain.platform import Platform

_RED = (255, 0, 0, 255)


class DrawContext:
    def __init__(self, surface: "Surface"):
        self._surface = surface

    def draw_image(self, pixels: np.ndarray, width: Optional[int] = None, height: Optional[int] = None) -> None:
        width = width or pixels.shape[1]
        height = height or pixels.shape[0]
        self._surface.resize(width, height)
        if pixels.shape[0] != self._surface.height or pixels.shape[1] != self._surface.width:
            pixels = cv2.resize(
                pixels,
                (self._surface.width, self._surface.height),
                interpolation=cv2.INTER_LINEAR,
            )
        self._surface.pixels[:] = pixels

    def get_image_data(self) -> PixelBuffer:
        return PixelBuffer(self._surface.pixels.copy())

    def put_image_data(self, buffer: PixelBuffer) -> None:
        self._surface.resize(buffer.width, buffer.height)
        self._surface.pixels[:] = buffer.data

    def stroke_polygons(
        self,
        polygons: Iterable[RegionPolygon],
        color: Tuple[int, int, int, int] = _RED,
        thickness: int = 1,
    ) -> None:
        points = [np.round(np.asarray(p, dtype=np.float32)).astype(np.int32).reshape(-1, 1, 2) for p in polygons]
        points = [p for p in points if len(p) >= 2]
        if points:
            cv2.polylines(self._surface.pixels, points, True, color, thickness)


class Surface:
    """2-D RGBA drawing surface. Owns its drawing context."""

    def __init__(self, width: int, height: int, offscreen: bool = True):
        self.offscreen = offscreen
        self.pixels = _blank(width, height)
        self._context: Optional[DrawContext] = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def resize(self, width: int, height: int) -> None:
        # Like a canvas, resizing discards the current content.
        self.pixels = _blank(width, height)

    def get_context(self, factory=None) -> DrawContext:
        if self._context is not None:
            return self._context
        try:
            context = factory(self) if factory is not None else DrawContext(self)
        except OcrError:
            raise
        except Exception as exc:
            raise ContextCreationFailure("Failed to create 2D context", {"error": str(exc)}) from exc
        if context is None:
            raise ContextCreationFailure("Failed to create 2D context")
        self._context = context
        return context


def create_surface(width: int, height: int, platform: Platform) -> Surface:
    if not platform.can_draw:
        raise EnvironmentCapabilityMissing(
            "No drawing surface available in this context",
            {"offscreen_surfaces": False, "display_surfaces": False},
        )
    return Surface(width, height, offscreen=platform.offscreen_surfaces)


def get_context(surface: Surface, platform: Platform) -> DrawContext:
    return surface.get_context(platform.context_factory)


def read_pixels(surface: Surface, platform: Platform) -> PixelBuffer:
    return get_context(surface, platform).get_image_data()


def draw_source(
    surface: Surface,
    pixels: np.ndarray,
    width: int,
    height: int,
    platform: Platform,
) -> None:
    get_context(surface, platform).draw_image(pixels, width, height)


def _blank(width: int, height: int) -> np.ndarray:
    return np.zeros((max(int(height), 1), max(int(width), 1), 4), dtype=np.uint8)
