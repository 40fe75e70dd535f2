import os
from dataclasses import dataclass
from typing import Any, List, Tuple, Union

import numpy as np

from lineocr.domain.errors import ConfigError

RegionPolygon = List[List[float]]


@dataclass
class PixelBuffer:
    """RGBA pixels, one byte per channel, row-major, shape (height, width, 4)."""

    data: np.ndarray

    def __post_init__(self):
        if self.data.dtype != np.uint8 or self.data.ndim != 3 or self.data.shape[2] != 4:
            raise ValueError(f"PixelBuffer expects uint8 (h, w, 4) data, got {self.data.dtype} {self.data.shape}")

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def tobytes(self) -> bytes:
        return self.data.tobytes()


@dataclass
class NormalizationParams:
    mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    std: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self):
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ConfigError("mean and std need exactly three entries", {"mean": list(self.mean), "std": list(self.std)})
        if any(value == 0 for value in self.std):
            raise ConfigError("std entries must be nonzero", {"std": list(self.std)})


@dataclass
class Tensor:
    data: np.ndarray

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def height(self) -> int:
        return int(self.data.shape[2])

    @property
    def width(self) -> int:
        return int(self.data.shape[3])


@dataclass
class LineImage:
    buffer: PixelBuffer
    box: RegionPolygon


# Input variants. The set is closed: anything else is rejected at the boundary.


@dataclass
class EncodedImage:
    source: Union[str, os.PathLike]


@dataclass
class RawImage:
    data: Any
    width: int
    height: int


@dataclass
class BitmapImage:
    # Decoded, single-use bitmap (a PIL image); released by the normalizer.
    bitmap: Any


@dataclass
class ElementImage:
    element: Any


@dataclass
class CanvasImage:
    canvas: Any


@dataclass
class VideoFrameImage:
    capture: Any


ImageInput = Union[EncodedImage, RawImage, BitmapImage, ElementImage, CanvasImage, VideoFrameImage, PixelBuffer]
