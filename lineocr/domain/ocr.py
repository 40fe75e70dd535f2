from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Tuple

import numpy as np

from lineocr.domain.image import LineImage, PixelBuffer, RegionPolygon, Tensor


@dataclass
class RecognizedLine:
    text: str
    mean: float
    box: Optional[RegionPolygon] = None

    def to_dict(self) -> dict:
        data = {"text": self.text, "mean": self.mean}
        if self.box is not None:
            data["box"] = self.box
        return data


@dataclass
class DetectResult:
    texts: List[RecognizedLine] = field(default_factory=list)
    resized_image_width: int = 0
    resized_image_height: int = 0

    def to_dict(self) -> dict:
        return {
            "texts": [line.to_dict() for line in self.texts],
            "resizedImageWidth": self.resized_image_width,
            "resizedImageHeight": self.resized_image_height,
        }


@dataclass
class DetectionOutput:
    line_images: List[LineImage]
    resized_image_width: int
    resized_image_height: int


class NetworkPort(Protocol):
    def run(self, tensor: Tensor, run_options: Optional[dict] = None) -> np.ndarray:
        ...


class LineDecoderPort(Protocol):
    def decode(self, output: np.ndarray) -> Tuple[str, float]:
        ...


class DebugSinkPort(Protocol):
    def write_image(self, buffer: PixelBuffer, name: str) -> None:
        ...

    def draw_boxes(self, buffer: PixelBuffer, line_images: List[LineImage]) -> PixelBuffer:
        ...


class OcrRunner(Protocol):
    async def detect(self, image: Any, options: Optional[dict] = None) -> DetectResult:
        ...
