import logging
from typing import Optional

from lineocr.application.services.line_extractor import (
    RegionConfig,
    extract_lines,
    multiple_of_base_size,
    regions_from_probability_map,
)
from lineocr.application.services.tensor_preparer import DETECTION_PARAMS, to_tensor
from lineocr.domain.errors import InferenceFailed, OcrError
from lineocr.domain.image import ImageInput
from lineocr.domain.ocr import DebugSinkPort, DetectionOutput, NetworkPort
from lineocr.infrastructure.image_normalizer import ImageNormalizer

logger = logging.getLogger(__name__)


class DetectionService:
    def __init__(
        self,
        network: NetworkPort,
        normalizer: ImageNormalizer,
        debug_sink: DebugSinkPort,
        max_side_len: int = 960,
        region_config: Optional[RegionConfig] = None,
    ):
        self.network = network
        self.normalizer = normalizer
        self.debug_sink = debug_sink
        self.max_side_len = max_side_len
        self.region_config = region_config or RegionConfig()

    def run(self, image: ImageInput, run_options: Optional[dict] = None) -> DetectionOutput:
        buffer = self.normalizer.normalize(image)
        width, height = multiple_of_base_size(buffer.width, buffer.height, max_size=self.max_side_len)
        input_buffer = self.normalizer.resize(buffer, width, height)
        self.debug_sink.write_image(input_buffer, "out1-multiple-of-base-size.png")

        tensor = to_tensor(input_buffer, DETECTION_PARAMS)
        try:
            output = self.network.run(tensor, run_options)
        except OcrError:
            raise
        except Exception as exc:
            raise InferenceFailed("Detection network failed", {"error": str(exc)}) from exc

        regions = regions_from_probability_map(output, width, height, self.region_config)
        result = extract_lines(input_buffer, regions)
        logger.info(
            "detection_finished source_width=%s source_height=%s resized=%sx%s regions=%s lines=%s",
            buffer.width,
            buffer.height,
            width,
            height,
            len(regions),
            len(result.line_images),
        )

        if result.line_images:
            boxes = self.debug_sink.draw_boxes(input_buffer, result.line_images)
            self.debug_sink.write_image(boxes, "out2-boxes.png")
        return result
