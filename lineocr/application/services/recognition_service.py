import logging
from typing import List, Optional

from lineocr.application.services.tensor_preparer import RECOGNITION_PARAMS, to_tensor
from lineocr.domain.errors import InferenceFailed, OcrError
from lineocr.domain.image import LineImage
from lineocr.domain.ocr import DebugSinkPort, LineDecoderPort, NetworkPort, RecognizedLine
from lineocr.infrastructure.image_normalizer import ImageNormalizer

logger = logging.getLogger(__name__)

LINE_HEIGHT = 48


class RecognitionService:
    def __init__(
        self,
        network: NetworkPort,
        decoder: LineDecoderPort,
        normalizer: ImageNormalizer,
        debug_sink: DebugSinkPort,
    ):
        self.network = network
        self.decoder = decoder
        self.normalizer = normalizer
        self.debug_sink = debug_sink

    def run(self, line_images: List[LineImage], run_options: Optional[dict] = None) -> List[RecognizedLine]:
        lines: List[RecognizedLine] = []
        for index, line_image in enumerate(line_images):
            resized = self.normalizer.resize(line_image.buffer, height=LINE_HEIGHT)
            self.debug_sink.write_image(resized, f"line-{index}.png")
            tensor = to_tensor(resized, RECOGNITION_PARAMS)
            try:
                output = self.network.run(tensor, run_options)
                text, mean = self.decoder.decode(output)
            except OcrError:
                raise
            except Exception as exc:
                raise InferenceFailed(
                    "Recognition failed",
                    {"line": index, "error": str(exc)},
                ) from exc

            if not text:
                logger.debug("recognition_line_empty line=%s", index)
                continue
            lines.append(RecognizedLine(text=text, mean=float(mean), box=line_image.box))

        logger.info("recognition_finished lines_in=%s lines_out=%s", len(line_images), len(lines))
        return lines
