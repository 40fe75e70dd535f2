import asyncio
import logging
import time
from typing import Optional

from lineocr.application.services.detection_service import DetectionService
from lineocr.application.services.recognition_service import RecognitionService
from lineocr.domain.image import ImageInput
from lineocr.domain.ocr import DetectResult

logger = logging.getLogger(__name__)


class OcrService:
    """Runs detection, line extraction and recognition for one image.

    Any stage failure aborts the run and nothing partial is returned.
    """

    def __init__(self, detection: DetectionService, recognition: RecognitionService):
        self.detection = detection
        self.recognition = recognition

    async def run(self, image: ImageInput, options: Optional[dict] = None) -> DetectResult:
        run_options = (options or {}).get("onnxOptions")
        start = time.perf_counter()

        detected = await asyncio.to_thread(self.detection.run, image, run_options)
        texts = await asyncio.to_thread(self.recognition.run, detected.line_images, run_options)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "detect_finished lines=%s resized=%sx%s duration_ms=%.2f",
            len(texts),
            detected.resized_image_width,
            detected.resized_image_height,
            duration_ms,
        )
        return DetectResult(
            texts=texts,
            resized_image_width=detected.resized_image_width,
            resized_image_height=detected.resized_image_height,
        )
