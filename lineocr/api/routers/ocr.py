import asyncio
import base64
import binascii
import logging

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse

from lineocr.application.dtos.requests.detect_raw_request import DetectRawRequestDTO
from lineocr.application.dtos.responses.general_response import ErrorDTO, GeneralResponse
from lineocr.application.services.ocr_session import OcrConfig, OcrSession
from lineocr.domain.errors import (
    DecodeFailed,
    InvalidBitmapDimensions,
    OcrError,
    ResourceFetchFailed,
    SourceNotReady,
    UnsupportedInputType,
)
from lineocr.domain.image import EncodedImage, RawImage
from lineocr.domain.ocr import OcrRunner
from lineocr.infrastructure.image_normalizer import decode_bitmap

router = APIRouter(prefix="/ocr", tags=["OCR"])
logger = logging.getLogger(__name__)

_ACCEPTED_MEDIA = {"image/jpeg", "image/png", "image/webp", "image/bmp"}
_session: OcrRunner | None = None
_session_lock = asyncio.Lock()


async def get_ocr_session() -> OcrRunner:
    global _session
    if _session is None:
        async with _session_lock:
            if _session is None:
                _session = await OcrSession.from_config(OcrConfig.from_env())
    return _session


def set_ocr_session(session: OcrRunner | None) -> None:
    global _session
    _session = session


def _status_for(exc: OcrError) -> int:
    if isinstance(exc, UnsupportedInputType):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (SourceNotReady, InvalidBitmapDimensions, DecodeFailed)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, ResourceFetchFailed):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: OcrError, event: str) -> JSONResponse:
    status_code = _status_for(exc)
    response = GeneralResponse(
        success=False,
        message=exc.message,
        error=ErrorDTO.from_error(exc),
    )
    logger.warning("%s status=%s code=%s message=%s", event, status_code, exc.code, exc.message)
    return JSONResponse(status_code=status_code, content=response.model_dump())


async def _run_detect(session: OcrRunner, image, options: dict | None, event: str):
    try:
        result = await session.detect(image, options)
    except OcrError as exc:
        return error_response(exc, event)

    response = GeneralResponse(success=True, message="OCR processed", data=result.to_dict())
    logger.info("%s status=200 lines=%s", event, len(result.texts))
    return response


@router.post("/detect")
async def detect(file: UploadFile = File(...), session: OcrRunner = Depends(get_ocr_session)):
    logger.info(
        "detect_request filename=%s content_type=%s",
        file.filename,
        file.content_type,
    )

    if file.content_type not in _ACCEPTED_MEDIA:
        response = GeneralResponse(
            success=False,
            message="Only JPEG, PNG, WEBP or BMP images are accepted",
            error=ErrorDTO(code="UNSUPPORTED_MEDIA", message="Only JPEG, PNG, WEBP or BMP images are accepted"),
        )
        logger.warning("detect_response status=415 content_type=%s", file.content_type)
        return JSONResponse(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, content=response.model_dump())

    image_bytes = await file.read()
    logger.info("detect_image_bytes size=%s", len(image_bytes))
    try:
        bitmap = decode_bitmap(image_bytes)
    except DecodeFailed as exc:
        return error_response(exc, "detect_response")
    return await _run_detect(session, bitmap, None, "detect_response")


@router.post("/detect-raw")
async def detect_raw(payload: DetectRawRequestDTO, session: OcrRunner = Depends(get_ocr_session)):
    logger.info(
        "detect_raw_request url=%s width=%s height=%s data_len=%s",
        payload.url,
        payload.width,
        payload.height,
        len(payload.data or ""),
    )

    if payload.url is not None:
        image = EncodedImage(payload.url)
    else:
        try:
            data = _decode_base64(payload.data)
        except ValueError:
            response = GeneralResponse(
                success=False,
                message="Invalid base64",
                error=ErrorDTO(code="INVALID_BASE64", message="Invalid base64"),
            )
            logger.warning("detect_raw_response status=400 reason=invalid_base64")
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response.model_dump())
        image = RawImage(data=data, width=payload.width, height=payload.height)

    options = {"onnxOptions": payload.onnxOptions} if payload.onnxOptions else None
    return await _run_detect(session, image, options, "detect_raw_response")


def _decode_base64(value: str) -> bytes:
    raw = value.strip()
    if raw.lower().startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64") from exc
