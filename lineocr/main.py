import logging
import os
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from lineocr.api.routers import ocr as ocr_routes
from lineocr.api.routers.ocr import router as ocr_router
from lineocr.domain.errors import OcrError


def _configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


_configure_logging()
logger = logging.getLogger("lineocr.http")

_REQUEST_ID_HEADER = "x-request-id"


async def close_session() -> None:
    session = ocr_routes._session
    if session is not None and hasattr(session, "close"):
        await session.close()
    ocr_routes.set_ocr_session(None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_session()


app = FastAPI(title="lineocr", lifespan=lifespan)


@app.middleware("http")
async def log_http_requests(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get(_REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    client = request.client.host if request.client else "-"
    logger.info(
        "request_started id=%s method=%s path=%s client=%s",
        request_id,
        request.method,
        request.url.path,
        client,
    )

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.exception(
            "request_failed id=%s method=%s path=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            duration_ms,
        )
        raise

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request_finished id=%s status=%s duration_ms=%.2f",
        request_id,
        response.status_code,
        duration_ms,
    )
    response.headers[_REQUEST_ID_HEADER] = request_id
    return response


@app.get("/health")
async def health() -> dict:
    session = ocr_routes._session
    return {
        "status": "ok",
        "session_ready": session is not None,
        "models_loaded": bool(getattr(session, "models_loaded", False)),
    }


@app.exception_handler(OcrError)
async def handle_ocr_error(request: Request, exc: OcrError):
    return ocr_routes.error_response(exc, "request_error")


app.include_router(ocr_router)


def run() -> None:
    uvicorn.run(
        "lineocr.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )
