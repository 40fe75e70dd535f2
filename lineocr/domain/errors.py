from typing import Optional


class OcrError(Exception):
    code = "OCR_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnsupportedInputType(OcrError):
    code = "UNSUPPORTED_INPUT_TYPE"


class EnvironmentCapabilityMissing(OcrError):
    code = "ENVIRONMENT_CAPABILITY_MISSING"


class InvalidBitmapDimensions(OcrError):
    code = "INVALID_BITMAP_DIMENSIONS"


class SourceNotReady(OcrError):
    code = "SOURCE_NOT_READY"


class ResourceFetchFailed(OcrError):
    code = "RESOURCE_FETCH_FAILED"


class DecodeFailed(OcrError):
    code = "DECODE_FAILED"


class ContextCreationFailure(OcrError):
    code = "CONTEXT_CREATION_FAILURE"


class InferenceFailed(OcrError):
    code = "INFERENCE_FAILED"


class ConfigError(OcrError):
    code = "CONFIG_ERROR"
