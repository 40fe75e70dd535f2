from pydantic import BaseModel
from typing import Generic, TypeVar, Optional

from lineocr.domain.errors import OcrError

T = TypeVar("T")


class ErrorDTO(BaseModel):
    code: str
    message: str
    details: Optional[dict] = None

    @classmethod
    def from_error(cls, exc: OcrError) -> "ErrorDTO":
        return cls(code=exc.code, message=exc.message, details=exc.details or None)


class GeneralResponse(BaseModel, Generic[T]):
    success: bool
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[ErrorDTO] = None
