from pydantic import BaseModel, Field, model_validator


class DetectRawRequestDTO(BaseModel):
    data: str | None = Field(default=None, description="RGBA pixels, base64")
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    url: str | None = None
    onnxOptions: dict | None = None

    @model_validator(mode="after")
    def _check_source(self):
        has_raw = self.data is not None
        if has_raw == (self.url is not None):
            raise ValueError('exactly one of "data" or "url" is required')
        if has_raw and (self.width is None or self.height is None):
            raise ValueError('"width" and "height" are required with "data"')
        return self
