from pydantic import BaseModel


class ModelPathsDTO(BaseModel):
    detectionPath: str
    recognitionPath: str
    dictionaryPath: str | None = None


class CreateOptionsDTO(BaseModel):
    models: ModelPathsDTO | None = None
    isDebug: bool = False
    debugOutputDir: str | None = None
    onnxOptions: dict | None = None
