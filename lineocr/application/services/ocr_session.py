import importlib
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from lineocr.application.dtos.requests.create_options_request import CreateOptionsDTO
from lineocr.application.services.detection_service import DetectionService
from lineocr.application.services.ocr_service import OcrService
from lineocr.application.services.recognition_service import RecognitionService
from lineocr.domain.errors import ConfigError
from lineocr.domain.ocr import DebugSinkPort, DetectResult, LineDecoderPort, NetworkPort
from lineocr.domain.platform import Platform
from lineocr.infrastructure.call_serializer import CallSerializer
from lineocr.infrastructure.debug_sink_adapter import FileDebugSink, NullDebugSink, SafeDebugSink
from lineocr.infrastructure.image_normalizer import ImageNormalizer, to_image_input
from lineocr.infrastructure.onnx_network_adapter import OnnxNetworkAdapter

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes"}

DecoderFactory = Callable[[Optional[str]], LineDecoderPort]


@dataclass
class OcrConfig:
    detection_model_path: str | None = None
    recognition_model_path: str | None = None
    dictionary_path: str | None = None
    decoder: str | None = None
    debug: bool = False
    debug_dir: str = ".ocr_debug"
    fetch_timeout: float = 15.0
    detection_max_side: int = 960
    providers: list[str] = field(default_factory=lambda: ["CPUExecutionProvider"])

    @staticmethod
    def from_env() -> "OcrConfig":
        def _get_env(name: str) -> str | None:
            value = os.getenv(name)
            return value.strip() if value else None

        providers = _get_env("OCR_PROVIDERS") or "CPUExecutionProvider"
        try:
            return OcrConfig(
                detection_model_path=_get_env("OCR_DET_MODEL_PATH"),
                recognition_model_path=_get_env("OCR_REC_MODEL_PATH"),
                dictionary_path=_get_env("OCR_DICT_PATH"),
                decoder=_get_env("OCR_DECODER"),
                debug=(_get_env("OCR_DEBUG") or "false").lower() in _TRUE_VALUES,
                debug_dir=_get_env("OCR_DEBUG_DIR") or ".ocr_debug",
                fetch_timeout=float(_get_env("OCR_FETCH_TIMEOUT") or "15"),
                detection_max_side=int(_get_env("OCR_DET_MAX_SIDE") or "960"),
                providers=[p.strip() for p in providers.split(",") if p.strip()],
            )
        except ValueError as exc:
            raise ConfigError("Invalid OCR environment configuration", {"error": str(exc)}) from exc

    def to_options(self) -> CreateOptionsDTO:
        models = None
        if self.detection_model_path and self.recognition_model_path:
            models = {
                "detectionPath": self.detection_model_path,
                "recognitionPath": self.recognition_model_path,
                "dictionaryPath": self.dictionary_path,
            }
        return CreateOptionsDTO(
            models=models,
            isDebug=self.debug,
            debugOutputDir=self.debug_dir,
            onnxOptions={"providers": self.providers},
        )


def load_decoder_factory(path: str | None) -> DecoderFactory | None:
    """Resolve a "package.module:callable" reference to a decoder factory."""
    if not path:
        return None
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError('Decoder reference must look like "package.module:factory"', {"decoder": path})
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigError("Decoder factory could not be loaded", {"decoder": path, "error": str(exc)}) from exc


class OcrSession:
    """Long-lived OCR session. All detect calls on one session run one at a time, in call order."""

    def __init__(
        self,
        service: OcrService,
        serializer: Optional[CallSerializer] = None,
        networks: tuple = (),
    ):
        self.service = service
        self.serializer = serializer or CallSerializer()
        self._networks = networks

    @property
    def models_loaded(self) -> bool:
        return all(getattr(network, "loaded", True) for network in self._networks)

    @classmethod
    async def create(
        cls,
        options: CreateOptionsDTO | dict | None = None,
        *,
        detection_network: NetworkPort | None = None,
        recognition_network: NetworkPort | None = None,
        decoder: LineDecoderPort | None = None,
        decoder_factory: DecoderFactory | None = None,
        platform: Platform | None = None,
        debug_sink: DebugSinkPort | None = None,
        fetch_timeout: float = 15.0,
        detection_max_side: int = 960,
    ) -> "OcrSession":
        if not isinstance(options, CreateOptionsDTO):
            options = CreateOptionsDTO.model_validate(options or {})

        session_options = dict(options.onnxOptions or {})
        providers = session_options.pop("providers", None) or session_options.pop("executionProviders", None)

        if detection_network is None or recognition_network is None:
            if options.models is None:
                raise ConfigError(
                    "Model paths are required when networks are not injected",
                    {"required": ["detectionPath", "recognitionPath"]},
                )
        if detection_network is None:
            detection_network = OnnxNetworkAdapter(options.models.detectionPath, providers, session_options)
        if recognition_network is None:
            recognition_network = OnnxNetworkAdapter(options.models.recognitionPath, providers, session_options)

        if decoder is None and decoder_factory is not None:
            dictionary_path = options.models.dictionaryPath if options.models else None
            decoder = decoder_factory(dictionary_path)
        if decoder is None:
            raise ConfigError(
                "A recognition decoder is required",
                {"hint": "pass decoder= or decoder_factory=, or set OCR_DECODER"},
            )

        normalizer = ImageNormalizer(platform=platform, fetch_timeout=fetch_timeout)
        if debug_sink is None:
            if options.isDebug and options.debugOutputDir:
                debug_sink = FileDebugSink(options.debugOutputDir, normalizer)
            else:
                debug_sink = NullDebugSink()
        debug_sink = SafeDebugSink(debug_sink)

        service = OcrService(
            detection=DetectionService(
                network=detection_network,
                normalizer=normalizer,
                debug_sink=debug_sink,
                max_side_len=detection_max_side,
            ),
            recognition=RecognitionService(
                network=recognition_network,
                decoder=decoder,
                normalizer=normalizer,
                debug_sink=debug_sink,
            ),
        )
        logger.info(
            "ocr_session_created debug=%s models=%s",
            options.isDebug,
            options.models.model_dump() if options.models else None,
        )
        return cls(service, networks=(detection_network, recognition_network))

    @classmethod
    async def from_config(cls, config: OcrConfig, **kwargs: Any) -> "OcrSession":
        if "decoder" not in kwargs and "decoder_factory" not in kwargs:
            kwargs["decoder_factory"] = load_decoder_factory(config.decoder)
        return await cls.create(
            config.to_options(),
            fetch_timeout=config.fetch_timeout,
            detection_max_side=config.detection_max_side,
            **kwargs,
        )

    async def detect(self, image: Any, options: Optional[dict] = None) -> DetectResult:
        image_input = to_image_input(image)
        return await self.serializer.schedule(lambda: self.service.run(image_input, options))

    async def close(self) -> None:
        await self.serializer.close()
