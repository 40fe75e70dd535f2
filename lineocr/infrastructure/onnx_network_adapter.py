import logging
import threading
from typing import Optional

import numpy as np

from lineocr.domain.errors import InferenceFailed
from lineocr.domain.image import Tensor
from lineocr.domain.ocr import NetworkPort

logger = logging.getLogger(__name__)


class OnnxNetworkAdapter(NetworkPort):
    def __init__(
        self,
        model_path: str,
        providers: Optional[list[str]] = None,
        session_options: Optional[dict] = None,
    ):
        self.model_path = model_path
        self.providers = providers or ["CPUExecutionProvider"]
        self.session_options = session_options or {}
        self._session = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def run(self, tensor: Tensor, run_options: Optional[dict] = None) -> np.ndarray:
        session = self._get_session()
        input_name = session.get_inputs()[0].name
        output_name = session.get_outputs()[0].name
        try:
            outputs = session.run(
                [output_name],
                {input_name: tensor.data.astype(np.float32, copy=False)},
                _build_run_options(run_options),
            )
        except Exception as exc:
            raise InferenceFailed(
                "Network run failed",
                {"model_path": self.model_path, "shape": list(tensor.shape), "error": str(exc)},
            ) from exc
        return np.asarray(outputs[0])

    def _get_session(self):
        if self._session is None:
            with self._lock:
                if self._session is None:
                    import onnxruntime as ort

                    options = ort.SessionOptions()
                    for key, value in self.session_options.items():
                        if hasattr(options, key):
                            setattr(options, key, value)
                        else:
                            logger.warning("onnx_session_option_ignored key=%s", key)
                    try:
                        self._session = ort.InferenceSession(
                            self.model_path,
                            sess_options=options,
                            providers=self.providers,
                        )
                    except Exception as exc:
                        raise InferenceFailed(
                            "Failed to load network",
                            {"model_path": self.model_path, "error": str(exc)},
                        ) from exc
                    logger.info("onnx_session_loaded model_path=%s providers=%s", self.model_path, self.providers)
        return self._session


def _build_run_options(run_options: Optional[dict]):
    if not run_options:
        return None
    import onnxruntime as ort

    options = ort.RunOptions()
    for key, value in run_options.items():
        if hasattr(options, key):
            setattr(options, key, value)
        else:
            logger.warning("onnx_run_option_ignored key=%s", key)
    return options
