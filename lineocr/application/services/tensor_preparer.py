import numpy as np

from lineocr.domain.image import NormalizationParams, PixelBuffer, Tensor

DETECTION_PARAMS = NormalizationParams(mean=(0.485, 0.456, 0.406), std=(0.229, 0.224, 0.225))
RECOGNITION_PARAMS = NormalizationParams(mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5))


def to_tensor(buffer: PixelBuffer, params: NormalizationParams) -> Tensor:
    """Convert RGBA pixels into a (1, 3, H, W) float32 tensor.

    Each channel becomes (value / 255 - mean[c]) / std[c], where c indexes the
    buffer's RGB order. Planes are written in BGR order, which is what the
    detection and recognition networks were trained on. Alpha is ignored.
    """
    rgb = buffer.data[:, :, :3].astype(np.float32) / np.float32(255)
    mean = np.asarray(params.mean, dtype=np.float32)
    std = np.asarray(params.std, dtype=np.float32)
    normalized = (rgb - mean) / std
    planar = normalized[:, :, ::-1].transpose(2, 0, 1)
    return Tensor(np.ascontiguousarray(planar, dtype=np.float32)[np.newaxis])
