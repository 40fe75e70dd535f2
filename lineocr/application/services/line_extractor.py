from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from lineocr.domain.errors import InferenceFailed
from lineocr.domain.image import LineImage, PixelBuffer, RegionPolygon
from lineocr.domain.ocr import DetectionOutput


@dataclass
class RegionConfig:
    binary_threshold: float = 0.3
    box_threshold: float = 0.6
    unclip_ratio: float = 1.5
    min_box_size: float = 3.0
    max_candidates: int = 1000
    # boxes whose top edges are closer than this are treated as one row
    row_tolerance: float = 10.0


def multiple_of_base_size(
    width: int,
    height: int,
    base_size: int = 32,
    max_size: Optional[int] = 960,
) -> Tuple[int, int]:
    if max_size and max(width, height) > max_size:
        ratio = max_size / max(width, height)
        width, height = width * ratio, height * ratio
    new_width = max(int(np.ceil(width / base_size)) * base_size, base_size)
    new_height = max(int(np.ceil(height / base_size)) * base_size, base_size)
    return new_width, new_height


def regions_from_probability_map(
    output: np.ndarray,
    width: int,
    height: int,
    config: Optional[RegionConfig] = None,
) -> List[RegionPolygon]:
    """Turn a text probability map into quadrilaterals in (width, height) space."""
    config = config or RegionConfig()
    prob = np.asarray(output, dtype=np.float32)
    while prob.ndim > 2 and prob.shape[0] == 1:
        prob = prob[0]
    if prob.ndim != 2:
        raise InferenceFailed("Unexpected detection output shape", {"shape": list(np.shape(output))})

    map_height, map_width = prob.shape
    scale_x = width / map_width
    scale_y = height / map_height

    mask = (prob > config.binary_threshold).astype(np.uint8) * 255
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    regions: List[RegionPolygon] = []
    for contour in contours[: config.max_candidates]:
        rect = cv2.minAreaRect(contour)
        if min(rect[1]) < config.min_box_size:
            continue
        if _box_score(prob, cv2.boxPoints(rect)) < config.box_threshold:
            continue

        expanded = _unclip(rect, config.unclip_ratio)
        if min(expanded[1]) < config.min_box_size + 2:
            continue

        points = _order_points(cv2.boxPoints(expanded))
        points[:, 0] = np.clip(np.round(points[:, 0] * scale_x), 0, width - 1)
        points[:, 1] = np.clip(np.round(points[:, 1] * scale_y), 0, height - 1)
        regions.append(points.astype(int).tolist())

    return _sort_reading_order(regions, config.row_tolerance)


def extract_lines(buffer: PixelBuffer, regions: List[RegionPolygon]) -> DetectionOutput:
    """Crop one upright line image per region, in region order.

    Degenerate regions (fewer than 3 points, zero area, or collapsing to less
    than one pixel) are dropped.
    """
    line_images: List[LineImage] = []
    for region in regions:
        if len(region) < 3:
            continue
        points = np.asarray(region, dtype=np.float32).reshape(-1, 2)
        if cv2.contourArea(points) <= 0:
            continue
        if len(points) != 4:
            points = cv2.boxPoints(cv2.minAreaRect(points))
        ordered = _order_points(points)
        crop = _four_point_transform(buffer.data, ordered)
        if crop is None:
            continue
        line_images.append(LineImage(buffer=PixelBuffer(crop), box=region))

    return DetectionOutput(
        line_images=line_images,
        resized_image_width=buffer.width,
        resized_image_height=buffer.height,
    )


def _box_score(prob: np.ndarray, box: np.ndarray) -> float:
    height, width = prob.shape
    xmin = int(np.clip(np.floor(box[:, 0].min()), 0, width - 1))
    xmax = int(np.clip(np.ceil(box[:, 0].max()), 0, width - 1))
    ymin = int(np.clip(np.floor(box[:, 1].min()), 0, height - 1))
    ymax = int(np.clip(np.ceil(box[:, 1].max()), 0, height - 1))

    mask = np.zeros((ymax - ymin + 1, xmax - xmin + 1), dtype=np.uint8)
    shifted = box.copy()
    shifted[:, 0] -= xmin
    shifted[:, 1] -= ymin
    cv2.fillPoly(mask, [shifted.reshape(-1, 1, 2).astype(np.int32)], 1)
    return float(cv2.mean(prob[ymin : ymax + 1, xmin : xmax + 1], mask)[0])


def _unclip(rect, ratio: float):
    (cx, cy), (w, h), angle = rect
    perimeter = 2 * (w + h)
    if perimeter <= 0:
        return rect
    distance = w * h * ratio / perimeter
    return (cx, cy), (w + 2 * distance, h + 2 * distance), angle


def _sort_reading_order(regions: List[RegionPolygon], tolerance: float) -> List[RegionPolygon]:
    regions = sorted(regions, key=lambda box: (box[0][1], box[0][0]))
    for i in range(len(regions) - 1):
        for j in range(i, -1, -1):
            same_row = abs(regions[j + 1][0][1] - regions[j][0][1]) < tolerance
            if same_row and regions[j + 1][0][0] < regions[j][0][0]:
                regions[j], regions[j + 1] = regions[j + 1], regions[j]
            else:
                break
    return regions


def _order_points(pts: np.ndarray) -> np.ndarray:
    """Order four corners as top-left, top-right, bottom-right, bottom-left.

    Corners are split into a left and a right pair by x, then each pair by y,
    so boxes rotated by 45 degrees keep four distinct corners.
    """
    pts = np.asarray(pts, dtype="float32").reshape(4, 2)
    by_x = pts[np.argsort(pts[:, 0], kind="stable")]
    left, right = by_x[:2], by_x[2:]
    top_left, bottom_left = left[np.argsort(left[:, 1], kind="stable")]
    top_right, bottom_right = right[np.argsort(right[:, 1], kind="stable")]
    return np.array([top_left, top_right, bottom_right, bottom_left], dtype="float32")


def _four_point_transform(image: np.ndarray, pts: np.ndarray) -> Optional[np.ndarray]:
    (tl, tr, br, bl) = pts
    max_w = int(max(np.linalg.norm(br - bl), np.linalg.norm(tr - tl)))
    max_h = int(max(np.linalg.norm(tr - br), np.linalg.norm(tl - bl)))
    if max_w < 1 or max_h < 1:
        return None
    dst = np.array(
        [[0, 0], [max_w - 1, 0], [max_w - 1, max_h - 1], [0, max_h - 1]],
        dtype="float32",
    )
    matrix = cv2.getPerspectiveTransform(pts, dst)
    warped = cv2.warpPerspective(
        image,
        matrix,
        (max_w, max_h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_REPLICATE,
    )
    # Vertical crops are text written top-to-bottom: present them upright.
    if max_h / max_w >= 1.5:
        warped = np.rot90(warped)
    return np.ascontiguousarray(warped)
