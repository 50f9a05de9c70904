# faceclock/detect/postprocess.py
"""
Detector output post-processing.

Turns the raw `[cx, cy, w, h, confidence]` rows of a square, letterboxed
face detector into clean FaceBox objects in original-image pixels:

    confidence filter -> un-letterbox -> clamp + min size -> padding
    -> greedy NMS -> sort by area (largest face first)

Usage:
    from faceclock.detect.postprocess import Letterbox, postprocess_detections

    lb = Letterbox.fit(img_w, img_h, size=640)
    boxes = postprocess_detections(raw, img_w, img_h, lb, conf_threshold=0.75)
    if boxes:
        largest = boxes[0]
"""
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

# box + confidence, and box + confidence + 5 landmarks (x, y, visibility)
CHANNELS_FIRST_WIDTHS = (5, 20)


@dataclass(frozen=True)
class FaceBox:
    """Face bounding box in original-image pixel coordinates."""
    x: float
    y: float
    width: float
    height: float
    confidence: float

    def __post_init__(self):
        if not (self.width > 0 and self.height > 0):
            raise ValueError(f"FaceBox needs positive size, got {self.width}x{self.height}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"FaceBox confidence {self.confidence} not in [0, 1]")

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict:
        return {
            'x': round(self.x, 1),
            'y': round(self.y, 1),
            'width': round(self.width, 1),
            'height': round(self.height, 1),
            'confidence': round(self.confidence, 4),
        }


@dataclass(frozen=True)
class Letterbox:
    """Resize-and-pad transform that fit the image into the S x S model input."""
    scale: float
    pad_x: float
    pad_y: float
    size: int

    @classmethod
    def fit(cls, image_width: int, image_height: int, size: int) -> 'Letterbox':
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Invalid image size {image_width}x{image_height}")
        scale = min(size / image_width, size / image_height)
        new_w = int(round(image_width * scale))
        new_h = int(round(image_height * scale))
        return cls(scale=scale, pad_x=(size - new_w) // 2, pad_y=(size - new_h) // 2, size=size)


def iou(a: FaceBox, b: FaceBox) -> float:
    """Intersection-over-Union of two boxes."""
    inter_w = max(0.0, min(a.x2, b.x2) - max(a.x, b.x))
    inter_h = max(0.0, min(a.y2, b.y2) - max(a.y, b.y))
    inter = inter_w * inter_h
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return inter / union


def non_max_suppression(boxes: List[FaceBox], iou_threshold: float = 0.45) -> List[FaceBox]:
    """
    Greedy NMS: keep the most confident box, drop every remaining box whose
    IoU with it is >= iou_threshold, repeat.

    Returns kept boxes in confidence-descending order.
    """
    candidates = sorted(boxes, key=lambda b: b.confidence, reverse=True)
    kept = []
    while candidates:
        best = candidates.pop(0)
        kept.append(best)
        candidates = [b for b in candidates if iou(best, b) < iou_threshold]
    return kept


def _as_rows(raw) -> np.ndarray:
    """Coerce detector output to an (N, 5) float array."""
    arr = np.asarray(raw, dtype=np.float32)
    if arr.size == 0:
        return np.empty((0, 5), dtype=np.float32)
    # Drop batch axis: [1, 5, N] or [1, N, 5]
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim == 1 and arr.shape[0] == 5:
        arr = arr[np.newaxis, :]
    if arr.ndim != 2:
        raise ValueError(f"Unexpected detector output shape {np.shape(raw)}")
    # YOLO exports channels-first: [5, N], or [20, N] with 15 landmark channels.
    # Otherwise the channel axis is the short one.
    if arr.shape[1] != 5 and (arr.shape[0] in CHANNELS_FIRST_WIDTHS or arr.shape[0] < arr.shape[1]):
        arr = arr.T
    if arr.shape[1] < 5:
        raise ValueError(f"Detector rows need 5 values, got {arr.shape[1]}")
    return arr[:, :5]


def _clamp(x1, y1, x2, y2, image_width, image_height, confidence, min_size) -> Optional[FaceBox]:
    x1 = max(0.0, x1)
    y1 = max(0.0, y1)
    x2 = min(float(image_width), x2)
    y2 = min(float(image_height), y2)
    w = x2 - x1
    h = y2 - y1
    if w < min_size or h < min_size or w <= 0 or h <= 0:
        return None
    return FaceBox(x1, y1, w, h, confidence)


def expand_box(box: FaceBox, padding: float, image_width: int, image_height: int,
               min_size: float = 0) -> Optional[FaceBox]:
    """Grow width and height by `padding` (split over both sides), re-clamp."""
    dx = box.width * padding / 2.0
    dy = box.height * padding / 2.0
    return _clamp(box.x - dx, box.y - dy, box.x2 + dx, box.y2 + dy,
                  image_width, image_height, box.confidence, min_size)


def postprocess_detections(
    raw,
    image_width: int,
    image_height: int,
    letterbox: Letterbox,
    conf_threshold: float = 0.75,
    iou_threshold: float = 0.45,
    min_size: float = 80,
    padding: float = 0.0,
) -> List[FaceBox]:
    """
    Convert raw detector rows into face boxes, largest first.

    Args:
        raw: [cx, cy, w, h, conf] rows normalized to the S x S model input,
             as (N, 5+), (5, N), (20, N) or with a leading batch axis;
             extra landmark channels are ignored
        image_width, image_height: Original image size
        letterbox: Transform used to build the model input
        conf_threshold: Minimum detector confidence
        iou_threshold: NMS overlap threshold
        min_size: Minimum box side in image pixels
        padding: Fractional growth applied to surviving boxes

    Returns:
        List[FaceBox]; empty means "no usable face"
    """
    rows = _as_rows(raw)
    rows = rows[np.isfinite(rows).all(axis=1)]
    rows = rows[rows[:, 4] >= conf_threshold]
    if len(rows) == 0:
        return []

    s = float(letterbox.size)
    cx, cy, w, h = rows[:, 0] * s, rows[:, 1] * s, rows[:, 2] * s, rows[:, 3] * s
    x = (cx - w / 2.0 - letterbox.pad_x) / letterbox.scale
    y = (cy - h / 2.0 - letterbox.pad_y) / letterbox.scale
    bw = w / letterbox.scale
    bh = h / letterbox.scale

    boxes = []
    for i in range(len(rows)):
        conf = float(min(1.0, max(0.0, rows[i, 4])))
        box = _clamp(float(x[i]), float(y[i]), float(x[i] + bw[i]), float(y[i] + bh[i]),
                     image_width, image_height, conf, min_size)
        if box is None:
            continue
        if padding > 0:
            box = expand_box(box, padding, image_width, image_height, min_size)
            if box is None:
                continue
        boxes.append(box)

    kept = non_max_suppression(boxes, iou_threshold)
    kept.sort(key=lambda b: (b.area, b.confidence), reverse=True)
    return kept


def crop_face(frame: np.ndarray, box: FaceBox, margin: float = 0.0) -> Optional[np.ndarray]:
    """
    Square crop centred on the box, side = max(w, h) * (1 + 2 * margin),
    clamped to the frame. Returns None if the crop is empty.
    """
    if frame is None or frame.size == 0:
        return None
    frame_h, frame_w = frame.shape[:2]
    side = max(box.width, box.height) * (1.0 + 2.0 * margin)
    cx = box.x + box.width / 2.0
    cy = box.y + box.height / 2.0
    x1 = int(max(0, round(cx - side / 2.0)))
    y1 = int(max(0, round(cy - side / 2.0)))
    x2 = int(min(frame_w, round(cx + side / 2.0)))
    y2 = int(min(frame_h, round(cy + side / 2.0)))
    if x2 <= x1 or y2 <= y1:
        return None
    return frame[y1:y2, x1:x2]
