# faceclock/detect/__init__.py
"""
Face Detection module.

Exports:
- FaceBox, Letterbox: detection geometry
- postprocess_detections, non_max_suppression, iou, crop_face: post-processing
- YoloFaceDetector: TFLite detector (imported lazily by model_factory)
"""

from .postprocess import (
    FaceBox,
    Letterbox,
    crop_face,
    expand_box,
    iou,
    non_max_suppression,
    postprocess_detections,
)

__all__ = [
    'FaceBox',
    'Letterbox',
    'crop_face',
    'expand_box',
    'iou',
    'non_max_suppression',
    'postprocess_detections',
]
