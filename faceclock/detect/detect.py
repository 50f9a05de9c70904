# faceclock/detect/detect.py
"""
Face Detection module - YOLO-face TFLite model.

Model: yolov8n_face.tflite
- Input: [1, S, S, 3] float32 (or int8), RGB, letterboxed, scaled to [0, 1]
- Output: [1, 5, N] rows of (cx, cy, w, h, confidence) normalized to S

Thread-safe: inference runs under a Lock.
"""
import logging
import threading

import cv2
import numpy as np

from ..core.tflite_helper import get_interpreter
from .postprocess import Letterbox, postprocess_detections

logger = logging.getLogger(__name__)

DEFAULT_MODEL_PATH = "models/detection/yolov8n_face.tflite"
DEFAULT_INPUT_SIZE = 640
LETTERBOX_FILL = 114


class YoloFaceDetector:
    """
    Face detector for single-class YOLO exports.

    detect_faces() never raises for "no face"; it returns [].
    """

    def __init__(self, model_path=DEFAULT_MODEL_PATH, num_threads=4,
                 iou_threshold=0.45, min_size=80, padding=0.2):
        self._inference_lock = threading.Lock()

        self.model_path = model_path
        self.iou_threshold = iou_threshold
        self.min_size = min_size
        self.padding = padding

        self.interpreter = get_interpreter(model_path, num_threads=num_threads)
        self.interpreter.allocate_tensors()
        self.input_details = self.interpreter.get_input_details()
        self.output_details = self.interpreter.get_output_details()

        shape = [int(d) for d in self.input_details[0]['shape']]
        self.input_size = shape[1] if len(shape) == 4 else DEFAULT_INPUT_SIZE
        self._input_dtype = self.input_details[0]['dtype']
        self._input_index = self.input_details[0]['index']
        self._output_index = self.output_details[0]['index']

        self._input_params = self._quant_params(self.input_details[0])
        self._output_params = self._quant_params(self.output_details[0])

        logger.info(f"[Detector] Loaded: {model_path} (input {self.input_size}x{self.input_size})")

    @staticmethod
    def _quant_params(detail):
        quant = detail.get('quantization_parameters', {})
        scales = quant.get('scales', [])
        zero_points = quant.get('zero_points', [])
        return {
            'scale': float(scales[0]) if len(scales) > 0 else 1.0,
            'zero_point': int(zero_points[0]) if len(zero_points) > 0 else 0,
        }

    def _letterbox(self, frame):
        """
        Resize keeping aspect ratio, pad to S x S, BGR -> RGB, scale to [0, 1].
        """
        h_img, w_img = frame.shape[:2]
        lb = Letterbox.fit(w_img, h_img, self.input_size)
        new_w = int(round(w_img * lb.scale))
        new_h = int(round(h_img * lb.scale))
        resized = cv2.resize(frame, (new_w, new_h))

        canvas = np.full((self.input_size, self.input_size, 3), LETTERBOX_FILL, dtype=np.uint8)
        px, py = int(lb.pad_x), int(lb.pad_y)
        canvas[py:py + new_h, px:px + new_w] = resized
        rgb = cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB)
        img = rgb.astype(np.float32) / 255.0

        if self._input_dtype in (np.int8, np.uint8):
            info = np.iinfo(self._input_dtype)
            params = self._input_params
            img = np.clip(np.round(img / params['scale'] + params['zero_point']),
                          info.min, info.max).astype(self._input_dtype)
        return np.expand_dims(img, axis=0), lb

    def _dequantize(self, output):
        if output.dtype in (np.int8, np.uint8):
            params = self._output_params
            return (output.astype(np.float32) - params['zero_point']) * params['scale']
        return output.astype(np.float32)

    def detect_faces(self, frame, conf_threshold=0.75):
        """
        Detect faces in a BGR frame.

        Returns:
            List[FaceBox], largest first
        """
        if frame is None or frame.size == 0:
            return []
        h_img, w_img = frame.shape[:2]
        img_input, lb = self._letterbox(frame)

        with self._inference_lock:
            self.interpreter.set_tensor(self._input_index, img_input)
            self.interpreter.invoke()
            raw = np.array(self.interpreter.get_tensor(self._output_index), copy=True)

        return postprocess_detections(
            self._dequantize(raw), w_img, h_img, lb,
            conf_threshold=conf_threshold,
            iou_threshold=self.iou_threshold,
            min_size=self.min_size,
            padding=self.padding,
        )
