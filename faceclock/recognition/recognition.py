# faceclock/recognition/recognition.py
"""
Face embedding module - MobileFaceNet TFLite
===========================================
Input: [1, 112, 112, 3] float32 or int8 (quantized)
Output: [1, D] raw embedding (D = 192 or 128, read from the model)

The embedder returns the *raw* vector; normalization and quality checks
belong to faceclock.recognition.embedding.

Thread-safe: inference runs under a Lock.
"""
import logging
import threading

import cv2
import numpy as np

from ..core.tflite_helper import get_interpreter

logger = logging.getLogger(__name__)

DEFAULT_MODEL_PATH = "models/recognition/MobileFaceNet.tflite"

INPUT_HEIGHT = 112
INPUT_WIDTH = 112
EMBEDDING_DIM = 192


class FaceEmbedder:
    """
    Crop -> raw embedding.

    get_embedding() returns None on decode/model failure instead of raising.
    """

    def __init__(self, model_path=DEFAULT_MODEL_PATH, num_threads=4, enable_histogram_eq=False):
        self._inference_lock = threading.Lock()
        self.model_path = model_path
        self.enable_histogram_eq = enable_histogram_eq

        self.interpreter = get_interpreter(model_path, num_threads=num_threads)
        self.interpreter.allocate_tensors()
        self.input_details = self.interpreter.get_input_details()
        self.output_details = self.interpreter.get_output_details()

        self._input_dtype = self.input_details[0]['dtype']
        shape = tuple(int(d) for d in self.input_details[0].get('shape', [1, INPUT_HEIGHT, INPUT_WIDTH, 3]))
        self.input_height = shape[1] if len(shape) >= 3 else INPUT_HEIGHT
        self.input_width = shape[2] if len(shape) >= 3 else INPUT_WIDTH

        out_shape = self.output_details[0].get('shape', [1, EMBEDDING_DIM])
        self._embedding_dim = int(out_shape[-1]) if len(out_shape) >= 2 else EMBEDDING_DIM

        in_quant = self.input_details[0].get('quantization_parameters', {})
        out_quant = self.output_details[0].get('quantization_parameters', {})
        self._input_scale = float(in_quant['scales'][0]) if len(in_quant.get('scales', [])) else 1.0
        self._input_zero_point = int(in_quant['zero_points'][0]) if len(in_quant.get('zero_points', [])) else 0
        self._output_scale = float(out_quant['scales'][0]) if len(out_quant.get('scales', [])) else 1.0
        self._output_zero_point = int(out_quant['zero_points'][0]) if len(out_quant.get('zero_points', [])) else 0

        self._input_index = self.input_details[0]['index']
        self._output_index = self.output_details[0]['index']

        logger.info(f"[Embedder] Model: {model_path}, dim={self._embedding_dim}, dtype={self._input_dtype}")

    def _preprocess(self, face_img):
        """
        Resize to the model input, BGR -> RGB, optional histogram
        equalization, scale to [-1, 1] and quantize if needed.
        """
        img = cv2.resize(face_img, (self.input_width, self.input_height))
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

        if self.enable_histogram_eq:
            img_yuv = cv2.cvtColor(img, cv2.COLOR_RGB2YUV)
            img_yuv[:, :, 0] = cv2.equalizeHist(img_yuv[:, :, 0])
            img = cv2.cvtColor(img_yuv, cv2.COLOR_YUV2RGB)

        img_float = (img.astype(np.float32) - 127.5) / 127.5
        if self._input_dtype in (np.int8, np.uint8):
            info = np.iinfo(self._input_dtype)
            return np.clip(
                np.round(img_float / self._input_scale + self._input_zero_point),
                info.min, info.max
            ).astype(self._input_dtype)
        return img_float

    def _dequantize(self, output):
        if output.dtype in (np.int8, np.uint8):
            return (output.astype(np.float32) - self._output_zero_point) * self._output_scale
        return output.astype(np.float32)

    def get_embedding(self, face_img):
        """
        Raw embedding for a BGR face crop.

        Returns:
            np.ndarray of shape (D,), or None if the crop could not be processed
        """
        if face_img is None or getattr(face_img, 'size', 0) == 0:
            return None
        try:
            img = self._preprocess(face_img)
        except cv2.error as e:
            logger.warning(f"[Embedder] Preprocess failed: {e}")
            return None

        with self._inference_lock:
            self.interpreter.set_tensor(self._input_index, np.expand_dims(img, axis=0))
            self.interpreter.invoke()
            output = self.interpreter.get_tensor(self._output_index)
            emb = np.array(self._dequantize(output)[0], dtype=np.float32, copy=True)

        return emb.reshape(-1)

    @property
    def embedding_dim(self):
        return self._embedding_dim
