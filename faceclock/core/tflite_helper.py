# faceclock/core/tflite_helper.py
"""
TFLite interpreter loader.
Prefers tflite_runtime (light, for the Pi) and falls back to tensorflow.lite.
"""
import os
import logging

from ..errors import ModelLoadError

logger = logging.getLogger(__name__)

_logged_runtime = False


def get_interpreter(model_path, num_threads=4):
    """
    Create a TFLite Interpreter for `model_path`.

    Raises:
        ModelLoadError: model file missing or no TFLite runtime installed
    """
    global _logged_runtime

    if not os.path.exists(model_path):
        raise ModelLoadError(f"Model not found: {model_path}")

    num_threads = max(1, int(num_threads))

    try:
        from tflite_runtime.interpreter import Interpreter
        if not _logged_runtime:
            logger.info(f"[TFLite] Using tflite_runtime (threads={num_threads})")
            _logged_runtime = True
        return Interpreter(model_path=model_path, num_threads=num_threads)
    except ImportError:
        pass

    try:
        import tensorflow as tf
        if not _logged_runtime:
            logger.info(f"[TFLite] Using tensorflow.lite (threads={num_threads})")
            _logged_runtime = True
        return tf.lite.Interpreter(model_path=model_path, num_threads=num_threads)
    except ImportError:
        pass

    raise ModelLoadError(
        "No TFLite interpreter found. Install one of:\n"
        "  - pip install tflite-runtime  (light, for Pi)\n"
        "  - pip install tensorflow       (full, for PC)"
    )
