# faceclock/core/__init__.py
"""
Core modules - Infrastructure & Configuration.

- settings: Unified configuration
- camera: Camera management (imports cv2)
- tflite_helper: TFLite interpreter helper
- model_factory: Factory for detector / embedder / scanning session
"""

from .settings import settings, Settings
from .tflite_helper import get_interpreter
from .model_factory import create_detector, create_embedder, create_scanning_session

__all__ = [
    'settings',
    'Settings',
    'get_interpreter',
    'create_detector',
    'create_embedder',
    'create_scanning_session',
]
