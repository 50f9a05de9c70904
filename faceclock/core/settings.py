# faceclock/core/settings.py
"""
Configuration for FaceClock.

Defaults live on the Settings dataclass; `config/config.json` (or the file
named by $FACECLOCK_CONFIG) overrides them key by key.
"""
import os
import json
import logging
import platform
from dataclasses import dataclass, field, fields

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


# === PLATFORM DETECTION ===
IS_WINDOWS = platform.system() == "Windows"
IS_PI = platform.system() == "Linux" and os.path.exists("/proc/device-tree/model")

# === PATHS ===
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
CONFIG_PATH = os.environ.get(
    "FACECLOCK_CONFIG", os.path.join(BASE_DIR, 'config', 'config.json')
)


def _load_json_config(path: str) -> dict:
    """Load a JSON config file, {} if missing or unreadable."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level is not an object")
        return {}
    return data


def _coerce(value, kind):
    """Convert a JSON value to the field type; raises ValueError if it does not fit."""
    if kind is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValueError(f"expected true/false, got {value!r}")
    if kind in (int, float):
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        number = float(value)
        if kind is int:
            if not number.is_integer():
                raise ValueError(f"expected an integer, got {value!r}")
            return int(number)
        return number
    if kind is str and not isinstance(value, str):
        raise ValueError(f"expected a string, got {value!r}")
    return value


@dataclass
class Settings:
    """Runtime settings. Thresholds are tunable, not invariants."""

    # === PLATFORM (read-only) ===
    IS_WINDOWS: bool = field(default_factory=lambda: IS_WINDOWS)
    IS_PI: bool = field(default_factory=lambda: IS_PI)
    BASE_DIR: str = field(default_factory=lambda: BASE_DIR)
    CONFIG_PATH: str = field(default_factory=lambda: CONFIG_PATH)

    # === MODELS ===
    DETECTION_MODEL: str = "models/detection/yolov8n_face.tflite"
    RECOGNITION_MODEL: str = "models/recognition/MobileFaceNet.tflite"
    TFLITE_NUM_THREADS: int = 4
    EMBEDDING_DIM: int = 192

    # === DETECTION ===
    ENROLL_CONFIDENCE: float = 0.50      # human-supervised registration
    VERIFY_CONFIDENCE: float = 0.75      # unattended verification
    NMS_IOU_THRESHOLD: float = 0.45
    MIN_FACE_SIZE: int = 80              # pixels, after mapping back to the image
    BOX_PADDING: float = 0.20
    CROP_MARGIN: float = 0.0
    MAX_FACES_PER_FRAME: int = 4

    # === MATCHING ===
    SIMILARITY_THRESHOLD: float = 0.82
    MARGIN_THRESHOLD: float = 0.10

    # === REGISTRATION ===
    STABILITY_THRESHOLD: float = 0.75
    MIN_REGISTRATION_SAMPLES: int = 2

    # === VOTING ===
    VOTE_WINDOW: int = 5
    VOTES_TO_CONFIRM: int = 3
    UNKNOWN_STREAK: int = 5
    PROTECTION_SECONDS: float = 6.0
    IDENTITY_DEBOUNCE_SECONDS: float = 2.0
    CYCLE_INTERVAL: float = 1.0
    SESSION_TIMEOUT: float = 600.0
    REVALIDATE_GALLERY: bool = False

    # === ATTENDANCE ===
    MIN_SESSION_GAP_SECONDS: float = 300.0
    DB_PATH: str = "attendance.db"

    # === WEB SERVER ===
    ENABLE_WEB_SERVER: bool = True
    WEB_PORT: int = 5000

    # === CAMERA ===
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480

    def __post_init__(self):
        self._config_errors = []
        self._load_from_json()
        self._compute_defaults()

    def _load_from_json(self):
        """Override fields from the JSON config, ignoring unknown keys."""
        config = _load_json_config(self.CONFIG_PATH)
        types = {f.name: f.type for f in fields(self)}
        for key, value in config.items():
            if key not in types or value is None:
                logger.debug(f"Unknown config key ignored: {key}")
                continue
            try:
                setattr(self, key, _coerce(value, types[key]))
            except (TypeError, ValueError) as e:
                logger.warning(f"Config {key}: {e}")
                self._config_errors.append(f"{key}: {e}")

    def _compute_defaults(self):
        """Platform-dependent defaults."""
        if self.IS_PI:
            self.CAMERA_WIDTH = min(self.CAMERA_WIDTH, 320)
            self.CAMERA_HEIGHT = min(self.CAMERA_HEIGHT, 240)
            self.TFLITE_NUM_THREADS = min(self.TFLITE_NUM_THREADS, 2)

    def validate(self):
        """Raise ConfigurationError if a value is out of range."""
        problems = list(self._config_errors)
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type in (int, float) and (isinstance(value, bool) or not isinstance(value, (int, float))):
                problems.append(f"{f.name}={value!r} is not a number")
        if problems:
            raise ConfigurationError("; ".join(problems))

        for key in ('ENROLL_CONFIDENCE', 'VERIFY_CONFIDENCE', 'NMS_IOU_THRESHOLD',
                    'SIMILARITY_THRESHOLD', 'STABILITY_THRESHOLD'):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{key}={value} not in [0, 1]")
        if not 0.0 <= self.MARGIN_THRESHOLD < 1.0:
            problems.append(f"MARGIN_THRESHOLD={self.MARGIN_THRESHOLD} not in [0, 1)")
        if self.BOX_PADDING < 0 or self.CROP_MARGIN < 0:
            problems.append("BOX_PADDING and CROP_MARGIN must be >= 0")
        if not 1 <= self.VOTES_TO_CONFIRM <= self.VOTE_WINDOW:
            problems.append(
                f"VOTES_TO_CONFIRM={self.VOTES_TO_CONFIRM} must be in [1, VOTE_WINDOW={self.VOTE_WINDOW}]"
            )
        for key in ('EMBEDDING_DIM', 'MIN_FACE_SIZE', 'MAX_FACES_PER_FRAME',
                    'UNKNOWN_STREAK', 'MIN_REGISTRATION_SAMPLES'):
            if getattr(self, key) < 1:
                problems.append(f"{key} must be >= 1")
        for key in ('CYCLE_INTERVAL', 'SESSION_TIMEOUT'):
            if getattr(self, key) <= 0:
                problems.append(f"{key} must be > 0")
        for key in ('PROTECTION_SECONDS', 'IDENTITY_DEBOUNCE_SECONDS', 'MIN_SESSION_GAP_SECONDS'):
            if getattr(self, key) < 0:
                problems.append(f"{key} must be >= 0")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

    # === PROPERTY ALIASES ===
    @property
    def similarity_threshold(self) -> float:
        return self.SIMILARITY_THRESHOLD

    @property
    def margin_threshold(self) -> float:
        return self.MARGIN_THRESHOLD

    @property
    def cycle_interval(self) -> float:
        return self.CYCLE_INTERVAL

    @property
    def session_timeout(self) -> float:
        return self.SESSION_TIMEOUT

    @property
    def web_port(self) -> int:
        return self.WEB_PORT


# === SINGLETON ===
settings = Settings()
