# faceclock package
"""
FaceClock - Face Recognition Attendance (TFLite)

Structure:
    faceclock/
    ├── core/                     # Core infrastructure
    │   ├── settings.py           # Configuration
    │   ├── camera.py             # Camera management
    │   ├── tflite_helper.py      # TFLite interpreter helper
    │   └── model_factory.py      # Factory for detector/embedder/session
    ├── data/                     # Data layer
    │   ├── store.py              # Attendance store interface
    │   └── database.py           # SQLite gallery and attendance store
    ├── detect/                   # Face detection
    │   ├── postprocess.py        # Boxes, letterbox, NMS, crop
    │   └── detect.py             # YOLO-face TFLite detector
    ├── recognition/              # Face recognition
    │   ├── embedding.py          # Normalize / average / stability
    │   ├── gallery.py            # Templates and registration
    │   ├── enrollment.py         # Enrollment from photos
    │   ├── matcher.py            # Margin-based identity matcher
    │   └── recognition.py        # MobileFaceNet TFLite embedder
    ├── processing/               # Decisions
    │   ├── voting.py             # Temporal voting engine
    │   ├── attendance.py         # Check-in / check-out state machine
    │   └── scanner.py            # Scanning session loop
    ├── web/server.py             # Flask JSON API
    ├── errors.py                 # Exception types
    └── main.py                   # Main application

Usage:
    from faceclock import settings, IdentityMatcher, TemporalVotingEngine
"""

from .core.settings import settings, Settings
from .errors import (
    DuplicateEmployeeId,
    EmbeddingInvalid,
    FaceClockError,
    InvalidIdentity,
    RegistrationUnstable,
    StorageFault,
)
from .processing import AttendanceStateMachine, ScanningSession, TemporalVotingEngine
from .recognition import IdentityMatcher, enroll_from_images, register_identity

__version__ = "1.0.0"

__all__ = [
    'settings',
    'Settings',
    'DuplicateEmployeeId',
    'EmbeddingInvalid',
    'FaceClockError',
    'InvalidIdentity',
    'RegistrationUnstable',
    'StorageFault',
    'AttendanceStateMachine',
    'ScanningSession',
    'TemporalVotingEngine',
    'IdentityMatcher',
    'enroll_from_images',
    'register_identity',
]
