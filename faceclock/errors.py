# faceclock/errors.py
"""
Exception types for FaceClock.

Only faults that must stop an operation are exceptions. Per-frame outcomes
(no face, rejected match, ignored checkout) are plain result values.
"""


class FaceClockError(Exception):
    """Base class for every FaceClock error."""


class ConfigurationError(FaceClockError):
    """Settings are out of range or inconsistent."""


class ModelLoadError(FaceClockError):
    """TFLite runtime or a model file is unavailable."""


class StorageFault(FaceClockError):
    """The persistence layer failed to read or write."""


class DuplicateEmployeeId(FaceClockError):
    """An employee with this identifier is already enrolled."""

    def __init__(self, employee_id):
        super().__init__(f"Employee '{employee_id}' already exists")
        self.employee_id = employee_id


class EmbeddingInvalid(FaceClockError, ValueError):
    """An embedding is empty, non-finite, near-zero or of the wrong dimension."""


class RegistrationUnstable(FaceClockError):
    """Enrollment samples disagree too much to form a reliable template."""

    def __init__(self, score, threshold):
        super().__init__(
            f"Capture unstable: mean pairwise similarity {score:.3f} < {threshold:.3f}"
        )
        self.score = score
        self.threshold = threshold


class InvalidIdentity(FaceClockError, ValueError):
    """An employee id is malformed or a name is blank."""
