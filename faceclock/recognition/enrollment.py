# faceclock/recognition/enrollment.py
"""
Enrollment from captured photos.

Each photo must show exactly one face. The face is detected at the
(lower) enrollment confidence, cropped and embedded; the embeddings then
go through the same quality gate as `register_identity`.

Usage:
    from faceclock.recognition.enrollment import enroll_from_images

    template = enroll_from_images(
        frames, detector, embedder, gallery, "E1", "Alice",
        confidence_threshold=settings.ENROLL_CONFIDENCE,
    )
"""
import logging
from typing import List, Sequence

import numpy as np

from ..detect.postprocess import crop_face
from ..errors import EmbeddingInvalid, InvalidIdentity
from .gallery import EmployeeTemplate, Gallery, register_identity, validate_identity

logger = logging.getLogger(__name__)


class EnrollmentImageError(EmbeddingInvalid):
    """A photo has no face, several faces, or yields no embedding."""

    def __init__(self, index, reason):
        super().__init__(f"Image {index}: {reason}")
        self.index = index
        self.reason = reason


def embed_images(
    images: Sequence[np.ndarray],
    detector,
    embedder,
    confidence_threshold: float = 0.5,
    crop_margin: float = 0.0,
) -> List[np.ndarray]:
    """
    Detect, crop and embed the single face in every photo.

    Args:
        images: BGR frames
        detector: object with detect_faces(frame, conf_threshold)
        embedder: object with get_embedding(face_img)
        confidence_threshold: detector confidence used for enrollment
        crop_margin: extra margin around the face crop

    Returns:
        One raw embedding per image

    Raises:
        EnrollmentImageError: for the first photo that cannot be used
    """
    embeddings = []
    for i, frame in enumerate(images):
        if frame is None or getattr(frame, 'size', 0) == 0:
            raise EnrollmentImageError(i, "unreadable image")

        faces = detector.detect_faces(frame, confidence_threshold)
        if len(faces) == 0:
            raise EnrollmentImageError(i, "no face found")
        if len(faces) > 1:
            raise EnrollmentImageError(i, f"{len(faces)} faces found, expected 1")

        face = crop_face(frame, faces[0], crop_margin)
        if face is None:
            raise EnrollmentImageError(i, "face crop is empty")

        embedding = embedder.get_embedding(face)
        if embedding is None:
            raise EnrollmentImageError(i, "could not extract an embedding")
        embeddings.append(np.asarray(embedding, dtype=np.float32))

    logger.debug(f"[Enroll] Embedded {len(embeddings)} image(s)")
    return embeddings


def enroll_from_images(
    images: Sequence[np.ndarray],
    detector,
    embedder,
    gallery: Gallery,
    employee_id: str,
    name: str,
    confidence_threshold: float = 0.5,
    crop_margin: float = 0.0,
    stability_threshold: float = 0.75,
    min_samples: int = 2,
    dim: int = None,
) -> EmployeeTemplate:
    """
    Enroll an employee from photos.

    The identity is checked before any model runs.

    Raises:
        InvalidIdentity, EnrollmentImageError, EmbeddingInvalid,
        RegistrationUnstable, DuplicateEmployeeId
    """
    problem = validate_identity(employee_id, name)
    if problem:
        raise InvalidIdentity(problem)
    if len(images) < min_samples:
        raise EmbeddingInvalid(f"Need at least {min_samples} images, got {len(images)}")

    samples = embed_images(images, detector, embedder, confidence_threshold, crop_margin)
    return register_identity(
        samples,
        gallery,
        employee_id,
        name,
        stability_threshold=stability_threshold,
        min_samples=min_samples,
        dim=dim,
    )
