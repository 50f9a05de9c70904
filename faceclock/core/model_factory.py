# faceclock/core/model_factory.py
"""
Factory functions that build the detector, the embedder and a whole
scanning session from Settings.

Usage:
    from faceclock.core.model_factory import create_detector, create_embedder

    detector = create_detector(settings)
    embedder = create_embedder(settings)
    session = create_scanning_session(settings, detector, embedder,
                                      gallery, store, camera)
"""
import logging
import os

from .settings import Settings

logger = logging.getLogger(__name__)


def _resolve(settings: Settings, path: str) -> str:
    """Relative model paths are relative to the project directory."""
    if os.path.isabs(path) or os.path.exists(path):
        return path
    return os.path.join(settings.BASE_DIR, path)


def create_detector(settings: Settings):
    """
    Create the YOLO-face TFLite detector.

    Raises:
        ModelLoadError: model file or TFLite runtime missing
    """
    from ..detect.detect import YoloFaceDetector

    model_path = _resolve(settings, settings.DETECTION_MODEL)
    logger.info(f"[Detector] Model: {model_path}")
    return YoloFaceDetector(
        model_path=model_path,
        num_threads=settings.TFLITE_NUM_THREADS,
        iou_threshold=settings.NMS_IOU_THRESHOLD,
        min_size=settings.MIN_FACE_SIZE,
        padding=settings.BOX_PADDING,
    )


def create_embedder(settings: Settings):
    """
    Create the MobileFaceNet TFLite embedder.

    Raises:
        ModelLoadError: model file or TFLite runtime missing
    """
    from ..recognition.recognition import FaceEmbedder

    model_path = _resolve(settings, settings.RECOGNITION_MODEL)
    logger.info(f"[Embedder] Model: {model_path}")
    embedder = FaceEmbedder(model_path=model_path, num_threads=settings.TFLITE_NUM_THREADS)
    if embedder.embedding_dim != settings.EMBEDDING_DIM:
        logger.warning(
            f"[Embedder] Model dim {embedder.embedding_dim} != EMBEDDING_DIM "
            f"{settings.EMBEDDING_DIM}; using the model's"
        )
        settings.EMBEDDING_DIM = embedder.embedding_dim
    return embedder


def create_scanning_session(settings: Settings, detector, embedder, gallery, store, frame_source):
    """Wire matcher, voting engine and attendance machine into a ScanningSession."""
    from ..processing.attendance import AttendanceStateMachine
    from ..processing.scanner import ScanningSession
    from ..processing.voting import TemporalVotingEngine
    from ..recognition.matcher import IdentityMatcher

    matcher = IdentityMatcher(
        similarity_threshold=settings.SIMILARITY_THRESHOLD,
        margin_threshold=settings.MARGIN_THRESHOLD,
    )
    voting = TemporalVotingEngine(
        window_size=settings.VOTE_WINDOW,
        votes_to_confirm=settings.VOTES_TO_CONFIRM,
        unknown_streak=settings.UNKNOWN_STREAK,
        protection_seconds=settings.PROTECTION_SECONDS,
        debounce_seconds=settings.IDENTITY_DEBOUNCE_SECONDS,
    )
    attendance = AttendanceStateMachine(store, min_session_gap=settings.MIN_SESSION_GAP_SECONDS)

    return ScanningSession(
        detector=detector,
        embedder=embedder,
        gallery=gallery,
        matcher=matcher,
        voting=voting,
        attendance=attendance,
        frame_source=frame_source,
        confidence_threshold=settings.VERIFY_CONFIDENCE,
        max_faces=settings.MAX_FACES_PER_FRAME,
        cycle_interval=settings.CYCLE_INTERVAL,
        session_timeout=settings.SESSION_TIMEOUT,
        revalidate_gallery=settings.REVALIDATE_GALLERY,
        embedding_dim=settings.EMBEDDING_DIM,
        crop_margin=settings.CROP_MARGIN,
    )
