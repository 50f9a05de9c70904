# faceclock/core/camera.py
"""
Camera Manager module.

Opens the camera with retry logic and acts as the scanner's frame source:
the scanner calls resume() before each capture and pause() after it. While
paused nothing is decoded; resume() flushes frames that went stale in the
driver buffer.

Usage:
    from faceclock.core.camera import CameraManager

    with CameraManager(device_id=0) as camera:
        camera.resume()
        frame = camera.read()
        camera.pause()
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2

logger = logging.getLogger(__name__)


@dataclass
class CameraConfig:
    """Camera configuration."""
    width: int = 640
    height: int = 480
    fps: int = 15
    buffer_size: int = 1
    warmup_frames: int = 5
    flush_frames: int = 2       # stale frames dropped on resume()
    max_retries: int = 3
    retry_delay: float = 2.0
    use_mjpg: bool = False      # MJPG codec, better on the Pi


class CameraManager:
    """OpenCV camera with retry, warmup and pause/resume."""

    def __init__(
        self,
        device_id: int = 0,
        config: Optional[CameraConfig] = None,
        is_pi: bool = False
    ):
        self.device_id = device_id
        self.config = config or CameraConfig()
        self.is_pi = is_pi

        self._cap: Optional[cv2.VideoCapture] = None
        self._is_open = False
        self._paused = False
        self._lock = threading.Lock()

        if is_pi:
            self.config.use_mjpg = True
            self.config.fps = 15

    def open(self) -> bool:
        """
        Open the camera, retrying up to `max_retries` times.

        Returns:
            True on success
        """
        for attempt in range(self.config.max_retries):
            try:
                self._cap = cv2.VideoCapture(self.device_id)

                if self._cap.isOpened():
                    self._configure_camera()
                    self._warmup()
                    self._is_open = True
                    self._paused = False

                    actual_w, actual_h = self.get_resolution()
                    logger.info(f"📹 Camera opened: {actual_w}x{actual_h}")
                    return True

            except cv2.error as e:
                logger.warning(f"Camera error: {e}")

            if attempt < self.config.max_retries - 1:
                logger.warning(
                    f"⚠️ Camera not ready, retrying "
                    f"({attempt + 1}/{self.config.max_retries})..."
                )
                time.sleep(self.config.retry_delay)

        logger.error("❌ Could not open camera")
        return False

    def _configure_camera(self):
        if self._cap is None:
            return

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

        if self.is_pi:
            self._cap.set(cv2.CAP_PROP_FPS, self.config.fps)
            if self.config.use_mjpg:
                self._cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*'MJPG'))

    def _warmup(self):
        """Let auto-exposure settle."""
        if self._cap is None:
            return
        for _ in range(self.config.warmup_frames):
            self._cap.grab()

    # === FRAME SOURCE ===
    def pause(self):
        self._paused = True

    def resume(self):
        """Leave the paused state, dropping frames buffered meanwhile."""
        with self._lock:
            if not self._paused:
                return
            self._paused = False
            if self._is_open and self._cap is not None:
                for _ in range(self.config.flush_frames):
                    self._cap.grab()

    @property
    def is_paused(self) -> bool:
        return self._paused

    def read(self):
        """
        Read one BGR frame.

        Returns:
            Frame (numpy array) or None if closed, paused or the read failed
        """
        with self._lock:
            if not self._is_open or self._cap is None or self._paused:
                return None
            ret, frame = self._cap.read()
        if not ret:
            logger.warning("Camera read failed")
            return None
        return frame

    def release(self):
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
            self._is_open = False
        logger.info("📹 Camera released")

    def is_opened(self) -> bool:
        return self._is_open and self._cap is not None and self._cap.isOpened()

    def get_resolution(self) -> Tuple[int, int]:
        if self._cap is None:
            return (0, 0)
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        )

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def create_camera(
    device_id: int = 0,
    width: int = 640,
    height: int = 480,
    is_pi: bool = False,
) -> CameraManager:
    """Camera with a platform-appropriate config."""
    config = CameraConfig(
        width=width,
        height=height,
        fps=15 if is_pi else 30,
        use_mjpg=is_pi,
    )
    return CameraManager(device_id=device_id, config=config, is_pi=is_pi)
