import logging
import threading
from typing import List, Optional, Union

from qrstock.core.errors import PermissionDenied, DeviceUnavailable
from qrstock.services.scanner import SCANNER_AVAILABLE

if SCANNER_AVAILABLE:
    import cv2
else:
    cv2 = None

logger = logging.getLogger(__name__)

CameraRef = Union[int, str]


class CameraCapability:
    """
    Scoped access to one OpenCV capture device.

    open() acquires, release() gives it back and is safe to call any number
    of times. Use as a context manager to guarantee release.
    """

    def __init__(self, camera_ref: CameraRef = 0, width: int = 1280, height: int = 720):
        self.camera_ref = camera_ref
        self.width = width
        self.height = height
        self._cap = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self):
        if not SCANNER_AVAILABLE:
            raise DeviceUnavailable("OpenCV is not installed.")

        with self._lock:
            if self._cap is not None:
                return
            try:
                cap = cv2.VideoCapture(self.camera_ref)
            except PermissionError as e:
                raise PermissionDenied(f"Camera {self.camera_ref}: {e}") from e
            except OSError as e:
                raise DeviceUnavailable(f"Camera {self.camera_ref}: {e}") from e

            if cap is None or not cap.isOpened():
                if cap is not None:
                    cap.release()
                raise DeviceUnavailable(f"No camera found at {self.camera_ref!r}")

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._cap = cap
        logger.info(f"Camera {self.camera_ref} opened")

    def read(self):
        """Returns one frame, or None if the device produced nothing this time."""
        with self._lock:
            if self._cap is None:
                raise DeviceUnavailable("Camera is not open")
            ret, frame = self._cap.read()
        return frame if ret else None

    def release(self):
        with self._lock:
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()
            logger.info(f"Camera {self.camera_ref} released")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def list_cameras(max_index: int = 5) -> List[int]:
    """Probes capture indices 0..max_index-1 and returns the ones that open."""
    if not SCANNER_AVAILABLE:
        return []

    found = []
    for idx in range(max_index):
        cap = cv2.VideoCapture(idx)
        try:
            if cap.isOpened():
                found.append(idx)
        finally:
            cap.release()
    return found
