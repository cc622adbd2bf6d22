import logging

logger = logging.getLogger(__name__)

SCANNER_AVAILABLE = False

try:
    import cv2
    import numpy
    SCANNER_AVAILABLE = True
except ImportError as e:
    logger.warning(f"Camera scanning disabled, OpenCV/numpy not importable: {e}")
