import io
import base64
import logging
from typing import Optional

import qrcode

from qrstock.core.errors import EncodingFailure, DecodeTransient
from qrstock.services.scanner import SCANNER_AVAILABLE

if SCANNER_AVAILABLE:
    import cv2
    import numpy as np
else:
    cv2 = None
    np = None

logger = logging.getLogger(__name__)


def encode_payload(payload: str, box_size: int = 10, border: int = 4) -> str:
    """Renders payload as a QR code and returns it as a PNG data URL."""
    try:
        qr = qrcode.QRCode(box_size=box_size, border=border)
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except Exception as e:
        raise EncodingFailure(f"Could not encode payload {payload!r}: {e}") from e

    b64_str = base64.b64encode(buf.getvalue()).decode('utf-8')
    return f"data:image/png;base64,{b64_str}"


def frame_to_data_url(frame, quality: int = 70) -> str:
    """JPEG-encodes a camera frame for the preview image."""
    ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError("cv2.imencode returned no data")
    b64_str = base64.b64encode(buffer).decode('utf-8')
    return f"data:image/jpeg;base64,{b64_str}"


class QRDecoder:
    """Per-frame QR decoder. Holds one cv2.QRCodeDetector, which is not free to build."""

    def __init__(self):
        if not SCANNER_AVAILABLE:
            raise RuntimeError("OpenCV is not installed; QR decoding is unavailable.")
        self.detector = cv2.QRCodeDetector()

    def decode_frame(self, frame) -> Optional[str]:
        """Returns the QR text in frame, or None when there is nothing readable."""
        if frame is None:
            return None
        try:
            data, _points, _ = self.detector.detectAndDecode(frame)
        except cv2.error as e:
            raise DecodeTransient(str(e)) from e
        return data or None

    def decode_buffer(self, frame_buffer: bytes, width: int, height: int) -> Optional[str]:
        """Decodes a raw interleaved 8-bit buffer (gray, BGR or BGRA)."""
        arr = np.frombuffer(frame_buffer, dtype=np.uint8)
        if width <= 0 or height <= 0 or arr.size % (width * height) != 0:
            raise DecodeTransient(f"Buffer of {arr.size} bytes does not fit {width}x{height}")

        channels = arr.size // (width * height)
        if channels == 1:
            frame = arr.reshape((height, width))
        else:
            frame = arr.reshape((height, width, channels))
        return self.decode_frame(frame)

    __call__ = decode_frame
