class QRStockError(Exception):
    """Base class for all errors raised by qrstock."""


class PermissionDenied(QRStockError):
    """Camera access was refused by the OS or the user."""


class DeviceUnavailable(QRStockError):
    """No camera at the requested reference, or it went away mid-session."""


class DecodeTransient(QRStockError):
    """A single frame could not be decoded. Never fatal."""


class EncodingFailure(QRStockError):
    """The QR image for a product payload could not be produced."""


class PersistenceFailure(QRStockError):
    """A write to the synchronized store failed."""


class InvalidTransition(QRStockError, RuntimeError):
    def __init__(self, current, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot {requested} while scan session is {getattr(current, 'value', current)}")
