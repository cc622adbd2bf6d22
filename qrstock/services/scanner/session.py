import logging
import queue
import threading
import time
from typing import Callable, List, Optional, Any

from qrstock.core.errors import PermissionDenied, DeviceUnavailable, InvalidTransition
from qrstock.core.models import ScanState, ScanOutcome, ScanEvent, ScanFailure
from qrstock.core.utils import parse_identifier
from qrstock.services.scanner.camera import CameraCapability, CameraRef

logger = logging.getLogger(__name__)

SCANNING_STATES = (ScanState.ACTIVE, ScanState.COOLDOWN)

STATUS_MESSAGES = {
    ScanState.IDLE: "Scanner idle.",
    ScanState.REQUESTING_PERMISSION: "Requesting camera permission...",
    ScanState.ACTIVE: "Scanner active - point at a QR code to scan",
    ScanState.STOPPED: "Scanner stopped.",
}


class ScanSession:
    """
    Scan lifecycle: Idle -> RequestingPermission -> Active <-> Cooldown -> Stopped,
    with Error(reason) when the camera cannot be acquired or is lost.

    While scanning, a worker thread runs one tick() per frame_interval: pull a
    frame, decode it, and hand any text to on_decoded(). Each run gets its own
    cancellation token; stop() sets it, joins the worker and releases the
    camera before returning. A decode that finishes after stop() has set the
    token is dropped.

    Manual entry (submit_manual_id) and camera decodes both go through
    resolve(), so both paths apply the same store rules.
    """

    def __init__(self, store, decoder: Callable[[Any], Optional[str]],
                 camera_factory: Callable[[CameraRef], Any] = None,
                 camera_ref: CameraRef = 0,
                 cooldown_seconds: float = 1.5,
                 frame_interval: float = 0.1,
                 max_failed_reads: int = 30,
                 auto_schedule: bool = True,
                 clock: Callable[[], float] = time.monotonic,
                 frame_encoder: Callable[[Any], Any] = None):
        self.store = store
        self.decoder = decoder
        self.camera_factory = camera_factory or (lambda ref: CameraCapability(ref))
        self.camera_ref = camera_ref
        self.cooldown_seconds = cooldown_seconds
        self.frame_interval = frame_interval
        self.max_failed_reads = max_failed_reads
        self.auto_schedule = auto_schedule
        self._clock = clock
        self.frame_encoder = frame_encoder

        # State
        self.state = ScanState.IDLE
        self.error_reason: Optional[str] = None
        self.error_message: Optional[str] = None
        self.last_decoded_text: Optional[str] = None
        self.cooldown_deadline = 0.0
        self.last_outcome: Optional[ScanOutcome] = None

        self._lock = threading.RLock()
        self._cancel = threading.Event()
        self._cancel.set() # nothing running yet
        self._thread: Optional[threading.Thread] = None
        self._camera = None
        self._failed_reads = 0
        self._listeners: List[Callable[[ScanEvent], None]] = []

        # Latest preview frame only; older ones are dropped
        self.frame_queue = queue.Queue(maxsize=1)

    # --- Intents ---

    def start(self) -> bool:
        """Acquires the camera and begins scanning. Returns False if the session ended in Error."""
        with self._lock:
            if self.state in SCANNING_STATES or self.state == ScanState.REQUESTING_PERMISSION:
                return True
            if self.state not in (ScanState.IDLE, ScanState.STOPPED):
                raise InvalidTransition(self.state, "start")
            return self._acquire_and_run()

    def retry(self) -> bool:
        with self._lock:
            if self.state != ScanState.ERROR:
                raise InvalidTransition(self.state, "retry")
            self.error_reason = None
            self.error_message = None
            return self._acquire_and_run()

    def stop(self):
        """Halts frame scheduling and releases the camera. Nothing is dispatched after this returns."""
        with self._lock:
            if self.state in (ScanState.IDLE, ScanState.STOPPED, ScanState.ERROR):
                return
            self._cancel.set()
            thread, self._thread = self._thread, None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(2.0, self.frame_interval * 5))
            if thread.is_alive():
                logger.warning("Scan worker did not exit in time; its token is cancelled")

        with self._lock:
            self._release_camera()
            self.last_decoded_text = None
            self.cooldown_deadline = 0.0
            self.get_latest_frame() # no stale preview after stop
            self._set_state(ScanState.STOPPED)
        logger.info("Scanner stopped")

    def select_camera(self, camera_ref: CameraRef) -> bool:
        """
        Switches device. An active or failed session is restarted on the new
        camera. Returns False if that restart left the session in Error.
        """
        with self._lock:
            if camera_ref == self.camera_ref:
                return self.state != ScanState.ERROR
            was_scanning = self.state in SCANNING_STATES
            in_error = self.state == ScanState.ERROR
            self.camera_ref = camera_ref
        logger.info(f"Selected camera {camera_ref}")

        if not (was_scanning or in_error):
            return True

        if was_scanning:
            self.stop()
        with self._lock:
            # The old device may have dropped out before stop() got the lock
            if self.state == ScanState.ERROR:
                return self.retry()
            return self.start()

    def submit_manual_id(self, identifier: str) -> ScanOutcome:
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValueError("Please enter a product ID.")
        return self.resolve(identifier, source='manual')

    # --- Frame loop ---

    def tick(self) -> Optional[ScanOutcome]:
        """One unit of work: read a frame, decode, dispatch. Returns the outcome if a scan was resolved."""
        return self._tick(self._cancel)

    def _tick(self, cancel: threading.Event) -> Optional[ScanOutcome]:
        if cancel.is_set():
            return None

        with self._lock:
            self._expire_cooldown()
            if self.state not in SCANNING_STATES or self._camera is None:
                return None
            camera = self._camera
            cooling = self.state == ScanState.COOLDOWN

        try:
            frame = camera.read()
        except (PermissionDenied, DeviceUnavailable) as e:
            self._lose_camera(cancel, e)
            return None
        except Exception as e:
            self._lose_camera(cancel, DeviceUnavailable(str(e)))
            return None

        if frame is None:
            self._failed_reads += 1
            if self._failed_reads >= self.max_failed_reads:
                self._lose_camera(cancel, DeviceUnavailable(f"No frames for {self._failed_reads} attempts"))
            return None
        self._failed_reads = 0
        self._publish_frame(frame)

        if cooling:
            # Keep the device read so a disconnect is still noticed
            return None

        try:
            text = self.decoder(frame)
        except Exception as e:
            logger.debug(f"Frame decode failed: {e}")
            return None

        if not text:
            return None
        return self._dispatch(text, cancel)

    def _publish_frame(self, frame):
        if self.frame_encoder is not None:
            try:
                frame = self.frame_encoder(frame)
            except Exception as e:
                logger.debug(f"Preview encode failed: {e}")
                return

        if self.frame_queue.full():
            try:
                self.frame_queue.get_nowait()
            except queue.Empty:
                pass
        try:
            self.frame_queue.put_nowait(frame)
        except queue.Full:
            pass

    def get_latest_frame(self) -> Optional[Any]:
        """Returns the newest preview frame (encoded if a frame_encoder is set), or None."""
        try:
            return self.frame_queue.get_nowait()
        except queue.Empty:
            return None

    def on_decoded(self, text: str) -> Optional[ScanOutcome]:
        """Entry point for decoded text from the camera pipeline (deduped, cooled down)."""
        return self._dispatch(text, self._cancel)

    def _dispatch(self, text: str, cancel: threading.Event) -> Optional[ScanOutcome]:
        now = self._clock()
        with self._lock:
            if cancel.is_set() or self.state not in SCANNING_STATES:
                return None
            self._expire_cooldown(now)

            if text == self.last_decoded_text and now < self.cooldown_deadline:
                self._emit('scan_suppressed', text=text, reason='duplicate')
                return None
            if self.state == ScanState.COOLDOWN:
                self._emit('scan_suppressed', text=text, reason='cooldown')
                return None

            self.last_decoded_text = text
            self.cooldown_deadline = now + self.cooldown_seconds
            self._set_state(ScanState.COOLDOWN)

            # Resolution stays inside the lock so stop() cannot complete in between
            logger.info(f"QR code scanned: {text}")
            return self.resolve(text, source='camera', cancel=cancel)

    def _expire_cooldown(self, now: float = None):
        if self.state != ScanState.COOLDOWN:
            return
        now = self._clock() if now is None else now
        if now >= self.cooldown_deadline:
            self.last_decoded_text = None
            self._set_state(ScanState.ACTIVE)

    def _worker(self, cancel: threading.Event):
        while not cancel.is_set():
            try:
                self._tick(cancel)
            except Exception as e:
                logger.error(f"Error in scan loop: {e}")
            cancel.wait(self.frame_interval)

    # --- Resolution ---

    def resolve(self, text: str, source: str = 'camera',
                cancel: threading.Event = None) -> Optional[ScanOutcome]:
        """
        Decrements the product named by text. When a cancellation token is
        given, the scan is dropped if the token is set by the time the store
        would be touched (stop() called from a listener or log handler).
        """
        identifier = parse_identifier(text)
        with self._lock:
            if cancel is not None and cancel.is_set():
                logger.info(f"Dropping scan of {identifier!r}: session stopped")
                return None
            result = self.store.decrement(identifier)

        if result.success:
            message = f"scanned: {result.record.name} — quantity {result.record.quantity}"
        elif result.reason == ScanFailure.OUT_OF_STOCK:
            message = "out of stock"
        else:
            message = "product not found"

        outcome = ScanOutcome(
            identifier=identifier,
            success=result.success,
            message=message,
            source=source,
            record=result.record,
            reason=result.reason
        )
        self.last_outcome = outcome
        if not result.success:
            logger.info(f"Scan of {identifier!r} ({source}) rejected: {message}")
        self._emit('scan_result', **outcome.model_dump(mode='json'))
        return outcome

    # --- Camera lifecycle ---

    def _acquire_and_run(self) -> bool:
        # Caller holds self._lock
        self._set_state(ScanState.REQUESTING_PERMISSION)
        camera = self.camera_factory(self.camera_ref)
        try:
            camera.open()
        except PermissionDenied as e:
            camera.release()
            self._enter_error('PermissionDenied', f"Camera permission denied: {e}")
            return False
        except Exception as e:
            camera.release()
            self._enter_error('DeviceUnavailable', f"Camera unavailable: {e}")
            return False

        self._camera = camera
        self._failed_reads = 0
        self.last_decoded_text = None
        self.cooldown_deadline = 0.0
        self._cancel = threading.Event()
        self._set_state(ScanState.ACTIVE)

        if self.auto_schedule:
            self._thread = threading.Thread(target=self._worker, args=(self._cancel,), daemon=True)
            self._thread.start()
        logger.info(f"Scanner started on camera {self.camera_ref}")
        return True

    def _lose_camera(self, cancel: threading.Event, exc: Exception):
        with self._lock:
            # stop() already owns the teardown
            if cancel.is_set() or self.state not in SCANNING_STATES:
                return
            cancel.set()
            self._thread = None
            self._release_camera()
            kind = 'PermissionDenied' if isinstance(exc, PermissionDenied) else 'DeviceUnavailable'
            self._enter_error(kind, f"Camera lost: {exc}")

    def _release_camera(self):
        camera, self._camera = self._camera, None
        if camera is not None:
            try:
                camera.release()
            except Exception as e:
                logger.error(f"Error releasing camera: {e}")

    def _enter_error(self, reason: str, message: str):
        self.error_reason = reason
        self.error_message = message
        logger.error(message)
        self._set_state(ScanState.ERROR)
        self._emit('error', reason=reason, message=message)

    @property
    def camera_active(self) -> bool:
        return self._camera is not None

    # --- Status / events ---

    def _set_state(self, new_state: ScanState):
        if new_state == self.state:
            return
        old = self.state
        self.state = new_state
        logger.debug(f"Scan session {old.value} -> {new_state.value}")
        self._emit('state_changed', old=old.value, new=new_state.value)

    def status_text(self) -> str:
        if self.state == ScanState.ERROR:
            return self.error_message or "Camera error."
        if self.state == ScanState.COOLDOWN and self.last_outcome:
            return self.last_outcome.message
        return STATUS_MESSAGES.get(self.state, self.state.value)

    def register_listener(self, callback: Callable[[ScanEvent], None]):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable[[ScanEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event_type: str, **data):
        event = ScanEvent(type=event_type, data=data)
        for cb in list(self._listeners):
            try:
                cb(event)
            except Exception as e:
                logger.error(f"Error in scan listener: {e}")
