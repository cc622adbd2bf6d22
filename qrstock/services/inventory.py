import asyncio
import logging
from typing import Dict, Any, List, Optional

from nicegui import run

from qrstock.core import config_manager
from qrstock.core.models import ProductRecord, ScanOutcome, ScanState
from qrstock.services.product_store import ProductStore
from qrstock.services.qr_codec import encode_payload, frame_to_data_url, QRDecoder
from qrstock.services.sync_store import RemoteSyncStore, LocalSyncStore
from qrstock.services.scanner.camera import CameraCapability, list_cameras
from qrstock.services.scanner.session import ScanSession

logger = logging.getLogger(__name__)


def build_sync_store(config: Dict[str, Any]):
    """Returns the synchronized store configured by sync_mode, or None."""
    mode = (config.get('sync_mode') or 'none').lower()
    poll = float(config.get('sync_poll_interval', 2.0))

    if mode == 'remote':
        if not config.get('sync_url'):
            logger.error("sync_mode is 'remote' but sync_url is not set; running in-memory only")
            return None
        return RemoteSyncStore(
            config['sync_url'],
            collection=config.get('sync_collection', 'products'),
            poll_interval=poll,
            timeout=float(config.get('sync_timeout', 5.0))
        )
    if mode == 'local':
        return LocalSyncStore(config.get('sync_file'), poll_interval=poll)
    if mode != 'none':
        logger.warning(f"Unknown sync_mode '{mode}', running in-memory only")
    return None


class InventoryService:
    """The intents the presentation layer sends into the core."""

    def __init__(self, config: Dict[str, Any] = None, store: ProductStore = None, session: ScanSession = None):
        self.config = config or config_manager.load_config()

        if store is None:
            store = ProductStore(encoder=encode_payload, sync_store=build_sync_store(self.config))
        self.store = store

        if session is None:
            width = int(self.config.get('frame_width', 1280))
            height = int(self.config.get('frame_height', 720))
            session = ScanSession(
                self.store,
                decoder=QRDecoder(),
                camera_factory=lambda ref: CameraCapability(ref, width=width, height=height),
                camera_ref=self.config.get('camera_index', 0),
                cooldown_seconds=config_manager.get_cooldown_seconds(self.config),
                frame_interval=config_manager.get_frame_interval(self.config),
                max_failed_reads=int(self.config.get('max_failed_reads', 30)),
                frame_encoder=frame_to_data_url
            )
        self.session = session

    async def add_product(self, name: str, quantity: int) -> ProductRecord:
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a product name.")
        if isinstance(quantity, bool):
            raise ValueError("Quantity must be a whole number.")
        try:
            number = float(quantity)
        except (TypeError, ValueError):
            raise ValueError("Quantity must be a whole number.")
        # 2.7 must not silently become 2
        if not number.is_integer():
            raise ValueError("Quantity must be a whole number.")
        quantity = int(number)
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")

        # QR rendering is CPU work; keep it off the event loop
        try:
            return await run.io_bound(self.store.insert, name, quantity)
        except RuntimeError:
            # Fallback for environments without the NiceGUI loop
            return await asyncio.to_thread(self.store.insert, name, quantity)

    def products(self) -> List[ProductRecord]:
        return self.store.list_products()

    def start_scan(self) -> bool:
        if self.session.state == ScanState.ERROR:
            return self.session.retry()
        return self.session.start()

    def stop_scan(self):
        self.session.stop()

    def submit_manual_id(self, identifier: str) -> ScanOutcome:
        return self.session.submit_manual_id(identifier)

    def select_camera(self, camera_ref) -> bool:
        self.config['camera_index'] = camera_ref
        return self.session.select_camera(camera_ref)

    def list_cameras(self) -> List[int]:
        cameras = list_cameras()
        if not cameras:
            logger.warning("No cameras detected, falling back to the default device")
            return [0]
        return cameras

    def shutdown(self):
        self.session.stop()
        self.store.close()
        logger.info("Inventory service shut down")
