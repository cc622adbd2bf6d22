import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Callable, Dict, List, Optional, Any, Iterable

from pydantic import ValidationError

from qrstock.core.models import ProductRecord, DecrementResult, ScanFailure
from qrstock.core.utils import generate_product_id, id_token, build_payload

logger = logging.getLogger(__name__)

Encoder = Callable[[str], Any]
StoreListener = Callable[[List[ProductRecord]], None]


class ProductStore:
    """
    Authoritative product state for one session.

    All reads and writes of the record list go through self._lock, so the
    quantity check in decrement and the write that follows it can never be
    interleaved with another decrement (camera loop and manual entry run on
    different threads).
    """

    def __init__(self, encoder: Optional[Encoder] = None, sync_store=None):
        self.encoder = encoder
        self._records: List[ProductRecord] = [] # newest first
        self._lock = threading.RLock()
        self._last_token: Optional[int] = None
        self._listeners: List[StoreListener] = []

        self.sync_store = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        # One worker keeps mirrored writes in mutation order
        self._persist_executor: Optional[ThreadPoolExecutor] = None

        if sync_store is not None:
            self.attach_sync(sync_store)

    # --- Reads ---

    def lookup(self, product_id: str) -> Optional[ProductRecord]:
        with self._lock:
            idx = self._index_of(product_id)
            return self._records[idx] if idx is not None else None

    def list_products(self) -> List[ProductRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self):
        with self._lock:
            return len(self._records)

    def _index_of(self, product_id: str) -> Optional[int]:
        for i, record in enumerate(self._records):
            if record.id == product_id:
                return i
        return None

    # --- Mutations ---

    def insert(self, name: str, quantity: int) -> ProductRecord:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Product name must not be empty.")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValueError("Quantity must be a non-negative integer.")

        name = name.strip()
        with self._lock:
            product_id = self._next_id()
            # Reserve the id before encoding so a concurrent insert cannot reuse it
            self._last_token = id_token(product_id)

        encoded_image = self._encode(build_payload(product_id, name))
        record = ProductRecord(id=product_id, name=name, quantity=quantity, encoded_image=encoded_image)

        with self._lock:
            self._records.insert(0, record)

        logger.info(f"Added product {record.id} '{record.name}' (qty {record.quantity})")
        self._persist(record)
        self._notify()
        return record

    def decrement(self, product_id: str) -> DecrementResult:
        with self._lock:
            idx = self._index_of(product_id)
            if idx is None:
                return DecrementResult(success=False, reason=ScanFailure.NOT_FOUND)

            current = self._records[idx]
            if current.quantity <= 0:
                return DecrementResult(success=False, reason=ScanFailure.OUT_OF_STOCK, record=current)

            updated = current.model_copy(update={'quantity': current.quantity - 1})
            self._records[idx] = updated

        logger.info(f"Decremented {updated.id} '{updated.name}' to {updated.quantity}")
        self._persist(updated)
        self._notify()
        return DecrementResult(success=True, record=updated)

    def apply_external_snapshot(self, records: Iterable[Any]) -> bool:
        """
        Replaces local state with a pushed snapshot (last write wins).
        Malformed entries are dropped. Returns False when the snapshot was
        empty after validation and local state was kept.
        """
        validated: List[ProductRecord] = []
        seen = set()
        for raw in records or []:
            try:
                if isinstance(raw, ProductRecord):
                    record = raw
                else:
                    record = ProductRecord.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Dropping malformed record from snapshot: {raw!r} ({e.error_count()} errors)")
                continue
            if record.id in seen:
                logger.warning(f"Dropping duplicate id {record.id} from snapshot")
                continue
            seen.add(record.id)
            validated.append(record)

        if not validated:
            logger.debug("Ignoring empty external snapshot")
            return False

        with self._lock:
            self._records = validated
            tokens = [t for t in (id_token(r.id) for r in validated) if t is not None]
            if tokens:
                self._last_token = max(tokens + ([self._last_token] if self._last_token else []))

        logger.info(f"Applied external snapshot ({len(validated)} products)")
        self._notify()
        return True

    def _next_id(self) -> str:
        product_id = generate_product_id(self._last_token)
        while self._index_of(product_id) is not None:
            product_id = generate_product_id(id_token(product_id))
        return product_id

    def _encode(self, payload: str) -> Optional[Any]:
        if self.encoder is None:
            return None
        try:
            return self.encoder(payload)
        except Exception as e:
            logger.error(f"Failed to encode QR for {payload!r}, storing without image: {e}")
            return None

    # --- Synchronized store ---

    def attach_sync(self, sync_store):
        self.detach_sync()
        self.sync_store = sync_store
        if self._persist_executor is None:
            self._persist_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qrstock-sync")
        self._unsubscribe = sync_store.subscribe(self.apply_external_snapshot)
        logger.info(f"Attached synchronized store {type(sync_store).__name__}")

    def detach_sync(self):
        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception as e:
                logger.error(f"Error unsubscribing from synchronized store: {e}")
            self._unsubscribe = None
        self.sync_store = None

    def close(self):
        self.detach_sync()
        if self._persist_executor is not None:
            self._persist_executor.shutdown(wait=True)
            self._persist_executor = None

    def _persist(self, record: ProductRecord) -> Optional[Future]:
        if self.sync_store is None or self._persist_executor is None:
            return None
        future = self._persist_executor.submit(self.sync_store.write, record.id, record.to_wire())
        future.add_done_callback(lambda f, rid=record.id: self._on_persisted(f, rid))
        return future

    @staticmethod
    def _on_persisted(future: Future, product_id: str):
        exc = future.exception()
        if exc is not None:
            logger.error(f"Failed to persist {product_id}: {exc}")

    # --- Listeners ---

    def register_listener(self, callback: StoreListener):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: StoreListener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self):
        snapshot = self.list_products()
        for cb in list(self._listeners):
            try:
                cb(snapshot)
            except Exception as e:
                logger.error(f"Error in product listener: {e}")
