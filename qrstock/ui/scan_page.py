import logging
import queue

from nicegui import ui, app, run

from qrstock.core.models import ScanEvent, ScanState
from qrstock.services.inventory import InventoryService
from qrstock.ui.product_list import render_product_list

logger = logging.getLogger(__name__)


class ScanPage:
    def __init__(self, service: InventoryService):
        self.service = service
        self.event_queue = queue.Queue() # scan worker thread -> UI loop
        self.products_dirty = False
        self.is_active = False

        self.camera_select = None
        self.start_btn = None
        self.stop_btn = None
        self.status_label = None
        self.manual_input = None
        self.preview = None

    def on_scanner_event(self, event: ScanEvent):
        """Callback for session events. Runs on the worker thread, so only enqueue."""
        if not self.is_active: return
        self.event_queue.put(event)

    def on_products_changed(self, _products):
        self.products_dirty = True

    async def init_cameras(self):
        try:
            cameras = await run.io_bound(self.service.list_cameras)
            if self.camera_select:
                self.camera_select.options = {c: f"Camera {c}" for c in cameras}
                self.camera_select.value = self.service.session.camera_ref if self.service.session.camera_ref in cameras else cameras[0]
                self.camera_select.update()
        except Exception as e:
            logger.error(f"Error listing cameras: {e}")

    async def event_consumer(self):
        """Drains session events and refreshes the view."""
        try:
            while not self.event_queue.empty():
                try:
                    event = self.event_queue.get_nowait()
                except queue.Empty:
                    break

                if event.type == 'scan_result':
                    ui.notify(event.data.get('message'), type='positive' if event.data.get('success') else 'negative')
                elif event.type == 'error':
                    ui.notify(event.data.get('message', 'Camera error'), type='negative')
                    self.update_controls()
                elif event.type == 'state_changed':
                    self.update_controls()

            frame = self.service.session.get_latest_frame()
            if frame and self.preview:
                self.preview.set_source(frame)

            if self.status_label:
                self.status_label.text = self.service.session.status_text()

            if self.products_dirty:
                self.products_dirty = False
                self.render_products.refresh()
        except Exception as e:
            logger.error(f"Error in event_consumer: {e}")

    def update_controls(self):
        scanning = self.service.session.state in (ScanState.ACTIVE, ScanState.COOLDOWN)
        if self.start_btn:
            self.start_btn.visible = not scanning
            self.start_btn.text = 'RETRY' if self.service.session.state == ScanState.ERROR else 'START SCANNER'
        if self.stop_btn:
            self.stop_btn.visible = scanning

    async def start_camera(self):
        try:
            # Opening a capture device can block for a while
            if not await run.io_bound(self.service.start_scan):
                ui.notify(self.service.session.status_text(), type='negative')
        except Exception as e:
            logger.error(f"Error starting camera: {e}")
            ui.notify(f"Error starting camera: {e}", type='negative')
        self.update_controls()

    async def stop_camera(self):
        await run.io_bound(self.service.stop_scan)
        if self.preview:
            self.preview.set_source("")
        self.update_controls()

    async def on_camera_change(self, e):
        if e.value is None: return
        try:
            if not await run.io_bound(self.service.select_camera, e.value):
                ui.notify(self.service.session.status_text(), type='negative')
        except Exception as ex:
            logger.error(f"Error switching camera: {ex}")
            ui.notify(f"Error switching camera: {ex}", type='negative')
        self.update_controls()

    def submit_manual(self):
        try:
            outcome = self.service.submit_manual_id(self.manual_input.value)
        except ValueError as e:
            ui.notify(str(e), type='warning')
            return
        ui.notify(outcome.message, type='positive' if outcome.success else 'negative')
        self.manual_input.value = ''

    @ui.refreshable
    def render_products(self):
        render_product_list(self.service.products(), show_codes=False)

    def cleanup(self):
        self.is_active = False
        self.service.session.unregister_listener(self.on_scanner_event)
        self.service.store.unregister_listener(self.on_products_changed)


def scan_page(service: InventoryService):
    page = ScanPage(service)

    service.session.register_listener(page.on_scanner_event)
    service.store.register_listener(page.on_products_changed)
    page.is_active = True
    app.on_disconnect(page.cleanup)

    with ui.row().classes('w-full flex-grow gap-4'):
        with ui.column().classes('w-1/2 gap-2'):
            with ui.card().classes('w-full p-2 bg-gray-900 border border-gray-700'):
                with ui.row().classes('w-full gap-2 items-center'):
                    page.camera_select = ui.select(options={}, label='Camera', on_change=page.on_camera_change).classes('flex-grow')
                    page.start_btn = ui.button('START SCANNER', on_click=page.start_camera).props('icon=videocam')
                    page.stop_btn = ui.button('STOP', on_click=page.stop_camera).props('icon=videocam_off color=negative')
                page.status_label = ui.label(service.session.status_text()).classes('text-sm text-gray-300')
                page.preview = ui.image().classes('w-full h-64 object-contain bg-black rounded')

            with ui.card().classes('w-full p-2 bg-gray-900 border border-gray-700'):
                ui.label('Manual entry').classes('text-xs font-bold text-gray-400')
                with ui.row().classes('w-full items-center gap-2'):
                    page.manual_input = ui.input(placeholder='PROD-...').classes('flex-grow').on('keydown.enter', page.submit_manual)
                    ui.button('SCAN', on_click=page.submit_manual).props('icon=qr_code_scanner')

        with ui.column().classes('w-1/2'):
            page.render_products()

    page.update_controls()
    ui.timer(1.0, page.init_cameras, once=True)
    ui.timer(0.1, page.event_consumer)
