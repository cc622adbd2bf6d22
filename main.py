import logging

from nicegui import ui, app

from qrstock.core import config_manager
from qrstock.services.inventory import InventoryService
from qrstock.ui.inventory_page import inventory_page
from qrstock.ui.scan_page import scan_page

config = config_manager.load_config()
logging.basicConfig(level=getattr(logging, str(config.get('log_level', 'INFO')).upper(), logging.INFO),
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# One service per process: every page shares the same store and scan session
service = InventoryService(config)
app.on_shutdown(service.shutdown)


def header():
    with ui.header().classes('bg-gray-900 items-center gap-4'):
        ui.label('QR Stock').classes('text-xl font-bold')
        ui.link('Products', '/').classes('text-white')
        ui.link('Scan', '/scan').classes('text-white')


@ui.page('/')
def index():
    header()
    inventory_page(service)


@ui.page('/scan')
def scan():
    header()
    scan_page(service)


if __name__ in {"__main__", "__mp_main__"}:
    ui.run(title='QR Stock', dark=True, reload=False)
