import logging

from nicegui import ui, app

from qrstock.services.inventory import InventoryService
from qrstock.ui.product_list import render_product_list

logger = logging.getLogger(__name__)


class InventoryPage:
    def __init__(self, service: InventoryService):
        self.service = service
        self.name_input = None
        self.qty_input = None
        self.products_dirty = False

    def on_products_changed(self, _products):
        # Store listeners can fire from the sync thread; the timer picks this up
        self.products_dirty = True

    def poll_refresh(self):
        if self.products_dirty:
            self.products_dirty = False
            self.render_products.refresh()

    async def add_product(self):
        try:
            product = await self.service.add_product(self.name_input.value, self.qty_input.value)
        except ValueError as e:
            ui.notify(str(e), type='warning')
            return
        except Exception as e:
            logger.error(f"Error adding product: {e}")
            ui.notify(f"Failed to add product: {e}", type='negative')
            return

        if not product.encoded_image:
            ui.notify(f"Added {product.name} (QR code unavailable)", type='warning')
        else:
            ui.notify(f"Added {product.name}", type='positive')
        self.name_input.value = ''
        self.qty_input.value = 1
        self.render_products.refresh()

    @ui.refreshable
    def render_products(self):
        render_product_list(self.service.products())


def inventory_page(service: InventoryService):
    page = InventoryPage(service)
    service.store.register_listener(page.on_products_changed)
    app.on_disconnect(lambda: service.store.unregister_listener(page.on_products_changed))

    with ui.card().classes('w-full p-4 bg-gray-900 border border-gray-700'):
        ui.label('Add product').classes('text-lg font-bold')
        with ui.row().classes('w-full items-end gap-2'):
            page.name_input = ui.input(label='Name').classes('flex-grow')
            page.qty_input = ui.number(label='Quantity', value=1, min=0, step=1, format='%d').classes('w-32')
            ui.button('GENERATE QR', on_click=page.add_product).props('icon=qr_code color=positive')

    page.render_products()
    ui.timer(0.5, page.poll_refresh)
