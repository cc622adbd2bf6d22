from typing import List

from nicegui import ui

from qrstock.core.models import ProductRecord


def render_product_list(products: List[ProductRecord], show_codes: bool = True):
    if not products:
        ui.label('No products yet. Add one to generate its QR code.').classes('text-gray-400 italic')
        return

    with ui.column().classes('w-full gap-2'):
        for p in products:
            with ui.card().classes('w-full p-2 bg-gray-900 border border-gray-700'):
                with ui.row().classes('w-full items-center gap-4'):
                    if show_codes and p.encoded_image:
                        ui.image(p.encoded_image).classes('w-24 h-24 bg-white')
                    with ui.column().classes('gap-0 flex-grow'):
                        ui.label(p.name).classes('text-lg font-bold')
                        ui.label(p.id).classes('text-xs text-gray-400 font-mono')
                    if p.quantity <= 0:
                        ui.label('OUT OF STOCK').classes('text-xl font-bold text-red-500')
                    else:
                        ui.label(f"Qty: {p.quantity}").classes('text-xl font-bold text-green-400')
