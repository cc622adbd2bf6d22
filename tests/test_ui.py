import unittest
from unittest.mock import MagicMock, AsyncMock, patch

from qrstock.core.models import ProductRecord
from qrstock.ui.product_list import render_product_list
from qrstock.ui.scan_page import ScanPage


def label_texts(mock_ui):
    return [c.args[0] for c in mock_ui.label.call_args_list]


class TestProductList(unittest.TestCase):
    @patch('qrstock.ui.product_list.ui')
    def test_zero_quantity_shows_out_of_stock(self, mock_ui):
        render_product_list([
            ProductRecord(id="PROD-2", name="Widget", quantity=0),
            ProductRecord(id="PROD-1", name="Gadget", quantity=3),
        ])
        texts = label_texts(mock_ui)
        self.assertIn('OUT OF STOCK', texts)
        self.assertIn('Qty: 3', texts)
        self.assertNotIn('Qty: 0', texts)

    @patch('qrstock.ui.product_list.ui')
    def test_empty_list_hint(self, mock_ui):
        render_product_list([])
        self.assertEqual(len(label_texts(mock_ui)), 1)
        self.assertTrue(label_texts(mock_ui)[0].startswith('No products yet'))


class TestScanPage(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.service = MagicMock()
        self.service.session.status_text.return_value = "Camera unavailable: no camera 2"
        self.service.session.get_latest_frame.return_value = None
        self.page = ScanPage(self.service)

        self.ui_patcher = patch('qrstock.ui.scan_page.ui')
        self.run_patcher = patch('qrstock.ui.scan_page.run')
        self.mock_ui = self.ui_patcher.start()
        self.mock_run = self.run_patcher.start()

    def tearDown(self):
        self.ui_patcher.stop()
        self.run_patcher.stop()

    async def test_failed_camera_switch_is_notified(self):
        self.mock_run.io_bound = AsyncMock(return_value=False)
        await self.page.on_camera_change(MagicMock(value=2))

        self.mock_run.io_bound.assert_awaited_once_with(self.service.select_camera, 2)
        self.mock_ui.notify.assert_called_once_with("Camera unavailable: no camera 2", type='negative')

    async def test_camera_switch_exception_is_notified(self):
        self.mock_run.io_bound = AsyncMock(side_effect=RuntimeError("driver crashed"))
        with self.assertLogs('qrstock.ui.scan_page', level='ERROR'):
            await self.page.on_camera_change(MagicMock(value=2))

        message = self.mock_ui.notify.call_args.args[0]
        self.assertIn("driver crashed", message)
        self.assertEqual(self.mock_ui.notify.call_args.kwargs['type'], 'negative')

    async def test_successful_camera_switch_is_quiet(self):
        self.mock_run.io_bound = AsyncMock(return_value=True)
        await self.page.on_camera_change(MagicMock(value=1))
        self.mock_ui.notify.assert_not_called()

    async def test_cleared_select_is_ignored(self):
        self.mock_run.io_bound = AsyncMock()
        await self.page.on_camera_change(MagicMock(value=None))
        self.mock_run.io_bound.assert_not_awaited()

    async def test_event_consumer_shows_latest_frame(self):
        self.page.preview = MagicMock()
        self.service.session.get_latest_frame.return_value = "data:image/jpeg;base64,AA"
        await self.page.event_consumer()
        self.page.preview.set_source.assert_called_once_with("data:image/jpeg;base64,AA")

    async def test_event_consumer_keeps_last_frame_when_none_new(self):
        self.page.preview = MagicMock()
        await self.page.event_consumer()
        self.page.preview.set_source.assert_not_called()


if __name__ == '__main__':
    unittest.main()
