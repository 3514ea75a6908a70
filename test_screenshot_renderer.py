import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import screenshot_renderer
from screenshot_renderer import DOCUMENT_HEIGHT_SCRIPT, PlaywrightRenderer, PlaywrightSession


def make_playwright_mocks(mock_async_playwright, launch_side_effect=None):
    """Wires async_playwright().start() -> playwright -> chromium.launch() -> browser."""
    mock_browser = MagicMock(name="browser")
    mock_browser.close = AsyncMock()
    mock_playwright = MagicMock(name="playwright")
    mock_playwright.stop = AsyncMock()
    if launch_side_effect is not None:
        mock_playwright.chromium.launch = AsyncMock(side_effect=launch_side_effect)
    else:
        mock_playwright.chromium.launch = AsyncMock(return_value=mock_browser)
    mock_async_playwright.return_value.start = AsyncMock(return_value=mock_playwright)
    return mock_playwright, mock_browser


class TestPlaywrightRendererEngine(unittest.IsolatedAsyncioTestCase):

    @patch('screenshot_renderer.async_playwright')
    async def test_concurrent_first_callers_share_one_launch(self, mock_async_playwright):
        print("\nRunning: test_concurrent_first_callers_share_one_launch")
        mock_playwright, mock_browser = make_playwright_mocks(mock_async_playwright)
        renderer = PlaywrightRenderer(headless=True, browser_args=["--no-sandbox"])

        handles = await asyncio.gather(*[renderer.start_engine() for _ in range(5)])

        self.assertTrue(all(handle is mock_browser for handle in handles))
        mock_async_playwright.return_value.start.assert_awaited_once()
        mock_playwright.chromium.launch.assert_awaited_once_with(headless=True, args=["--no-sandbox"])

    @patch('screenshot_renderer.async_playwright')
    async def test_later_calls_reuse_the_engine(self, mock_async_playwright):
        mock_playwright, mock_browser = make_playwright_mocks(mock_async_playwright)
        renderer = PlaywrightRenderer()

        first = await renderer.start_engine()
        second = await renderer.start_engine()

        self.assertIs(first, second)
        mock_playwright.chromium.launch.assert_awaited_once()

    @patch('screenshot_renderer.async_playwright')
    async def test_failed_launch_is_retried_on_next_call(self, mock_async_playwright):
        mock_browser = MagicMock(name="browser")
        mock_playwright, _ = make_playwright_mocks(
            mock_async_playwright, launch_side_effect=[RuntimeError("Executable doesn't exist"), mock_browser])
        renderer = PlaywrightRenderer()

        with self.assertRaises(RuntimeError):
            await renderer.start_engine()
        # The driver started for the failed launch is stopped again.
        mock_playwright.stop.assert_awaited_once()

        handle = await renderer.start_engine()
        self.assertIs(handle, mock_browser)
        self.assertEqual(mock_playwright.chromium.launch.await_count, 2)

    @patch('screenshot_renderer.async_playwright')
    async def test_shutdown_closes_browser_and_driver(self, mock_async_playwright):
        mock_playwright, mock_browser = make_playwright_mocks(mock_async_playwright)
        renderer = PlaywrightRenderer()
        await renderer.start_engine()

        await renderer.shutdown()

        mock_browser.close.assert_awaited_once()
        mock_playwright.stop.assert_awaited_once()

        # A new call after shutdown launches a fresh browser.
        await renderer.start_engine()
        self.assertEqual(mock_playwright.chromium.launch.await_count, 2)

    async def test_shutdown_without_engine_is_a_no_op(self):
        renderer = PlaywrightRenderer()
        await renderer.shutdown()

    async def test_open_session_configures_an_isolated_context(self):
        mock_page = MagicMock(name="page")
        mock_context = MagicMock(name="context")
        mock_context.new_page = AsyncMock(return_value=mock_page)
        mock_browser = MagicMock(name="browser")
        mock_browser.new_context = AsyncMock(return_value=mock_context)
        renderer = PlaywrightRenderer(ignore_https_errors=True)

        session = await renderer.open_session(mock_browser, {
            "width": 390, "height": 844, "device_scale_factor": 3, "color_scheme": "dark",
        })

        self.assertIsInstance(session, PlaywrightSession)
        mock_browser.new_context.assert_awaited_once_with(
            viewport={"width": 390, "height": 844},
            device_scale_factor=3,
            color_scheme="dark",
            ignore_https_errors=True,
        )
        mock_context.new_page.assert_awaited_once()

    async def test_open_session_closes_context_when_page_fails(self):
        mock_context = MagicMock(name="context")
        mock_context.new_page = AsyncMock(side_effect=RuntimeError("Target closed"))
        mock_context.close = AsyncMock()
        mock_browser = MagicMock(name="browser")
        mock_browser.new_context = AsyncMock(return_value=mock_context)
        renderer = PlaywrightRenderer()

        with self.assertRaises(RuntimeError):
            await renderer.open_session(mock_browser, {
                "width": 1280, "height": 800, "device_scale_factor": 1, "color_scheme": "light",
            })
        mock_context.close.assert_awaited_once()


class TestPlaywrightSession(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.mock_page = MagicMock(name="page")
        self.mock_page.goto = AsyncMock()
        self.mock_page.evaluate = AsyncMock(return_value=1234)
        self.mock_page.screenshot = AsyncMock(return_value=b"png-bytes")
        self.mock_context = MagicMock(name="context")
        self.mock_context.close = AsyncMock()
        self.session = PlaywrightSession(self.mock_context, self.mock_page)

    async def test_navigate_success(self):
        outcome = await self.session.navigate("https://example.com/", wait_until="load", timeout_ms=5000)
        self.assertEqual(outcome, {"ok": True, "timed_out": False, "error": None})
        self.mock_page.goto.assert_awaited_once_with("https://example.com/", wait_until="load", timeout=5000)

    async def test_navigate_timeout_is_reported_as_timed_out(self):
        self.mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded.")
        outcome = await self.session.navigate("https://example.com/", wait_until="networkidle", timeout_ms=5000)
        self.assertFalse(outcome["ok"])
        self.assertTrue(outcome["timed_out"])

    async def test_navigate_other_error_is_reported_with_message(self):
        self.mock_page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.example/")
        outcome = await self.session.navigate("https://nope.example/", wait_until="load", timeout_ms=5000)
        self.assertFalse(outcome["ok"])
        self.assertFalse(outcome["timed_out"])
        self.assertIn("ERR_NAME_NOT_RESOLVED", outcome["error"])

    async def test_measure_document_height(self):
        height = await self.session.measure_document_height()
        self.assertEqual(height, 1234)
        self.mock_page.evaluate.assert_awaited_once_with(DOCUMENT_HEIGHT_SCRIPT)

    async def test_capture_image_requests_png(self):
        image = await self.session.capture_image(full_page=True)
        self.assertEqual(image, b"png-bytes")
        self.mock_page.screenshot.assert_awaited_once_with(full_page=True, type="png")

    async def test_close_closes_the_context(self):
        await self.session.close()
        self.mock_context.close.assert_awaited_once()


class TestDefaultRenderer(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        screenshot_renderer._default_renderer = None

    def tearDown(self):
        screenshot_renderer._default_renderer = None

    @patch('screenshot_renderer.load_settings')
    async def test_default_renderer_is_built_once_from_settings(self, mock_load_settings):
        mock_load_settings.return_value = {
            "headless": False,
            "ignore_https_errors": True,
            "browser_args": ["--disable-gpu"],
            "output_dir": "screenshots",
            "transport": "stdio",
        }
        first = screenshot_renderer.get_default_renderer()
        second = screenshot_renderer.get_default_renderer()

        self.assertIs(first, second)
        self.assertFalse(first.headless)
        self.assertTrue(first.ignore_https_errors)
        self.assertEqual(first.browser_args, ["--disable-gpu"])
        mock_load_settings.assert_called_once()

    async def test_shutdown_default_renderer_swallows_errors(self):
        mock_renderer = MagicMock()
        mock_renderer.shutdown = AsyncMock(side_effect=RuntimeError("browser already gone"))
        screenshot_renderer._default_renderer = mock_renderer

        await screenshot_renderer.shutdown_default_renderer()
        mock_renderer.shutdown.assert_awaited_once()


if __name__ == '__main__':
    unittest.main()
