import asyncio
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from screenshot_config import load_settings

DOCUMENT_HEIGHT_SCRIPT = """
() => {
  const doc = document.documentElement;
  const body = document.body;
  return Math.max(
    doc.scrollHeight,
    doc.offsetHeight,
    doc.clientHeight,
    body ? body.scrollHeight : 0,
    body ? body.offsetHeight : 0,
    body ? body.clientHeight : 0
  );
}
"""


class PlaywrightSession:
    """One isolated browser context and its page. Created per capture call."""

    def __init__(self, context, page):
        self._context = context
        self._page = page

    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> Dict[str, Any]:
        """
        Loads the URL in the session's page.

        Returns:
            A dictionary containing:
                - ok: True if the page finished loading.
                - timed_out: True if the wait condition was not reached within timeout_ms.
                - error: Playwright's message for any other navigation failure, else None.
        """
        print(f"DEBUG: [%{datetime.now().isoformat()}] Navigating to URL: {url} with timeout {timeout_ms}ms, wait_until='{wait_until}'", file=sys.stderr)
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            print(f"DEBUG: [%{datetime.now().isoformat()}] Navigation timed out: {e}", file=sys.stderr)
            return {"ok": False, "timed_out": True, "error": str(e)}
        except PlaywrightError as e:
            print(f"DEBUG: [%{datetime.now().isoformat()}] Navigation failed: {e}", file=sys.stderr)
            return {"ok": False, "timed_out": False, "error": str(e)}
        return {"ok": True, "timed_out": False, "error": None}

    async def measure_document_height(self):
        return await self._page.evaluate(DOCUMENT_HEIGHT_SCRIPT)

    async def capture_image(self, full_page: bool) -> bytes:
        image_bytes = await self._page.screenshot(full_page=full_page, type="png")
        print(f"DEBUG: [%{datetime.now().isoformat()}] Screenshot taken. Image size: {len(image_bytes)} bytes.", file=sys.stderr)
        return image_bytes

    async def close(self) -> None:
        await self._context.close()


class PlaywrightRenderer:
    """
    Shared headless Chromium engine handing out isolated sessions.

    The browser is launched on the first start_engine() call. Callers that arrive
    while the launch is still running wait on the same launch task instead of
    starting a second browser. shutdown() closes the browser and the Playwright
    driver; the next start_engine() launches a fresh one.
    """

    def __init__(self, headless: bool = True, ignore_https_errors: bool = False,
                 browser_args: Optional[List[str]] = None):
        self.headless = headless
        self.ignore_https_errors = ignore_https_errors
        self.browser_args = list(browser_args or [])
        self._launch_task: Optional[asyncio.Task] = None

    async def _launch(self):
        print(f"DEBUG: [%{datetime.now().isoformat()}] Launching Chromium. headless={self.headless}, args={self.browser_args}", file=sys.stderr)
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=self.headless, args=self.browser_args)
        except BaseException:
            await playwright.stop()
            raise
        print(f"DEBUG: [%{datetime.now().isoformat()}] Browser launched.", file=sys.stderr)
        return playwright, browser

    async def start_engine(self):
        """Returns the shared browser, launching it on first use."""
        task = self._launch_task
        if task is None:
            task = asyncio.ensure_future(self._launch())
            self._launch_task = task
        try:
            # shield: a cancelled caller must not cancel the launch other callers wait on.
            _, browser = await asyncio.shield(task)
        except Exception:
            if task.done() and self._launch_task is task:
                # Forget the failed launch so the next call can try again.
                self._launch_task = None
            raise
        return browser

    async def open_session(self, browser, options: Dict[str, Any]) -> PlaywrightSession:
        """
        Creates an isolated context and page.

        Args:
            browser: The handle returned by start_engine().
            options: width, height, device_scale_factor and color_scheme ("dark" or "light").
        """
        context = await browser.new_context(
            viewport={"width": options["width"], "height": options["height"]},
            device_scale_factor=options["device_scale_factor"],
            color_scheme=options["color_scheme"],
            ignore_https_errors=self.ignore_https_errors,
        )
        try:
            page = await context.new_page()
        except BaseException:
            await context.close()
            raise
        return PlaywrightSession(context, page)

    async def shutdown(self) -> None:
        task, self._launch_task = self._launch_task, None
        if task is None:
            return
        try:
            playwright, browser = await task
        except Exception as e:
            print(f"DEBUG: [%{datetime.now().isoformat()}] No browser to shut down, launch had failed: {e}", file=sys.stderr)
            return
        try:
            await browser.close()
        finally:
            await playwright.stop()
        print(f"DEBUG: [%{datetime.now().isoformat()}] Browser shut down.", file=sys.stderr)


_default_renderer: Optional[PlaywrightRenderer] = None


def get_default_renderer() -> PlaywrightRenderer:
    """Process-wide renderer built from the environment configuration."""
    global _default_renderer
    if _default_renderer is None:
        settings = load_settings()
        _default_renderer = PlaywrightRenderer(
            headless=settings["headless"],
            ignore_https_errors=settings["ignore_https_errors"],
            browser_args=settings["browser_args"],
        )
    return _default_renderer


async def shutdown_default_renderer() -> None:
    if _default_renderer is None:
        return
    try:
        await _default_renderer.shutdown()
    except Exception as e:
        formatted_traceback = traceback.format_exc()
        print(f"DEBUG: [%{datetime.now().isoformat()}] Error while shutting down the browser: {e}\nTraceback:\n{formatted_traceback}", file=sys.stderr)
