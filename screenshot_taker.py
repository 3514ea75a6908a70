import base64
import sys
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from domain_guard import admit_url
from screenshot_renderer import get_default_renderer
from screenshot_types import PNG_MIME_TYPE, CaptureResult, CodedError, ErrorCode, ResolvedRequest, apply_defaults
from size_guard import check_full_page_height, check_request


@asynccontextmanager
async def _render_session(renderer, request: ResolvedRequest):
    # The session is closed on every exit path; close errors never replace the call's outcome.
    try:
        browser = await renderer.start_engine()
        session = await renderer.open_session(browser, {
            "width": int(request.viewport.width),
            "height": int(request.viewport.height),
            "device_scale_factor": request.device_scale_factor,
            "color_scheme": "dark" if request.dark_mode else "light",
        })
    except Exception as e:
        formatted_traceback = traceback.format_exc()
        print(f"DEBUG: [%{datetime.now().isoformat()}] Could not open a browser session: {e}\nTraceback:\n{formatted_traceback}", file=sys.stderr)
        raise CodedError(ErrorCode.SCREENSHOT_FAILED, f"Could not start the browser: {e}")

    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as e:
            print(f"DEBUG: [%{datetime.now().isoformat()}] Ignoring error while closing the browser session: {e}", file=sys.stderr)


async def _navigate(session, url: str, request: ResolvedRequest) -> None:
    try:
        outcome = await session.navigate(url, wait_until=request.wait_until, timeout_ms=int(request.timeout_ms))
    except TimeoutError:
        outcome = {"ok": False, "timed_out": True, "error": None}
    except Exception as e:
        outcome = {"ok": False, "timed_out": False, "error": str(e) or type(e).__name__}

    if outcome.get("timed_out"):
        raise CodedError(ErrorCode.NAVIGATION_TIMEOUT, f"Page load timed out: {url}")
    if not outcome.get("ok"):
        raise CodedError(ErrorCode.SCREENSHOT_FAILED, f"Page navigation failed: {outcome.get('error')}")


async def _measure_height(session):
    try:
        return await session.measure_document_height()
    except Exception as e:
        print(f"DEBUG: [%{datetime.now().isoformat()}] Measuring document height failed: {e}", file=sys.stderr)
        return None


async def _capture(session, full_page: bool) -> bytes:
    try:
        image_bytes = await session.capture_image(full_page=full_page)
    except Exception as e:
        raise CodedError(ErrorCode.SCREENSHOT_FAILED, f"Screenshot failed: {e}")
    if not image_bytes:
        raise CodedError(ErrorCode.SCREENSHOT_FAILED, "Screenshot failed: the renderer returned no image data")
    return image_bytes


async def capture_screenshot(request: Optional[Dict[str, Any]], renderer=None) -> CaptureResult:
    """
    Captures a PNG screenshot of a URL after applying every safety check.

    The URL and all numeric options are validated before any browser resource is
    touched. Each call gets its own isolated browser session from a shared engine.

    Args:
        request: Capture options using the camelCase wire names. Only "url" is required;
                 fullPage (True), viewport ({1280, 800}), deviceScaleFactor (1),
                 waitUntil ("networkidle"), timeoutMs (30000) and darkMode (False)
                 default as shown.
        renderer: Object providing start_engine()/open_session(). Defaults to the
                  shared Playwright renderer.

    Returns:
        CaptureResult with the base64 PNG and its mime type.

    Raises:
        CodedError: With one of E_INVALID_URL, E_BLOCKED_DOMAIN, E_SIZE_EXCEEDED,
                    E_NAVIGATION_TIMEOUT or E_SCREENSHOT_FAILED.
    """
    resolved = apply_defaults(request)
    print(f"DEBUG: [%{datetime.now().isoformat()}] Entering capture_screenshot with {resolved}", file=sys.stderr)

    admission = admit_url(resolved.url)
    check_request(resolved)

    if renderer is None:
        renderer = get_default_renderer()

    async with _render_session(renderer, resolved) as session:
        await _navigate(session, admission.url, resolved)

        if resolved.full_page:
            check_full_page_height(await _measure_height(session))

        image_bytes = await _capture(session, resolved.full_page)

    result = CaptureResult(image_bytes_base64=base64.b64encode(image_bytes).decode("ascii"), mime_type=PNG_MIME_TYPE)
    print(f"DEBUG: [%{datetime.now().isoformat()}] Exiting capture_screenshot for '{admission.ascii_host}'. Image size: {len(image_bytes)} bytes.", file=sys.stderr)
    return result
