# SECURITY NOTE
#
# This MCP server exposes a tool (`screenshot`) that renders caller-supplied URLs
# in a headless Chromium browser (via Playwright). Before anything is rendered the
# request goes through domain_guard and size_guard:
#   - only http/https URLs are accepted,
#   - government domains (*.gov, *.gov.<tld>) are refused,
#   - localhost and private/loopback IP literals are refused,
#   - viewport, device scale factor and full page height are capped.
#
# The private address check works on literals only. A public DNS name that resolves
# to an internal address is NOT blocked here; use egress filtering for that.
# There is no authentication or rate limiting. Do not expose this server to
# untrusted networks without adding both.

import asyncio
import sys
import traceback
from datetime import datetime
from typing import Annotated, Literal, Optional
from urllib.parse import urlparse

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ImageContent, TextContent
from pydantic import BaseModel, Field

from domain_guard import normalize_hostname
from screenshot_config import load_settings
from screenshot_files import file_path_to_file_url, save_screenshot
from screenshot_renderer import shutdown_default_renderer
from screenshot_taker import capture_screenshot
from screenshot_types import (
    DEFAULT_DARK_MODE,
    DEFAULT_DEVICE_SCALE_FACTOR,
    DEFAULT_FULL_PAGE,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_UNTIL,
    CodedError,
    ErrorCode,
)

SERVER_NAME = "mcp-playwright-screenshot"
TOOL_NAME = "screenshot"
TOOL_DESCRIPTION = (
    "Takes a screenshot of the given URL with Playwright and returns the PNG image as base64. "
    "Government sites and local/intranet addresses are refused, and screenshot dimensions are capped."
)


class ViewportArg(BaseModel):
    width: int = Field(description="Viewport width, positive integer")
    height: int = Field(description="Viewport height, positive integer")


mcp_app = FastMCP(
    name=SERVER_NAME,
    instructions="Screenshot server with URL safety checks. Call the 'screenshot' tool with an http/https URL.",
)


@mcp_app.tool(name=TOOL_NAME, description=TOOL_DESCRIPTION)
async def screenshot(
    ctx: Context,
    url: Annotated[str, Field(description="Target page URL, http/https only")],
    fullPage: Annotated[bool, Field(description="Capture the whole scrollable page")] = DEFAULT_FULL_PAGE,
    viewport: Annotated[Optional[ViewportArg], Field(description="Viewport size, defaults to 1280x800")] = None,
    deviceScaleFactor: Annotated[float, Field(description="Device pixel ratio, > 0")] = DEFAULT_DEVICE_SCALE_FACTOR,
    waitUntil: Annotated[
        Literal["load", "domcontentloaded", "networkidle"], Field(description="Navigation wait strategy")
    ] = DEFAULT_WAIT_UNTIL,
    timeoutMs: Annotated[int, Field(description="Page load timeout in milliseconds")] = DEFAULT_TIMEOUT_MS,
    darkMode: Annotated[bool, Field(description="Render with the dark color scheme")] = DEFAULT_DARK_MODE,
    saveToDisk: Annotated[bool, Field(description="Also save the PNG in the server's output directory")] = False,
):
    """
    Captures a screenshot of a webpage and returns it as an MCP image content block.

    When saveToDisk is true a text block with the file:// URL of the saved PNG follows the image.

    Raises:
        ToolError: Text of the form "E_CODE: message" where E_CODE is one of
                   E_INVALID_URL, E_BLOCKED_DOMAIN, E_SIZE_EXCEEDED, E_NAVIGATION_TIMEOUT,
                   E_SCREENSHOT_FAILED or E_IO_ERROR.
    """
    request = {
        "url": url,
        "fullPage": fullPage,
        "viewport": viewport.model_dump() if viewport is not None else None,
        "deviceScaleFactor": deviceScaleFactor,
        "waitUntil": waitUntil,
        "timeoutMs": timeoutMs,
        "darkMode": darkMode,
    }
    await ctx.info(f"Attempting to capture webpage. Request: {request}")

    try:
        result = await capture_screenshot(request)
        content = [ImageContent(type="image", data=result.image_bytes_base64, mimeType=result.mime_type)]
        if saveToDisk:
            host = normalize_hostname(urlparse(url).hostname or "")
            saved_path = save_screenshot(result, host)
            content.append(TextContent(type="text", text=f"Saved screenshot to {file_path_to_file_url(saved_path)}"))
    except CodedError as e:
        await ctx.error(f"Screenshot failed for '{url}': {e}")
        raise ToolError(str(e)) from e
    except Exception as e:
        formatted_traceback = traceback.format_exc()
        print(f"DEBUG: [%{datetime.now().isoformat()}] Unexpected error in screenshot tool: {e}\nTraceback:\n{formatted_traceback}", file=sys.stderr)
        await ctx.error(f"Screenshot failed for '{url}': {type(e).__name__} - {e}")
        raise ToolError(f"{ErrorCode.SCREENSHOT_FAILED.value}: {str(e) or type(e).__name__}") from e

    await ctx.info(f"Screenshot successful for '{url}'. Base64 length: {len(result.image_bytes_base64)}")
    return content


async def serve(transport: str) -> None:
    """Runs the server until the transport closes, then shuts the shared browser down."""
    try:
        if transport == "sse":
            await mcp_app.run_sse_async()
        elif transport == "streamable-http":
            await mcp_app.run_streamable_http_async()
        else:
            await mcp_app.run_stdio_async()
    finally:
        await shutdown_default_renderer()


def main() -> None:
    settings = load_settings()
    print(f"Starting {SERVER_NAME} MCP server (transport: {settings['transport']})...", file=sys.stderr)
    try:
        asyncio.run(serve(settings["transport"]))
    except KeyboardInterrupt:
        print("Server stopped.", file=sys.stderr)


if __name__ == "__main__":
    main()
