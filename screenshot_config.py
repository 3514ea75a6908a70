import os
import shlex

from dotenv import load_dotenv

# Values in a local .env file are used unless the real environment overrides them.
load_dotenv()

DEFAULT_OUTPUT_DIR = "screenshots"
DEFAULT_TRANSPORT = "stdio"
SUPPORTED_TRANSPORTS = ("stdio", "sse", "streamable-http")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def load_settings() -> dict:
    """
    Reads the server configuration from the environment.

    Returns:
        A dictionary containing:
            - headless: Launch Chromium without a window (SCREENSHOT_HEADLESS, default true).
            - ignore_https_errors: Accept invalid certificates (SCREENSHOT_IGNORE_HTTPS_ERRORS, default false).
            - browser_args: Extra Chromium command line arguments (SCREENSHOT_BROWSER_ARGS).
            - output_dir: Directory for screenshots saved to disk (SCREENSHOT_OUTPUT_DIR).
            - transport: MCP transport to serve on (MCP_TRANSPORT, default stdio).
    """
    transport = os.environ.get("MCP_TRANSPORT", DEFAULT_TRANSPORT).strip().lower()
    if transport not in SUPPORTED_TRANSPORTS:
        transport = DEFAULT_TRANSPORT

    return {
        "headless": _env_flag("SCREENSHOT_HEADLESS", True),
        "ignore_https_errors": _env_flag("SCREENSHOT_IGNORE_HTTPS_ERRORS", False),
        "browser_args": shlex.split(os.environ.get("SCREENSHOT_BROWSER_ARGS", "")),
        "output_dir": os.environ.get("SCREENSHOT_OUTPUT_DIR") or DEFAULT_OUTPUT_DIR,
        "transport": transport,
    }
