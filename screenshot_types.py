from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Union

WAIT_UNTIL_VALUES = ("load", "domcontentloaded", "networkidle")

DEFAULT_FULL_PAGE = True
DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 800
DEFAULT_DEVICE_SCALE_FACTOR = 1
DEFAULT_WAIT_UNTIL = "networkidle"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_DARK_MODE = False

PNG_MIME_TYPE = "image/png"


class ErrorCode(str, Enum):
    """Closed set of failure codes returned to callers. The values are the wire strings."""
    INVALID_URL = "E_INVALID_URL"
    BLOCKED_DOMAIN = "E_BLOCKED_DOMAIN"
    SIZE_EXCEEDED = "E_SIZE_EXCEEDED"
    NAVIGATION_TIMEOUT = "E_NAVIGATION_TIMEOUT"
    SCREENSHOT_FAILED = "E_SCREENSHOT_FAILED"
    IO_ERROR = "E_IO_ERROR"  # filesystem helpers only


class CodedError(Exception):
    """
    The only exception type that leaves the capture pipeline.

    Args:
        code: One of the ErrorCode members.
        message: Human readable detail, without the code prefix.
    """

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class Viewport(NamedTuple):
    width: Any
    height: Any


class ResolvedRequest(NamedTuple):
    url: Any
    full_page: Any
    viewport: Viewport
    device_scale_factor: Any
    wait_until: Any
    timeout_ms: Any
    dark_mode: Any


class CaptureResult(NamedTuple):
    image_bytes_base64: str
    mime_type: str = PNG_MIME_TYPE

    def to_dict(self) -> Dict[str, str]:
        return {"imageBytesBase64": self.image_bytes_base64, "mimeType": self.mime_type}


def _pick(request: Dict[str, Any], key: str, default: Any) -> Any:
    value = request.get(key)
    return default if value is None else value


def _as_viewport(value: Union[Viewport, Dict[str, Any], None]) -> Viewport:
    if value is None:
        return Viewport(DEFAULT_VIEWPORT_WIDTH, DEFAULT_VIEWPORT_HEIGHT)
    if isinstance(value, Viewport):
        return value
    if isinstance(value, dict):
        return Viewport(value.get("width"), value.get("height"))
    # Objects such as pydantic models expose width/height as attributes.
    return Viewport(getattr(value, "width", None), getattr(value, "height", None))


def apply_defaults(request: Optional[Dict[str, Any]]) -> ResolvedRequest:
    """
    Fills every omitted field of a capture request with its default.

    Only missing (or None) fields are replaced; supplied values are kept as they are
    and validated later by the guards. Never raises.

    Args:
        request: Mapping using the camelCase wire names (url, fullPage, viewport,
                 deviceScaleFactor, waitUntil, timeoutMs, darkMode).

    Returns:
        An immutable ResolvedRequest.
    """
    request = request or {}
    return ResolvedRequest(
        url=request.get("url"),
        full_page=_pick(request, "fullPage", DEFAULT_FULL_PAGE),
        viewport=_as_viewport(request.get("viewport")),
        device_scale_factor=_pick(request, "deviceScaleFactor", DEFAULT_DEVICE_SCALE_FACTOR),
        wait_until=_pick(request, "waitUntil", DEFAULT_WAIT_UNTIL),
        timeout_ms=_pick(request, "timeoutMs", DEFAULT_TIMEOUT_MS),
        dark_mode=_pick(request, "darkMode", DEFAULT_DARK_MODE),
    )
