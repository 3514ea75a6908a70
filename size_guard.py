import math
from numbers import Real
from typing import Any, Optional

from screenshot_types import WAIT_UNTIL_VALUES, CodedError, ErrorCode, ResolvedRequest, Viewport

MAX_WIDTH = 12000
MAX_HEIGHT = 100000


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid size.
    return isinstance(value, Real) and not isinstance(value, bool)


def _as_finite_float(value: Any) -> Optional[float]:
    # Integers past the float range count as infinite, like JSON numbers do.
    if not _is_number(value):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _is_positive_finite(value: Any) -> bool:
    number = _as_finite_float(value)
    return number is not None and number > 0


def _is_positive_int(value: Any) -> bool:
    number = _as_finite_float(value)
    return number is not None and number > 0 and number.is_integer()


def check_viewport(viewport: Viewport) -> None:
    """
    Validates viewport dimensions before any browser session is opened.

    Raises:
        CodedError: E_SIZE_EXCEEDED if width/height are not positive integers or
                    exceed MAX_WIDTH / MAX_HEIGHT.
    """
    width, height = viewport.width, viewport.height
    if not _is_positive_int(width) or not _is_positive_int(height):
        raise CodedError(ErrorCode.SIZE_EXCEEDED, "viewport width and height must be positive integers")
    if width > MAX_WIDTH:
        raise CodedError(ErrorCode.SIZE_EXCEEDED, f"Screenshot width exceeds the limit: width={width} > {MAX_WIDTH}")
    if height > MAX_HEIGHT:
        raise CodedError(ErrorCode.SIZE_EXCEEDED, f"Screenshot height exceeds the limit: height={height} > {MAX_HEIGHT}")


def check_full_page_height(total_height: Any) -> None:
    """
    Validates the document height measured after navigation (full-page mode only).

    Raises:
        CodedError: E_SCREENSHOT_FAILED if the height could not be measured,
                    E_SIZE_EXCEEDED if it is above MAX_HEIGHT.
    """
    if not _is_positive_finite(total_height):
        raise CodedError(ErrorCode.SCREENSHOT_FAILED, "Could not determine the total page height")
    if total_height > MAX_HEIGHT:
        raise CodedError(ErrorCode.SIZE_EXCEEDED, f"Total page height exceeds the limit: height={total_height} > {MAX_HEIGHT}")


def check_request(request: ResolvedRequest) -> None:
    """
    Runs every numeric and shape check on a resolved request.

    Malformed timeoutMs, waitUntil and boolean flags are reported as E_INVALID_URL
    (the malformed-request code); deviceScaleFactor and viewport problems as
    E_SIZE_EXCEEDED.
    """
    check_viewport(request.viewport)

    if not _is_positive_finite(request.device_scale_factor):
        raise CodedError(ErrorCode.SIZE_EXCEEDED, "deviceScaleFactor must be a finite number greater than 0")

    if not _is_positive_int(request.timeout_ms):
        raise CodedError(ErrorCode.INVALID_URL, "timeoutMs must be a positive integer")

    if request.wait_until not in WAIT_UNTIL_VALUES:
        raise CodedError(ErrorCode.INVALID_URL, f"waitUntil must be one of {', '.join(WAIT_UNTIL_VALUES)}")

    for name, value in (("fullPage", request.full_page), ("darkMode", request.dark_mode)):
        if not isinstance(value, bool):
            raise CodedError(ErrorCode.INVALID_URL, f"{name} must be a boolean")
