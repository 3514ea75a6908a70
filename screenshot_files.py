import base64
import os
import random
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from screenshot_config import load_settings
from screenshot_types import CaptureResult, CodedError, ErrorCode

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9.-]", re.IGNORECASE)


def get_default_dir() -> str:
    """Absolute path of the configured output directory (./screenshots by default)."""
    return resolve_path(load_settings()["output_dir"])


def ensure_dir(dir_path: str) -> None:
    if not os.path.isdir(dir_path):
        os.makedirs(dir_path, exist_ok=True)


def build_file_name(host: str, ext: str = ".png") -> str:
    """Returns '<host>_<YYYYMMDD>_<HHMMSS>_<4 random digits><ext>' with unsafe characters replaced by '_'."""
    safe_host = _UNSAFE_FILENAME_CHARS.sub("_", host)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = f"{random.randint(0, 9999):04d}"
    return f"{safe_host}_{timestamp}_{suffix}{ext}"


def ensure_png_extension(path: str) -> str:
    if os.path.splitext(path)[1].lower() == ".png":
        return path
    return f"{path}.png"


def resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return os.path.normpath(path)
    return os.path.normpath(os.path.join(os.getcwd(), path))


def file_path_to_file_url(path: str) -> str:
    return Path(resolve_path(path)).as_uri()


def save_screenshot(result: CaptureResult, host: str, path: Optional[str] = None) -> str:
    """
    Writes a captured screenshot to disk.

    Args:
        result: The CaptureResult returned by capture_screenshot.
        host: Hostname used to build the file name when no path is given.
        path: Optional target file. '.png' is appended if missing; relative paths
              are resolved against the current working directory.

    Returns:
        The absolute path of the written file.

    Raises:
        CodedError: E_IO_ERROR if the directory or file cannot be written.
    """
    if path:
        target = resolve_path(ensure_png_extension(path))
    else:
        target = os.path.join(get_default_dir(), build_file_name(host))

    try:
        ensure_dir(os.path.dirname(target))
        with open(target, "wb") as f:
            f.write(base64.b64decode(result.image_bytes_base64))
    except OSError as e:
        print(f"DEBUG: [%{datetime.now().isoformat()}] Writing screenshot to '{target}' failed: {e}", file=sys.stderr)
        raise CodedError(ErrorCode.IO_ERROR, f"Could not write screenshot to {target}: {e}")

    print(f"DEBUG: [%{datetime.now().isoformat()}] Screenshot saved to {target}", file=sys.stderr)
    return target
