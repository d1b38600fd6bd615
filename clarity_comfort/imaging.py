from __future__ import annotations

import base64
import binascii
import io
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeFailure

MAX_SIDE = 600
JPEG_QUALITY = 80
JPEG_MIME = "image/jpeg"

DoneCallback = Callable[["DownscaledImage"], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class DownscaledImage:
    data: bytes
    width: int
    height: int
    mime_type: str = JPEG_MIME

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


def scaled_size(width: int, height: int, max_side: int = MAX_SIDE) -> tuple[int, int]:
    if width <= 0 or height <= 0:
        raise ValueError("Image dimensions must be positive.")
    factor = min(1.0, max_side / max(width, height))
    return (max(1, round(width * factor)), max(1, round(height * factor)))


def downscale_image(
    data: bytes,
    max_side: int = MAX_SIDE,
    quality: int = JPEG_QUALITY,
) -> DownscaledImage:
    """Re-encode ``data`` as a JPEG no larger than ``max_side`` on either edge.

    Aspect ratio is preserved and small images are never upscaled. Raises
    :class:`DecodeFailure` for empty or unreadable input.
    """
    if not data:
        raise DecodeFailure("Image file is empty.")

    buffer = io.BytesIO(bytes(data))
    try:
        with Image.open(buffer) as source:
            source.load()
            image = ImageOps.exif_transpose(source)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeFailure(f"Could not decode image: {exc}") from exc

    width, height = scaled_size(image.width, image.height, max_side)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.LANCZOS)
    image = _flatten_to_rgb(image)

    output = io.BytesIO()
    image.save(output, format="JPEG", quality=quality, optimize=True)
    return DownscaledImage(data=output.getvalue(), width=width, height=height)


def downscale_file(path: Path, max_side: int = MAX_SIDE, quality: int = JPEG_QUALITY) -> DownscaledImage:
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise DecodeFailure(f"Could not read {path}: {exc}") from exc
    return downscale_image(raw, max_side=max_side, quality=quality)


def downscale_in_background(
    data: bytes,
    on_done: DoneCallback,
    on_error: ErrorCallback,
    max_side: int = MAX_SIDE,
) -> threading.Thread:
    """Downscale on a worker thread, then call exactly one of the callbacks once."""
    payload = bytes(data)

    def _worker() -> None:
        try:
            result = downscale_image(payload, max_side=max_side)
        except Exception as exc:  # noqa: BLE001
            on_error(exc)
            return
        on_done(result)

    thread = threading.Thread(target=_worker, name="clarity-downscale", daemon=True)
    thread.start()
    return thread


def split_data_uri(uri: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a ``data:`` URI."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Not a base64 data URI.")
    mime_type = header[len("data:") :].split(";", 1)[0] or "application/octet-stream"
    return mime_type, payload


def decode_data_uri(uri: str) -> bytes:
    _, payload = split_data_uri(uri)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeFailure("Data URI payload is not valid base64.") from exc


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    if image.mode in {"RGBA", "LA"} or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")
