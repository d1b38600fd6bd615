from __future__ import annotations

import base64
import io
import struct
import tempfile
import threading
import unittest
import zlib
from pathlib import Path

from PIL import Image

from clarity_comfort.errors import DecodeFailure
from clarity_comfort.imaging import (
    decode_data_uri,
    downscale_file,
    downscale_image,
    downscale_in_background,
    scaled_size,
    split_data_uri,
)


def _image_bytes(width: int, height: int, mode: str = "RGB", fmt: str = "PNG") -> bytes:
    color = (120, 180, 200, 128) if mode == "RGBA" else (120, 180, 200)
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def _png_header_only(width: int, height: int) -> bytes:
    def _chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body) & 0xFFFFFFFF)

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + _chunk(b"IHDR", header) + _chunk(b"IEND", b"")


class ScaledSizeTests(unittest.TestCase):
    def test_landscape_is_halved(self) -> None:
        self.assertEqual(scaled_size(1200, 800), (600, 400))

    def test_portrait_uses_height(self) -> None:
        self.assertEqual(scaled_size(800, 1200), (400, 600))

    def test_small_images_are_not_upscaled(self) -> None:
        self.assertEqual(scaled_size(300, 200), (300, 200))

    def test_thin_images_keep_one_pixel(self) -> None:
        self.assertEqual(scaled_size(6000, 2), (600, 1))

    def test_rejects_empty_dimensions(self) -> None:
        with self.assertRaises(ValueError):
            scaled_size(0, 10)


class DownscaleImageTests(unittest.TestCase):
    def test_large_image_is_bounded_and_jpeg(self) -> None:
        result = downscale_image(_image_bytes(1200, 800))
        self.assertEqual((result.width, result.height), (600, 400))
        with Image.open(io.BytesIO(result.data)) as decoded:
            self.assertEqual(decoded.format, "JPEG")
            self.assertEqual(decoded.size, (600, 400))

    def test_small_image_keeps_size(self) -> None:
        result = downscale_image(_image_bytes(300, 200, fmt="JPEG"))
        self.assertEqual((result.width, result.height), (300, 200))

    def test_transparent_png_is_flattened(self) -> None:
        result = downscale_image(_image_bytes(64, 64, mode="RGBA"))
        with Image.open(io.BytesIO(result.data)) as decoded:
            self.assertEqual(decoded.mode, "RGB")

    def test_data_uri(self) -> None:
        result = downscale_image(_image_bytes(10, 10))
        self.assertTrue(result.data_uri.startswith("data:image/jpeg;base64,"))
        self.assertEqual(decode_data_uri(result.data_uri), result.data)

    def test_empty_input_is_a_decode_failure(self) -> None:
        with self.assertRaises(DecodeFailure):
            downscale_image(b"")

    def test_garbage_input_is_a_decode_failure(self) -> None:
        with self.assertRaises(DecodeFailure):
            downscale_image(b"definitely not an image")

    def test_oversized_image_is_a_decode_failure(self) -> None:
        with self.assertRaises(DecodeFailure):
            downscale_image(_png_header_only(20000, 20000))

    def test_input_buffer_is_not_mutated(self) -> None:
        original = bytearray(_image_bytes(900, 300))
        snapshot = bytes(original)
        downscale_image(original)
        self.assertEqual(bytes(original), snapshot)

    def test_same_input_gives_same_output(self) -> None:
        raw = _image_bytes(1000, 700)
        self.assertEqual(downscale_image(raw).data, downscale_image(raw).data)

    def test_downscale_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "photo.png"
            path.write_bytes(_image_bytes(1800, 600))
            result = downscale_file(path)
            self.assertEqual((result.width, result.height), (600, 200))
            with self.assertRaises(DecodeFailure):
                downscale_file(Path(tmp_dir) / "missing.png")


class BackgroundDownscaleTests(unittest.TestCase):
    def _run(self, raw: bytes) -> tuple[list[object], list[Exception]]:
        done: list[object] = []
        errors: list[Exception] = []
        finished = threading.Event()

        def _on_done(result) -> None:
            done.append(result)
            finished.set()

        def _on_error(exc: Exception) -> None:
            errors.append(exc)
            finished.set()

        thread = downscale_in_background(raw, _on_done, _on_error)
        thread.join(timeout=10)
        self.assertTrue(finished.is_set())
        return done, errors

    def test_success_resolves_once(self) -> None:
        done, errors = self._run(_image_bytes(1200, 800))
        self.assertEqual(len(done), 1)
        self.assertEqual(errors, [])
        self.assertEqual((done[0].width, done[0].height), (600, 400))

    def test_failure_resolves_once(self) -> None:
        done, errors = self._run(b"")
        self.assertEqual(done, [])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], DecodeFailure)


class DataUriTests(unittest.TestCase):
    def test_split_data_uri(self) -> None:
        payload = base64.b64encode(b"abc").decode("ascii")
        self.assertEqual(split_data_uri(f"data:image/png;base64,{payload}"), ("image/png", payload))

    def test_split_rejects_plain_text(self) -> None:
        with self.assertRaises(ValueError):
            split_data_uri("https://example.com/cat.png")

    def test_decode_rejects_bad_payload(self) -> None:
        with self.assertRaises(DecodeFailure):
            decode_data_uri("data:image/png;base64,@@@")


if __name__ == "__main__":
    unittest.main()
