"""Decode raw PDF image streams into OCR-ready raster images.

Images embedded in a PDF come in many shapes. The ones handled here are:

* ``/DCTDecode`` streams are complete JPEG files and pass through untouched.
* ``/FlateDecode`` streams are zlib-compressed pixel buffers that are inflated
  and interpreted according to ``/ColorSpace`` and ``/BitsPerComponent``:

  - ``/DeviceGray`` at 1 bit (binary masks) or 8 bits (grayscale),
  - ``/DeviceRGB`` at 8 bits (``r g b r g b ...``),
  - ``[/Indexed /DeviceRGB hival palette]`` at 1, 2, 4 or 8 bits, where each
    sample is an index into an RGB palette.

Every decoded buffer becomes an RGBA image. When the object declares a soft
mask, the mask is decoded the same way and its luminance becomes the alpha
channel. The result is re-encoded as PNG. Anything else is skipped with a
warning.
"""
from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import numpy as np
from PIL import Image

from ..errors import UnsupportedImageEncoding

logger = logging.getLogger(__name__)

JPEG_FILTER = "DCTDecode"
FLATE_FILTER = "FlateDecode"
INDEXED_BITS = (1, 2, 4, 8)


@dataclass
class NormalizedImage:
    """Decoded (or passthrough JPEG) image ready for recognition."""

    data: bytes
    name: str
    mime_type: str


@dataclass
class SourceObject:
    """One raw image XObject as stored in the PDF, before decoding."""

    xref: int
    name: str
    width: int
    height: int
    bits_per_component: int
    color_space: str
    filter: str
    data: bytes
    palette: Optional[bytes] = None
    palette_base: str = ""
    palette_size: int = 0
    predictor: int = 1
    smask: Optional[int] = None
    mask: Optional["SourceObject"] = None

    def describe(self) -> dict:
        return {
            "xref": self.xref,
            "name": self.name,
            "filter": self.filter,
            "color_space": self.color_space,
            "bits_per_component": self.bits_per_component,
            "width": self.width,
            "height": self.height,
        }


def unpack_samples(raw: bytes, width: int, height: int, bits: int, components: int = 1) -> np.ndarray:
    """Split a packed sample stream into a ``(height, width * components)`` array.

    Samples are read most-significant bit first and every row starts on a
    byte boundary.
    """

    row_bytes = (width * components * bits + 7) // 8
    expected = row_bytes * height
    buffer = np.frombuffer(raw, dtype=np.uint8)
    if buffer.size < expected:
        raise ValueError(f"pixel data too short: expected {expected} bytes, got {buffer.size}")
    rows = buffer[:expected].reshape(height, row_bytes)
    samples_per_row = width * components
    if bits == 8:
        return rows[:, :samples_per_row]

    bit_rows = np.unpackbits(rows, axis=1)[:, : samples_per_row * bits]
    weights = (1 << np.arange(bits - 1, -1, -1)).astype(np.uint16)
    grouped = bit_rows.reshape(height, samples_per_row, bits).astype(np.uint16)
    return (grouped * weights).sum(axis=2).astype(np.uint8)


def _opaque(rgb: np.ndarray) -> np.ndarray:
    height, width = rgb.shape[:2]
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    return np.concatenate([rgb.astype(np.uint8), alpha], axis=2)


def decode_gray(raw: bytes, width: int, height: int, bits: int) -> np.ndarray:
    """Decode ``/DeviceGray`` pixels into an RGBA array."""

    if bits == 1:
        gray = unpack_samples(raw, width, height, 1) * 255
    elif bits == 8:
        gray = unpack_samples(raw, width, height, 8)
    else:
        raise UnsupportedImageEncoding(f"unhandled bits-per-component {bits} for grayscale image")
    return _opaque(np.repeat(gray[:, :, None], 3, axis=2))


def decode_rgb(raw: bytes, width: int, height: int, bits: int) -> np.ndarray:
    """Decode ``/DeviceRGB`` pixels into an RGBA array."""

    if bits != 8:
        raise UnsupportedImageEncoding(f"unhandled bits-per-component {bits} for RGB image")
    samples = unpack_samples(raw, width, height, 8, components=3)
    return _opaque(samples.reshape(height, width, 3))


def decode_palette(raw: bytes, size: int) -> np.ndarray:
    """Turn packed RGB palette bytes into ``size`` opaque RGBA colours."""

    colours = np.zeros((size, 3), dtype=np.uint8)
    available = np.frombuffer(raw, dtype=np.uint8)[: size * 3]
    usable = available.size // 3
    colours[:usable] = available[: usable * 3].reshape(usable, 3)
    return _opaque(colours[None, :, :])[0]


def decode_indexed(raw: bytes, width: int, height: int, bits: int, palette: np.ndarray) -> np.ndarray:
    """Map packed palette indices through ``palette`` into an RGBA array."""

    if bits not in INDEXED_BITS:
        raise UnsupportedImageEncoding(f"unhandled bits-per-component {bits} for indexed image")
    indices = unpack_samples(raw, width, height, bits)
    return np.take(palette, indices, axis=0, mode="clip")


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _inflate(obj: SourceObject) -> bytes:
    if obj.predictor < 1:
        raise UnsupportedImageEncoding("unreadable decode parameters for zlib-compressed image")
    if obj.predictor > 1:
        raise UnsupportedImageEncoding(f"unhandled predictor {obj.predictor} for zlib-compressed image")
    return zlib.decompress(obj.data)


def decode_pixels(obj: SourceObject) -> Image.Image:
    """Decode a source object into an RGBA image, applying its soft mask."""

    if obj.filter == JPEG_FILTER:
        return Image.open(BytesIO(obj.data)).convert("RGBA")
    if obj.filter != FLATE_FILTER:
        raise UnsupportedImageEncoding(f"unhandled image filter {obj.filter or 'none'}")

    raw = _inflate(obj)
    if obj.color_space == "DeviceGray":
        rgba = decode_gray(raw, obj.width, obj.height, obj.bits_per_component)
    elif obj.color_space == "DeviceRGB":
        rgba = decode_rgb(raw, obj.width, obj.height, obj.bits_per_component)
    elif obj.color_space == "Indexed":
        if obj.palette_base != "DeviceRGB" or obj.palette is None:
            raise UnsupportedImageEncoding(f"unhandled indexed/palette image data (base {obj.palette_base or 'unknown'})")
        palette = decode_palette(obj.palette, obj.palette_size)
        rgba = decode_indexed(raw, obj.width, obj.height, obj.bits_per_component, palette)
    else:
        raise UnsupportedImageEncoding(f"unhandled zlib-compressed image data in colorspace {obj.color_space}")

    image = Image.fromarray(np.ascontiguousarray(rgba))
    if obj.mask is not None:
        image = apply_soft_mask(image, obj.mask)
    return image


def apply_soft_mask(image: Image.Image, mask: SourceObject) -> Image.Image:
    """Use the luminance of ``mask`` as the alpha channel of ``image``."""

    try:
        mask_image = decode_pixels(mask)
    except (UnsupportedImageEncoding, ValueError, OSError, zlib.error) as exc:
        logger.warning("soft mask could not be decoded, keeping image opaque: %s", exc, extra={"context": mask.describe()})
        return image
    alpha = mask_image.convert("L")
    if alpha.size != image.size:
        alpha = alpha.resize(image.size, Image.BILINEAR)
    image.putalpha(alpha)
    return image


def normalize(obj: SourceObject) -> Optional[NormalizedImage]:
    """Return an OCR-ready image for ``obj`` or ``None`` when it must be skipped."""

    logger.debug("reading image", extra={"context": obj.describe()})
    if obj.filter == JPEG_FILTER:
        return NormalizedImage(data=bytes(obj.data), name=obj.name, mime_type="image/jpeg")

    try:
        image = decode_pixels(obj)
    except UnsupportedImageEncoding as exc:
        logger.warning("%s", exc, extra={"context": obj.describe()})
        return None
    except (ValueError, zlib.error) as exc:
        logger.warning("corrupt image data: %s", exc, extra={"context": obj.describe()})
        return None
    return NormalizedImage(data=encode_png(image), name=obj.name, mime_type="image/png")
