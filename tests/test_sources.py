import asyncio
from io import BytesIO

import pytest
from PIL import Image

from tesseract_node.core.sources import resize_image, resolve_images
from tesseract_node.errors import MissingBinaryField, UnsupportedInputType
from tesseract_node.host import BinaryData, ExecutionContext, Item
from tests.samples import build_document, image_object, png_bytes


def _context(data: bytes, mime_type: str, file_name: str = "scan") -> ExecutionContext:
    return ExecutionContext([Item(json={}, binary={"data": BinaryData(data, mime_type, file_name)})])


def test_plain_image_is_returned_unchanged():
    payload = png_bytes()
    [image] = asyncio.run(resolve_images(_context(payload, "image/png", "scan.png"), 0, "data"))
    assert image.data == payload
    assert image.mime_type == "image/png"
    assert image.name == "scan.png"


def test_resize_factor_scales_and_reencodes_as_jpeg():
    [image] = asyncio.run(resolve_images(_context(png_bytes((40, 20)), "image/png"), 0, "data", resize_factor=50))
    assert image.mime_type == "image/jpeg"
    with Image.open(BytesIO(image.data)) as decoded:
        assert decoded.format == "JPEG"
        assert decoded.size == (20, 10)


def test_resize_flattens_alpha():
    buffer = BytesIO()
    Image.new("RGBA", (10, 10), (0, 0, 0, 0)).save(buffer, format="PNG")
    with Image.open(BytesIO(resize_image(buffer.getvalue(), 200))) as decoded:
        assert decoded.mode == "RGB"
        assert decoded.size == (20, 20)


def test_pdf_attachment_is_unpacked_into_its_images():
    pytest.importorskip("fitz")
    first = image_object(2, 1, "/DeviceGray", 8, bytes([0, 255]))
    second = image_object(1, 1, "/DeviceRGB", 8, bytes([1, 2, 3]))
    pdf = build_document([first, second], pages=[[0], [1]])

    images = asyncio.run(resolve_images(_context(pdf, "application/pdf"), 0, "data"))
    assert [image.mime_type for image in images] == ["image/png", "image/png"]
    assert [image.name for image in images] == ["Object3", "Object4"]


def test_other_mime_types_are_rejected():
    with pytest.raises(UnsupportedInputType) as excinfo:
        asyncio.run(resolve_images(_context(b"hello", "text/plain"), 0, "data"))
    assert str(excinfo.value) == (
        "Binary property data must be either an image or a PDF document, was text/plain instead"
    )
    assert excinfo.value.item_index == 0


def test_missing_field_is_reported():
    with pytest.raises(MissingBinaryField) as excinfo:
        asyncio.run(resolve_images(_context(png_bytes(), "image/png"), 0, "attachment"))
    assert excinfo.value.details["available"] == ["data"]
