"""Turn an item's attachment into the list of images to recognise."""
from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import List

from PIL import Image

from ..errors import UnsupportedInputType
from ..host import ExecutionContext
from .pdf_images import load_source_objects
from .raster import NormalizedImage, normalize

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def resize_image(payload: bytes, resize_factor: int) -> bytes:
    """Scale an encoded image by ``resize_factor`` percent and re-encode it as JPEG."""

    with Image.open(BytesIO(payload)) as image:
        width = max(1, round(image.width * resize_factor / 100))
        height = max(1, round(image.height * resize_factor / 100))
        resized = image.convert("RGB").resize((width, height), Image.BICUBIC)
    buffer = BytesIO()
    resized.save(buffer, format="JPEG")
    return buffer.getvalue()


async def images_from_pdf(payload: bytes, strategy: str = "objects") -> List[NormalizedImage]:
    """Enumerate and normalise every top-level image of a PDF, in discovery order."""

    objects = await asyncio.to_thread(load_source_objects, payload, strategy)
    logger.debug("pdf images discovered", extra={"context": {"count": len(objects), "strategy": strategy}})
    normalized = await asyncio.gather(*(asyncio.to_thread(normalize, obj) for obj in objects))
    return [image for image in normalized if image is not None]


async def resolve_images(
    context: ExecutionContext,
    item_index: int,
    field_name: str,
    resize_factor: int = 100,
    strategy: str = "objects",
) -> List[NormalizedImage]:
    """Return the images held by ``field_name`` of item ``item_index``.

    Images are returned as-is (or resized), PDFs are unpacked into their
    embedded images. Any other mime type raises :class:`UnsupportedInputType`.
    """

    logger.debug("getting images", extra={"context": {"item_index": item_index, "field": field_name}})
    metadata = context.get_binary_metadata(item_index, field_name)
    payload = context.get_binary_buffer(item_index, field_name)
    name = metadata.file_name or field_name

    if metadata.mime_type.startswith("image/"):
        if resize_factor == 100:
            return [NormalizedImage(data=payload, name=name, mime_type=metadata.mime_type)]
        resized = await asyncio.to_thread(resize_image, payload, resize_factor)
        return [NormalizedImage(data=resized, name=name, mime_type="image/jpeg")]

    if metadata.mime_type == PDF_MIME_TYPE:
        return await images_from_pdf(payload, strategy)

    raise UnsupportedInputType(field_name, metadata.mime_type, item_index=item_index)
