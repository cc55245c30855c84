"""Fan one item out over its images and gather the results back."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence

from ..errors import ItemTimeoutError, NodeError
from ..host import Item, OutputItem
from .raster import NormalizedImage
from .recognition import Recognizer, is_timeout

logger = logging.getLogger(__name__)


async def process_item(
    recognizer: Recognizer,
    item: Item,
    item_index: int,
    images: Sequence[NormalizedImage],
    output: List[OutputItem],
) -> List[OutputItem]:
    """Recognise every image of one item concurrently.

    Results are appended to ``output`` in image-discovery order once all of
    them are done. Afterwards, a timed-out or failed image turns into an
    error for the whole item, so siblings are never lost.
    """

    results = await asyncio.gather(
        *(recognizer.recognize(item, item_index, image) for image in images),
        return_exceptions=True,
    )
    produced = [result for result in results if isinstance(result, OutputItem)]
    output.extend(produced)

    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        error = failures[0]
        if isinstance(error, NodeError) and error.item_index is None:
            error.item_index = item_index
        raise error

    timed_out = [image.name for image, result in zip(images, results) if isinstance(result, OutputItem) and is_timeout(result)]
    if timed_out:
        raise ItemTimeoutError(
            f"Recognition timed out for {len(timed_out)} of {len(images)} image(s)",
            item_index=item_index,
            details={"images": timed_out},
        )
    logger.debug("item processed", extra={"context": {"item_index": item_index, "outputs": len(produced)}})
    return produced
