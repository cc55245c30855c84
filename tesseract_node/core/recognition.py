"""Run one normalised image through the engine and shape the output item."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from ..config import NodeOptions
from ..errors import EngineTerminated, RecognitionCancelled
from ..host import ExecutionContext, Item, OutputItem
from .layout import Block, PageText, element_entry, flatten_blocks
from .ocr_engine import CancellationToken, EngineSession
from .raster import NormalizedImage

logger = logging.getLogger(__name__)

OCR_BINARY_FIELD = "ocr"


@dataclass(frozen=True)
class RecognitionTimeout:
    """Marker for a recognition that missed its deadline."""

    def as_json(self) -> Dict[str, object]:
        return {"timeout": True}


TIMEOUT = RecognitionTimeout()

RecognitionResult = Union[RecognitionTimeout, PageText, List[Block]]


def is_timeout(output: OutputItem) -> bool:
    return output.json.get("timeout") is True


def passes_confidence(result: RecognitionResult, min_confidence: float) -> bool:
    """Whole-image acceptance for plain-text results; timeouts always pass."""

    if isinstance(result, PageText):
        return result.confidence >= min_confidence
    return True


def result_json(result: RecognitionResult, granularity: Optional[str], min_confidence: float) -> Dict[str, object]:
    """Build the output json for a result.

    ``granularity`` is ``None`` for plain-text mode, otherwise the layout level
    whose entries are reported, minus those under ``min_confidence``.
    """

    if isinstance(result, RecognitionTimeout):
        return result.as_json()
    if isinstance(result, PageText):
        return {"text": result.text, "confidence": result.confidence}
    level = flatten_blocks(result).level(granularity or "words")
    return {"blocks": [element_entry(element) for element in level if element.confidence >= min_confidence]}


class Recognizer:
    """Per-invocation orchestrator sharing one engine session across items."""

    def __init__(
        self,
        context: ExecutionContext,
        session: EngineSession,
        options: NodeOptions,
        max_workers: int = 4,
    ) -> None:
        self.context = context
        self.session = session
        self.options = options
        self.metrics: List[Dict[str, object]] = []
        self._slots = asyncio.Semaphore(max_workers)

    @property
    def output_selector(self) -> str:
        return "text" if self.options.operation == "ocr" else "blocks"

    async def run_engine(self, image: NormalizedImage) -> RecognitionResult:
        """Recognise ``image`` within ``timeout_ms``.

        On expiry the token is cancelled and the shared worker is terminated,
        since the engine cannot abort a single call. The session rebuilds the
        worker for whatever comes next. A worker terminated by a sibling's
        timeout after this call picked it up is replaced once.
        """

        async with self._slots:
            token = CancellationToken(self.options.timeout_ms)
            worker = self.session.worker
            try:
                return await self._call(worker, image, token)
            except EngineTerminated:
                logger.info("worker terminated before recognition started", extra={"context": {"image": image.name}})
                return await self._call(self.session.worker, image, token)

    async def _call(self, worker, image: NormalizedImage, token: CancellationToken) -> RecognitionResult:
        call = asyncio.to_thread(worker.recognize, image.data, self.options.bounding_box, self.output_selector, token)
        if not self.options.timeout_ms:
            return await call
        try:
            return await asyncio.wait_for(call, token.remaining())
        except (asyncio.TimeoutError, RecognitionCancelled):
            token.cancel()
            self.session.terminate(worker)
            logger.warning(
                "recognition timed out",
                extra={"context": {"image": image.name, "timeout_ms": self.options.timeout_ms}},
            )
            return TIMEOUT

    async def recognize(self, item: Item, item_index: int, image: NormalizedImage) -> Optional[OutputItem]:
        """Return the output item for ``image``, or ``None`` when confidence filtering drops it."""

        logger.debug("processing image", extra={"context": {"image": image.name, "size": len(image.data)}})
        started = time.perf_counter()
        result = await self.run_engine(image)
        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug("image processed", extra={"context": {"image": image.name, "duration_ms": round(duration_ms, 1)}})

        granularity = None if self.options.operation == "ocr" else self.options.granularity
        kept = passes_confidence(result, self.options.min_confidence)
        self.metrics.append(
            {
                "item_index": item_index,
                "image": image.name,
                "mime_type": image.mime_type,
                "duration_ms": round(duration_ms, 1),
                "timed_out": result is TIMEOUT,
                "kept": kept,
            }
        )
        if not kept:
            return None

        binary = dict(item.binary)
        if self.options.keep_binary:
            binary[OCR_BINARY_FIELD] = self.context.prepare_binary_data(image.data, image.name, image.mime_type)
        return OutputItem(
            json=result_json(result, granularity, self.options.min_confidence),
            binary=binary,
            paired_item=item_index,
        )
