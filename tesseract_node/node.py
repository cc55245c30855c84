"""The OCR node: recognise text in images and PDFs attached to items."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Mapping, Optional

from .config import NodeOptions, OCRConfig, config
from .core.ocr_engine import EngineSession, TesseractWorker, create_worker
from .core.recognition import Recognizer
from .core.sources import resolve_images
from .core.worker import process_item
from .errors import NodeError, NodeOperationError
from .host import ExecutionContext, OutputItem
from .logging_utils import record_metrics, summarize_metrics

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[str], TesseractWorker]


def _error_payload(exc: Exception) -> dict:
    if isinstance(exc, NodeError):
        return exc.as_dict()
    return {"message": str(exc) or type(exc).__name__, "type": type(exc).__name__}


class TesseractNode:
    """Workflow node that runs Tesseract over every item's attachment.

    One engine worker is shared by all items of an invocation. Each item may
    yield zero, one or many output items, all paired back to its index.
    """

    def __init__(self, app_config: Optional[OCRConfig] = None, worker_factory: Optional[WorkerFactory] = None) -> None:
        self.config = app_config or config
        self._worker_factory = worker_factory or self._default_worker

    def _default_worker(self, language: str) -> TesseractWorker:
        return create_worker(language, self.config.tesseract_cmd)

    async def execute_async(self, context: ExecutionContext, parameters: Mapping[str, object]) -> List[OutputItem]:
        options = NodeOptions.from_parameters(parameters, self.config.defaults)
        continue_on_fail = context.continue_on_fail or options.continue_on_fail
        session = EngineSession(lambda: self._worker_factory(options.language), options.engine_parameters())
        recognizer = Recognizer(context, session, options, max_workers=self.config.max_workers)

        output: List[OutputItem] = []
        for item_index, item in enumerate(context.items):
            try:
                images = await resolve_images(
                    context,
                    item_index,
                    options.input_field,
                    options.resize_factor,
                    self.config.pdf_image_strategy,
                )
                logger.debug("images fetched", extra={"context": {"item_index": item_index, "count": len(images)}})
                await process_item(recognizer, item, item_index, images, output)
            except Exception as exc:
                if not continue_on_fail:
                    raise NodeOperationError(exc, item_index) from exc
                context.logger.error("item %s failed: %s", item_index, exc, extra={"context": {"item_index": item_index}})
                output.append(
                    OutputItem(
                        json=dict(item.json),
                        binary=dict(item.binary),
                        paired_item=item_index,
                        error=_error_payload(exc),
                    )
                )

        record_metrics(recognizer.metrics, self.config.metrics_file)
        logger.info("run finished", extra={"context": summarize_metrics(recognizer.metrics)})
        if session.restarts:
            logger.info("engine was restarted %s time(s) after timeouts", session.restarts)
        return output

    def execute(self, context: ExecutionContext, parameters: Mapping[str, object]) -> List[OutputItem]:
        """Synchronous entry point for hosts without an event loop."""

        return asyncio.run(self.execute_async(context, parameters))
