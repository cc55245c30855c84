"""FastAPI entrypoint exposing the OCR node over HTTP."""
from __future__ import annotations

import mimetypes
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from .errors import MissingBinaryField, NodeOperationError, UnsupportedInputType
from .host import BinaryData, ExecutionContext, Item, OutputItem
from .logging_utils import setup_logging
from .node import TesseractNode

logger = setup_logging()
app = FastAPI(title="Tesseract OCR Node")
node = TesseractNode()

GENERIC_MIME_TYPES = {"", "application/octet-stream"}


class BinarySummary(BaseModel):
    file_name: str
    mime_type: str
    size: int


class OutputItemResponse(BaseModel):
    result: Dict[str, Any]
    paired_item: int
    binary: Dict[str, BinarySummary]
    error: Optional[Dict[str, Any]] = None


class OcrResponse(BaseModel):
    source: str
    operation: str
    items: List[OutputItemResponse]


def _build_response(source: str, operation: str, items: List[OutputItem]) -> OcrResponse:
    return OcrResponse(
        source=source,
        operation=operation,
        items=[
            OutputItemResponse(
                result=item.json,
                paired_item=item.paired_item,
                binary={name: BinarySummary(**value.summary()) for name, value in item.binary.items()},
                error=item.error,
            )
            for item in items
        ],
    )


def _detect_mime_type(filename: str, declared: Optional[str]) -> str:
    if declared and declared not in GENERIC_MIME_TYPES:
        return declared
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


@app.get("/health")
def health() -> dict:
    """Simple healthcheck endpoint."""

    return {"status": "ok"}


@app.post("/ocr", response_model=OcrResponse)
async def perform_ocr(
    file: UploadFile = File(...),
    operation: str = Form(default="ocr"),
    granularity: str = Form(default="words"),
    language: Optional[str] = Form(default=None),
    psm: Optional[str] = Form(default=None),
    dpi: Optional[int] = Form(default=None),
    whitelist: Optional[str] = Form(default=None),
    blacklist: Optional[str] = Form(default=None),
    timeout_ms: Optional[int] = Form(default=None),
    resize_factor: Optional[int] = Form(default=None),
    min_confidence: Optional[float] = Form(default=None),
    keep_binary: bool = Form(default=True),
    continue_on_fail: bool = Form(default=False),
    top: Optional[int] = Form(default=None),
    left: Optional[int] = Form(default=None),
    width: Optional[int] = Form(default=None),
    height: Optional[int] = Form(default=None),
):
    """Run the node on one uploaded image or PDF."""

    filename = file.filename or "upload"
    content = await file.read()
    item = Item(
        json={"file_name": filename},
        binary={"data": BinaryData(data=content, mime_type=_detect_mime_type(filename, file.content_type), file_name=filename)},
    )
    parameters: Dict[str, object] = {
        "operation": operation,
        "granularity": granularity,
        "language": language,
        "psm": psm,
        "dpi": dpi,
        "whitelist": whitelist,
        "blacklist": blacklist,
        "timeout_ms": timeout_ms,
        "resize_factor": resize_factor,
        "min_confidence": min_confidence,
        "keep_binary": keep_binary,
    }
    box = {"top": top, "left": left, "width": width, "height": height}
    if any(value is not None for value in box.values()):
        parameters["bounding_box"] = box
    parameters = {key: value for key, value in parameters.items() if value is not None}

    try:
        items = await node.execute_async(ExecutionContext([item], continue_on_fail=continue_on_fail), parameters)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except NodeOperationError as exc:
        if isinstance(exc.__cause__, (UnsupportedInputType, MissingBinaryField)):
            raise HTTPException(status_code=422, detail=exc.message) from exc
        logger.exception("OCR failed for %s", filename)
        raise HTTPException(status_code=500, detail=exc.message) from exc

    return _build_response(filename, operation, items)
