"""Exceptions raised by the OCR node."""
from __future__ import annotations

from typing import Dict, Optional


class NodeError(Exception):
    """Base error carrying the failing item index and structured details."""

    def __init__(self, message: str, item_index: Optional[int] = None, details: Optional[Dict[str, object]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_index = item_index
        self.details: Dict[str, object] = dict(details or {})

    def as_dict(self) -> Dict[str, object]:
        """Return a JSON-friendly description of the error."""

        payload: Dict[str, object] = {"message": self.message, "type": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingBinaryField(NodeError):
    """The item has no attachment under the configured field name."""


class UnsupportedInputType(NodeError):
    """The attachment is neither an image nor a PDF document."""

    def __init__(self, field_name: str, mime_type: str, item_index: Optional[int] = None) -> None:
        super().__init__(
            f"Binary property {field_name} must be either an image or a PDF document, was {mime_type} instead",
            item_index=item_index,
            details={"field": field_name, "mime_type": mime_type},
        )
        self.field_name = field_name
        self.mime_type = mime_type


class UnsupportedImageEncoding(NodeError):
    """A PDF image uses a filter/colorspace/bit depth combination we cannot decode."""


class ItemTimeoutError(NodeError):
    """At least one image of the item exceeded the recognition deadline."""


class RecognitionCancelled(NodeError):
    """The engine call was aborted because its cancellation token fired."""


class EngineTerminated(NodeError):
    """The worker was terminated and cannot accept more work."""


class NodeOperationError(NodeError):
    """Hard failure of the whole run, always tagged with the offending item index."""

    def __init__(self, cause: BaseException, item_index: int) -> None:
        details = cause.details if isinstance(cause, NodeError) else {}
        super().__init__(str(cause) or type(cause).__name__, item_index=item_index, details=details)
        self.__cause__ = cause
