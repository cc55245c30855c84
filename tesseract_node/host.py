"""In-memory model of the workflow host: items, attachments and the binary store."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import MissingBinaryField


@dataclass(frozen=True)
class BinaryData:
    """One named attachment of an item."""

    data: bytes
    mime_type: str
    file_name: str = ""

    def summary(self) -> Dict[str, object]:
        """Describe the attachment without its payload."""

        return {"file_name": self.file_name, "mime_type": self.mime_type, "size": len(self.data)}


@dataclass
class Item:
    """Unit of work handed to the node by the host."""

    json: Dict[str, object] = field(default_factory=dict)
    binary: Dict[str, BinaryData] = field(default_factory=dict)


@dataclass
class OutputItem:
    """Result record paired back to the input item it came from."""

    json: Dict[str, object]
    binary: Dict[str, BinaryData]
    paired_item: int
    error: Optional[Dict[str, object]] = None

    def as_dict(self) -> Dict[str, object]:
        """Serialise the item with binary payloads summarised."""

        payload: Dict[str, object] = {
            "json": self.json,
            "binary": {name: value.summary() for name, value in self.binary.items()},
            "pairedItem": self.paired_item,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class ExecutionContext:
    """Capabilities the host lends to one node invocation."""

    def __init__(
        self,
        items: Sequence[Item],
        continue_on_fail: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.items: List[Item] = list(items)
        self.continue_on_fail = continue_on_fail
        self.logger = logger or logging.getLogger("tesseract_node")

    def _attachment(self, item_index: int, field_name: str) -> BinaryData:
        binary = self.items[item_index].binary
        if field_name not in binary:
            raise MissingBinaryField(
                f"Item has no binary property named {field_name}",
                item_index=item_index,
                details={"field": field_name, "available": sorted(binary)},
            )
        return binary[field_name]

    def get_binary_buffer(self, item_index: int, field_name: str) -> bytes:
        """Return the raw bytes stored under ``field_name``."""

        return self._attachment(item_index, field_name).data

    def get_binary_metadata(self, item_index: int, field_name: str) -> BinaryData:
        """Return the attachment descriptor (mime type and file name)."""

        return self._attachment(item_index, field_name)

    @staticmethod
    def prepare_binary_data(data: bytes, file_name: str, mime_type: str) -> BinaryData:
        return BinaryData(data=data, mime_type=mime_type, file_name=file_name)
