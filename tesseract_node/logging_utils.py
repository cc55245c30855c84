"""Logging setup and per-image run metrics for the OCR node."""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .config import config
from .logging_config import configure_logging

METRIC_FIELDS = ("item_index", "image", "mime_type", "duration_ms", "timed_out", "kept")


def setup_logging(log_file: Optional[Path] = None, level: Optional[str] = None) -> logging.Logger:
    """Configure the root logger with file and console handlers."""

    configure_logging(log_file or config.log_file, level or config.log_level)
    return logging.getLogger("tesseract_node")


def record_metrics(rows: List[Dict[str, object]], metrics_file: Optional[Path] = None) -> None:
    """Append one CSV row per recognised image; columns follow ``METRIC_FIELDS``."""

    path = metrics_file or config.metrics_file
    if path is None or not rows:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_header = not path.exists() or path.stat().st_size == 0

    with path.open("a", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=METRIC_FIELDS, extrasaction="ignore")
        if write_header:
            writer.writeheader()
        writer.writerows(rows)


def summarize_metrics(rows: List[Dict[str, object]]) -> Dict[str, object]:
    """Counts and timings of one invocation, for the closing log line."""

    durations = [float(row.get("duration_ms", 0.0)) for row in rows]
    return {
        "images": len(rows),
        "timed_out": sum(1 for row in rows if row.get("timed_out")),
        "dropped": sum(1 for row in rows if not row.get("kept", True)),
        "total_ms": round(sum(durations), 1),
        "slowest_ms": max(durations, default=0.0),
    }
