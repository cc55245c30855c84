"""Entry point for running the OCR node from the command line."""
from __future__ import annotations

from tesseract_node.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
