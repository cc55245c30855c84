"""Command-line interface for running the OCR node over local files."""
from __future__ import annotations

import argparse
import json
import mimetypes
from pathlib import Path
from typing import Dict, List, Sequence

from .config import GRANULARITIES, OPERATIONS, PAGE_SEGMENTATION_MODES, load_config
from .errors import NodeOperationError
from .host import BinaryData, ExecutionContext, Item
from .logging_utils import setup_logging
from .node import TesseractNode


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Tesseract OCR node over images and PDFs")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yml. Defaults to the file next to the tesseract_node package.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    run_parser = subparsers.add_parser("run", help="Recognise text; every file becomes one input item")
    run_parser.add_argument("files", nargs="+", type=Path, help="Images or PDF documents")
    run_parser.add_argument("--operation", choices=OPERATIONS, help="Plain text (ocr) or boxes.")
    run_parser.add_argument("--granularity", choices=GRANULARITIES, help="Level reported by the boxes operation.")
    run_parser.add_argument("--language", help="Tesseract language code(s), e.g. eng or eng+deu.")
    run_parser.add_argument("--psm", choices=sorted(PAGE_SEGMENTATION_MODES), help="Page segmentation mode.")
    run_parser.add_argument("--dpi", type=int, help="Override the image resolution.")
    run_parser.add_argument("--whitelist", help="Only recognise these characters.")
    run_parser.add_argument("--blacklist", help="Never recognise these characters.")
    run_parser.add_argument("--timeout-ms", type=int, help="Per-image recognition deadline (0 = none).")
    run_parser.add_argument("--resize-factor", type=int, help="Scale plain images by this percentage.")
    run_parser.add_argument("--min-confidence", type=float, help="Drop results below this confidence (0-100).")
    run_parser.add_argument(
        "--bbox",
        nargs=4,
        type=int,
        metavar=("TOP", "LEFT", "WIDTH", "HEIGHT"),
        help="Only recognise this region of each image.",
    )
    run_parser.add_argument("--no-binary", action="store_true", help="Do not attach the processed image.")
    run_parser.add_argument("--continue-on-fail", action="store_true", help="Report failed items instead of stopping.")
    run_parser.add_argument("--json-output", type=Path, help="Also write the result to this JSON file.")
    return parser


def _items_from_paths(paths: Sequence[Path]) -> List[Item]:
    items: List[Item] = []
    for path in paths:
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        items.append(
            Item(
                json={"source": str(path)},
                binary={"data": BinaryData(data=path.read_bytes(), mime_type=mime_type, file_name=path.name)},
            )
        )
    return items


def _parameters(args: argparse.Namespace) -> Dict[str, object]:
    parameters: Dict[str, object] = {
        "operation": args.operation,
        "granularity": args.granularity,
        "language": args.language,
        "psm": args.psm,
        "dpi": args.dpi,
        "whitelist": args.whitelist,
        "blacklist": args.blacklist,
        "timeout_ms": args.timeout_ms,
        "resize_factor": args.resize_factor,
        "min_confidence": args.min_confidence,
    }
    if args.bbox:
        top, left, width, height = args.bbox
        parameters["bounding_box"] = {"top": top, "left": left, "width": width, "height": height}
    if args.no_binary:
        parameters["keep_binary"] = False
    return {key: value for key, value in parameters.items() if value is not None}


def handle_run(args: argparse.Namespace, node: TesseractNode) -> List[dict]:
    context = ExecutionContext(_items_from_paths(args.files), continue_on_fail=args.continue_on_fail)
    return [item.as_dict() for item in node.execute(context, _parameters(args))]


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    app_config = load_config(args.config)
    logger = setup_logging(app_config.log_file, app_config.log_level)

    missing = [path for path in args.files if not path.is_file()]
    if missing:
        parser.error("File(s) not found: " + ", ".join(str(path) for path in missing))

    try:
        results = handle_run(args, TesseractNode(app_config))
    except ValueError as exc:
        parser.error(str(exc))
    except NodeOperationError as exc:
        logger.error("item %s failed: %s", exc.item_index, exc)
        return 1

    rendered = json.dumps(results, ensure_ascii=False, indent=2)
    print(rendered)
    if args.json_output:
        args.json_output.write_text(rendered, encoding="utf-8")
        logger.info("Result written to %s", args.json_output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
