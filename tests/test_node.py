import csv

import pytest

from tesseract_node.config import OCRConfig
from tesseract_node.errors import NodeOperationError, UnsupportedInputType
from tesseract_node.host import BinaryData, ExecutionContext, Item
from tesseract_node.node import TesseractNode
from tests.samples import StubWorker, build_document, image_object, png_bytes


def _node(worker, languages=None, **config):
    def factory(language):
        if languages is not None:
            languages.append(language)
        return worker

    return TesseractNode(app_config=OCRConfig(**config), worker_factory=factory)


def _png_item(name="scan.png"):
    return Item(json={"name": name}, binary={"data": BinaryData(png_bytes(), "image/png", name)})


def _text_item():
    return Item(json={"name": "notes.txt"}, binary={"data": BinaryData(b"hello", "text/plain", "notes.txt")})


def test_single_png_item_yields_one_text_output():
    outputs = _node(StubWorker()).execute(ExecutionContext([_png_item()]), {"operation": "ocr"})

    assert len(outputs) == 1
    [output] = outputs
    assert output.paired_item == 0
    assert output.json["text"] == "stub text"
    assert "confidence" in output.json
    assert output.as_dict()["pairedItem"] == 0


def test_two_page_pdf_in_boxes_mode_yields_one_output_per_image():
    pytest.importorskip("fitz")
    first = image_object(2, 1, "/DeviceGray", 8, bytes([0, 255]))
    second = image_object(1, 1, "/DeviceRGB", 8, bytes([1, 2, 3]))
    pdf = build_document([first, second], pages=[[0], [1]])
    item = Item(binary={"data": BinaryData(pdf, "application/pdf", "doc.pdf")})

    outputs = _node(StubWorker()).execute(
        ExecutionContext([item]), {"operation": "boxes", "granularity": "words"}
    )

    assert len(outputs) == 2
    assert [output.paired_item for output in outputs] == [0, 0]
    assert [output.binary["ocr"].file_name for output in outputs] == ["Object3", "Object4"]
    for output in outputs:
        assert [word["text"] for word in output.json["blocks"]] == ["Hi", "A", "B", "Go"]


def test_engine_is_configured_once_for_the_whole_invocation():
    worker = StubWorker()
    languages = []
    node = _node(worker, languages)
    parameters = {"language": "deu", "psm": "SINGLE_LINE", "dpi": 300, "whitelist": "abc"}

    node.execute(ExecutionContext([_png_item("a.png"), _png_item("b.png")]), parameters)

    assert languages == ["deu"]
    assert worker.parameters == {
        "tessedit_pageseg_mode": 7,
        "user_defined_dpi": 300,
        "tessedit_char_whitelist": "abc",
        "tessedit_char_blacklist": None,
    }
    assert len(worker.calls) == 2


def test_failure_stops_the_run_with_the_item_index():
    node = _node(StubWorker())
    with pytest.raises(NodeOperationError) as excinfo:
        node.execute(ExecutionContext([_png_item(), _text_item()]), {})

    assert excinfo.value.item_index == 1
    assert isinstance(excinfo.value.__cause__, UnsupportedInputType)
    assert excinfo.value.details["mime_type"] == "text/plain"


@pytest.mark.parametrize("from_context", [True, False])
def test_continue_on_fail_reports_the_error_and_goes_on(from_context):
    items = [_text_item(), _png_item()]
    context = ExecutionContext(items, continue_on_fail=from_context)
    parameters = {} if from_context else {"continue_on_fail": True}

    outputs = _node(StubWorker()).execute(context, parameters)

    assert [output.paired_item for output in outputs] == [0, 1]
    failed, succeeded = outputs
    assert failed.error["type"] == "UnsupportedInputType"
    assert failed.error["message"].startswith("Binary property data must be either an image or a PDF document")
    assert failed.json == {"name": "notes.txt"}
    assert succeeded.error is None
    assert succeeded.json["text"] == "stub text"


def test_timeout_under_continue_on_fail_keeps_the_marker_and_the_error():
    context = ExecutionContext([_png_item()], continue_on_fail=True)
    outputs = _node(StubWorker(delay=0.3)).execute(context, {"timeout_ms": 1})

    assert len(outputs) == 2
    assert outputs[0].json == {"timeout": True}
    assert outputs[1].error["type"] == "ItemTimeoutError"
    assert outputs[1].error["details"] == {"images": ["scan.png"]}


def test_invalid_parameters_are_rejected_before_any_item_runs():
    worker = StubWorker()
    with pytest.raises(ValueError) as excinfo:
        _node(worker).execute(ExecutionContext([_png_item()]), {"psm": "SIDEWAYS", "colour": "red"})

    message = str(excinfo.value)
    assert "Unknown parameter: colour." in message
    assert "psm must be one of" in message
    assert worker.calls == []


def test_metrics_are_written_when_configured(tmp_path):
    metrics_file = tmp_path / "metrics" / "runs.csv"
    _node(StubWorker(), metrics_file=metrics_file).execute(ExecutionContext([_png_item()]), {})

    with metrics_file.open(encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == 1
    assert rows[0]["image"] == "scan.png"
    assert rows[0]["timed_out"] == "False"
