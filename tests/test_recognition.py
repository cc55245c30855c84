import asyncio

from tesseract_node.config import BoundingBox, NodeOptions
from tesseract_node.core.layout import PageText, parse_hocr
from tesseract_node.core.ocr_engine import EngineSession
from tesseract_node.core.raster import NormalizedImage
from tesseract_node.core.recognition import TIMEOUT, Recognizer, passes_confidence, result_json
from tesseract_node.errors import EngineTerminated
from tesseract_node.host import BinaryData, ExecutionContext, Item
from tests.samples import HOCR, StubWorker, png_bytes


def _recognizer(worker, **options):
    item = Item(json={"id": 1}, binary={"data": BinaryData(png_bytes(), "image/png", "scan.png")})
    context = ExecutionContext([item])
    session = EngineSession(lambda: worker, NodeOptions(**options).engine_parameters())
    return Recognizer(context, session, NodeOptions(**options)), item


def _image(data=b"png-bytes", name="scan.png"):
    return NormalizedImage(data=data, name=name, mime_type="image/png")


def test_confidence_filter_keeps_results_at_the_threshold():
    assert passes_confidence(PageText("a", 50.0), 50.0)
    assert not passes_confidence(PageText("a", 49.9), 50.0)
    assert passes_confidence(TIMEOUT, 100.0)
    assert passes_confidence(parse_hocr(HOCR), 100.0)


def test_result_json_drops_low_confidence_elements():
    blocks = parse_hocr(HOCR)
    words = result_json(blocks, "words", 75.0)["blocks"]
    assert [word["text"] for word in words] == ["Hi", "Go"]
    assert result_json(blocks, "paragraphs", 0)["blocks"][1]["language"] == "deu"
    assert result_json(TIMEOUT, "words", 0) == {"timeout": True}


def test_text_result_is_paired_and_carries_the_processed_image():
    recognizer, item = _recognizer(StubWorker())
    output = asyncio.run(recognizer.recognize(item, 0, _image()))

    assert output.paired_item == 0
    assert output.json == {"text": "stub text", "confidence": 90.0}
    assert output.binary["ocr"].data == b"png-bytes"
    assert output.binary["data"] is item.binary["data"]
    assert recognizer.metrics[0]["kept"] is True


def test_keep_binary_false_leaves_attachments_untouched():
    recognizer, item = _recognizer(StubWorker(), keep_binary=False)
    output = asyncio.run(recognizer.recognize(item, 0, _image()))
    assert set(output.binary) == {"data"}


def test_low_confidence_image_is_dropped():
    worker = StubWorker(results={"text": PageText("blurry", 20.0)})
    recognizer, item = _recognizer(worker, min_confidence=50.0)

    assert asyncio.run(recognizer.recognize(item, 0, _image())) is None
    assert recognizer.metrics[0]["kept"] is False


def test_boxes_operation_requests_blocks_with_the_bounding_box():
    worker = StubWorker()
    box = BoundingBox(top=1, left=2, width=3, height=4)
    recognizer, item = _recognizer(worker, operation="boxes", granularity="lines", bounding_box=box)

    output = asyncio.run(recognizer.recognize(item, 0, _image()))

    assert worker.calls[0]["output"] == "blocks"
    assert worker.calls[0]["rectangle"] == box
    assert [line["text"] for line in output.json["blocks"]] == ["Hi A", "B", "Go"]


def test_timeout_terminates_the_engine_once_and_yields_a_marker():
    worker = StubWorker(delay=0.3)
    recognizer, item = _recognizer(worker, timeout_ms=1, min_confidence=100.0)

    output = asyncio.run(recognizer.recognize(item, 0, _image()))

    assert output.json == {"timeout": True}
    assert worker.terminate_calls == 1
    assert recognizer.session.restarts == 1
    assert recognizer.metrics[0]["timed_out"] is True


def test_engine_is_recreated_after_a_timeout():
    workers = [StubWorker(delay=0.3), StubWorker()]
    item = Item(binary={"data": BinaryData(b"x", "image/png")})
    options = NodeOptions(timeout_ms=50)
    session = EngineSession(lambda: workers.pop(0), options.engine_parameters())
    recognizer = Recognizer(ExecutionContext([item]), session, options)

    async def run_twice():
        first = await recognizer.recognize(item, 0, _image())
        second = await recognizer.recognize(item, 0, _image())
        return first, second

    first, second = asyncio.run(run_twice())
    assert first.json == {"timeout": True}
    assert second.json["text"] == "stub text"
    assert workers == []


def test_worker_terminated_by_a_sibling_is_replaced_once():
    first, second = StubWorker(), StubWorker()
    workers = [first, second]
    item = Item(binary={"data": BinaryData(b"x", "image/png")})
    options = NodeOptions(timeout_ms=5000)
    session = EngineSession(lambda: workers.pop(0), options.engine_parameters())

    def terminated_underneath(image):
        session.terminate(first)
        raise EngineTerminated("Worker was terminated; create a new one")

    first.results["text"] = terminated_underneath
    recognizer = Recognizer(ExecutionContext([item]), session, options)

    output = asyncio.run(recognizer.recognize(item, 0, _image()))

    assert output.json["text"] == "stub text"
    assert len(first.calls) == 1
    assert len(second.calls) == 1
    assert session.restarts == 1
    assert second.parameters == options.engine_parameters()
