"""Tesseract engine boundary: workers, parameters and cancellation."""
from __future__ import annotations

import logging
import shlex
import threading
import time
from io import BytesIO
from typing import Callable, Dict, List, Optional, Union

import pytesseract
from pytesseract import Output
from PIL import Image

from ..config import BoundingBox
from ..errors import EngineTerminated, RecognitionCancelled
from .layout import Block, PageText, parse_hocr, text_from_data

logger = logging.getLogger(__name__)

ENGINE_PARAMETERS = (
    "tessedit_pageseg_mode",
    "user_defined_dpi",
    "tessedit_char_whitelist",
    "tessedit_char_blacklist",
)

OUTPUTS = ("text", "blocks")

_TIMEOUT_MESSAGE = "Tesseract process timeout"


class CancellationToken:
    """Deadline plus an explicit cancel flag, checked by the engine boundary."""

    def __init__(self, timeout_ms: int = 0) -> None:
        self.timeout_ms = timeout_ms
        self._deadline = time.monotonic() + timeout_ms / 1000 if timeout_ms else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float:
        """Seconds left before the deadline; 0 when there is no deadline."""

        if self._deadline is None:
            return 0
        return max(self._deadline - time.monotonic(), 0.001)


class TesseractWorker:
    """One configured Tesseract instance driven through pytesseract."""

    def __init__(self, language: str = "eng", tesseract_cmd: str = "") -> None:
        self.language = language
        self.parameters: Dict[str, object] = {}
        self.terminated = False
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def set_parameters(self, parameters: Dict[str, object]) -> None:
        """Store engine variables; ``None`` values clear a variable."""

        unknown = sorted(set(parameters) - set(ENGINE_PARAMETERS))
        if unknown:
            raise ValueError(f"Unsupported engine parameters: {', '.join(unknown)}")
        for key, value in parameters.items():
            if value is None or value == "":
                self.parameters.pop(key, None)
            else:
                self.parameters[key] = value

    def build_config(self) -> str:
        """Translate the stored variables to tesseract command-line options."""

        options: List[str] = []
        if "tessedit_pageseg_mode" in self.parameters:
            options.append(f"--psm {int(self.parameters['tessedit_pageseg_mode'])}")
        if "user_defined_dpi" in self.parameters:
            options.append(f"--dpi {int(self.parameters['user_defined_dpi'])}")
        for key in ("tessedit_char_whitelist", "tessedit_char_blacklist"):
            if key in self.parameters:
                options.append("-c " + shlex.quote(f"{key}={self.parameters[key]}"))
        return " ".join(options)

    def recognize(
        self,
        image: bytes,
        rectangle: Optional[BoundingBox] = None,
        output: str = "text",
        token: Optional[CancellationToken] = None,
    ) -> Union[PageText, List[Block]]:
        """Recognise ``image``; blocking, meant to run in a worker thread."""

        if self.terminated:
            raise EngineTerminated("Worker was terminated; create a new one")
        if output not in OUTPUTS:
            raise ValueError(f"Unknown output selector: {output}")
        token = token or CancellationToken()
        if token.cancelled:
            raise RecognitionCancelled("Recognition cancelled before start")

        pil_image = Image.open(BytesIO(image))
        offset = (0, 0)
        if rectangle is not None:
            pil_image = pil_image.crop(rectangle.as_box())
            offset = (rectangle.left, rectangle.top)

        config = self.build_config()
        try:
            if output == "text":
                data = pytesseract.image_to_data(
                    pil_image, lang=self.language, config=config, output_type=Output.DICT, timeout=token.remaining()
                )
                return text_from_data(data)
            hocr = pytesseract.image_to_pdf_or_hocr(
                pil_image,
                lang=self.language,
                config=f"{config} -c hocr_char_boxes=1".strip(),
                extension="hocr",
                timeout=token.remaining(),
            )
            return parse_hocr(hocr, offset=offset)
        except RuntimeError as exc:
            if str(exc) == _TIMEOUT_MESSAGE:
                raise RecognitionCancelled("Recognition exceeded its deadline") from exc
            raise

    def terminate(self) -> None:
        """Stop accepting work; the worker cannot be reused afterwards."""

        self.terminated = True
        logger.info("tesseract worker terminated", extra={"context": {"language": self.language}})


def create_worker(language: str = "eng", tesseract_cmd: str = "") -> TesseractWorker:
    return TesseractWorker(language=language, tesseract_cmd=tesseract_cmd)


class EngineSession:
    """The single engine handle shared by every item of one invocation.

    Workers are created lazily and configured once with the invocation-wide
    parameters. Tesseract has no way to abort a single recognition, so a
    timed-out image terminates the whole worker through :meth:`terminate`.
    The next request for :attr:`worker` then builds a fresh one with the same
    language and parameters. Recognitions already running on the terminated
    worker are left to finish; only new work goes to the replacement.
    """

    def __init__(self, factory: Callable[[], TesseractWorker], parameters: Optional[Dict[str, object]] = None) -> None:
        self._factory = factory
        self._parameters = dict(parameters or {})
        self._worker: Optional[TesseractWorker] = None
        self.restarts = 0

    @property
    def worker(self) -> TesseractWorker:
        if self._worker is None:
            worker = self._factory()
            worker.set_parameters(self._parameters)
            self._worker = worker
        return self._worker

    def terminate(self, worker: Optional[TesseractWorker] = None) -> None:
        """Terminate ``worker`` (default: the current one) and schedule a rebuild."""

        target = worker or self._worker
        if target is None or getattr(target, "terminated", False):
            return
        target.terminate()
        if target is self._worker:
            self._worker = None
            self.restarts += 1
            logger.warning("engine terminated; a new worker will be created for further work")
