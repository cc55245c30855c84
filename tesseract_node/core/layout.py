"""Typed recognition results and the granularity views derived from them.

Tesseract reports its layout as a tree: blocks contain paragraphs, which
contain lines, which contain words, which contain symbols. ``flatten_blocks``
builds the per-level views (paragraphs, lines, words, symbols) as a new
structure instead of decorating the engine output.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from itertools import chain
from statistics import fmean
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from xml.etree import ElementTree

GRANULARITIES = ("paragraphs", "lines", "words", "symbols")

LINE_CLASSES = {"ocr_line", "ocr_header", "ocr_caption", "ocr_textfloat"}

_BBOX = re.compile(r"(?:bbox|x_bboxes)\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)")
_CONFIDENCE = re.compile(r"(?:x_wconf|x_conf)\s+(-?[\d.]+)")


@dataclass(frozen=True)
class BBox:
    x0: int
    y0: int
    x1: int
    y1: int

    def shifted(self, dx: int, dy: int) -> "BBox":
        return BBox(self.x0 + dx, self.y0 + dy, self.x1 + dx, self.y1 + dy)

    def as_dict(self) -> Dict[str, int]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}


@dataclass
class Symbol:
    text: str
    confidence: float
    bbox: BBox


@dataclass
class Word:
    text: str
    confidence: float
    bbox: BBox
    symbols: List[Symbol] = field(default_factory=list)
    language: Optional[str] = None


@dataclass
class Line:
    text: str
    confidence: float
    bbox: BBox
    words: List[Word] = field(default_factory=list)


@dataclass
class Paragraph:
    text: str
    confidence: float
    bbox: BBox
    lines: List[Line] = field(default_factory=list)
    language: Optional[str] = None


@dataclass
class Block:
    text: str
    confidence: float
    bbox: BBox
    paragraphs: List[Paragraph] = field(default_factory=list)


LayoutElement = Union[Paragraph, Line, Word, Symbol]


@dataclass(frozen=True)
class FlatLayout:
    """Every level of the layout tree as a flat sequence in document order."""

    paragraphs: Tuple[Paragraph, ...]
    lines: Tuple[Line, ...]
    words: Tuple[Word, ...]
    symbols: Tuple[Symbol, ...]

    def level(self, granularity: str) -> Sequence[LayoutElement]:
        if granularity not in GRANULARITIES:
            raise ValueError(f"unknown granularity: {granularity}")
        return getattr(self, granularity)


@dataclass
class PageText:
    """Whole-image text and mean confidence."""

    text: str
    confidence: float


def flatten_blocks(blocks: Iterable[Block]) -> FlatLayout:
    """Concatenate each level's children across the whole tree."""

    paragraphs = tuple(chain.from_iterable(block.paragraphs for block in blocks))
    lines = tuple(chain.from_iterable(paragraph.lines for paragraph in paragraphs))
    words = tuple(chain.from_iterable(line.words for line in lines))
    symbols = tuple(chain.from_iterable(word.symbols for word in words))
    return FlatLayout(paragraphs=paragraphs, lines=lines, words=words, symbols=symbols)


def element_entry(element: LayoutElement) -> Dict[str, object]:
    """JSON shape of one surfaced element; language only where the level has one."""

    entry: Dict[str, object] = {
        "text": element.text,
        "confidence": element.confidence,
        "bbox": element.bbox.as_dict(),
    }
    language = getattr(element, "language", None)
    if language is not None:
        entry["language"] = language
    return entry


def _mean(values: Sequence[float]) -> float:
    return fmean(values) if values else 0.0


# hOCR ----------------------------------------------------------------------


def _class(element: ElementTree.Element) -> str:
    return (element.get("class") or "").strip()


def _find(element: ElementTree.Element, classes: Iterable[str]) -> List[ElementTree.Element]:
    """Nearest descendants whose class is one of ``classes``, in document order."""

    wanted = set(classes)
    found: List[ElementTree.Element] = []
    for child in element:
        if _class(child) in wanted:
            found.append(child)
        else:
            found.extend(_find(child, wanted))
    return found


def _bbox(element: ElementTree.Element, dx: int, dy: int) -> BBox:
    match = _BBOX.search(element.get("title") or "")
    if not match:
        return BBox(dx, dy, dx, dy)
    x0, y0, x1, y1 = (int(value) for value in match.groups())
    return BBox(x0, y0, x1, y1).shifted(dx, dy)


def _confidence(element: ElementTree.Element) -> Optional[float]:
    match = _CONFIDENCE.search(element.get("title") or "")
    return float(match.group(1)) if match else None


def _text(element: ElementTree.Element) -> str:
    return "".join(element.itertext()).strip()


def _words_of(element: ElementTree.Element, language: Optional[str], dx: int, dy: int) -> List[Word]:
    words: List[Word] = []
    for node in _find(element, {"ocrx_word"}):
        text = _text(node)
        if not text:
            continue
        symbols = [
            Symbol(text=_text(cinfo), confidence=_confidence(cinfo) or 0.0, bbox=_bbox(cinfo, dx, dy))
            for cinfo in _find(node, {"ocrx_cinfo"})
        ]
        words.append(
            Word(
                text=text,
                confidence=_confidence(node) or 0.0,
                bbox=_bbox(node, dx, dy),
                symbols=symbols,
                language=node.get("lang") or language,
            )
        )
    return words


def parse_hocr(markup: Union[str, bytes], offset: Tuple[int, int] = (0, 0)) -> List[Block]:
    """Build the block tree from Tesseract hOCR output.

    ``offset`` is added to every coordinate, for images that were cropped
    before recognition.
    """

    dx, dy = offset
    root = ElementTree.fromstring(markup)
    blocks: List[Block] = []
    for area in _find(root, {"ocr_carea"}):
        paragraphs: List[Paragraph] = []
        for par in _find(area, {"ocr_par"}):
            language = par.get("lang")
            lines: List[Line] = []
            for node in _find(par, LINE_CLASSES):
                words = _words_of(node, language, dx, dy)
                if not words:
                    continue
                lines.append(
                    Line(
                        text=" ".join(word.text for word in words),
                        confidence=_mean([word.confidence for word in words]),
                        bbox=_bbox(node, dx, dy),
                        words=words,
                    )
                )
            if not lines:
                continue
            paragraph_words = [word.confidence for line in lines for word in line.words]
            paragraphs.append(
                Paragraph(
                    text="\n".join(line.text for line in lines),
                    confidence=_mean(paragraph_words),
                    bbox=_bbox(par, dx, dy),
                    lines=lines,
                    language=language,
                )
            )
        if not paragraphs:
            continue
        block_words = [word.confidence for par in paragraphs for line in par.lines for word in line.words]
        blocks.append(
            Block(
                text="\n\n".join(par.text for par in paragraphs),
                confidence=_mean(block_words),
                bbox=_bbox(area, dx, dy),
                paragraphs=paragraphs,
            )
        )
    return blocks


# TSV -----------------------------------------------------------------------


def _column(data: Dict[str, List[object]], key: str, index: int, default: object = 0) -> object:
    values = data.get(key)
    if values is None or index >= len(values):
        return default
    return values[index]


def text_from_data(data: Dict[str, List[object]]) -> PageText:
    """Rebuild plain text and mean word confidence from ``image_to_data`` output."""

    paragraphs: Dict[Tuple[object, ...], Dict[object, List[str]]] = {}
    confs: List[float] = []

    for idx, text in enumerate(data.get("text", [])):
        stripped = str(text).strip()
        if not stripped:
            continue
        conf_value = float(_column(data, "conf", idx, -1))
        if conf_value >= 0:
            confs.append(conf_value)
        paragraph_key = (
            _column(data, "page_num", idx),
            _column(data, "block_num", idx),
            _column(data, "par_num", idx),
        )
        line_key = _column(data, "line_num", idx)
        paragraphs.setdefault(paragraph_key, {}).setdefault(line_key, []).append(stripped)

    text = "\n\n".join(
        "\n".join(" ".join(words) for words in lines.values()) for lines in paragraphs.values()
    )
    return PageText(text=text, confidence=_mean(confs))
