"""Discover the raster images embedded in a PDF document."""
from __future__ import annotations

import importlib.util
import logging
import re
import zlib
from typing import Dict, List, Optional, Set, Tuple

from .raster import FLATE_FILTER, SourceObject

logger = logging.getLogger(__name__)

STRATEGIES = ("objects", "pages")

_ARRAY_TOKEN = re.compile(r"<[0-9A-Fa-f\s]*>|\((?:\\.|[^\\)])*\)|\d+\s+\d+\s+R|/[^\s/\[\]<>()]+|[^\s\[\]<>()/]+")
_OCTAL = re.compile(r"[0-7]{1,3}")
_ESCAPES = {"n": b"\n", "r": b"\r", "t": b"\t", "b": b"\b", "f": b"\f"}
_PREDICTOR = re.compile(r"/Predictor\s*(\d+)")
_REFERENCE = re.compile(r"(\d+)\s+\d+\s+R")

# Decode parameters that could not be read; never a valid predictor.
UNREADABLE_PREDICTOR = -1


def _require_pymupdf():
    """Return the imported PyMuPDF module or raise a helpful ImportError."""

    if importlib.util.find_spec("fitz") is None:
        raise ImportError(
            "PyMuPDF (package 'PyMuPDF', import name 'fitz') is required to read PDFs. "
            "Install it with `pip install PyMuPDF` in the same environment running the node."
        )
    import fitz  # PyMuPDF

    return fitz


def _ref_target(value: str) -> int:
    return int(value.split()[0])


def _strip_name(value: str) -> str:
    return value[1:] if value.startswith("/") else value


def parse_array(text: str) -> List[str]:
    """Split the source of a PDF array into its top-level tokens."""

    body = text.strip()
    if body.startswith("[") and body.endswith("]"):
        body = body[1:-1]
    return _ARRAY_TOKEN.findall(body)


def _int_key(doc, xref: int, key: str, default: int = 0) -> int:
    kind, value = doc.xref_get_key(xref, key)
    if kind == "xref":
        kind, value = "int", doc.xref_object(_ref_target(value), compressed=True)
    if kind not in ("int", "float"):
        return default
    return int(float(value))


def _filter_name(doc, xref: int) -> str:
    kind, value = doc.xref_get_key(xref, "Filter")
    if kind == "name":
        return _strip_name(value)
    if kind == "array":
        filters = [_strip_name(token) for token in parse_array(value)]
        return filters[0] if len(filters) == 1 else "+".join(filters)
    return ""


def _predictor(doc, xref: int) -> int:
    """Predictor from ``/DecodeParms``, given as a dictionary or a one-element array."""

    kind, value = doc.xref_get_key(xref, "DecodeParms")
    if kind != "array":
        return _int_key(doc, xref, "DecodeParms/Predictor", default=1)

    body = value.strip()[1:-1].strip()
    if body in ("", "null"):
        return 1
    reference = _REFERENCE.fullmatch(body)
    if reference:
        body = doc.xref_object(int(reference.group(1)), compressed=True).strip()
    if not (body.startswith("<<") and body.endswith(">>")) or body.count("<<") != 1:
        return UNREADABLE_PREDICTOR
    match = _PREDICTOR.search(body)
    return int(match.group(1)) if match else 1


def _read_stream_bytes(doc, xref: int) -> bytes:
    """Return the decoded contents of a palette stream, inflating it by hand."""

    raw = doc.xref_stream_raw(xref)
    filter_name = _filter_name(doc, xref)
    if filter_name == FLATE_FILTER:
        return zlib.decompress(raw)
    if filter_name:
        raise ValueError(f"unhandled palette stream filter {filter_name}")
    return raw


def _literal_bytes(token: str) -> bytes:
    """Decode a PDF literal string such as ``(ab\\377\\n)``."""

    body = token[1:-1]
    out = bytearray()
    index = 0
    while index < len(body):
        char = body[index]
        if char != "\\":
            out += char.encode("latin-1")
            index += 1
            continue
        octal = _OCTAL.match(body, index + 1)
        if octal:
            out.append(int(octal.group(), 8) & 0xFF)
            index = octal.end()
        else:
            escaped = body[index + 1 : index + 2]
            out += _ESCAPES.get(escaped, escaped.encode("latin-1"))
            index += 2
    return bytes(out)


def _palette_bytes(doc, token: str) -> Optional[bytes]:
    if token.endswith("R"):
        return _read_stream_bytes(doc, _ref_target(token))
    if token.startswith("<"):
        return bytes.fromhex(re.sub(r"\s", "", token[1:-1]))
    if token.startswith("("):
        return _literal_bytes(token)
    return None


def _resolve_color_space(doc, xref: int) -> Tuple[str, Dict[str, object]]:
    """Return the colorspace family plus palette details for indexed images."""

    kind, value = doc.xref_get_key(xref, "ColorSpace")
    if kind == "xref":
        value = doc.xref_object(_ref_target(value), compressed=True).strip()
        kind = "array" if value.startswith("[") else "name"
    if kind == "name":
        return _strip_name(value), {}
    if kind != "array":
        return "", {}

    tokens = parse_array(value)
    family = _strip_name(tokens[0]) if tokens else ""
    if family != "Indexed" or len(tokens) < 4:
        return family, {}

    base = tokens[1]
    if base.endswith("R"):
        base = doc.xref_object(_ref_target(base), compressed=True).strip()
    details: Dict[str, object] = {"palette_base": _strip_name(base), "palette_size": int(tokens[2]) + 1}
    try:
        details["palette"] = _palette_bytes(doc, tokens[3])
    except (ValueError, zlib.error) as exc:
        logger.warning("palette of image %s could not be read: %s", xref, exc)
    return family, details


def read_source_object(doc, xref: int) -> SourceObject:
    """Collect the dictionary entries and raw stream of one image XObject."""

    name_kind, name_value = doc.xref_get_key(xref, "Name")
    smask_kind, smask_value = doc.xref_get_key(xref, "SMask")
    color_space, palette = _resolve_color_space(doc, xref)
    return SourceObject(
        xref=xref,
        name=_strip_name(name_value) if name_kind == "name" else f"Object{xref}",
        width=_int_key(doc, xref, "Width"),
        height=_int_key(doc, xref, "Height"),
        bits_per_component=_int_key(doc, xref, "BitsPerComponent"),
        color_space=color_space,
        filter=_filter_name(doc, xref),
        data=doc.xref_stream_raw(xref),
        predictor=_predictor(doc, xref),
        smask=_ref_target(smask_value) if smask_kind == "xref" else None,
        **palette,
    )


def _is_image_stream(doc, xref: int) -> bool:
    return doc.xref_is_stream(xref) and doc.xref_get_key(xref, "Subtype") == ("name", "/Image")


def _objects_walk(doc) -> List[int]:
    """Every indirect object that is an image stream, in xref order."""

    return [xref for xref in range(1, doc.xref_length()) if _is_image_stream(doc, xref)]


def _pages_walk(doc) -> List[int]:
    """Every image referenced by a page, in page order, first occurrence only.

    Inline images have no xref and are not reported.
    """

    xrefs: List[int] = []
    seen: Set[int] = set()
    for page_number, page in enumerate(doc, start=1):
        page_images = page.get_images(full=True)
        logger.debug("page %s references %s image(s)", page_number, len(page_images))
        for entry in page_images:
            xref = entry[0]
            if xref in seen:
                continue
            seen.add(xref)
            xrefs.append(xref)
    return xrefs


def _load(doc, xrefs: List[int]) -> List[SourceObject]:
    objects: Dict[int, SourceObject] = {}
    for xref in xrefs:
        try:
            objects[xref] = read_source_object(doc, xref)
        except (ValueError, RuntimeError) as exc:
            logger.warning("could not read image object %s: %s", xref, exc)
    return list(objects.values())


def enumerate_images(doc, strategy: str = "objects") -> List[SourceObject]:
    """Return the top-level image objects of ``doc`` with soft masks attached.

    Objects referenced as another image's ``/SMask`` are resolved onto their
    owner and never returned on their own.
    """

    if strategy not in STRATEGIES:
        raise ValueError(f"unknown image enumeration strategy: {strategy}")
    xrefs = _objects_walk(doc) if strategy == "objects" else _pages_walk(doc)
    objects = _load(doc, xrefs)

    by_xref = {obj.xref: obj for obj in objects}
    mask_refs = {obj.smask for obj in objects if obj.smask is not None}
    logger.debug("mask images", extra={"context": {"mask_refs": sorted(mask_refs)}})
    for obj in objects:
        if obj.smask is None:
            continue
        mask = by_xref.get(obj.smask)
        if mask is None and _is_image_stream(doc, obj.smask):
            loaded = _load(doc, [obj.smask])
            mask = loaded[0] if loaded else None
        obj.mask = mask
    return [obj for obj in objects if obj.xref not in mask_refs]


def load_source_objects(pdf_bytes: bytes, strategy: str = "objects") -> List[SourceObject]:
    """Open a PDF from memory and enumerate its images."""

    fitz = _require_pymupdf()
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return enumerate_images(doc, strategy)

