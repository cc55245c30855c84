"""Global configuration and per-invocation options for the OCR node."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from .core.layout import GRANULARITIES

OPERATIONS = ("ocr", "boxes")
IMAGE_STRATEGIES = ("objects", "pages")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

PAGE_SEGMENTATION_MODES: Dict[str, int] = {
    "OSD_ONLY": 0,
    "AUTO_OSD": 1,
    "AUTO_ONLY": 2,
    "AUTO": 3,
    "SINGLE_COLUMN": 4,
    "SINGLE_BLOCK_VERT_TEXT": 5,
    "SINGLE_BLOCK": 6,
    "SINGLE_LINE": 7,
    "SINGLE_WORD": 8,
    "CIRCLE_WORD": 9,
    "SINGLE_CHAR": 10,
    "SPARSE_TEXT": 11,
    "SPARSE_TEXT_OSD": 12,
    "RAW_LINE": 13,
}


def _update_dataclass(instance, data: Dict) -> None:
    """Recursively update a dataclass instance with values from a dict."""

    for key, value in data.items():
        if not hasattr(instance, key):
            continue
        current_value = getattr(instance, key)
        if is_dataclass(current_value) and isinstance(value, dict):
            _update_dataclass(current_value, value)
        else:
            setattr(instance, key, value)


@dataclass
class ModelConfig:
    """Where to find the Tesseract binary."""

    tesseract_cmd: str = ""


@dataclass
class NodeDefaults:
    """Fallback values for options the caller leaves out."""

    language: str = "eng"
    psm: str = "SINGLE_BLOCK"
    timeout_ms: int = 0
    min_confidence: float = 0.0
    resize_factor: int = 100
    keep_binary: bool = True


@dataclass
class OCRConfig:
    """Application-wide settings loaded from YAML."""

    models: ModelConfig = field(default_factory=ModelConfig)
    defaults: NodeDefaults = field(default_factory=NodeDefaults)
    pdf_image_strategy: str = "objects"
    max_workers: int = 4
    log_file: Path = Path("./tesseract_node.log")
    log_level: str = "INFO"
    metrics_file: Optional[Path] = None

    @property
    def tesseract_cmd(self) -> str:
        return self.models.tesseract_cmd

    def ensure_dirs(self) -> None:
        """Create required directories if they do not exist."""

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if self.metrics_file is not None:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Optional[Path | str] = None) -> OCRConfig:
    """Load configuration from YAML, falling back to defaults when unavailable."""

    config = OCRConfig()
    path = Path(config_path) if config_path else Path(__file__).with_name("config.yml")
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        _update_dataclass(config, _normalize_schema(loaded, source=str(path)))
    config.ensure_dirs()
    return config


def _normalize_schema(raw: Dict, *, source: str) -> Dict:
    """Map YAML keys to dataclass fields with validation and clear errors."""

    if not isinstance(raw, dict):
        raise ValueError(f"File {source} must contain a mapping (YAML dict) at the root level.")

    errors: List[str] = []
    normalized: Dict = {}

    def _validate_dict(value, section: str) -> Optional[Dict]:
        if not isinstance(value, dict):
            errors.append(f"Section {section} in {source} must be a mapping.")
            return None
        return value

    def _check_keys(section: Dict, allowed: set, prefix: str) -> None:
        for key in section:
            if key not in allowed:
                errors.append(f"Unknown key {prefix}{key} in {source}.")

    def _validate_path(value, section: str) -> Optional[Path]:
        if value is None:
            return None
        if isinstance(value, (str, Path)):
            return Path(value)
        errors.append(f"Field {section} in {source} must be a path (string or Path).")
        return None

    allowed_root = {"models", "defaults", "pdf", "app"}
    for key in raw:
        if key not in allowed_root:
            errors.append(f"Unknown root key: {key} (file {source}).")

    # Models
    if "models" in raw:
        models = _validate_dict(raw["models"], "models")
        if models is not None:
            _check_keys(models, {"tesseract_cmd"}, "models.")
            if "tesseract_cmd" in models:
                if isinstance(models["tesseract_cmd"], str):
                    normalized["models"] = {"tesseract_cmd": models["tesseract_cmd"]}
                else:
                    errors.append("models.tesseract_cmd must be a string.")

    # Node defaults
    if "defaults" in raw:
        defaults = _validate_dict(raw["defaults"], "defaults")
        if defaults is not None:
            allowed_defaults = {item.name for item in fields(NodeDefaults)}
            _check_keys(defaults, allowed_defaults, "defaults.")
            checked = {key: value for key, value in defaults.items() if key in allowed_defaults}
            option_errors, values = _validate_options(checked, prefix="defaults.")
            errors.extend(option_errors)
            if values:
                normalized["defaults"] = values

    # PDF
    if "pdf" in raw:
        pdf = _validate_dict(raw["pdf"], "pdf")
        if pdf is not None:
            _check_keys(pdf, {"image_strategy"}, "pdf.")
            if "image_strategy" in pdf:
                if pdf["image_strategy"] in IMAGE_STRATEGIES:
                    normalized["pdf_image_strategy"] = pdf["image_strategy"]
                else:
                    errors.append(f"pdf.image_strategy must be one of: {', '.join(IMAGE_STRATEGIES)}.")

    # App
    if "app" in raw:
        app = _validate_dict(raw["app"], "app")
        if app is not None:
            _check_keys(app, {"max_workers", "log_file", "log_level", "metrics_file"}, "app.")
            if "max_workers" in app:
                max_workers = app["max_workers"]
                if not isinstance(max_workers, int) or isinstance(max_workers, bool):
                    errors.append("app.max_workers must be an integer.")
                elif max_workers <= 0:
                    errors.append("app.max_workers must be a positive integer.")
                else:
                    normalized["max_workers"] = max_workers
            if "log_level" in app:
                level = str(app["log_level"]).upper()
                if level in LOG_LEVELS:
                    normalized["log_level"] = level
                else:
                    errors.append(f"app.log_level must be one of: {', '.join(LOG_LEVELS)}.")
            for key in ("log_file", "metrics_file"):
                if key in app:
                    path_value = _validate_path(app[key], f"app.{key}")
                    if path_value is not None:
                        normalized[key] = path_value

    if errors:
        raise ValueError("\n".join(errors))

    return normalized


@dataclass(frozen=True)
class BoundingBox:
    """Region of the image to recognise, in pixels."""

    top: int
    left: int
    width: int
    height: int

    def as_box(self) -> Tuple[int, int, int, int]:
        """Return PIL crop coordinates (left, upper, right, lower)."""

        return (self.left, self.top, self.left + self.width, self.top + self.height)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_options(raw: Mapping[str, object], prefix: str = "") -> Tuple[List[str], Dict[str, object]]:
    """Check option values, returning the errors found and the accepted values."""

    errors: List[str] = []
    values: Dict[str, object] = {}

    def _choice(key: str, choices) -> None:
        if key in raw:
            if raw[key] in choices:
                values[key] = raw[key]
            else:
                errors.append(f"{prefix}{key} must be one of: {', '.join(choices)}.")

    def _text(key: str, allow_empty: bool = True) -> None:
        if key in raw and raw[key] is not None:
            value = raw[key]
            if not isinstance(value, str):
                errors.append(f"{prefix}{key} must be a string.")
            elif not allow_empty and not value.strip():
                errors.append(f"{prefix}{key} must not be empty.")
            else:
                values[key] = value

    def _integer(key: str, minimum: int, positive: bool = False) -> None:
        if key in raw and raw[key] is not None:
            value = raw[key]
            if not _is_int(value):
                errors.append(f"{prefix}{key} must be an integer.")
            elif value < minimum or (positive and value == 0):
                errors.append(f"{prefix}{key} must be a {'positive' if positive else 'non-negative'} integer.")
            else:
                values[key] = value

    def _flag(key: str) -> None:
        if key in raw:
            if isinstance(raw[key], bool):
                values[key] = raw[key]
            else:
                errors.append(f"{prefix}{key} must be a boolean (true/false).")

    _choice("operation", OPERATIONS)
    _choice("granularity", GRANULARITIES)
    _choice("psm", tuple(PAGE_SEGMENTATION_MODES))
    _text("input_field", allow_empty=False)
    _text("language", allow_empty=False)
    _text("whitelist")
    _text("blacklist")
    _integer("dpi", 1, positive=True)
    _integer("timeout_ms", 0)
    _integer("resize_factor", 1, positive=True)
    _flag("keep_binary")
    _flag("continue_on_fail")

    if "min_confidence" in raw:
        value = raw["min_confidence"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{prefix}min_confidence must be a number.")
        elif not 0 <= value <= 100:
            errors.append(f"{prefix}min_confidence must be between 0 and 100.")
        else:
            values["min_confidence"] = float(value)

    if raw.get("bounding_box") is not None:
        box = raw["bounding_box"]
        keys = ("top", "left", "width", "height")
        if not isinstance(box, Mapping) or set(box) != set(keys):
            errors.append(f"{prefix}bounding_box must be a mapping with keys: {', '.join(keys)}.")
        elif not all(_is_int(box[key]) and box[key] >= 0 for key in keys):
            errors.append(f"{prefix}bounding_box values must be non-negative integers.")
        else:
            values["bounding_box"] = BoundingBox(**{key: box[key] for key in keys})

    return errors, values


@dataclass(frozen=True)
class NodeOptions:
    """Every option of one invocation, resolved once before any item runs."""

    operation: str = "ocr"
    granularity: str = "words"
    input_field: str = "data"
    bounding_box: Optional[BoundingBox] = None
    language: str = "eng"
    psm: str = "SINGLE_BLOCK"
    dpi: Optional[int] = None
    whitelist: Optional[str] = None
    blacklist: Optional[str] = None
    timeout_ms: int = 0
    resize_factor: int = 100
    keep_binary: bool = True
    min_confidence: float = 0.0
    continue_on_fail: bool = False

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, object], defaults: Optional[NodeDefaults] = None) -> "NodeOptions":
        """Validate the host's parameter mapping, filling gaps from ``defaults``."""

        allowed = {item.name for item in fields(cls)}
        errors = [f"Unknown parameter: {key}." for key in parameters if key not in allowed]
        option_errors, values = _validate_options(parameters)
        errors.extend(option_errors)
        if errors:
            raise ValueError("\n".join(errors))

        base = defaults or NodeDefaults()
        merged = {item.name: getattr(base, item.name) for item in fields(NodeDefaults)}
        merged.update(values)
        return cls(**merged)

    def engine_parameters(self) -> Dict[str, object]:
        """Tesseract variables derived from these options."""

        return {
            "tessedit_pageseg_mode": PAGE_SEGMENTATION_MODES[self.psm],
            "user_defined_dpi": self.dpi,
            "tessedit_char_whitelist": self.whitelist,
            "tessedit_char_blacklist": self.blacklist,
        }


config = load_config()
