import pytest
from pathlib import Path

from tesseract_node.config import BoundingBox, NodeDefaults, NodeOptions, load_config


def test_load_config_unknown_root_key(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("""
foo: 123
""")

    with pytest.raises(ValueError) as excinfo:
        load_config(cfg_path)

    assert "Unknown root key: foo" in str(excinfo.value)


def test_load_config_reads_every_section(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        f"""
models:
  tesseract_cmd: /opt/tesseract/bin/tesseract
defaults:
  language: pol
  psm: SINGLE_LINE
  timeout_ms: 2500
pdf:
  image_strategy: pages
app:
  max_workers: 2
  log_level: debug
  log_file: {tmp_path / "logs" / "node.log"}
"""
    )

    config = load_config(cfg_path)

    assert config.tesseract_cmd == "/opt/tesseract/bin/tesseract"
    assert (config.defaults.language, config.defaults.psm, config.defaults.timeout_ms) == ("pol", "SINGLE_LINE", 2500)
    assert config.defaults.resize_factor == 100
    assert config.pdf_image_strategy == "pages"
    assert config.max_workers == 2
    assert config.log_level == "DEBUG"
    assert config.log_file == tmp_path / "logs" / "node.log"
    assert (tmp_path / "logs").is_dir()


def test_load_config_invalid_numeric_values(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        """
defaults:
  timeout_ms: -10
  min_confidence: 140
app:
  max_workers: 0
"""
    )

    with pytest.raises(ValueError) as excinfo:
        load_config(cfg_path)

    message = str(excinfo.value)
    assert "defaults.timeout_ms must be a non-negative integer" in message
    assert "defaults.min_confidence must be between 0 and 100" in message
    assert "app.max_workers must be a positive integer" in message


def test_load_config_rejects_unknown_strategy_and_keys(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        """
pdf:
  image_strategy: everything
  dpi: 300
"""
    )

    with pytest.raises(ValueError) as excinfo:
        load_config(cfg_path)

    message = str(excinfo.value)
    assert "pdf.image_strategy must be one of: objects, pages" in message
    assert "Unknown key pdf.dpi" in message


def test_missing_config_file_falls_back_to_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yml")
    assert config.defaults == NodeDefaults()
    assert config.pdf_image_strategy == "objects"


def test_node_options_merge_parameters_over_defaults():
    defaults = NodeDefaults(language="pol", timeout_ms=1000, keep_binary=False)
    options = NodeOptions.from_parameters(
        {"operation": "boxes", "granularity": "symbols", "timeout_ms": 0,
         "bounding_box": {"top": 1, "left": 2, "width": 30, "height": 40}},
        defaults,
    )

    assert options.operation == "boxes"
    assert options.granularity == "symbols"
    assert options.language == "pol"
    assert options.timeout_ms == 0
    assert options.keep_binary is False
    assert options.bounding_box == BoundingBox(top=1, left=2, width=30, height=40)
    assert options.bounding_box.as_box() == (2, 1, 32, 41)


def test_node_options_collect_every_error():
    with pytest.raises(ValueError) as excinfo:
        NodeOptions.from_parameters(
            {
                "operation": "translate",
                "language": " ",
                "dpi": 0,
                "resize_factor": "50",
                "keep_binary": "yes",
                "bounding_box": {"top": 0, "left": -1, "width": 1, "height": 1},
            }
        )

    message = str(excinfo.value)
    for expected in (
        "operation must be one of: ocr, boxes.",
        "language must not be empty.",
        "dpi must be a positive integer.",
        "resize_factor must be an integer.",
        "keep_binary must be a boolean (true/false).",
        "bounding_box values must be non-negative integers.",
    ):
        assert expected in message


def test_engine_parameters_use_tesseract_variable_names():
    options = NodeOptions(psm="SPARSE_TEXT", dpi=150, blacklist="|")
    assert options.engine_parameters() == {
        "tessedit_pageseg_mode": 11,
        "user_defined_dpi": 150,
        "tessedit_char_whitelist": None,
        "tessedit_char_blacklist": "|",
    }


def test_config_path_accepts_strings(tmp_path):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("app:\n  max_workers: 3\n")
    assert load_config(str(cfg_path)).max_workers == 3
    assert isinstance(load_config(Path(cfg_path)).log_file, Path)
