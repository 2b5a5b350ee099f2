from __future__ import annotations

from pathlib import Path

import pytest

from mapa_import.config.loader import ConfigError, load_config
from mapa_import.models.config_models import ImportConfig


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.options.explode_lists is True
    assert cfg.options.default_reu_name is None
    assert cfg.publisher.chunk_size == 2
    assert cfg.publisher.backoff_max_seconds == 0
    assert cfg.database.user == "appuser"
    assert cfg.issue_log_directory == "./logs"


def test_omitted_sections_use_defaults(temp_workdir: Path):
    cfg_path = temp_workdir / "config" / "import.yml"
    cfg_path.write_text("options:\n  apply_default_reu: true\n  default_reu_name: Empresa\n", encoding="utf-8")
    cfg = load_config(cfg_path)
    assert cfg.options.apply_default_reu is True
    assert cfg.options.default_reu_name == "Empresa"
    assert cfg.publisher == ImportConfig().publisher
    assert cfg.database.dsn is None


def test_empty_file_is_all_defaults(temp_workdir: Path):
    cfg_path = temp_workdir / "config" / "import.yml"
    cfg_path.write_text("", encoding="utf-8")
    assert load_config(cfg_path) == ImportConfig()


def test_load_config_missing_file(temp_workdir: Path):
    missing = temp_workdir / "config" / "not_exists.yml"
    with pytest.raises(ConfigError, match="config file not found"):
        load_config(missing)


def test_load_config_invalid_yaml(write_config: Path):
    write_config.write_text("options: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(write_config)


def test_load_config_top_level_not_mapping(write_config: Path):
    write_config.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="top level must be a mapping"):
        load_config(write_config)


def test_load_config_wrong_type(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("chunk_size: 2", "chunk_size: many")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value)
    assert "publisher/chunk_size" in str(e.value)


def test_load_config_chunk_size_must_be_positive(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("chunk_size: 2", "chunk_size: 0")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


def test_load_config_extra_field(write_config: Path):
    # additionalProperties: false at every level
    text = write_config.read_text(encoding="utf-8") + "\nextra_field: not_allowed\n"
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


def test_load_config_unknown_option(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace(
        "  explode_lists: true\n", "  explode_lists: true\n  explode_everything: true\n"
    )
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


def test_load_config_backoff_order(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("backoff_min_seconds: 0", "backoff_min_seconds: 5")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="backoff_max_seconds < backoff_min_seconds"):
        load_config(write_config)
