"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from wa_monitor.config import MonitorConfig, config_from_mapping, load_config

SAMPLE_YAML = """\
target_conversations:
  - Founders Circle
  - Angel Investors
keywords: [funding, startup, MVP]
bare_keywords: [MVP]
scan_interval_minutes: 15
batch_size: 4
item_pacing_seconds: [0, 0]
batch_pacing_seconds: 1
headless: true
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "monitor.yaml"
    path.write_text(SAMPLE_YAML, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults(self) -> None:
        config = MonitorConfig()
        assert config.batch_size == 3
        assert config.scan_interval_minutes == 30
        assert config.scan_interval_seconds == 1800
        assert config.open_retry_attempts == 2
        assert config.dedup_retention_seconds == 3600
        assert config.recent_message_cap == 50
        assert config.log_rotation_bytes == 10 * 1024 * 1024
        assert config.match_log_path == "logs/whatsapp_matches.txt"
        assert config.restart_max_attempts == 3

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml", env={})
        assert config == MonitorConfig()


class TestLoadConfig:
    def test_reads_yaml(self, config_file: Path) -> None:
        config = load_config(config_file, env={})
        assert config.target_conversations == ["Founders Circle", "Angel Investors"]
        assert config.keywords == ["funding", "startup", "MVP"]
        assert config.bare_keywords == ["MVP"]
        assert config.scan_interval_seconds == 900
        assert config.batch_size == 4
        assert config.headless is True

    def test_pacing_ranges(self, config_file: Path) -> None:
        config = load_config(config_file, env={})
        assert config.item_pacing_seconds == (0.0, 0.0)
        assert config.batch_pacing_seconds == (1.0, 1.0)

    def test_env_overrides_yaml(self, config_file: Path) -> None:
        env = {
            "WHATSAPP_TARGET_GROUPS": "Group A, Group B ,",
            "WHATSAPP_KEYWORDS": "hiring,remote",
            "WHATSAPP_SCAN_INTERVAL_MINUTES": "5",
            "WHATSAPP_HEADLESS": "false",
            "LOG_LEVEL": "debug",
        }
        config = load_config(config_file, env=env)
        assert config.target_conversations == ["Group A", "Group B"]
        assert config.keywords == ["hiring", "remote"]
        assert config.scan_interval_minutes == 5.0
        assert config.headless is False
        assert config.log_level == "DEBUG"

    def test_empty_env_values_ignored(self, config_file: Path) -> None:
        config = load_config(config_file, env={"WHATSAPP_KEYWORDS": ""})
        assert config.keywords == ["funding", "startup", "MVP"]

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path, env={}) == MonitorConfig()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("keywords: [unclosed", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path, env={})

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path, env={})

    def test_unknown_keys_ignored(self) -> None:
        config = config_from_mapping({"keywords": ["funding"], "colour": "blue"}, env={})
        assert config.keywords == ["funding"]


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"batch_size": 0},
            {"scan_interval_minutes": 0},
            {"dedup_retention_seconds": -1},
            {"open_retry_attempts": 0},
            {"item_pacing_seconds": [3, 1]},
            {"batch_size": "three"},
            {"keywords": 42},
        ],
    )
    def test_invalid_values_rejected(self, data: dict) -> None:
        with pytest.raises(ValueError):
            config_from_mapping(data, env={})

    def test_empty_lists_only_warn(self, caplog: pytest.LogCaptureFixture) -> None:
        config = config_from_mapping({}, env={})
        assert config.target_conversations == []
        assert "No target conversations" in caplog.text
        assert "No keywords" in caplog.text

    def test_bare_keyword_outside_keyword_list_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        config_from_mapping({"keywords": ["funding"], "bare_keywords": ["MVP"]}, env={})
        assert "has no effect" in caplog.text
