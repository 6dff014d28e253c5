from pathlib import Path

import pytest

from increm.application.config import AppConfig, clamp_priority, resolve_config
from increm.domain.errors import ConfigurationError


@pytest.mark.parametrize(
    "raw,expected",
    [(0, 0), (100, 100), (150, 100), (-5, 0), ("42", 42), (12.6, 13)],
)
def test_clamp_priority(raw, expected):
    assert clamp_priority(raw) == expected


@pytest.mark.parametrize("raw", ["abc", None, ""])
def test_clamp_priority_rejects_non_numbers(raw):
    with pytest.raises(ConfigurationError):
        clamp_priority(raw)


def test_defaults(mock_home, monkeypatch):
    for key in ("INCREM_BACKEND", "INCREM_MULTIPLIER", "INCREM_SNAPSHOT_PATH"):
        monkeypatch.delenv(key, raising=False)
    config = resolve_config()
    assert config.default_priority == 10
    assert config.default_card_priority == 50
    assert config.multiplier == 2.0
    assert config.cards_per_item == 4
    assert config.performance_mode == "full"
    assert config.backend == "snapshot"
    assert config.snapshot_path is None


def test_env_overrides_defaults(mock_home, monkeypatch):
    monkeypatch.setenv("INCREM_MULTIPLIER", "3")
    monkeypatch.setenv("INCREM_PERFORMANCE_MODE", "light")

    config = resolve_config()

    assert config.multiplier == 3.0
    assert config.performance_mode == "light"


def test_cli_overrides_beat_env_and_ignore_none(mock_home, monkeypatch):
    monkeypatch.setenv("INCREM_BACKEND", "connect")

    config = resolve_config({"backend": "snapshot", "host_url": None})

    assert config.backend == "snapshot"
    assert config.host_url == "http://127.0.0.1:8766"


def test_validators_normalize_values(tmp_path):
    config = AppConfig(
        default_priority=250,
        sorting_randomness=3,
        cards_per_item="4",
        snapshot_path=str(tmp_path / "kb.yaml"),
    )
    assert config.default_priority == 100
    assert config.sorting_randomness == 1.0
    assert config.cards_per_item == 4
    assert isinstance(config.snapshot_path, Path)
    assert config.snapshot_path.is_absolute()

    assert AppConfig(cards_per_item="no-rem").cards_per_item == "no-rem"
    assert AppConfig(cards_per_item=-2).cards_per_item == 0


def test_non_numeric_default_priority_is_rejected():
    with pytest.raises(ConfigurationError):
        AppConfig(default_priority="high")
