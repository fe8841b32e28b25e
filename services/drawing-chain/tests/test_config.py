import pytest
from pydantic import ValidationError

from app.config import ScoringSettings


def test_defaults():
    settings = ScoringSettings()
    assert settings.pause_threshold_ms == 150
    assert settings.difference_threshold == 30
    assert settings.block_size == 20
    assert settings.destruction_percent == 70
    assert settings.max_rounds == 3
    assert settings.theme_rules_path is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CHAIN_PAUSE_THRESHOLD_MS", "200")
    monkeypatch.setenv("CHAIN_BLOCK_SIZE", "16")
    monkeypatch.setenv("CHAIN_MAX_ROUNDS", "5")
    monkeypatch.setenv("CHAIN_DIFFERENCE_THRESHOLD", "")
    settings = ScoringSettings.from_env()
    assert settings.pause_threshold_ms == 200
    assert settings.block_size == 16
    assert settings.max_rounds == 5
    assert settings.difference_threshold == 30


def test_invalid_environment_value(monkeypatch):
    monkeypatch.setenv("CHAIN_BLOCK_SIZE", "0")
    with pytest.raises(ValidationError):
        ScoringSettings.from_env()


def test_custom_thresholds_change_pause_detection():
    from app.chain.stroke_engine.kinematics import capture_trace
    events = [{"x": 0, "y": 0, "timestampMs": 0}, {"x": 1, "y": 0, "timestampMs": 180}]
    assert capture_trace(events, ScoringSettings()).pause_count == 1
    assert capture_trace(events, ScoringSettings(pause_threshold_ms=200)).pause_count == 0
