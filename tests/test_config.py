# tests/test_config.py
from flagengine.config import Settings


def test_defaults(monkeypatch):
    for var in ("LOG_LEVEL", "FEATURES_PATH", "DECRYPTION_KEY", "ENABLED", "QA_MODE", "STICKY_BUCKETING"):
        monkeypatch.delenv(var, raising=False)
    s = Settings(_env_file=None)
    assert s.log_level == "INFO"
    assert s.features_path is None
    assert s.enabled is True
    assert s.qa_mode is False
    assert s.sticky_bucketing is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("qa_mode", "true")
    monkeypatch.setenv("FEATURES_PATH", "/srv/features.json")
    monkeypatch.setenv("Sticky_Bucketing", "0")
    s = Settings(_env_file=None)
    assert s.qa_mode is True
    assert s.features_path == "/srv/features.json"
    assert s.sticky_bucketing is False
