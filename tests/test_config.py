from pathlib import Path

from voc_tracker.config import Settings
from voc_tracker.engine.limits import PERMIT_LIMITS
from voc_tracker.services.tracker import EmissionsTracker


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("DATA_SOURCE", "sql")
    monkeypatch.setenv("REPORT_HORIZON_MONTHS", "24")
    monkeypatch.setenv("FALLBACK_TO_DEMO", "false")
    cfg = Settings()
    assert cfg.DATA_SOURCE == "sql"
    assert cfg.REPORT_HORIZON_MONTHS == 24
    assert cfg.FALLBACK_TO_DEMO is False


def test_tracker_from_settings(sqlite_url):
    limits_file = Path(__file__).resolve().parents[1] / "config" / "permit_limits.yaml"
    cfg = Settings(DATA_SOURCE="sql", DATABASE_URL=sqlite_url, FALLBACK_TO_DEMO=False, PERMIT_LIMITS_FILE=str(limits_file))
    tracker = EmissionsTracker.from_settings(cfg)
    assert tracker.source.name == "sql"
    assert tracker.fallback.name == "empty"
    assert tracker.limits == PERMIT_LIMITS


def test_demo_primary_falls_back_to_empty():
    tracker = EmissionsTracker.from_settings(Settings(DATA_SOURCE="demo", DEMO_DAYS=5))
    assert tracker.source.name == "demo"
    assert tracker.fallback.name == "empty"
