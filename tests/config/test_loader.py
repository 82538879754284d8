from __future__ import annotations

from pathlib import Path

import pytest

from sentiment_aggregator.config.loader import ConfigLocator, ConfigRepository, _slugify
from sentiment_aggregator.config.models import AnalysisRequest, GlobalConfig


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SENTIMENT_AGGREGATOR_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.history_dir == tmp_path.resolve() / "data" / "history"
    assert locator.global_config_path() == tmp_path.resolve() / "data" / "global_config.yaml"
    for path in (locator.history_dir, locator.outputs_dir, locator.requests_dir, locator.logs_dir):
        assert path.exists()


def test_config_repository_global_roundtrip(temp_config_repository: ConfigRepository) -> None:
    config = GlobalConfig(enable_progress_bar=False)
    config.analysis.max_items = 25
    temp_config_repository.save_global_config(config)

    fresh = ConfigRepository(temp_config_repository.locator)
    loaded = fresh.load_global_config()
    assert loaded == config
    assert loaded.analysis.max_items == 25


def test_first_load_writes_default_config(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_global_config()
    assert config == GlobalConfig()
    assert temp_config_repository.locator.global_config_path().exists()


def test_dedup_store_path_resolves_under_history_dir(temp_config_repository: ConfigRepository) -> None:
    root = temp_config_repository.locator.project_root
    assert temp_config_repository.dedup_store_path() == root / "data" / "history" / "dedupe.db"
    assert temp_config_repository.outputs_dir() == root / "data" / "outputs"


def test_request_roundtrip(temp_config_repository: ConfigRepository) -> None:
    request = AnalysisRequest(topic="Four day work week", languages=["en", "de"], timeframe="last_month")
    path = temp_config_repository.save_request("Four Day Week", request)
    assert path.name == "four-day-week.yaml"
    assert list(temp_config_repository.list_request_files()) == [path]

    assert temp_config_repository.load_request("Four Day Week") == request
    assert temp_config_repository.load_request(path) == request


def test_missing_request(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(FileNotFoundError):
        temp_config_repository.load_request("missing")


def test_non_mapping_config_rejected(temp_config_repository: ConfigRepository) -> None:
    path = temp_config_repository.locator.requests_dir / "broken.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.load_request(path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Four Day Week", "four-day-week"),
        ("EV/Charging", "ev-charging"),
        ("  spaced  ", "spaced"),
    ],
)
def test_slugify(raw: str, expected: str) -> None:
    assert _slugify(raw) == expected
