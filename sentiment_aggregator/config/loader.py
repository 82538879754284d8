"""Configuration loading helpers for the sentiment aggregator."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from .models import AnalysisRequest, GlobalConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
REQUEST_SUFFIX = ".yaml"
HOME_ENV_VAR = "SENTIMENT_AGGREGATOR_HOME"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    history_dir: Path | None = None
    outputs_dir: Path | None = None
    requests_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV_VAR)
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.history_dir = (self.data_dir / "history").resolve()
        self.outputs_dir = (self.data_dir / "outputs").resolve()
        self.requests_dir = (self.data_dir / "requests").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (
            self.data_dir,
            self.history_dir,
            self.outputs_dir,
            self.requests_dir,
            self.logs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def resolve(self, path: Path) -> Path:
        """Anchor a relative config path at the project root."""

        return path if path.is_absolute() else (self.project_root / path).resolve()


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            global_cfg = GlobalConfig.model_validate(_read_file(path))
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = global_cfg
        return global_cfg

    def save_global_config(self, config: GlobalConfig) -> None:
        _write_file(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global_cache = config

    def dedup_store_path(self) -> Path:
        config = self.load_global_config()
        store_path = config.deduplication.store_path
        if store_path.is_absolute():
            return store_path
        return self.locator.resolve(config.history_dir) / store_path.name

    def outputs_dir(self) -> Path:
        return self.locator.resolve(self.load_global_config().outputs_dir)

    # ------------------------------------------------------------------
    # Saved analysis requests
    # ------------------------------------------------------------------
    def request_path(self, name: str) -> Path:
        return self.locator.requests_dir / f"{_slugify(name)}{REQUEST_SUFFIX}"

    def list_request_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.requests_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def load_request(self, identifier: str | Path) -> AnalysisRequest:
        path = identifier if isinstance(identifier, Path) else self.request_path(identifier)
        if not path.exists():
            raise FileNotFoundError(f"Analysis request not found: {identifier}")
        return AnalysisRequest.model_validate(_read_file(path))

    def save_request(self, name: str, request: AnalysisRequest) -> Path:
        path = self.request_path(name)
        _write_file(path, request.model_dump(mode="json"))
        return path


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS", "HOME_ENV_VAR"]
