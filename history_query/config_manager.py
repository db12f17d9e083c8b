"""Configuration management utilities for the historical quote query."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

from data_providers.crumb import CRUMB_STRATEGIES


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
DOWNLOAD_PLACEHOLDERS = ("{symbol}", "{start}", "{end}", "{crumb}")


class ConfigError(Exception):
    """Raised when configuration files are missing or invalid."""


@dataclass
class HttpConfig:
    timeout: float
    accept: str
    accept_language: str
    user_agent: Optional[str] = None


@dataclass
class EndpointsConfig:
    crumb_url_template: str
    download_url_template: str


@dataclass
class CrumbConfig:
    strategy: str = "regex"


@dataclass
class QueryConfig:
    start_date: str = ""
    end_date: str = ""


@dataclass
class OutputConfig:
    directory: Path
    preview_rows: int = 5


@dataclass
class HistoryQueryConfig:
    http: HttpConfig
    endpoints: EndpointsConfig
    crumb: CrumbConfig
    query: QueryConfig
    output: OutputConfig

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigManager:
    """Loads and validates configuration data from files and environment variables."""

    def __init__(
        self,
        default_path: Path | str = CONFIG_DIR / "default_settings.json",
        user_path: Path | str = CONFIG_DIR / "settings.local.json",
        env_prefix: str = "HQ_",
    ) -> None:
        self.default_path = Path(default_path)
        self.user_path = Path(user_path)
        self.env_prefix = env_prefix
        self._cached_config: Optional[HistoryQueryConfig] = None

    def load(self, force_reload: bool = False) -> HistoryQueryConfig:
        """Load configuration from defaults, user overrides, and environment."""
        if self._cached_config is not None and not force_reload:
            return self._cached_config

        base_config = self._load_default_config()
        merged_config = self._merge_user_overrides(base_config)
        merged_config = self._apply_env_overrides(merged_config)

        config = self._build_config(merged_config)
        self._validate_config(config)

        self._cached_config = config
        return config

    def clear_cache(self) -> None:
        """Clear the cached configuration instance."""
        self._cached_config = None

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------
    def _load_default_config(self) -> Dict[str, Any]:
        if not self.default_path.exists():
            raise ConfigError(f"Default configuration file not found: {self.default_path}")

        with self.default_path.open("r", encoding="utf-8") as handle:
            try:
                return json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Unable to parse default configuration: {exc}") from exc

    def _merge_user_overrides(self, base: Dict[str, Any]) -> Dict[str, Any]:
        data = json.loads(json.dumps(base))  # deep copy
        if self.user_path.exists():
            with self.user_path.open("r", encoding="utf-8") as handle:
                try:
                    overrides = json.load(handle)
                except json.JSONDecodeError as exc:
                    raise ConfigError(f"Unable to parse user configuration: {exc}") from exc
            self._deep_merge(data, overrides)
        return data

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        result = json.loads(json.dumps(data))
        prefix_len = len(self.env_prefix)
        for key, value in os.environ.items():
            if not key.startswith(self.env_prefix):
                continue
            path_parts = key[prefix_len:].lower().split("__")
            parsed_value = self._parse_env_value(value)
            self._set_nested_value(result, path_parts, parsed_value)
        return result

    # ------------------------------------------------------------------
    # Build dataclasses
    # ------------------------------------------------------------------
    def _build_config(self, data: Dict[str, Any]) -> HistoryQueryConfig:
        try:
            http_data = data["http"]
            http = HttpConfig(
                timeout=float(http_data["timeout"]),
                accept=str(http_data["accept"]),
                accept_language=str(http_data["accept_language"]),
                user_agent=http_data.get("user_agent") or None,
            )
            endpoints_data = data["endpoints"]
            endpoints = EndpointsConfig(
                crumb_url_template=str(endpoints_data["crumb_url_template"]),
                download_url_template=str(endpoints_data["download_url_template"]),
            )
            crumb_data = data.get("crumb", {})
            crumb = CrumbConfig(strategy=str(crumb_data.get("strategy") or "regex"))

            query_data = data.get("query", {})
            query = QueryConfig(
                start_date=str(query_data.get("start_date") or ""),
                end_date=str(query_data.get("end_date") or ""),
            )

            output_data = data["output"]
            output = OutputConfig(
                directory=Path(output_data["directory"]),
                preview_rows=int(output_data.get("preview_rows", 5)),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing required configuration section: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration field: {exc}") from exc

        return HistoryQueryConfig(
            http=http,
            endpoints=endpoints,
            crumb=crumb,
            query=query,
            output=output,
        )

    # ------------------------------------------------------------------
    # Validation & utilities
    # ------------------------------------------------------------------
    def _validate_config(self, config: HistoryQueryConfig) -> None:
        if config.http.timeout <= 0:
            raise ConfigError("http.timeout must be greater than zero")

        if "{symbol}" not in config.endpoints.crumb_url_template:
            raise ConfigError("endpoints.crumb_url_template must contain {symbol}")

        missing = [
            placeholder
            for placeholder in DOWNLOAD_PLACEHOLDERS
            if placeholder not in config.endpoints.download_url_template
        ]
        if missing:
            raise ConfigError(f"endpoints.download_url_template is missing {', '.join(missing)}")

        if config.crumb.strategy.lower() not in CRUMB_STRATEGIES:
            raise ConfigError(f"crumb.strategy must be one of {', '.join(CRUMB_STRATEGIES)}")

        if config.output.preview_rows < 0:
            raise ConfigError("output.preview_rows must be non-negative")

    @staticmethod
    def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
        for key, value in overrides.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                ConfigManager._deep_merge(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        value = value.strip()
        if not value:
            return value
        lowered = value.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    @staticmethod
    def _set_nested_value(target: Dict[str, Any], path_parts: list[str], value: Any) -> None:
        current = target
        for part in path_parts[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]
        current[path_parts[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Return the currently cached configuration as a dictionary."""
        config = self.load()
        return config.as_dict()


__all__ = [
    "ConfigError",
    "ConfigManager",
    "HistoryQueryConfig",
    "HttpConfig",
    "EndpointsConfig",
    "CrumbConfig",
    "QueryConfig",
    "OutputConfig",
]
