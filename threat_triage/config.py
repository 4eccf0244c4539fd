"""Configuration management for the threat triage pipeline."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

PROJECT_ROOT = Path(__file__).parent.parent

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    'THREAT_TRIAGE_CACHE_PATH': 'cache.path',
    'THREAT_TRIAGE_CACHE_BACKEND': 'cache.backend',
    'THREAT_TRIAGE_LOG_LEVEL': 'logging.level',
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


class Config:
    """Layered pipeline settings: default.yaml, local.yaml, a custom file, then env vars."""

    def __init__(self, config_path: Optional[str] = None, config_dir: Optional[Path] = None):
        """
        Load every configuration layer.

        Args:
            config_path: Optional YAML file merged over the packaged defaults
            config_dir: Directory holding default.yaml and local.yaml
        """
        self.config_dir = Path(config_dir) if config_dir else PROJECT_ROOT / "config"
        self.config = _read_yaml(self.config_dir / "default.yaml")

        layers = [self.config_dir / "local.yaml"]
        if config_path:
            layers.append(Path(config_path))
        for layer in layers:
            if layer.exists():
                self._merge_configs(self.config, _read_yaml(layer))

        self._apply_env_overrides()

    def _merge_configs(self, base: Dict, override: Dict):
        """Recursively merge override config into base config."""
        for key, value in override.items():
            if isinstance(base.get(key), dict) and isinstance(value, dict):
                self._merge_configs(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self):
        for env_name, dotted in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if not value:
                continue
            *parents, leaf = dotted.split('.')
            section = self.config
            for name in parents:
                section = section.setdefault(name, {})
            section[leaf] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Dotted key such as 'cache.ttl_seconds'
            default: Returned when any part of the key is missing

        Returns:
            The configured value or the default
        """
        node: Any = self.config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def resolve_path(self, path: Optional[str]) -> Optional[Path]:
        """Resolve a configured path relative to the project root."""
        if not path:
            return None
        candidate = Path(path)
        return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate

    def get_feeds(self) -> List[Dict[str, Any]]:
        """Feed file entries under ingestion.feeds that are not disabled."""
        feeds = self.get('ingestion.feeds', []) or []
        return [feed for feed in feeds if feed.get('enabled', True)]

    def get_cache_path(self) -> str:
        return str(self.resolve_path(self.get('cache.path', 'data/threat_cache.db')))


def get_config(config_path: Optional[str] = None) -> Config:
    """Build a config instance from the default files plus an optional override."""
    return Config(config_path)
