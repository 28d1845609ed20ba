"""Configuration loader for SpeakCoach"""

import yaml
from pathlib import Path
from typing import Any, Dict
import os


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Config:
    """Configuration manager for SpeakCoach"""

    def __init__(self, config_path: str = None):
        if config_path is None:
            config_path = os.getenv('SPEAKCOACH_CONFIG')
        if config_path is None:
            env = os.getenv('SPEAKCOACH_ENV', 'development')
            config_path = str(self._resolve_default(env))

        self.config_path = Path(config_path)
        self._config = self._load_config()

    @staticmethod
    def _resolve_default(env: str) -> Path:
        """Find the config file for an environment.

        Environment-specific files win over the default one, and the working
        directory wins over the project checkout.
        """
        for base in (Path("config"), _PROJECT_ROOT / "config"):
            env_config = base / f"config.{env}.yaml"
            if env_config.exists():
                return env_config
            default_config = base / "config.yaml"
            if default_config.exists():
                return default_config
        return Path("config/config.yaml")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation

        Args:
            key: Configuration key in dot notation (e.g., 'session.join_timeout')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def __getitem__(self, key: str) -> Any:
        """Allow dictionary-style access"""
        return self.get(key)

    def validate(self) -> None:
        """Validate configuration values"""
        join_timeout = self.get('session.join_timeout')
        if join_timeout is not None and join_timeout <= 0:
            raise ValueError(f"Invalid join_timeout: {join_timeout}, must be positive")

        max_duration = self.get('session.max_duration')
        if max_duration is not None and max_duration < 0:
            raise ValueError(f"Invalid max_duration: {max_duration}, must be non-negative (0 disables the limit)")

        target_fps = self.get('video.target_fps')
        if target_fps is not None and target_fps <= 0:
            raise ValueError(f"Invalid target_fps: {target_fps}, must be positive")

        for section in ('scoring.voice_weights', 'scoring.facial_weights', 'scoring.combined_weights'):
            weights = self.get(section) or {}
            if any(w < 0 for w in weights.values()):
                raise ValueError(f"Negative weight in {section}: {weights}")
            if weights and sum(weights.values()) <= 0:
                raise ValueError(f"Weights in {section} must not all be zero")


# Global config instance
config = Config()
