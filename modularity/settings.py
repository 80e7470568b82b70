"""
Modularity - Host Settings

Environment-driven defaults for the application builder.
Uses environment variables (and a ``.env`` file) with sensible defaults.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from modularity.lifecycle import FailurePolicy


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


def _optional_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw) if raw else None


@dataclass
class HostSettings:
    """Settings read by ApplicationBuilder.from_settings()."""
    environment: str = field(default_factory=lambda: os.getenv("MODULARITY_ENVIRONMENT", "Production"))
    failure_policy: FailurePolicy = field(
        default_factory=lambda: FailurePolicy.parse(os.getenv("MODULARITY_FAILURE_POLICY", "fail_fast"))
    )
    hook_timeout: Optional[float] = field(default_factory=lambda: _optional_float("MODULARITY_HOOK_TIMEOUT"))
    config_prefix: str = field(default_factory=lambda: os.getenv("MODULARITY_CONFIG_PREFIX", "MODULARITY_"))
    config_file: Optional[Path] = field(default_factory=lambda: _optional_path("MODULARITY_CONFIG_FILE"))
    log_level: str = field(default_factory=lambda: os.getenv("MODULARITY_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")))

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "HostSettings":
        """Load a ``.env`` file (without overriding the process environment) and read settings."""
        load_dotenv(env_file)
        return cls()

    def validate(self) -> None:
        if self.hook_timeout is not None and self.hook_timeout <= 0:
            raise ValueError("MODULARITY_HOOK_TIMEOUT must be positive")
        if not self.environment.strip():
            raise ValueError("MODULARITY_ENVIRONMENT must not be blank")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "failure_policy": self.failure_policy.value,
            "hook_timeout": self.hook_timeout,
            "config_prefix": self.config_prefix,
            "config_file": str(self.config_file) if self.config_file else None,
            "log_level": self.log_level,
        }


__all__ = ["HostSettings"]
