"""Application configuration loading and validation."""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import ConfigError


class LimitsConfig(BaseModel):
    """Table sizes and nesting limits for the rc file."""
    max_accounts: int = Field(default=100, ge=1)
    max_mime: int = Field(default=40, ge=1)
    max_tables: int = Field(default=100, ge=1)
    max_columns: int = Field(default=20, ge=1)
    max_recipients: int = Field(default=10, ge=1)
    max_agents: int = Field(default=10, ge=1)
    max_nest: int = Field(default=20, ge=2, le=200)
    max_include_depth: int = Field(default=16, ge=1, le=256)
    max_function_name: int = Field(default=10, ge=1)


class SafetyConfig(BaseModel):
    """Runaway protection for function execution."""
    max_call_depth: int = Field(default=64, ge=1)
    # 0 disables the guard
    max_loop_iterations: int = Field(default=100000, ge=0)


class AppConfig(BaseModel):
    """Main edscript configuration."""
    name: str = Field(default="edscript")
    version: str = Field(default="0.1.0")

    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)

    # Paths
    rc_file: str = Field(default="~/.ebrc")
    replacements_file: str = Field(default="jslocal")

    default_agent: str = Field(default="edscript/0.1.0")
    log_format: str = Field(default="console")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("console", "json"):
            raise ValueError("log_format must be console or json")
        return v

    def rc_path(self) -> Path:
        return Path(self.rc_file).expanduser()


class AppConfigLoader:
    """Loads and validates YAML/JSON application configuration."""

    def load(self, path: Optional[str] = None) -> AppConfig:
        """Load the application configuration, defaults when no path is given."""
        if path is None:
            return AppConfig()

        path = Path(path)
        data = self._load_file(path)
        try:
            return AppConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid application config: {e}", config_path=str(path))

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text(encoding="utf-8")

            if path.suffix in (".yaml", ".yml"):
                return yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                return json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))
