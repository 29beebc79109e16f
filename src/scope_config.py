"""Scope configuration for AI review detection and outcome tracking.

Recognized options (camelCase as they appear in aireview.yaml, snake_case
also accepted):

- `codeRabbitEnabled` / `codeRabbitUsername` / `codeRabbitPattern`
- `cursorBugbotEnabled` / `cursorBugbotUsername` / `cursorBugbotPattern`
- `qodoEnabled` / `qodoUsername` / `qodoPattern`
- `riskHighPattern` / `riskMediumPattern` / `riskLowPattern`
- `bugLinkPattern`
- `observationWindowDays` (0 or unset means 14)

Usernames are matched literally and case-insensitively against the comment
author's account id; every other pattern is a regular expression.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .config import DEFAULT_OBSERVATION_WINDOW_DAYS
from .errors import ConfigurationError

CONFIG_CANDIDATES = ["aireview.yaml", ".aireview.yaml", "aireview.yml", ".aireview.yml"]


class ScopeConfig(BaseModel):
    """Patterns and windows for one analysis scope.

    Field defaults are the system-wide defaults, so a partial mapping only
    overrides what it names.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    # CodeRabbit
    code_rabbit_enabled: bool = True
    code_rabbit_username: str = "coderabbitai"
    code_rabbit_pattern: str = r"(?i)(coderabbit|walkthrough|summary by coderabbit)"

    # Cursor Bugbot
    cursor_bugbot_enabled: bool = True
    cursor_bugbot_username: str = "cursor"
    cursor_bugbot_pattern: str = r"(?i)(bugbot|cursor bugbot)"

    # Qodo (formerly Codium)
    qodo_enabled: bool = True
    qodo_username: str = "qodo-merge"
    qodo_pattern: str = r"(?i)(pr reviewer guide|qodo merge|codiumai)"

    # Risk classification, checked high -> medium -> low
    risk_high_pattern: str = r"(?i)(critical|security|vulnerab|breaking.?change|data.?loss)"
    risk_medium_pattern: str = r"(?i)(warning|moderate|performance|potential.?issue)"
    risk_low_pattern: str = r"(?i)(minor|nitpick|style|typo|suggestion)"

    bug_link_pattern: str = r"(?i)(fix(es|ed)?|close[sd]?|resolve[sd]?)\s+#\d+"

    observation_window_days: int = DEFAULT_OBSERVATION_WINDOW_DAYS

    @field_validator("observation_window_days", mode="before")
    @classmethod
    def _default_window(cls, value: Any) -> Any:
        if value is None or value == 0:
            return DEFAULT_OBSERVATION_WINDOW_DAYS
        return value

    @field_validator("observation_window_days")
    @classmethod
    def _positive_window(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @classmethod
    def default(cls) -> ScopeConfig:
        """System-wide defaults used when a run has no scope config."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScopeConfig:
        """Create config from a mapping (e.g. parsed YAML).

        Raises ConfigurationError naming the first unknown or invalid field.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "scopeConfig"
            raise ConfigurationError(field, error["msg"]) from e

    @classmethod
    def load(cls, path: Path | str | None = None) -> ScopeConfig:
        """Load config from YAML file or return defaults."""
        if path is None:
            # Try common locations
            for candidate in CONFIG_CANDIDATES:
                if Path(candidate).exists():
                    path = candidate
                    break

        if path is None:
            return cls.default()

        if not Path(path).exists():
            raise ConfigurationError("config", f"file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError("config", f"expected a mapping in {path}")

        return cls.from_dict(data or {})

    def to_yaml(self) -> str:
        """Serialize config to YAML using the camelCase option names."""
        return yaml.dump(self.model_dump(by_alias=True), default_flow_style=False, sort_keys=False)
