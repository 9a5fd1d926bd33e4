"""Configuration schema dataclasses for threadline.

Defines the structure of configuration at all levels (system, user, project).
All fields are optional to support partial configs that merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path


@dataclass
class ToolPolicyConfig:
    """Tool approval policy.

    Example config.yaml:
        tools:
          allow_non_destructive_tools: true
          auto_approve_tools: [file_read, ripgrep_search]
          disable_tools: [url_fetch]
          policies:
            bash: require-approval
            file_write: allow
    """

    disable_all_tools: bool = False
    allow_non_destructive_tools: bool = False
    disable_tool_guardrails: bool = False  # Auto-approve anything not disabled
    auto_approve_tools: list[str] = field(default_factory=list)
    disable_tools: list[str] = field(default_factory=list)
    policies: dict[str, str] = field(default_factory=dict)  # tool -> allow|deny|require-approval


@dataclass
class Config:
    """Root configuration object."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tools: ToolPolicyConfig = field(default_factory=ToolPolicyConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
