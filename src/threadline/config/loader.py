"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from threadline.config.merge import merge_configs
from threadline.config.paths import get_config_paths
from threadline.config.schema import Config, LoggingConfig, ToolPolicyConfig

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("threadline.config")

VALID_TOOL_POLICIES = frozenset({"allow", "deny", "require-approval"})

_TRUTHY = {"1", "true", "yes", "on"}

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Environment variables take highest priority.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("THREADLINE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    auto_approve = os.environ.get("THREADLINE_AUTO_APPROVE_TOOLS")
    if auto_approve is not None:
        overrides.setdefault("tools", {})["auto_approve_tools"] = _split_list(auto_approve)

    disabled = os.environ.get("THREADLINE_DISABLE_TOOLS")
    if disabled is not None:
        overrides.setdefault("tools", {})["disable_tools"] = _split_list(disabled)

    disable_all = os.environ.get("THREADLINE_DISABLE_ALL_TOOLS")
    if disable_all is not None:
        overrides.setdefault("tools", {})["disable_all_tools"] = (
            disable_all.strip().lower() in _TRUTHY
        )

    return overrides


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _tool_policies(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    policies: dict[str, str] = {}
    for tool_name, policy in value.items():
        policy_str = str(policy).strip().lower()
        if policy_str not in VALID_TOOL_POLICIES:
            _log.warning("Invalid policy '%s' for tool '%s', ignoring", policy, tool_name)
            continue
        policies[str(tool_name)] = policy_str
    return policies


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    log_data = data.get("logging") or {}
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=verbose if isinstance(verbose, int) else None,
        file=log_data.get("file"),
    )

    tools_data = data.get("tools") or {}
    tools = ToolPolicyConfig(
        disable_all_tools=bool(tools_data.get("disable_all_tools", False)),
        allow_non_destructive_tools=bool(tools_data.get("allow_non_destructive_tools", False)),
        disable_tool_guardrails=bool(tools_data.get("disable_tool_guardrails", False)),
        auto_approve_tools=_str_list(tools_data.get("auto_approve_tools")),
        disable_tools=_str_list(tools_data.get("disable_tools")),
        policies=_tool_policies(tools_data.get("policies")),
    )

    known_keys = {"logging", "tools"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(logging=logging_config, tools=tools, extra=extra)


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.threadline/config.yaml)
    3. User config
    4. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it if needed."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(project_root=project_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
