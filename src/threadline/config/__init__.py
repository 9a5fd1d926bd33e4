"""Configuration management for threadline.

Hierarchical YAML-based configuration:
- System-level config (/etc/threadline/ or %PROGRAMDATA%)
- User-level config (~/.threadline/ or %APPDATA%)
- Project-level config ($project_root/.threadline/)
- Environment variable overrides (highest priority)

Example usage:
    from threadline.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.tools.auto_approve_tools)
"""

from threadline.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from threadline.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from threadline.config.schema import Config, LoggingConfig, ToolPolicyConfig

__all__ = [
    "Config",
    "LoggingConfig",
    "ToolPolicyConfig",
    "get_config",
    "get_config_paths",
    "get_project_config_path",
    "get_system_config_path",
    "get_user_config_path",
    "load_config",
    "on_config_reload",
    "reload_config",
    "reset_config",
]
