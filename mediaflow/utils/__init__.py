"""
mediaflow utilities

Configuration, the generation-service client and shared helpers.
"""
from .config import (
    get_config_manager,
    ConfigManager,
    MediaflowConfig,
    ServiceConfig,
    CredentialsConfig,
    EngineConfig,
)
from .common import (
    normalize_path,
    format_duration,
    summarize_value,
    print_section,
    save_json,
    load_json,
)

__all__ = [
    'get_config_manager',
    'ConfigManager',
    'MediaflowConfig',
    'ServiceConfig',
    'CredentialsConfig',
    'EngineConfig',
    'normalize_path',
    'format_duration',
    'summarize_value',
    'print_section',
    'save_json',
    'load_json',
]
