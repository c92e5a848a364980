"""
Configuration loading utilities for the dynamic form engine.

This module loads config.yaml, merges it over the built-in defaults and
exposes single-value lookups for the rest of the application.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging
from copy import deepcopy

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.yaml")

DEFAULT_SCHEMA_URL = "https://private-705dcb-formgenerator1.apiary-mock.com/form_fields"

# Global configuration cache
_config_cache: Optional[Dict[str, Any]] = None


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with update_dict taking precedence.

    Args:
        base_dict: Base dictionary (defaults)
        update_dict: Dictionary to merge in (user config)

    Returns:
        Merged dictionary
    """
    result = deepcopy(base_dict)

    for key, value in update_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def get_default_config() -> Dict[str, Any]:
    """
    Get the default configuration.

    Returns:
        Dictionary with default configuration
    """
    return {
        'app': {
            'name': 'Dynamic Form Generator',
            'version': '1.0.0',
            'debug': False
        },
        'schema': {
            'default_url': DEFAULT_SCHEMA_URL,
            'fetch_timeout': 10
        },
        'sync': {
            'debounce_ms': 500,
            'validity_poll_ms': 500
        },
        'storage': {
            'backend': 'file',
            'directory': '.form_storage'
        },
        'ui': {
            'page_title': 'Dynamic Form Generator'
        },
        'logging': {
            'level': 'INFO'
        }
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load application configuration.

    Results for the default path are cached; pass an explicit path to bypass
    the cache.

    Args:
        config_path: Optional path to config file (defaults to config.yaml)

    Returns:
        Complete configuration dictionary
    """
    global _config_cache

    use_cache = config_path is None
    if use_cache and _config_cache is not None:
        return _config_cache

    if config_path is None:
        config_path = CONFIG_FILE

    config = _read_config_file(config_path)

    if use_cache:
        _config_cache = config
    return config


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    default_config = get_default_config()

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.info("Using default configuration")
        return default_config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)

        if user_config is None:
            logger.warning(f"Configuration file is empty: {config_path}")
            return default_config

        if not isinstance(user_config, dict):
            logger.error(f"Configuration file is not a valid dictionary: {config_path}")
            logger.info("Using default configuration")
            return default_config

        config = deep_merge(default_config, user_config)

        logger.info(f"Successfully loaded configuration from {config_path}")
        return config

    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config

    except (IOError, OSError) as e:
        logger.error(f"Failed to read configuration file {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config


def reload_config() -> Dict[str, Any]:
    """
    Force reload of configuration from file.
    Useful for testing or when configuration changes.
    """
    global _config_cache
    _config_cache = None
    return load_config()


def get_config_value(section: str, key: str, default: Any = None) -> Any:
    """
    Get a specific configuration value.

    Args:
        section: Configuration section (e.g., 'schema', 'sync')
        key: Configuration key within section
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    config = load_config()
    section_values = config.get(section, {})
    if not isinstance(section_values, dict):
        return default
    return section_values.get(key, default)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure and value ranges.

    Args:
        config: Configuration dictionary to validate

    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ['app', 'schema', 'sync', 'storage']

    for section in required_sections:
        if not isinstance(config.get(section), dict):
            logger.warning(f"Missing required configuration section: {section}")
            return False

    app = config['app']
    if 'name' not in app or 'version' not in app:
        logger.warning("Missing required app configuration (name or version)")
        return False

    for section, key in [('schema', 'fetch_timeout'), ('sync', 'debounce_ms'), ('sync', 'validity_poll_ms')]:
        if key in config[section]:
            try:
                value = float(config[section][key])
            except (ValueError, TypeError):
                logger.warning(f"{section}.{key} must be a valid number")
                return False
            if value <= 0:
                logger.warning(f"{section}.{key} must be positive")
                return False

    backend = config['storage'].get('backend', 'file')
    if backend not in ('file', 'memory'):
        logger.warning(f"Unsupported storage backend: {backend}")
        return False

    if backend == 'file' and not isinstance(config['storage'].get('directory'), str):
        logger.warning("storage.directory must be a string when backend is 'file'")
        return False

    return True


def get_logging_level(level_str: str) -> int:
    """Map string logging level to logging constant."""
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    return level_map.get(str(level_str).upper(), logging.INFO)
