#!/usr/bin/env python3

import os
import json
import tomllib
from pathlib import Path

import logging
import sys

import yaml

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr) # Default to stderr
    ]
)
logger = logging.getLogger("branchsource")

CONFIG_FILENAMES = ['config.json', 'config.toml', 'config.yaml', 'config.yml']


def get_config_path():
    """Get the path to the configuration file.

    Checks in order:
    1. BRANCHSOURCE_CONFIG environment variable
    2. ~/.branchsource/ directory
    """
    if 'BRANCHSOURCE_CONFIG' in os.environ:
        path = Path(os.environ['BRANCHSOURCE_CONFIG']).expanduser()
        if path.exists():
            return path
        logger.warning(f"BRANCHSOURCE_CONFIG points to missing file {path}")

    config_dir = Path.home() / '.branchsource'
    for filename in CONFIG_FILENAMES:
        path = config_dir / filename
        if path.exists() and path.stat().st_size > 0:
            return path

    return config_dir / 'config.json'


def read_config_file(config_path):
    """Parse a JSON, TOML or YAML config file by its suffix."""
    suffix = config_path.suffix.lower()
    if suffix == '.toml':
        with open(config_path, 'rb') as f:
            return tomllib.load(f)
    if suffix in ['.yaml', '.yml']:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    with open(config_path, 'r') as f:
        return json.load(f)


def load_config(config_path=None):
    """Load configuration from file, on top of the defaults."""
    config_path = Path(config_path) if config_path else get_config_path()

    config = get_default_config()

    if config_path.exists():
        try:
            file_config = read_config_file(config_path)
            config = merge_configs(config, file_config)
        except (OSError, ValueError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
            logger.error(f"Error loading config from {config_path}: {e}")

    config = apply_env_overrides(config)
    configure_logging(config)
    return config


def configure_logging(config):
    """Apply the ``logging`` section to the branchsource logger."""
    section = config.get('logging', {})
    level = str(section.get('level', 'INFO')).upper()
    logger.setLevel(getattr(logging, level, logging.INFO))
    fmt = section.get('format')
    if fmt:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(logging.Formatter(fmt))


def get_default_config():
    """Get default configuration."""
    return {
        "github": {
            "api_uri": "https://api.github.com",
            "app_id": "",
            "private_key_file": "",
            "owner": "",
            "token": "",
            "timeout_seconds": 30,
            "rate_limit": {
                "max_retries": 3,
                "max_delay_seconds": 60
            }
        },
        "tokens": {
            "not_stale_minimum_seconds": 60,
            "stale_before_expiration_seconds": 45 * 60,
            "maximum_age_seconds": 30 * 60,
            "use_stale_on_failure": True,
            "organizations_ttl_seconds": 60 * 60,
            "max_cached_tokens": 100
        },
        "discovery": {
            "branches": "exclude-pr-branches",
            "tags": False,
            "origin_pull_requests": ["merge"],
            "fork_pull_requests": {
                "strategies": ["merge"],
                "trust": "contributors"
            },
            "branch_includes": "*",
            "branch_excludes": "",
            "label_includes": "*",
            "label_excludes": "",
            "ignore_drafts": False,
            "merge_retry_delay_seconds": 5,
            "max_parallel_scans": 4,
            "notifications": {
                "disabled": False,
                "context_label": "",
                "type_suffix": True
            }
        },
        "probe": {
            "history_size": 10000
        },
        "logging": {
            "level": "INFO",
            "format": "%(levelname)s: %(message)s"
        }
    }


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def _typed(value):
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: BRANCHSOURCE_SECTION_KEY
    For example: BRANCHSOURCE_TOKENS_NOT_STALE_MINIMUM_SECONDS=30
    """
    env_prefix = "BRANCHSOURCE_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix) or env_key == 'BRANCHSOURCE_CONFIG':
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')
        typed_value = _typed(value)

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts = config_key.split('_')
                if key_parts[i : i + len(config_key_parts)] == config_key_parts:
                    if len(config_key_parts) > best_match_len:
                        best_match_len = len(config_key_parts)
                        matched_key = config_key

            if matched_key:
                if i + best_match_len == len(key_parts):
                    # String settings stay strings, e.g. BRANCHSOURCE_GITHUB_APP_ID=12345
                    if isinstance(current_level[matched_key], str):
                        typed_value = value
                    current_level[matched_key] = typed_value
                    break

                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    break
            else:
                break

    return config
