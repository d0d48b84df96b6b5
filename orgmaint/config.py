#!/usr/bin/env python3

import os
import json
import tomllib
from pathlib import Path

import logging
import sys

import toml
import yaml

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr) # Default to stderr
    ]
)
logger = logging.getLogger("orgmaint")

CONFIG_FILENAMES = ['config.json', 'config.toml', 'config.yaml', 'config.yml']


def get_config_path():
    """Get the path to the configuration file.

    Checks in order:
    1. ORGMAINT_CONFIG environment variable
    2. ~/.orgmaint/ directory
    """
    if 'ORGMAINT_CONFIG' in os.environ:
        return Path(os.path.expanduser(os.environ['ORGMAINT_CONFIG']))

    config_dir = Path.home() / '.orgmaint'
    for filename in CONFIG_FILENAMES:
        path = config_dir / filename
        if path.exists() and path.stat().st_size > 10:  # Not empty/trivial
            return path

    # If no file exists, return default path for saving
    return config_dir / 'config.json'


def load_config():
    """Load configuration from file."""
    config_path = get_config_path()

    config = get_default_config()

    if config_path.exists():
        try:
            if config_path.suffix.lower() in ['.toml']:
                with open(config_path, 'rb') as f:
                    file_config = tomllib.load(f)
            elif config_path.suffix.lower() in ['.yaml', '.yml']:
                with open(config_path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            else:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)

            config = merge_configs(config, file_config)
        except Exception as e:
            logger.error(f"Error loading config from {config_path}: {e}")

    config = apply_env_overrides(config)

    return config


def save_config(config):
    """Save configuration to file."""
    config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        if config_path.suffix.lower() in ['.toml']:
            with open(config_path, 'w') as f:
                toml.dump(config, f)
        elif config_path.suffix.lower() in ['.yaml', '.yml']:
            with open(config_path, 'w') as f:
                yaml.safe_dump(config, f, default_flow_style=False)
        else:
            with open(config_path, 'w') as f:
                json.dump(config, f, indent=2)

        logger.info(f"Configuration saved to {config_path}")
    except Exception as e:
        logger.error(f"Error saving config to {config_path}: {e}")


def get_default_config():
    """Get default configuration."""
    return {
        "general": {
            "work_dir": "",                # Empty means a fresh temp dir per run
            "log_dir": ".",                # Where per-org run logs are written
            "max_workers": 4,
            "rate_limit_delay": 2,         # Seconds to pause between repositories
        },
        "github": {
            "token": "",
            "org": "SciML",
            "fork_user": "",
            "repo_limit": 100,
            "rate_limit": {
                "max_retries": 3,
                "max_delay_seconds": 60,
            }
        },
        "git": {
            "timeout": 300,
            "bot_name": "SciML Bot",
            "bot_email": "sciml-bot@julialang.org",
            "registration_author_name": "OrgMaintenanceScripts",
            "registration_author_email": "noreply@sciml.ai",
        },
        "julia": {
            "executable": "julia",
            "registry": "General",
            "registries_dir": "~/.julia/registries",
            "test_timeout_minutes": 30,
            "julia_version": "1.10",
            "juliaup": False,              # Select julia_version via `julia +<channel>`
        },
        "formatting": {
            "style": "sciml",
            "branch": "fix-formatting",
            "workflows": ["Format Check", "FormatCheck", "format-check"],
        },
        "version_checks": {
            "min_version": "1.10",
            "agent_command": "claude -p",
            "agent_timeout_minutes": 60,
        },
        "logging": {
            "level": "INFO",
            "format": "%(message)s"
        },
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


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: ORGMAINT_SECTION_SUBSECTION_KEY
    For example: ORGMAINT_JULIA_TEST_TIMEOUT_MINUTES=60
    """
    env_prefix = "ORGMAINT_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix) or env_key == "ORGMAINT_CONFIG":
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Longest config key that prefixes the remaining parts wins
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


def get_registries_dir(config=None):
    """Return the expanded path of the local Julia registries directory."""
    config = config or load_config()
    return Path(os.path.expanduser(config["julia"]["registries_dir"]))


def set_log_level(level):
    """Set the root log level, accepting names like 'DEBUG' or ints."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
