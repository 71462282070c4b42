import yaml
import os
import re
from pathlib import Path
from dotenv import dotenv_values
from typing import Any, Union


def get_ancestor_dir(start_path: Union[str, Path], steps: int) -> Path:
    if not isinstance(steps, int) or steps < 0:
        raise ValueError("Steps must be a non-negative integer.")

    path = Path(start_path).resolve()
    if path.is_file():
        path = path.parent

    for _ in range(steps):
        original_path = path
        path = path.parent
        # Check if we have gone past the root directory (e.g., '/')
        if path == original_path:
            raise ValueError(
                f"Cannot go up {steps} levels from '{start_path}'. "
                "Traversal went beyond the filesystem root."
            )

    return path


def _load_yaml_file(filepath: str):
    """Loads a single YAML file."""
    if os.path.exists(filepath):
        try:
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            print(f"Error loading YAML file '{filepath}': {e}")
            return {}
    return {}


def _load_env(filepath: str):
    """Loads environment variables from a .env file."""
    if os.path.exists(filepath):
        return dotenv_values(filepath)
    return {}


def _resolve_placeholders(data, original_data: dict):
    """
    Recursively replaces placeholder strings ('${key}') in a dictionary or list
    using top-level values of original_data.
    """
    if isinstance(data, dict):
        return {k: _resolve_placeholders(v, original_data) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_placeholders(item, original_data) for item in data]
    elif isinstance(data, str):
        for match in re.findall(r"\$\{(\w+)\}", data):
            replacement_value = original_data.get(match)
            if replacement_value is not None:
                data = data.replace(f"${{{match}}}", f"{replacement_value}")
        return data
    else:
        return data


def recursive_replace(data, old_value, new_value):
    """
    Recursively replace string values in nested dictionaries/lists.
    """
    if isinstance(data, dict):
        return {
            key: recursive_replace(value, old_value, new_value)
            for key, value in data.items()
        }
    elif isinstance(data, list):
        return [recursive_replace(item, old_value, new_value) for item in data]
    elif isinstance(data, str):
        return data.replace(old_value, new_value)
    else:
        return data


def handle_env_path(filedir) -> dict:
    """
    .env next to the repository root wins, then ENV_FILE_DIR/.env, then the
    process environment for the known keys.
    """
    filepath = os.path.join(filedir, ".env")
    if os.path.exists(filepath):
        return _load_env(filepath)
    if os.environ.get("ENV_FILE_DIR"):
        return _load_env(os.path.join(os.environ["ENV_FILE_DIR"], ".env"))
    return dict((key, os.environ.get(key)) for key in ENV_KEYS)


def load_configs(filepath: Union[str, Path], replacements: dict = None) -> dict:
    loaded_data = _load_yaml_file(str(filepath))
    for key, value in (replacements or {}).items():
        loaded_data = recursive_replace(loaded_data, old_value=key, new_value=value)
    # placeholders may reference env keys as well as top-level yaml keys
    return _resolve_placeholders(loaded_data, {**env, **loaded_data})


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """Reads configs[section][key], falling back to default when either is missing."""
    value = (configs.get(section) or {}).get(key)
    return default if value is None else value


ENV_KEYS = [
    "MONGO_URI",
    "MONGO_DB",
    "LOG_LEVEL",
]

REPO_ROOT = get_ancestor_dir(__file__, 2)
CONFIGS_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = Path(CONFIGS_DIR).parent.resolve()

replacements = {"<ROOT_PATH>": str(PROJECT_ROOT)}

env: dict = {k: v for k, v in handle_env_path(REPO_ROOT).items() if v is not None}
configs: dict = load_configs(os.path.join(CONFIGS_DIR, "config.yaml"), replacements)
