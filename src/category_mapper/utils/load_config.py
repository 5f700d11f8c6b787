import os

import yaml

from category_mapper.exception import ConfigError

DEFAULT_CONFIG_PATH = "config.yaml"


def load_config_file(file_path=None):
    """
    Loads the configuration from the specified YAML file.

    Args:
        file_path (str): Path to the YAML configuration file. Falls back to the
            CATEGORY_MAPPER_CONFIG env var, then ./config.yaml.

    Returns:
        dict: Parsed configuration as a dictionary.
    """
    path = file_path or os.getenv("CATEGORY_MAPPER_CONFIG", DEFAULT_CONFIG_PATH)
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r") as file:
        return yaml.safe_load(file) or {}
