"""Run configuration: defaults, validation and persistence.

Configuration (JSON file given with --config):
  api_url               - First URL of the source API (required)
  dataset_api_url       - Base URL of the dataset API (required)
  dataset_api_key       - API key for the dataset API
  dataset_mode          - "create" (default) or "update"
  dataset               - {"id": ..., "title": ...}
  dataset_type          - "rest" (default) or "file"
  detect_schema         - Infer the schema from the rows instead of "columns"
  columns               - Column definitions (explicit schema)
  force_update          - Allow new / changed columns on update runs
  result_path           - Path of the records in each response
  pagination            - {"method": "none" | "queryParams" | "nextPageData", ...}
  next_page_path        - Deprecated, use pagination.method=nextPageData
  auth                  - {"auth_method": ..., ...}, see auth.py
  authorization_header  - Raw Authorization header (legacy)
  request_timeout       - Timeout per request in seconds (default 300)
  fetch_max_tries       - Attempts per page fetch (default 1, no retry)
  upload_errors         - "abort" (default) or "log"
  falsy_as_missing      - Omit 0 / false / "" in inferred mode (default true)
  finalize_poll_interval - Seconds between finalize checks (default 2)
  finalize_timeout      - Max seconds to wait for a finalize (default 600)
"""

import copy
import json
import os

import singer

LOGGER = singer.get_logger()

REQUIRED_CONFIG_KEYS = [
    "api_url",
    "dataset_api_url",
]

DEFAULT_CONFIG = {
    "dataset_mode": "create",
    "dataset": {},
    "dataset_type": "rest",
    "detect_schema": False,
    "columns": [],
    "force_update": False,
    "result_path": None,
    "pagination": None,
    "next_page_path": None,
    "auth": None,
    "authorization_header": None,
    "request_timeout": 300,
    "fetch_max_tries": 1,
    "upload_errors": "abort",
    "falsy_as_missing": True,
    "finalize_poll_interval": 2,
    "finalize_timeout": 600,
    "user_agent": "rest-dataset-sync/1.0",
}

DATASET_MODES = ("create", "update")
DATASET_TYPES = ("rest", "file")
UPLOAD_ERROR_POLICIES = ("abort", "log")


class ConfigError(ValueError):
    """Invalid run configuration."""


def with_defaults(config):
    merged = copy.deepcopy(DEFAULT_CONFIG)
    merged.update({k: v for k, v in config.items() if v is not None})
    return merged


def validate_config(config):
    """Check a configuration and return it merged with the defaults.

    Raises:
        ConfigError: On the first problem found.
    """
    missing = [key for key in REQUIRED_CONFIG_KEYS if not config.get(key)]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    config = with_defaults(config)

    if config["dataset_mode"] not in DATASET_MODES:
        raise ConfigError(
            f"Unknown dataset_mode '{config['dataset_mode']}'. "
            f"Supported: {', '.join(DATASET_MODES)}"
        )
    if config["dataset_type"] not in DATASET_TYPES:
        raise ConfigError(
            f"Unknown dataset_type '{config['dataset_type']}'. "
            f"Supported: {', '.join(DATASET_TYPES)}"
        )
    if config["upload_errors"] not in UPLOAD_ERROR_POLICIES:
        raise ConfigError(
            f"Unknown upload_errors policy '{config['upload_errors']}'. "
            f"Supported: {', '.join(UPLOAD_ERROR_POLICIES)}"
        )
    if config["dataset_mode"] == "update" and not config["dataset"].get("id"):
        raise ConfigError("dataset.id is required when dataset_mode is 'update'")
    if config["detect_schema"] and config["dataset_type"] == "file":
        raise ConfigError("File datasets need explicit columns, detect_schema is not supported")
    if not config["detect_schema"] and not config["columns"]:
        raise ConfigError("columns are required unless detect_schema is enabled")

    return config


def merge_patch(target, patch):
    """Deep-merge patch into target (in place) and return target."""
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            merge_patch(target[key], value)
        else:
            target[key] = value
    return target


class ConfigStore:
    """Persists configuration patches into the JSON config file.

    Used after a dataset is created so the next run updates it.
    """

    def __init__(self, path):
        self.path = path

    def load(self):
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def patch_config(self, patch):
        config = merge_patch(self.load(), patch)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
        LOGGER.info("Configuration %s updated: %s", self.path, json.dumps(patch))
        return config
