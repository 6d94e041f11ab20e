"""Configuration management for the RashTrackr offline cache controller."""

import copy
from typing import Any, List, Tuple

PRECACHE_MODES = ("strict", "best_effort")
QUEUE_BACKENDS = ("memory", "sqlite")

# Default configuration schema
DEFAULT_CONFIG = {
    "server": {"host": "127.0.0.1", "port": 8080, "admin_prefix": "/__offline__"},
    "origin": "http://127.0.0.1:3000",
    "cache": {
        "name_prefix": "rashtrackr",
        "version": "v1",
        "database_path": ":memory:",
        "max_cache_response_size": 10485760,  # 10MB
        "compression_threshold": 1024,
    },
    "precache": {
        "mode": "strict",
        "urls": [
            "/",
            "/static/js/bundle.js",
            "/static/css/main.css",
            "/manifest.json",
            "/favicon.ico",
            "/logo192.png",
            "/logo512.png",
        ],
    },
    "offline": {"page": "/offline.html"},
    "sync": {
        "tag": "background-sync",
        "endpoint": "/api/reports",
        "min_interval_seconds": 300,  # 5 minutes
        "queue_backend": "memory",
        "capture_offline_writes": True,
    },
    "network": {"timeout": 60, "min_request_interval_ms": 0},
    "notifications": {
        "title": "RashTrackr",
        "default_body": "New notification from RashTrackr",
        "icon": "/logo192.png",
        "badge": "/logo192.png",
        "vibrate": [100, 50, 100],
        "click_url": "/dashboard",
    },
    "lifecycle": {"auto_install": True, "auto_activate": True},
    "logging": {
        "level": "INFO",
        "parent_logger": None,
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "date_format": "%Y-%m-%d %H:%M:%S",
        "enable_console": True,
        "enable_file": False,
        "file_path": None,
        "max_file_size": 10485760,  # 10MB
        "backup_count": 5,
    },
    "callbacks": {},
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge two dictionaries."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConfigurationValidator:
    """Validates configuration and provides error reporting."""

    @staticmethod
    def validate_config(config: dict) -> Tuple[bool, List[str]]:
        errors = []
        if not isinstance(config, dict):
            errors.append("Config must be a dictionary.")
            return False, errors
        # Validate server
        server = config.get("server", {})
        if not isinstance(server.get("host", None), str):
            errors.append("server.host must be a string.")
        if not _is_int(server.get("port", None)):
            errors.append("server.port must be an integer.")
        admin_prefix = server.get("admin_prefix", None)
        if not isinstance(admin_prefix, str) or not admin_prefix.startswith("/"):
            errors.append("server.admin_prefix must be a string starting with '/'.")
        # Validate origin
        origin = config.get("origin", None)
        if not isinstance(origin, str) or not origin.startswith(("http://", "https://")):
            errors.append("origin must be an http(s) URL string.")
        # Validate cache
        cache = config.get("cache", {})
        for key in ("name_prefix", "version", "database_path"):
            if not isinstance(cache.get(key, None), str) or not cache.get(key):
                errors.append(f"cache.{key} must be a non-empty string.")
        if not _is_int(cache.get("max_cache_response_size", None)):
            errors.append("cache.max_cache_response_size must be an integer.")
        if not _is_int(cache.get("compression_threshold", None)):
            errors.append("cache.compression_threshold must be an integer.")
        # Validate precache
        precache = config.get("precache", {})
        if precache.get("mode", None) not in PRECACHE_MODES:
            errors.append(f"precache.mode must be one of {PRECACHE_MODES}.")
        urls = precache.get("urls", None)
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            errors.append("precache.urls must be a list of strings.")
        # Validate offline
        offline = config.get("offline", {})
        if offline.get("page") is not None and not isinstance(offline.get("page"), str):
            errors.append("offline.page must be a string or None.")
        # Validate sync
        sync = config.get("sync", {})
        if not isinstance(sync.get("tag", None), str):
            errors.append("sync.tag must be a string.")
        if not isinstance(sync.get("endpoint", None), str):
            errors.append("sync.endpoint must be a string.")
        min_interval = sync.get("min_interval_seconds", None)
        if not _is_number(min_interval) or min_interval < 0:
            errors.append("sync.min_interval_seconds must be a non-negative number.")
        if sync.get("queue_backend", None) not in QUEUE_BACKENDS:
            errors.append(f"sync.queue_backend must be one of {QUEUE_BACKENDS}.")
        if not isinstance(sync.get("capture_offline_writes", None), bool):
            errors.append("sync.capture_offline_writes must be a boolean.")
        # Validate network
        network = config.get("network", {})
        if not _is_number(network.get("timeout", None)) or network.get("timeout") <= 0:
            errors.append("network.timeout must be a positive number.")
        if not _is_int(network.get("min_request_interval_ms", None)):
            errors.append("network.min_request_interval_ms must be an integer.")
        # Validate notifications
        notifications = config.get("notifications", {})
        for key in ("title", "default_body", "icon", "badge", "click_url"):
            if not isinstance(notifications.get(key, None), str):
                errors.append(f"notifications.{key} must be a string.")
        vibrate = notifications.get("vibrate", None)
        if not isinstance(vibrate, list) or not all(_is_int(v) for v in vibrate):
            errors.append("notifications.vibrate must be a list of integers.")
        # Validate lifecycle
        lifecycle = config.get("lifecycle", {})
        for key in ("auto_install", "auto_activate"):
            if not isinstance(lifecycle.get(key, None), bool):
                errors.append(f"lifecycle.{key} must be a boolean.")
        # Validate logging
        logging_cfg = config.get("logging", {})
        if not isinstance(logging_cfg.get("level", None), str):
            errors.append("logging.level must be a string.")
        if logging_cfg.get("parent_logger") is not None and not isinstance(logging_cfg.get("parent_logger"), str):
            errors.append("logging.parent_logger must be a string or None.")
        if not isinstance(logging_cfg.get("format", None), str):
            errors.append("logging.format must be a string.")
        if not isinstance(logging_cfg.get("date_format", None), str):
            errors.append("logging.date_format must be a string.")
        if not isinstance(logging_cfg.get("enable_console", None), bool):
            errors.append("logging.enable_console must be a boolean.")
        if not isinstance(logging_cfg.get("enable_file", None), bool):
            errors.append("logging.enable_file must be a boolean.")
        if logging_cfg.get("file_path") is not None and not isinstance(logging_cfg.get("file_path"), str):
            errors.append("logging.file_path must be a string or None.")
        if not _is_int(logging_cfg.get("max_file_size", None)):
            errors.append("logging.max_file_size must be an integer.")
        if not _is_int(logging_cfg.get("backup_count", None)):
            errors.append("logging.backup_count must be an integer.")
        # callbacks may hold arbitrary callables
        if not isinstance(config.get("callbacks", {}), dict):
            errors.append("callbacks must be a dictionary.")
        return len(errors) == 0, errors

    @staticmethod
    def merge_with_defaults(user_config: dict) -> dict:
        return deep_merge(DEFAULT_CONFIG, user_config)


class ConfigurationManager:
    """Manages configuration, validation, merging, and runtime updates."""

    def __init__(self, user_config: dict = None):
        if user_config is None:
            user_config = {}
        self._config = self.load_config(user_config)

    def load_config(self, user_config: dict) -> dict:
        # Callables cannot be deep-copied reliably, so callbacks bypass the merge
        callbacks = dict(user_config.get("callbacks", {}) or {})
        merged = ConfigurationValidator.merge_with_defaults(
            {k: v for k, v in user_config.items() if k != "callbacks"}
        )
        merged["callbacks"] = callbacks
        valid, errors = ConfigurationValidator.validate_config(merged)
        if not valid:
            raise ValueError(f"Invalid configuration: {errors}")
        return merged

    @property
    def config(self) -> dict:
        return self._config

    @property
    def cache_name(self) -> str:
        """Name of the cache store owned by the current client version."""
        cache = self._config["cache"]
        return f"{cache['name_prefix']}-{cache['version']}"

    def update(self, key_path: str, value: Any) -> None:
        """Update a config value at a dotted key path (e.g., 'sync.min_interval_seconds')."""
        keys = key_path.split(".")
        d = self._config
        for k in keys[:-1]:
            if k not in d or not isinstance(d[k], dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value
        valid, errors = ConfigurationValidator.validate_config(self._config)
        if not valid:
            raise ValueError(f"Invalid configuration after update: {errors}")

    def reload(self, new_config: dict) -> None:
        self._config = self.load_config(new_config)
