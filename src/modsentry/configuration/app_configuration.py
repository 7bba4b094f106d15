from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict
import yaml

from modsentry.util.logger import get_logger

logger = get_logger("app_configuration")


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches the contents of the YAML file (``config/app_config.yml``
    by default) and exposes typed shortcuts for every tunable of the automod
    engine, the retention executor and the event subjects. Missing keys fall
    back to engine-wide defaults so an empty or absent file is a valid
    configuration.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                # Acquire a shared lock for reading
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)

                # Release the lock
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s is not a mapping, ignoring it.", self.config_path)
            return {}
        return data

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._data.get(name, {})
        return section if isinstance(section, dict) else {}

    def _number(self, section: str, key: str, default: float) -> float:
        value = self._section(section).get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] %s.%s=%r is not numeric, using %s", section, key, value, default)
            return float(default)

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Database
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Return the SQLite file path. ``MODSENTRY_DB_PATH`` wins over the file."""
        env_path = os.getenv("MODSENTRY_DB_PATH")
        if env_path:
            return Path(env_path).resolve()
        return Path(self._section("database").get("path", "./data/modsentry.db")).resolve()

    # --------------------------
    # Automod
    # --------------------------
    @property
    def spam_cleanup_interval(self) -> float:
        """Seconds between spam tracker cleanup passes. Default 600 (10 minutes)."""
        return self._number("automod", "spam_cleanup_interval_seconds", 600.0)

    @property
    def spam_retention(self) -> float:
        """Horizon in seconds kept by the periodic spam cleanup. Default 3600 (1 hour)."""
        return self._number("automod", "spam_retention_seconds", 3600.0)

    @property
    def regex_cache_size(self) -> int:
        """Maximum number of compiled patterns memoized. Default 1000."""
        return int(self._number("automod", "regex_cache_size", 1000))

    @property
    def regex_timeout(self) -> float:
        """Seconds one regex rule may run against one message. Default 0.1."""
        return self._number("automod", "regex_timeout_seconds", 0.1)

    @property
    def default_timeout_seconds(self) -> int:
        """Timeout applied when a rule's own duration is not positive. Default 60."""
        return int(self._number("automod", "default_timeout_seconds", 60))

    @property
    def audit_excerpt_length(self) -> int:
        """Characters of message content kept in an audit record. Default 200."""
        return int(self._number("automod", "audit_excerpt_length", 200))

    # --------------------------
    # Retention
    # --------------------------
    @property
    def retention_batch_size(self) -> int:
        """Messages deleted per retention batch. Default 1000."""
        return int(self._number("retention", "batch_size", 1000))

    @property
    def retention_interval(self) -> float:
        """Seconds between retention scheduler ticks. Default 3600 (hourly)."""
        return self._number("retention", "interval_seconds", 3600.0)

    @property
    def retention_reschedule_hours(self) -> float:
        """Hours until a processed policy is due again. Default 24."""
        return self._number("retention", "reschedule_hours", 24.0)

    @property
    def min_retention_days(self) -> int:
        """Instance-wide floor for a policy's ``max_age_days``. Default 0 (no floor)."""
        return int(self._number("retention", "min_retention_days", 0))

    # --------------------------
    # Events
    # --------------------------
    @property
    def message_create_subject(self) -> str:
        return str(self._section("events").get("message_create_subject", "modsentry.message.create"))

    @property
    def message_delete_subject(self) -> str:
        return str(self._section("events").get("message_delete_subject", "modsentry.message.delete"))

    @property
    def message_delete_bulk_subject(self) -> str:
        return str(self._section("events").get("message_delete_bulk_subject", "modsentry.message.delete_bulk"))

    @property
    def automod_action_subject(self) -> str:
        return str(self._section("events").get("automod_action_subject", "modsentry.automod.action"))

    # --------------------------
    # Storage
    # --------------------------
    @property
    def storage_root(self) -> Path | None:
        """Filesystem root for attachment blobs, or None when not configured."""
        root = self._section("storage").get("local_root")
        return Path(root).resolve() if root else None


