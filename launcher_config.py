"""
launcher_config.py
==================
JSON configuration store for the launcher.

Reads and writes are full-object replace: callers load the whole dict,
change it and save the whole dict back.

Recognised keys:
  curseforge_api_key   CurseForge API key (else CURSEFORGE_API_KEY env var)
  private_catalog      path to a YAML/JSON list of private catalog entries
  instances_dir        root directory of game instances
  explorer_filters     last-used search filters
  active_account       {username, uuid, access_token}
  network              {rate_limit_ms, timeout_s, retry_attempts}
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from content_models import ActiveUser, CatalogFilters
from content_providers import PrivateCatalogEntry, load_private_catalog
from fetch_client import RATE_LIMIT_SECONDS, REQUEST_TIMEOUT_SECONDS, RETRY_ATTEMPTS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "launcher_config.json"
DEFAULT_INSTANCES_DIR = "./instances"


class ConfigStore:
    """Load/save boundary around ``launcher_config.json``."""

    def __init__(self, path: str | Path = DEFAULT_CONFIG_PATH) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Return the whole config; empty when missing or unreadable."""
        if not self.path.exists():
            logger.info("Config file not found, using defaults")
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            logger.debug("Config loaded from %s", self.path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load config: %s", exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Config %s is not an object, ignoring it", self.path)
            return {}
        return data

    def save(self, config: Dict[str, Any]) -> None:
        """Replace the config file with ``config``."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as fh:
                json.dump(config, fh, indent=2)
            logger.debug("Config saved to %s", self.path)
        except OSError as exc:
            logger.error("Failed to save config: %s", exc)

    # ================================================================
    #  Search filters
    # ================================================================

    def load_filters(self) -> CatalogFilters:
        raw = self.load().get("explorer_filters")
        if not isinstance(raw, dict):
            return CatalogFilters()
        try:
            return CatalogFilters.from_dict(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring saved search filters: %s", exc)
            return CatalogFilters()

    def save_filters(self, filters: CatalogFilters) -> None:
        config = self.load()
        config["explorer_filters"] = filters.to_dict()
        self.save(config)

    # ================================================================
    #  Settings
    # ================================================================

    def curseforge_api_key(self) -> str:
        return self.load().get("curseforge_api_key") or os.environ.get("CURSEFORGE_API_KEY", "")

    def instances_dir(self) -> Path:
        return Path(self.load().get("instances_dir") or DEFAULT_INSTANCES_DIR)

    def private_catalog(self) -> List[PrivateCatalogEntry]:
        path = self.load().get("private_catalog")
        if not path:
            return []
        try:
            return load_private_catalog(path)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Could not read private catalog %s: %s", path, exc)
            return []

    def network_settings(self) -> Dict[str, float]:
        """Keyword arguments for FetchClient."""
        network = self.load().get("network") or {}
        return {
            "rate_limit": float(network.get("rate_limit_ms", RATE_LIMIT_SECONDS * 1000)) / 1000,
            "timeout": float(network.get("timeout_s", REQUEST_TIMEOUT_SECONDS)),
            "retry_attempts": int(network.get("retry_attempts", RETRY_ATTEMPTS)),
        }

    def active_user(self) -> Optional[ActiveUser]:
        account = self.load().get("active_account")
        if not isinstance(account, dict) or not account.get("username"):
            return None
        return ActiveUser(
            username=str(account["username"]),
            uuid=str(account.get("uuid", "")),
            access_token=account.get("access_token") or None,
        )
