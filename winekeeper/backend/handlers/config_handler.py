#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Handler Module
Handles application settings and configuration
"""

import os
import json
import logging
from pathlib import Path

from packaging import version

from ..models.configuration import WineSettings, WineStartupType, DxvkHudType
from winekeeper.shared.paths import get_winekeeper_data_dir, get_winekeeper_tools_dir

# Initialize logger
logger = logging.getLogger(__name__)

CONFIG_VERSION = "0.2.0"


class ConfigHandler:
    """
    Handles application configuration and settings
    Singleton pattern ensures all code shares the same instance
    """
    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigHandler, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize configuration handler with default settings"""
        # Only initialize once (singleton pattern)
        if ConfigHandler._initialized:
            return
        ConfigHandler._initialized = True

        data_dir = get_winekeeper_data_dir()
        self.config_dir = os.path.expanduser("~/.config/winekeeper")
        self.config_file = os.path.join(self.config_dir, "config.json")
        self.settings = {
            "version": CONFIG_VERSION,
            "wine_startup_type": WineStartupType.MANAGED.value,  # "managed" or "custom"
            "wine_custom_bin_path": None,  # Directory holding wine64/wineserver when custom
            "wine_prefix": str(data_dir / "wineprefix"),
            "wine_debug_vars": "-all",  # WINEDEBUG channels
            "dxvk_hud_type": DxvkHudType.NONE.value,
            "wine_log_file": str(data_dir / "logs" / "wine.log"),
            "tools_dir": str(get_winekeeper_tools_dir()),
            "game_config_dir": None  # Where the game reads dxvk.conf from
        }

        self._load_config()
        self._migrate_config()

    @classmethod
    def reset_instance(cls):
        """Forget the singleton so the next ConfigHandler() re-reads disk and environment."""
        cls._instance = None
        cls._initialized = False

    def _load_config(self):
        """
        Load configuration from file and update in-memory cache.
        """
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r') as f:
                    saved_config = json.load(f)
                    # Update settings with saved values while preserving defaults
                    self.settings.update(saved_config)
                    logger.debug("Loaded configuration from file")
            else:
                logger.debug("No configuration file found, using defaults")
                self._create_config_dir()
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading configuration: {e}")

    def _migrate_config(self):
        """
        Migrate configuration between versions
        Handles breaking changes and data format updates
        """
        current_version = self.settings.get("version", "0.0.0")
        if current_version == CONFIG_VERSION:
            return

        logger.info(f"Migrating config from {current_version} to {CONFIG_VERSION}")

        # v0.1.x stored the HUD as an integer index (0 none, 1 fps, 2 full)
        if version.parse(current_version) < version.parse("0.2.0"):
            hud = self.settings.get("dxvk_hud_type")
            if isinstance(hud, int):
                legacy = [DxvkHudType.NONE, DxvkHudType.FPS, DxvkHudType.FULL]
                self.settings["dxvk_hud_type"] = legacy[hud].value if 0 <= hud < len(legacy) else DxvkHudType.NONE.value

            for key in ["wine_version", "dxvk_version"]:
                self.settings.pop(key, None)

        self.settings["version"] = CONFIG_VERSION
        self.save_config()
        logger.info("Config migration completed")

    def _read_config_from_disk(self):
        """
        Read configuration directly from disk without caching.
        Returns merged config (defaults + saved values).
        """
        try:
            config = self.settings.copy()
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r') as f:
                    config.update(json.load(f))
            return config
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading configuration from disk: {e}")
            return self.settings.copy()

    def _create_config_dir(self):
        """Create configuration directory if it doesn't exist"""
        try:
            os.makedirs(self.config_dir, exist_ok=True)
            logger.debug(f"Created configuration directory: {self.config_dir}")
        except OSError as e:
            logger.error(f"Error creating configuration directory: {e}")

    def save_config(self):
        """Save current configuration to file"""
        try:
            self._create_config_dir()
            with open(self.config_file, 'w') as f:
                json.dump(self.settings, f, indent=2)
            logger.debug("Saved configuration to file")
            return True
        except OSError as e:
            logger.error(f"Error saving configuration: {e}")
            return False

    def get(self, key, default=None):
        """
        Get a configuration value by key.
        Always reads fresh from disk to avoid stale data.
        """
        config = self._read_config_from_disk()
        return config.get(key, default)

    def set(self, key, value):
        """Set a configuration value"""
        self.settings[key] = value
        return True

    def get_wine_settings(self) -> WineSettings:
        """Build WineSettings from the current configuration."""
        return WineSettings.from_dict(self._read_config_from_disk())

    def set_wine_settings(self, wine_settings: WineSettings):
        """Store WineSettings in the configuration (call save_config to persist)."""
        self.settings.update(wine_settings.to_dict())
        return True

    def get_hud_type(self) -> DxvkHudType:
        value = self.get("dxvk_hud_type", DxvkHudType.NONE.value)
        try:
            return DxvkHudType(value)
        except ValueError:
            logger.warning(f"Unknown dxvk_hud_type '{value}' in config, using none")
            return DxvkHudType.NONE

    def get_tools_dir(self) -> Path:
        return Path(self.get("tools_dir") or get_winekeeper_tools_dir())

    def get_game_config_dir(self):
        value = self.get("game_config_dir")
        return Path(value) if value else None
