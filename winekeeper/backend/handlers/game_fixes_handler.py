"""
Game Fixes Handler

Writes the default DXVK configuration the game needs to run well under Wine.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DXVK_CONFIG_FILENAME = "dxvk.conf"

DEFAULT_GAME_CONFIG = {
    "dxvk.enableAsync": "True",
    "dxgi.maxFrameLatency": "1",
}


class GameFixesHandler:
    def __init__(self, defaults: Optional[Dict[str, str]] = None):
        self.defaults = dict(DEFAULT_GAME_CONFIG if defaults is None else defaults)

    @staticmethod
    def _read_keys(config_file: Path) -> set:
        keys = set()
        with open(config_file, 'r', encoding='utf-8', errors='ignore') as f:
            for line in f:
                stripped = line.strip()
                if not stripped or stripped.startswith('#') or '=' not in stripped:
                    continue
                keys.add(stripped.split('=', 1)[0].strip())
        return keys

    def add_default_config(self, game_config_dir: Path) -> Path:
        """
        Append any default key missing from <game_config_dir>/dxvk.conf.
        Values the user already set are left alone. Returns the config file path.
        """
        game_config_dir = Path(game_config_dir)
        game_config_dir.mkdir(parents=True, exist_ok=True)
        config_file = game_config_dir / DXVK_CONFIG_FILENAME

        existing = self._read_keys(config_file) if config_file.exists() else set()
        missing = {k: v for k, v in self.defaults.items() if k not in existing}
        if not missing:
            logger.debug(f"{config_file} already has all default settings")
            return config_file

        needs_newline = config_file.exists() and config_file.stat().st_size > 0 \
            and not config_file.read_bytes().endswith(b'\n')
        with open(config_file, 'a', encoding='utf-8') as f:
            if needs_newline:
                f.write('\n')
            for key, value in missing.items():
                f.write(f"{key} = {value}\n")

        logger.info(f"Added {len(missing)} default setting(s) to {config_file}")
        return config_file
