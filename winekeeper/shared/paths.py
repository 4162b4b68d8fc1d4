"""
Path Utilities

Locations of WineKeeper's data, log and tool directories.
"""

import os
from pathlib import Path


def get_winekeeper_data_dir() -> Path:
    """
    Get the WineKeeper data directory.

    WINEKEEPER_DATA_DIR wins; otherwise $XDG_DATA_HOME/winekeeper
    (~/.local/share/winekeeper when XDG_DATA_HOME is unset).
    """
    override = os.environ.get('WINEKEEPER_DATA_DIR')
    if override:
        return Path(override).expanduser()
    xdg_data = os.environ.get('XDG_DATA_HOME') or os.path.expanduser('~/.local/share')
    return Path(xdg_data) / 'winekeeper'


def get_winekeeper_logs_dir() -> Path:
    """Directory for WineKeeper's own log files."""
    return get_winekeeper_data_dir() / 'logs'


def get_winekeeper_tools_dir() -> Path:
    """Directory holding downloaded compatibility tools (Wine, DXVK)."""
    return get_winekeeper_data_dir() / 'compatibilitytool'
