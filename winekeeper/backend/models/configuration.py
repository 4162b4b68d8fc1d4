"""
Configuration Data Models

Data structures describing the Wine runtime a CompatibilityToolService manages.
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass


class WineStartupType(Enum):
    """Where the Wine binaries come from."""
    MANAGED = "managed"
    CUSTOM = "custom"


class DxvkHudType(Enum):
    """DXVK on-screen overlay mode."""
    NONE = "none"
    FPS = "fps"
    FULL = "full"

    @property
    def env_value(self) -> str:
        """Token DXVK expects in the DXVK_HUD environment variable."""
        return _DXVK_HUD_TOKENS[self]


_DXVK_HUD_TOKENS = {
    DxvkHudType.NONE: "0",
    DxvkHudType.FPS: "fps",
    DxvkHudType.FULL: "full",
}


@dataclass
class WineSettings:
    """Settings for one Wine runtime session. Treated as immutable once handed to the service."""
    startup_type: WineStartupType
    prefix: Path
    log_file: Path
    custom_bin_path: Optional[Path] = None
    debug_vars: Optional[str] = None

    def __post_init__(self):
        """Convert string paths and startup type values to their typed forms."""
        if isinstance(self.startup_type, str):
            self.startup_type = WineStartupType(self.startup_type)
        if isinstance(self.prefix, str):
            self.prefix = Path(self.prefix)
        if isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)
        if isinstance(self.custom_bin_path, str):
            self.custom_bin_path = Path(self.custom_bin_path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for config persistence."""
        return {
            'wine_startup_type': self.startup_type.value,
            'wine_prefix': str(self.prefix),
            'wine_log_file': str(self.log_file),
            'wine_custom_bin_path': str(self.custom_bin_path) if self.custom_bin_path else None,
            'wine_debug_vars': self.debug_vars,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WineSettings':
        """Create from a config dictionary."""
        return cls(
            startup_type=WineStartupType(data.get('wine_startup_type', WineStartupType.MANAGED.value)),
            prefix=Path(data['wine_prefix']),
            log_file=Path(data['wine_log_file']),
            custom_bin_path=Path(data['wine_custom_bin_path']) if data.get('wine_custom_bin_path') else None,
            debug_vars=data.get('wine_debug_vars') or None,
        )
