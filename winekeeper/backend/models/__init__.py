"""
Data models shared between the WineKeeper backend and its frontends.
"""

from .configuration import WineSettings, WineStartupType, DxvkHudType

__all__ = [
    'WineSettings',
    'WineStartupType',
    'DxvkHudType'
]
