"""
CLI Frontend for WineKeeper
"""

from .main import WineKeeperCLI, main

__all__ = [
    'WineKeeperCLI',
    'main'
]
