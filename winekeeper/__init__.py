"""
WineKeeper - Wine runtime and prefix management for running a Windows game on Linux.
"""

__version__ = "0.1.0"
