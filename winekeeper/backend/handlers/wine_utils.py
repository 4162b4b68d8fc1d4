#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Wine Utilities Module
Handles Wine environment composition and parsing of Wine helper output
"""

import logging
from typing import Optional, List, Dict, Mapping

from ..models.configuration import WineSettings, DxvkHudType

# Initialize logger
logger = logging.getLogger(__name__)

# Native d3d/dxgi so DXVK's DLLs are used, native mscoree so Wine Mono is never installed
WINE_DLL_OVERRIDES = "d3d9,d3d11,d3d10core,dxgi,mscoree=n"

# winedbg "info proc" prints the pid as 8 hex digits after one leading space
WINEDBG_PID_START = 1
WINEDBG_PID_LENGTH = 8


class WineUtils:
    """
    Utilities for wine-related operations
    """

    @staticmethod
    def build_wine_environment(wine_settings: WineSettings, hud_type: DxvkHudType) -> Dict[str, str]:
        """
        Environment variables every process in the prefix gets on top of the inherited environment.
        """
        wine_env = {
            'WINEPREFIX': str(wine_settings.prefix),
            'WINEDLLOVERRIDES': WINE_DLL_OVERRIDES,
        }
        if wine_settings.debug_vars:
            wine_env['WINEDEBUG'] = wine_settings.debug_vars

        wine_env['XL_WINEONLINUX'] = 'true'
        wine_env['DXVK_HUD'] = hud_type.env_value
        wine_env['DXVK_ASYNC'] = '1'
        return wine_env

    @staticmethod
    def merge_environment(base: Mapping[str, str], *layers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        """
        Merge environment layers over base. Later layers win on key collisions;
        None layers are ignored.
        """
        merged = dict(base)
        for layer in layers:
            if not layer:
                continue
            for key, value in layer.items():
                merged[key] = str(value)
        return merged

    @staticmethod
    def parse_process_ids(output: str, executable_name: str) -> List[int]:
        """
        Extract process ids from ``winedbg --command "info proc"`` output.

        Only lines mentioning executable_name are considered. The pid is the
        hex field at a fixed offset; lines too short to hold it, or whose field
        is not hex, are skipped with a warning. Ids come back in output order.
        """
        pids = []
        for line in output.split('\n'):
            if not line or executable_name not in line:
                continue
            if len(line) < WINEDBG_PID_START + WINEDBG_PID_LENGTH:
                logger.warning(f"Skipping winedbg line too short for a pid field: {line!r}")
                continue
            field = line[WINEDBG_PID_START:WINEDBG_PID_START + WINEDBG_PID_LENGTH].strip()
            try:
                pids.append(int(field, 16))
            except ValueError:
                logger.warning(f"Skipping winedbg line with non-hex pid field {field!r}: {line!r}")
        return pids

    @staticmethod
    def last_output_line(output: str) -> Optional[str]:
        """
        Last non-empty line of a helper's output, without its line terminator.
        Helpers like winepath print warnings before the real answer.
        """
        lines = [line.rstrip('\r') for line in output.split('\n')]
        lines = [line for line in lines if line.strip()]
        return lines[-1] if lines else None
